'''Read structures: the cycle layout of every cluster in a run.

A read structure is written as a run of <count><tag> tokens, e.g. 76T8B76T
for a paired run with one 8-cycle index read.  Tags are:

    T - template: a biological read
    B - barcode: a sample index read
    S - skip: cycles that are sequenced but not emitted
'''

__author__ = "dpark@broadinstitute.org"

import collections
import logging
import re

from util.errors import FormatError

log = logging.getLogger(__name__)

TEMPLATE = 'T'
BARCODE = 'B'
SKIP = 'S'
READ_TYPES = (TEMPLATE, BARCODE, SKIP)

_TOKEN_RE = re.compile(r'(\d+)([A-Za-z])')

ReadDescriptor = collections.namedtuple('ReadDescriptor', ['length', 'type'])


class ReadDescriptorCollection(object):
    ''' The segments of one type, in the order they appear in the read structure. '''

    def __init__(self, descriptors, segment_indices, cycle_ranges):
        self.descriptors = tuple(descriptors)
        self.segment_indices = tuple(segment_indices)
        self.cycle_ranges = tuple(cycle_ranges)

    def __len__(self):
        return len(self.descriptors)

    def __iter__(self):
        return iter(self.descriptors)

    @property
    def lengths(self):
        return tuple(d.length for d in self.descriptors)

    @property
    def cycles(self):
        ''' 1-based absolute cycle numbers covered by these segments, in order. '''
        return tuple(c + 1 for start, stop in self.cycle_ranges for c in range(start, stop))


class ReadStructure(object):
    ''' An immutable, parsed read structure.

        Instances are shared read-only by every tile worker.
    '''

    def __init__(self, descriptor):
        if isinstance(descriptor, ReadStructure):
            descriptor = str(descriptor)
        self.descriptors = self._parse(descriptor)

        ranges = []
        start = 0
        for d in self.descriptors:
            ranges.append((start, start + d.length))
            start += d.length
        self._cycle_ranges = tuple(ranges)
        self.total_cycles = start

        self.templates = self._collect(TEMPLATE)
        self.barcodes = self._collect(BARCODE)
        self.skips = self._collect(SKIP)

    @staticmethod
    def _parse(descriptor):
        if not descriptor or not isinstance(descriptor, str):
            raise FormatError('empty read structure: %r' % (descriptor,))
        descriptor = descriptor.strip()
        pos = 0
        out = []
        for mo in _TOKEN_RE.finditer(descriptor):
            if mo.start() != pos:
                break
            count, tag = int(mo.group(1)), mo.group(2)
            if count <= 0:
                raise FormatError('read structure %s has a segment with non-positive length %d' % (descriptor, count))
            if tag not in READ_TYPES:
                raise FormatError('read structure %s has unrecognized segment type %s (expected one of %s)' %
                                  (descriptor, tag, ', '.join(READ_TYPES)))
            out.append(ReadDescriptor(count, tag))
            pos = mo.end()
        if pos != len(descriptor) or not out:
            raise FormatError('malformed read structure: %s' % descriptor)
        return tuple(out)

    def _collect(self, read_type):
        idx = [i for i, d in enumerate(self.descriptors) if d.type == read_type]
        return ReadDescriptorCollection(
            [self.descriptors[i] for i in idx], idx, [self._cycle_ranges[i] for i in idx])

    @classmethod
    def from_reads(cls, reads):
        ''' Build from (num_cycles, is_index) pairs, as listed in a RunInfo.xml '''
        return cls(''.join('%d%s' % (n, BARCODE if is_index else TEMPLATE) for n, is_index in reads))

    def cycle_ranges(self):
        ''' 0-based, half-open (start, stop) cycle range of every segment '''
        return self._cycle_ranges

    def num_output_reads(self):
        ''' Number of records emitted per cluster: one per template and barcode segment '''
        return len(self.templates) + len(self.barcodes)

    def __len__(self):
        return len(self.descriptors)

    def __iter__(self):
        return iter(self.descriptors)

    def __str__(self):
        return ''.join('%d%s' % d for d in self.descriptors)

    def __repr__(self):
        return 'ReadStructure(%r)' % str(self)

    def __eq__(self, other):
        return isinstance(other, ReadStructure) and self.descriptors == other.descriptors

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash(self.descriptors)
