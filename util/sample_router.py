'''Routing of clusters to output groups by barcode.

An output group is one set of fastq files (one per template read and one
per barcode read) sharing an output prefix.  A run either writes every
cluster to a single group, or demultiplexes by barcode according to a
tab-delimited "multiplex params" table:

    OUTPUT_PREFIX   BARCODE_1   BARCODE_2
    out/sample1     ACGTACGT    TTGACCAA
    out/sample2     CAGTCAGT    GGCATTAC
    out/unmatched   N           N

The routing key of a row is the concatenation of its barcodes in read order.
A row with a barcode of N is the catch-all for clusters whose barcode matches
no other row.
'''

__author__ = "dpark@broadinstitute.org"

import collections
import logging
import os
import os.path

import util.file
from util.errors import ConfigError

log = logging.getLogger(__name__)

NO_MATCH_BARCODE = 'N'

OutputGroup = collections.namedtuple('OutputGroup', ['key', 'prefix'])


def barcode_column_labels(num_barcodes):
    return ['BARCODE_%d' % i for i in range(1, num_barcodes + 1)]


class SampleRouter(object):
    ''' An immutable barcode -> OutputGroup lookup table, built once at startup
        and shared read-only by all tile workers.
    '''

    def __init__(self, groups, demultiplex=True):
        self._by_key = {}
        for group in groups:
            if group.key in self._by_key:
                raise ConfigError('barcode %s appears in more than one output group (%s, %s)' %
                                  (group.key, self._by_key[group.key].prefix, group.prefix))
            self._by_key[group.key] = group
        if not self._by_key:
            raise ConfigError('no output groups defined')
        self.groups = tuple(groups)
        self.demultiplex = demultiplex
        self.fallback = self._by_key.get(None)

    @classmethod
    def single_group(cls, prefix):
        ''' Every cluster goes to the one output prefix given. '''
        return cls([OutputGroup(None, prefix)], demultiplex=False)

    @classmethod
    def from_multiplex_params(cls, inFile, read_structure):
        ''' Load a multiplex params table with columns OUTPUT_PREFIX and
            BARCODE_1 .. BARCODE_N, N being the number of barcode reads in
            read_structure.  Relative output prefixes are taken relative to
            the current directory.
        '''
        if not os.path.isfile(inFile):
            raise ConfigError('multiplex params file %s does not exist' % inFile)
        barcode_labels = barcode_column_labels(len(read_structure.barcodes))

        try:
            header = util.file.readFlatFileHeader(inFile)
            missing = [c for c in ['OUTPUT_PREFIX'] + barcode_labels if c not in header]
            if missing:
                raise ConfigError('multiplex params file %s is missing the following columns: %s.' %
                                  (inFile, ', '.join(missing)))
            rows = list(util.file.read_tabfile_dict(inFile))
        except (IOError, ValueError) as e:
            raise ConfigError('cannot read multiplex params file %s: %s' % (inFile, e))

        groups = []
        for row in rows:
            if not row.get('OUTPUT_PREFIX'):
                raise ConfigError('multiplex params file %s has a row with no OUTPUT_PREFIX: %s' % (inFile, row))
            barcodes = [row.get(label, '') for label in barcode_labels]
            if not barcodes or NO_MATCH_BARCODE in barcodes:
                key = None
            else:
                if not all(barcodes):
                    raise ConfigError('multiplex params file %s: row for %s is missing a barcode' %
                                      (inFile, row['OUTPUT_PREFIX']))
                key = ''.join(barcodes)
            if any(g.key == key for g in groups):
                raise ConfigError('row for barcode %s appears more than once in multiplex params file %s' %
                                  (key, inFile))
            groups.append(OutputGroup(key, row['OUTPUT_PREFIX']))

        if not groups:
            raise ConfigError('multiplex params file %s does not have any data rows' % inFile)
        log.info("loaded %d output groups from %s", len(groups), inFile)
        return cls(groups, demultiplex=True)

    @property
    def is_demultiplexed(self):
        return self.demultiplex

    @property
    def has_fallback(self):
        return self.fallback is not None

    def __len__(self):
        return len(self.groups)

    def route(self, barcode):
        ''' The OutputGroup for a cluster's barcode, the fallback group for
            barcodes not in the table, or None if there is no fallback.
        '''
        if not self.demultiplex:
            return self.fallback
        return self._by_key.get(barcode, self.fallback)

    def check_writable(self):
        ''' Every group's output directory must exist and be writable. '''
        for group in self.groups:
            out_dir = os.path.dirname(os.path.abspath(group.prefix))
            if not util.file.is_writable_dir(out_dir):
                raise ConfigError('output directory %s (for %s) is not a writable directory' %
                                  (out_dir, group.prefix))
