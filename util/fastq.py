'''Fastq records for converted clusters: the per-cluster record bundle,
its spill codec, and the per-output-group fastq file writer.
'''

__author__ = "dpark@broadinstitute.org"

import collections
import contextlib
import itertools
import logging

from Bio.SeqIO.QualityIO import FastqGeneralIterator

import util.file
from util.errors import FormatError, ResourceError

log = logging.getLogger(__name__)

FastqRecord = collections.namedtuple('FastqRecord', ['name', 'bases', 'qualities'])

# All the records made from one cluster: one per template read and one per
# barcode read, in read structure order.  They share a read name, so they are
# sorted, spilled and written together.
ClusterRecords = collections.namedtuple('ClusterRecords', ['template_records', 'barcode_records'])


def format_fastq(rec):
    return '@%s\n%s\n+\n%s\n' % rec


def output_file_names(prefix, num_templates, num_barcodes, compress=False):
    ''' Return (template fastq names, barcode fastq names) for an output prefix:
            <prefix>.1.fastq, <prefix>.2.fastq, ...
            <prefix>.barcode_1.fastq, ...
    '''
    ext = compress and 'fastq.gz' or 'fastq'
    templates = ['%s.%d.%s' % (prefix, i, ext) for i in range(1, num_templates + 1)]
    barcodes = ['%s.barcode_%d.%s' % (prefix, i, ext) for i in range(1, num_barcodes + 1)]
    return templates, barcodes


class FastqRecordsCodec(object):
    ''' Writes ClusterRecords to, and reads them back from, a text stream as
        consecutive four-line fastq records (templates first, then barcodes).

        A codec holds no stream state, so a single instance may serve any
        number of concurrently open partitions; clone() is provided for
        callers that want one instance per partition.
    '''

    def __init__(self, num_templates, num_barcodes):
        if num_templates < 0 or num_barcodes < 0 or num_templates + num_barcodes == 0:
            raise ValueError('a cluster needs at least one output read, got %d templates and %d barcodes' %
                             (num_templates, num_barcodes))
        self.num_templates = num_templates
        self.num_barcodes = num_barcodes

    def clone(self):
        return FastqRecordsCodec(self.num_templates, self.num_barcodes)

    def check(self, bundle):
        if len(bundle.template_records) != self.num_templates or len(bundle.barcode_records) != self.num_barcodes:
            raise FormatError('cluster has %d template and %d barcode records, expected %d and %d' %
                              (len(bundle.template_records), len(bundle.barcode_records),
                               self.num_templates, self.num_barcodes))

    def encode(self, bundle, outf):
        self.check(bundle)
        for rec in itertools.chain(bundle.template_records, bundle.barcode_records):
            outf.write(format_fastq(rec))

    def decode(self, inf):
        ''' Iterate over the ClusterRecords in a text stream. '''
        per_cluster = self.num_templates + self.num_barcodes
        recs = []
        try:
            for title, seq, qual in FastqGeneralIterator(inf):
                recs.append(FastqRecord(title, seq, qual))
                if len(recs) == per_cluster:
                    yield ClusterRecords(tuple(recs[:self.num_templates]), tuple(recs[self.num_templates:]))
                    recs = []
        except ValueError as e:
            raise FormatError('malformed spilled fastq records: %s' % e)
        if recs:
            raise FormatError('spilled records end partway through a cluster (%d of %d records)' %
                              (len(recs), per_cluster))


class FastqRecordsWriter(object):
    ''' The fastq files of one output group.

        All files are opened together on entry and closed together on exit,
        whether or not the writes in between succeeded.
    '''

    def __init__(self, prefix, num_templates, num_barcodes, compress=False, create_md5=False):
        self.prefix = prefix
        self.codec = FastqRecordsCodec(num_templates, num_barcodes)
        self.template_fnames, self.barcode_fnames = output_file_names(
            prefix, num_templates, num_barcodes, compress=compress)
        self.create_md5 = create_md5
        self.template_files = []
        self.barcode_files = []
        self.num_written = 0
        self._files = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close(write_md5=exc_type is None)
        return False

    def fnames(self):
        return self.template_fnames + self.barcode_fnames

    def open(self):
        if self._files is not None:
            raise RuntimeError("%s is already open" % self.prefix)
        files = contextlib.ExitStack()
        try:
            self.template_files = [files.enter_context(util.file.open_or_gzopen(fn, 'wt'))
                                   for fn in self.template_fnames]
            self.barcode_files = [files.enter_context(util.file.open_or_gzopen(fn, 'wt'))
                                  for fn in self.barcode_fnames]
        except OSError as e:
            files.close()
            raise ResourceError('cannot open fastq output: %s' % e, self.prefix)
        self._files = files

    def write(self, bundle):
        self.codec.check(bundle)
        try:
            for outf, rec in zip(self.template_files, bundle.template_records):
                outf.write(format_fastq(rec))
            for outf, rec in zip(self.barcode_files, bundle.barcode_records):
                outf.write(format_fastq(rec))
        except OSError as e:
            raise ResourceError('cannot write fastq output: %s' % e, self.prefix)
        self.num_written += 1

    def close(self, write_md5=True):
        if self._files is None:
            return
        files, self._files = self._files, None
        self.template_files = []
        self.barcode_files = []
        try:
            files.close()
            if self.create_md5 and write_md5:
                for fn in self.fnames():
                    util.file.dump_file(fn + '.md5', util.file.hash_file(fn, 'md5'))
        except OSError as e:
            raise ResourceError('cannot close fastq output: %s' % e, self.prefix)
        log.debug("wrote %d clusters to %s", self.num_written, self.prefix)
