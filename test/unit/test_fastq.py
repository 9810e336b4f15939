# Unit tests for util/fastq.py

__author__ = "dpark@broadinstitute.org"

import io
import os
import os.path

import util.file
from test import TestCaseWithTmp, assert_md5_equal_to_line_in_file
from util.errors import FormatError, ResourceError
from util.fastq import ClusterRecords, FastqRecord, FastqRecordsCodec, FastqRecordsWriter, output_file_names


def make_bundle(name, num_templates=2, num_barcodes=1):
    templates = tuple(FastqRecord('%s/%d' % (name, i + 1), 'ACGT', 'IIII') for i in range(num_templates))
    barcodes = tuple(FastqRecord(name, 'GG', '##') for i in range(num_barcodes))
    return ClusterRecords(templates, barcodes)


def test_output_file_names():
    assert output_file_names('out/s1', 2, 1) == (['out/s1.1.fastq', 'out/s1.2.fastq'], ['out/s1.barcode_1.fastq'])
    assert output_file_names('s1', 1, 2, compress=True) == (['s1.1.fastq.gz'],
                                                            ['s1.barcode_1.fastq.gz', 's1.barcode_2.fastq.gz'])
    assert output_file_names('s1', 0, 1) == ([], ['s1.barcode_1.fastq'])


class TestFastqRecordsCodec(TestCaseWithTmp):

    def test_encode_decode(self):
        codec = FastqRecordsCodec(2, 1)
        bundles = [make_bundle('r1'), make_bundle('r2')]
        buf = io.StringIO()
        for b in bundles:
            codec.encode(b, buf)
        self.assertEqual(buf.getvalue().count('\n'), 24)
        self.assertTrue(buf.getvalue().startswith('@r1/1\nACGT\n+\nIIII\n@r1/2\n'))
        self.assertEqual(list(codec.clone().decode(io.StringIO(buf.getvalue()))), bundles)

    def test_barcodes_only(self):
        codec = FastqRecordsCodec(0, 2)
        bundle = make_bundle('r1', 0, 2)
        buf = io.StringIO()
        codec.encode(bundle, buf)
        self.assertEqual(list(codec.decode(io.StringIO(buf.getvalue()))), [bundle])

    def test_wrong_record_count(self):
        with self.assertRaises(FormatError):
            FastqRecordsCodec(1, 1).encode(make_bundle('r1', 2, 1), io.StringIO())

    def test_truncated_stream(self):
        buf = io.StringIO()
        FastqRecordsCodec(2, 1).encode(make_bundle('r1'), buf)
        truncated = '\n'.join(buf.getvalue().split('\n')[:8]) + '\n'
        with self.assertRaises(FormatError):
            list(FastqRecordsCodec(2, 1).decode(io.StringIO(truncated)))

    def test_garbage_stream(self):
        with self.assertRaises(FormatError):
            list(FastqRecordsCodec(1, 0).decode(io.StringIO('not a fastq\n')))

    def test_no_reads(self):
        with self.assertRaises(ValueError):
            FastqRecordsCodec(0, 0)


class TestFastqRecordsWriter(TestCaseWithTmp):

    def test_write(self):
        with util.file.tmp_dir() as d:
            prefix = os.path.join(d, 'sample')
            with FastqRecordsWriter(prefix, 2, 1) as writer:
                writer.write(make_bundle('r1'))
                writer.write(make_bundle('r2'))
            self.assertEqual(writer.num_written, 2)
            self.assertEqual(sorted(os.listdir(d)), ['sample.1.fastq', 'sample.2.fastq', 'sample.barcode_1.fastq'])
            self.assertEqual(self.fastqReadNames(prefix + '.1.fastq'), ['r1/1', 'r2/1'])
            self.assertEqual(self.fastqReadNames(prefix + '.2.fastq'), ['r1/2', 'r2/2'])
            self.assertEqual(self.fastqReadNames(prefix + '.barcode_1.fastq'), ['r1', 'r2'])

    def test_compressed_with_md5(self):
        with util.file.tmp_dir() as d:
            prefix = os.path.join(d, 'sample')
            with FastqRecordsWriter(prefix, 1, 0, compress=True, create_md5=True) as writer:
                writer.write(make_bundle('r1', 1, 0))
            fn = prefix + '.1.fastq.gz'
            self.assertEqual(sorted(os.listdir(d)), ['sample.1.fastq.gz', 'sample.1.fastq.gz.md5'])
            self.assertEqual(self.fastqReadNames(fn), ['r1/1'])
            assert_md5_equal_to_line_in_file(self, fn, fn + '.md5')

    def test_no_md5_after_failure(self):
        with util.file.tmp_dir() as d:
            prefix = os.path.join(d, 'sample')
            with self.assertRaises(FormatError):
                with FastqRecordsWriter(prefix, 2, 1, create_md5=True) as writer:
                    writer.write(make_bundle('r1'))
                    writer.write(make_bundle('r2', 1, 1))
            self.assertFalse(any(fn.endswith('.md5') for fn in os.listdir(d)))
            writer.close()

    def test_open_twice(self):
        with util.file.tmp_dir() as d:
            with FastqRecordsWriter(os.path.join(d, 'sample'), 1, 0) as writer:
                with self.assertRaises(RuntimeError):
                    writer.open()

    def test_unwritable_output(self):
        with self.assertRaises(ResourceError) as cm:
            with FastqRecordsWriter('/non/existent/dir/sample', 1, 0):
                pass
        self.assertIn('/non/existent/dir/sample', str(cm.exception))
