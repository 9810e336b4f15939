'''utilities for tests'''

__author__ = "irwin@broadinstitute.org"

# built-ins
import filecmp
import hashlib
import os
import unittest

# third-party
import Bio.SeqIO
import numpy as np
import pytest

# intra-project
import util.file
from util.basecalls import Cluster, ReadData


def assert_equal_contents(testCase, filename1, filename2):
    'Assert contents of two files are equal for a unittest.TestCase'
    testCase.assertTrue(filecmp.cmp(filename1, filename2, shallow=False))


def assert_md5_equal_to_line_in_file(testCase, filename, checksum_file, msg=None):
    ''' Compare the checksum of a test file with the expected checksum
        stored in a second file
          compare md5(test_output.fastq) with test_output.fastq.md5:1
    '''

    hash_md5 = hashlib.md5()
    with open(filename, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            hash_md5.update(chunk)

    with open(checksum_file, "rb") as f:
        expected_checksum = str(f.readline().decode("utf-8"))

    expected_checksum = expected_checksum.replace("\r", "").replace("\n", "")

    assert len(expected_checksum) > 0

    testCase.assertEqual(hash_md5.hexdigest(), expected_checksum, msg=msg)


def make_cluster(tile, x, y, read_structure, bases=None, qual=30, pf=True, lane=1, matched_barcode=None):
    ''' A Cluster with one ReadData per segment of read_structure.  bases is
        either the full-cycle call string or None for all A's.
    '''
    if bases is None:
        bases = 'A' * read_structure.total_cycles
    assert len(bases) == read_structure.total_cycles
    quals = np.full(read_structure.total_cycles, qual, dtype=np.int16)
    reads = tuple(ReadData(bases[start:stop], quals[start:stop]) for start, stop in read_structure.cycle_ranges())
    return Cluster(lane, tile, x, y, pf, reads, matched_barcode)


def write_cluster_file(fname, clusters, with_matched_barcode=False):
    ''' Write clusters in the per-tile tab format read by TabularClusterSource '''
    header = ['x', 'y', 'pf', 'bases', 'qualities']
    if with_matched_barcode:
        header.append('matched_barcode')
    with util.file.open_or_gzopen(fname, 'wt') as outf:
        outf.write('\t'.join(header) + '\n')
        for c in clusters:
            row = [str(c.x), str(c.y), c.pf and 'Y' or 'N',
                   ''.join(r.bases for r in c.reads),
                   ''.join(chr(int(q) + 33) for r in c.reads for q in r.qualities)]
            if with_matched_barcode:
                row.append(c.matched_barcode or '')
            outf.write('\t'.join(row) + '\n')


@pytest.mark.usefixtures('tmpdir_class')
class TestCaseWithTmp(unittest.TestCase):
    'Base class for tests that use tempDir'

    def assertEqualContents(self, f1, f2):
        assert_equal_contents(self, f1, f2)

    def assertEqualFastq(self, f1, f2):
        '''Check that two fastq files have the same read ids, bases and qualities'''
        def recs(f):
            with util.file.open_or_gzopen(f, 'rt') as inf:
                return [(rec.description, str(rec.seq), rec.letter_annotations['phred_quality'])
                        for rec in Bio.SeqIO.parse(inf, 'fastq')]
        self.assertEqual(recs(f1), recs(f2))

    def fastqReadNames(self, fname):
        '''Full header lines of every record in a fastq file, in file order'''
        with util.file.open_or_gzopen(fname, 'rt') as inf:
            return [rec.description for rec in Bio.SeqIO.parse(inf, 'fastq')]

    def input(self, fname):
        '''Return the full filename for a file in the test input directory for this test class'''
        return os.path.join(util.file.get_test_input_path(self), fname)

