# Unit tests for util/sample_router.py

__author__ = "dpark@broadinstitute.org"

import os
import os.path

import pytest

import util.file
from test import TestCaseWithTmp
from util.errors import ConfigError
from util.read_structure import ReadStructure
from util.sample_router import OutputGroup, SampleRouter


def write_params(lines):
    fname = util.file.mkstempfname('.txt')
    util.file.dump_file(fname, ''.join('\t'.join(row) + '\n' for row in lines))
    return fname


class TestSampleRouter(TestCaseWithTmp):

    def test_single_group(self):
        router = SampleRouter.single_group('out/all')
        self.assertFalse(router.is_demultiplexed)
        self.assertTrue(router.has_fallback)
        self.assertEqual(len(router), 1)
        self.assertEqual(router.route('ACGT').prefix, 'out/all')
        self.assertEqual(router.route(None).prefix, 'out/all')

    def test_dual_index(self):
        router = SampleRouter.from_multiplex_params(self.input('multiplex_params_dual.txt'),
                                                    ReadStructure('10T4B4B10T'))
        self.assertTrue(router.is_demultiplexed)
        self.assertEqual(len(router), 3)
        self.assertEqual([g.prefix for g in router.groups], ['out/sample1', 'out/sample2', 'out/unmatched'])
        self.assertEqual(router.route('ACGTTTGA'), OutputGroup('ACGTTTGA', 'out/sample1'))
        self.assertEqual(router.route('CAGTGGCA').prefix, 'out/sample2')
        self.assertEqual(router.route('GGGGGGGG').prefix, 'out/unmatched')
        self.assertEqual(router.fallback.key, None)

    def test_fallback_in_second_barcode_column(self):
        fname = write_params([('OUTPUT_PREFIX', 'BARCODE_1', 'BARCODE_2'),
                              ('s1', 'AAAA', 'CCCC'),
                              ('unmatched', 'GGGG', 'N')])
        router = SampleRouter.from_multiplex_params(fname, ReadStructure('4B4B'))
        self.assertEqual(router.route('TTTTTTTT').prefix, 'unmatched')

    def test_no_barcode_reads(self):
        fname = write_params([('OUTPUT_PREFIX',), ('everything',)])
        router = SampleRouter.from_multiplex_params(fname, ReadStructure('50T'))
        self.assertEqual(router.route(None).prefix, 'everything')
        self.assertTrue(router.has_fallback)

    def test_no_fallback(self):
        fname = write_params([('OUTPUT_PREFIX', 'BARCODE_1'),
                              ('s1', 'AAAA'),
                              ('s2', 'CCCC')])
        router = SampleRouter.from_multiplex_params(fname, ReadStructure('4B10T'))
        self.assertFalse(router.has_fallback)
        self.assertIsNone(router.route('GGGG'))
        self.assertEqual(router.route('CCCC').prefix, 's2')

    def test_duplicate_barcode(self):
        fname = write_params([('OUTPUT_PREFIX', 'BARCODE_1'),
                              ('s1', 'AAAA'),
                              ('s2', 'AAAA')])
        with self.assertRaises(ConfigError):
            SampleRouter.from_multiplex_params(fname, ReadStructure('4B10T'))

    def test_two_fallback_rows(self):
        fname = write_params([('OUTPUT_PREFIX', 'BARCODE_1'),
                              ('u1', 'N'),
                              ('u2', 'N')])
        with self.assertRaises(ConfigError):
            SampleRouter.from_multiplex_params(fname, ReadStructure('4B10T'))

    def test_missing_column(self):
        fname = write_params([('OUTPUT_PREFIX', 'BARCODE_1'),
                              ('s1', 'AAAA')])
        with self.assertRaises(ConfigError):
            SampleRouter.from_multiplex_params(fname, ReadStructure('4B4B10T'))

    def test_empty_table(self):
        fname = write_params([('OUTPUT_PREFIX', 'BARCODE_1')])
        with self.assertRaises(ConfigError):
            SampleRouter.from_multiplex_params(fname, ReadStructure('4B10T'))

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            SampleRouter.from_multiplex_params('/non/existent/params.txt', ReadStructure('4B10T'))

    def test_check_writable(self):
        with util.file.tmp_dir() as d:
            SampleRouter.single_group(os.path.join(d, 'out')).check_writable()
            with self.assertRaises(ConfigError):
                SampleRouter.single_group(os.path.join(d, 'no_such_dir', 'out')).check_writable()


def test_duplicate_group_keys():
    with pytest.raises(ConfigError):
        SampleRouter([OutputGroup('AC', 'a'), OutputGroup('AC', 'b')])


def test_no_groups():
    with pytest.raises(ConfigError):
        SampleRouter([])
