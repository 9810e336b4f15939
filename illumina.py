#!/usr/bin/env python
"""
Utilities for converting Illumina basecalls to demultiplexed fastq files.
"""

__author__ = "dpark@broadinstitute.org"
__commands__ = []

import argparse
import logging
import os
import os.path
import xml.etree.ElementTree

import util.cmd
import util.file
from util.basecalls import ClusterConverter, QualityEvaluator, TabularClusterSource
from util.demux import DEFAULT_MAX_RECORDS_IN_RAM_PER_TILE, BasecallsConverter
from util.errors import ConfigError
from util.read_names import CASAVA_1_8, READ_NAME_FORMATS, make_read_name_encoder
from util.read_structure import ReadStructure
from util.sample_router import NO_MATCH_BARCODE, SampleRouter, barcode_column_labels

log = logging.getLogger(__name__)

# ======================================
# ***  illumina_basecalls_to_fastq   ***
# ======================================


def parser_illumina_basecalls_to_fastq(parser=argparse.ArgumentParser()):
    parser.add_argument('basecallsDir', help='Directory of per-tile cluster files (s_<lane>_<tile>.clusters.txt).')
    parser.add_argument('lane', help='Lane number.', type=int)

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('--outputPrefix',
                       default=None,
                       help='''Write every cluster to <outputPrefix>.1.fastq, <outputPrefix>.2.fastq, ...
                               and <outputPrefix>.barcode_1.fastq, ... (no demultiplexing).''')
    group.add_argument('--multiplexParams',
                       default=None,
                       help='''Demultiplex according to this tab file with columns OUTPUT_PREFIX and
                               BARCODE_1 .. BARCODE_N, one per barcode read. Clusters whose barcode
                               matches no row go to the row whose barcodes are N.''')

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('--readStructure', default=None, help='Read structure, e.g. 76T8B76T.')
    group.add_argument('--runInfo', default=None, help='Take the read structure (and run details) from this RunInfo.xml.')

    parser.add_argument('--runBarcode',
                        default=None,
                        help='Run barcode used in read names (default: the run number from --runInfo).')
    parser.add_argument('--machineName',
                        default=None,
                        help='Machine name used in CASAVA_1_8 read names (default: from --runInfo).')
    parser.add_argument('--flowcellBarcode',
                        default=None,
                        help='Flowcell barcode used in CASAVA_1_8 read names (default: from --runInfo).')
    parser.add_argument('--readNameFormat',
                        default=CASAVA_1_8,
                        choices=READ_NAME_FORMATS,
                        help='Read name header style (default: %(default)s)')
    parser.add_argument('--firstTile', type=int, default=None, help='Start at this tile (default: the first one).')
    parser.add_argument('--tileLimit', type=int, default=None, help='Process at most this many tiles.')
    parser.add_argument('--maxReadsInRamPerTile',
                        type=int,
                        default=DEFAULT_MAX_RECORDS_IN_RAM_PER_TILE,
                        help='''Records held in memory per tile before spilling to disk, shared by all
                                output groups (default: %(default)s)''')
    parser.add_argument('--minimumQuality',
                        type=int,
                        default=QualityEvaluator.ILLUMINA_ALLEGED_MINIMUM_QUALITY,
                        help='Fail if any base quality (after revising 0 to 1) is below this (default: %(default)s)')
    parser.add_argument('--excludeNonPfReads',
                        dest='include_non_pf_reads',
                        action='store_false',
                        default=True,
                        help='Drop clusters that did not pass filter.')
    parser.add_argument('--noForceGc',
                        dest='force_gc',
                        action='store_false',
                        default=True,
                        help='Do not run the garbage collector after each tile.')
    parser.add_argument('--compress', action='store_true', default=False, help='Write gzipped fastq files.')
    parser.add_argument('--createMd5', action='store_true', default=False, help='Write an .md5 file beside each fastq.')
    parser.add_argument('--adaptersToCheck',
                        nargs='*',
                        default=[],
                        help='Accepted for compatibility with other basecall converters; has no effect.')
    util.cmd.common_args(parser, (('threads', None), ('loglevel', None), ('version', None), ('tmp_dir', None)))
    util.cmd.attach_main(parser, main_illumina_basecalls_to_fastq)
    return parser


def main_illumina_basecalls_to_fastq(args):
    ''' Convert one lane of Illumina basecalls into fastq files: one per
        template read and one per barcode read, optionally demultiplexed
        into one set of files per sample. Every file is sorted by read name.
    '''
    runinfo = RunInfo(args.runInfo) if args.runInfo else None
    if args.readStructure:
        read_structure = ReadStructure(args.readStructure)
    else:
        read_structure = runinfo.get_read_structure()

    run_barcode = args.runBarcode or (runinfo and str(runinfo.get_run_number()))
    machine_name = args.machineName or (runinfo and runinfo.get_machine())
    flowcell_barcode = args.flowcellBarcode or (runinfo and runinfo.get_flowcell())
    encoder = make_read_name_encoder(args.readNameFormat, run_barcode,
                                     machine_name=machine_name, flowcell_barcode=flowcell_barcode)
    if args.adaptersToCheck:
        log.info("ignoring adapters to check: %s", ', '.join(args.adaptersToCheck))

    if args.multiplexParams:
        router = SampleRouter.from_multiplex_params(args.multiplexParams, read_structure)
    else:
        router = SampleRouter.single_group(args.outputPrefix)

    converter = BasecallsConverter(
        TabularClusterSource(args.basecallsDir, args.lane, read_structure),
        read_structure,
        router,
        ClusterConverter(read_structure, encoder, QualityEvaluator(args.minimumQuality)),
        num_processors=args.threads,
        first_tile=args.firstTile,
        tile_limit=args.tileLimit,
        max_records_in_ram=args.maxReadsInRamPerTile,
        include_non_pf_reads=args.include_non_pf_reads,
        force_gc=args.force_gc,
        compress=args.compress,
        create_md5=args.createMd5)
    written = converter.process_tiles()
    for prefix, n in written.items():
        log.info("%s: %d clusters", prefix, n)
    return 0


__commands__.append(('illumina_basecalls_to_fastq', parser_illumina_basecalls_to_fastq))

# ================================
# ***  make_multiplex_params   ***
# ================================


def make_multiplex_params(sampleSheet, outDir, outFile, lane=None, use_sample_name=True, allow_non_unique=False):
    ''' Write a multiplex params table for illumina_basecalls_to_fastq from a
        sample sheet: one row per sample, plus an Unmatched row for clusters
        whose barcodes match no sample.
    '''
    samples = SampleSheet(sampleSheet, use_sample_name=use_sample_name, only_lane=lane,
                          allow_non_unique=allow_non_unique)
    samples.make_multiplex_params_file(outDir, outFile)
    return 0


def parser_make_multiplex_params(parser=argparse.ArgumentParser()):
    parser.add_argument('sampleSheet', help='Input SampleSheet.csv (or tab-delimited .txt) file.')
    parser.add_argument('outDir', help='Directory the fastq output prefixes will point into.')
    parser.add_argument('outFile', help='Output multiplex params file.')
    parser.add_argument('--lane', default=None, help='Only include samples from this lane.')
    parser.add_argument('--useLibraryId',
                        dest='use_sample_name',
                        action='store_false',
                        default=True,
                        help='For MiSeq sheets, name outputs by Sample_ID rather than Sample_Name.')
    parser.add_argument('--allowNonUnique',
                        dest='allow_non_unique',
                        action='store_true',
                        default=False,
                        help='Allow several rows for the same library, numbering their outputs.')
    util.cmd.common_args(parser, (('loglevel', None), ('version', None)))
    util.cmd.attach_main(parser, make_multiplex_params, split_args=True)
    return parser


__commands__.append(('make_multiplex_params', parser_make_multiplex_params))

# ======================================
# ***  read_structure_from_runinfo   ***
# ======================================


def read_structure_from_runinfo(runInfo):
    ''' Print the read structure described by a RunInfo.xml file. '''
    print(RunInfo(runInfo).get_read_structure())
    return 0


def parser_read_structure_from_runinfo(parser=argparse.ArgumentParser()):
    parser.add_argument('runInfo', help='Input RunInfo.xml file.')
    util.cmd.common_args(parser, (('loglevel', None), ('version', None)))
    util.cmd.attach_main(parser, read_structure_from_runinfo, split_args=True)
    return parser


__commands__.append(('read_structure_from_runinfo', parser_read_structure_from_runinfo))

# ==================
# ***  RunInfo   ***
# ==================


class RunInfo(object):
    ''' A class that reads the RunInfo.xml file emitted by Illumina
        MiSeq and HiSeq machines.
    '''

    def __init__(self, xml_fname):
        self.fname = xml_fname
        try:
            self.root = xml.etree.ElementTree.parse(xml_fname).getroot()
        except (IOError, xml.etree.ElementTree.ParseError) as e:
            raise ConfigError('cannot read RunInfo file %s: %s' % (xml_fname, e))

    def get_fname(self):
        return self.fname

    def get_run_id(self):
        return self.root[0].attrib['Id']

    def get_run_number(self):
        return int(self.root[0].attrib['Number'])

    def get_flowcell(self):
        fc = self.root[0].find('Flowcell').text
        if '-' in fc:
            # miseq often adds a bunch of leading zeros and a dash in front
            fc = fc.split('-')[1]
        return fc

    def get_machine(self):
        return self.root[0].find('Instrument').text

    def get_read_structure(self):
        reads = []
        for x in self.root[0].find('Reads').findall('Read'):
            reads.append((int(x.attrib['Number']), int(x.attrib['NumCycles']), x.attrib['IsIndexedRead'] == 'Y'))
        return ReadStructure.from_reads((n, is_index) for _, n, is_index in sorted(reads))

    def num_reads(self):
        return sum(1 for x in self.root[0].find('Reads').findall('Read') if x.attrib['IsIndexedRead'] == 'N')

# ======================
# ***  SampleSheet   ***
# ======================


class SampleSheet(object):
    ''' A class that reads an Illumina SampleSheet.csv or alternative/simplified
        tab-delimited versions as well.
    '''

    def __init__(self, infile, use_sample_name=True, only_lane=None, allow_non_unique=False):
        self.fname = infile
        self.use_sample_name = use_sample_name
        if only_lane is not None:
            only_lane = str(only_lane)
        self.only_lane = only_lane
        self.allow_non_unique = allow_non_unique
        self.rows = []
        self._detect_and_load_sheet(infile)

    def _detect_and_load_sheet(self, infile):
        if infile.endswith('.csv'):
            # one of a few possible CSV formats
            with util.file.open_or_gzopen(infile, 'rU') as inf:
                header = None
                miseq_skip = False
                row_num = 0
                for line in inf:
                    row = line.rstrip('\n').split(',')
                    if miseq_skip:
                        if line.startswith('[Data]'):
                            # start paying attention *after* this line
                            miseq_skip = False
                    elif line.startswith('['):
                        # miseq: ignore all lines until we see "[Data]"
                        miseq_skip = True
                    elif not line.strip():
                        continue
                    elif header is None:
                        header = row
                        if 'Sample_ID' in header:
                            # this is a MiSeq-generated SampleSheet.csv
                            keymapper = {
                                'Sample_ID': 'sample',
                                'index': 'barcode_1',
                                'index2': 'barcode_2',
                                'Sample_Name': 'sample_name',
                                'Lane': 'lane'
                            }
                            header = list(map(keymapper.get, header))
                        elif 'SampleID' in header:
                            # this is a Broad Platform generated SampleSheet.csv
                            keymapper = {
                                'SampleID': 'sample',
                                'Index': 'barcode_1',
                                'Index2': 'barcode_2',
                                'libraryName': 'library_id_per_sample',
                                'FCID': 'flowcell',
                                'Lane': 'lane'
                            }
                            header = list(map(keymapper.get, header))
                        elif len(row) == 3:
                            # a bare sample, barcode_1, barcode_2 sheet
                            header = ['sample', 'barcode_1', 'barcode_2']
                            if 'sample' not in row[0].lower():
                                # this is an actual data row! (no header exists in this file)
                                row_num += 1
                                self.rows.append({
                                    'sample': row[0],
                                    'barcode_1': row[1],
                                    'barcode_2': row[2],
                                    'row_num': str(row_num)
                                })
                        else:
                            raise ConfigError('unrecognized sample sheet format: %s' % infile)
                        for h in ('sample', 'barcode_1'):
                            if h not in header:
                                raise ConfigError('sample sheet %s has no %s column' % (infile, h))
                    else:
                        # data rows
                        row_num += 1
                        if len(header) != len(row):
                            raise ConfigError('sample sheet %s: row %d has %d fields, header has %d' %
                                              (infile, row_num, len(row), len(header)))
                        row = dict((k, v) for k, v in zip(header, row) if k and v)
                        row['row_num'] = str(row_num)
                        if (self.only_lane is not None and row.get('lane') and self.only_lane != row['lane']):
                            continue
                        if row.get('sample') and row.get('barcode_1'):
                            self.rows.append(row)
            # go back and re-shuffle miseq columns if use_sample_name applies
            if (self.use_sample_name and header and 'sample_name' in header and
                    all(row.get('sample_name') for row in self.rows)):
                for row in self.rows:
                    row['library_id_per_sample'] = row['sample']
                    row['sample'] = row['sample_name']
            for row in self.rows:
                if 'sample_name' in row:
                    del row['sample_name']
        elif infile.endswith('.txt'):
            # our custom tab file format: sample, barcode_1, barcode_2, library_id_per_sample
            self.rows = []
            row_num = 0
            for row in util.file.read_tabfile_dict(infile):
                if not (row.get('sample') and row.get('barcode_1')):
                    raise ConfigError('sample sheet %s: every row needs a sample and barcode_1' % infile)
                row_num += 1
                row['row_num'] = str(row_num)
                self.rows.append(row)
        else:
            raise ConfigError('unrecognized sample sheet file type: %s' % infile)

        if not self.rows:
            raise ConfigError('sample sheet %s has no samples' % infile)

        # populate library IDs, run IDs (ie output prefixes)
        for row in self.rows:
            row['library'] = row['sample']
            if row.get('library_id_per_sample'):
                row['library'] += '.l' + row['library_id_per_sample']
            row['run'] = row['library']
        if len(set(row['run'] for row in self.rows)) != len(self.rows):
            if self.allow_non_unique:
                log.warning("non-unique library IDs in this lane")
                unique_count = {}
                for row in self.rows:
                    unique_count.setdefault(row['library'], 0)
                    unique_count[row['library']] += 1
                    row['run'] += '.r' + str(unique_count[row['library']])
            else:
                raise ConfigError('non-unique library IDs in this lane')

        # are we single or double indexed?
        if all(row.get('barcode_2') for row in self.rows):
            self.indexes = 2
        elif any(row.get('barcode_2') for row in self.rows):
            raise ConfigError('inconsistent single/double barcoding in sample sheet')
        else:
            self.indexes = 1

    def make_multiplex_params_file(self, outDir, outFile):
        ''' Create the multiplex params input for illumina_basecalls_to_fastq '''
        header = ['OUTPUT_PREFIX'] + barcode_column_labels(self.num_indexes())
        with open(outFile, 'wt') as outf:
            outf.write('\t'.join(header) + '\n')
            # add one catchall entry at the end called Unmatched
            rows = self.rows + [{
                'barcode_1': NO_MATCH_BARCODE,
                'barcode_2': NO_MATCH_BARCODE,
                'run': 'Unmatched'
            }]
            for row in rows:
                out = {
                    'OUTPUT_PREFIX': os.path.join(outDir, row['run']),
                    'BARCODE_1': row['barcode_1'],
                    'BARCODE_2': row.get('barcode_2', ''),
                }
                outf.write('\t'.join(out[h] for h in header) + '\n')

    def get_fname(self):
        return self.fname

    def get_rows(self):
        return self.rows

    def num_indexes(self):
        ''' Return 1 or 2 depending on whether pools are single or double indexed '''
        return self.indexes

    def fetch_by_index(self, idx):
        idx = str(idx)
        for row in self.rows:
            if idx == row['row_num']:
                return row
        return None


# =======================
def full_parser():
    return util.cmd.make_parser(__commands__, __doc__)


if __name__ == '__main__':
    util.cmd.main_argparse(__commands__, __doc__)
