'''Clusters and their conversion to fastq records.

A cluster is one physical read event: the base calls and phred qualities of
every segment of the read structure, plus the position and pass-filter flag
used to name its reads.  Parsing instrument call files into clusters is the
job of a ClusterSource; TabularClusterSource reads a simple per-tile text
dump and serves as the reference implementation.
'''

__author__ = "dpark@broadinstitute.org"

import collections
import logging
import os
import os.path
import re
import threading

import numpy as np
from Bio.SeqIO.QualityIO import SANGER_SCORE_OFFSET

import util.file
from util.errors import ConfigError, DataQualityError, FormatError
from util.fastq import ClusterRecords, FastqRecord

log = logging.getLogger(__name__)

NO_CALL = '.'
AMBIGUOUS_BASE = 'N'
MAX_PHRED_SCORE = 93

# bases: ascii base calls ('.' for a no-call); qualities: phred scores
ReadData = collections.namedtuple('ReadData', ['bases', 'qualities'])

# reads: one ReadData per read structure segment, skips included.
# matched_barcode: barcode assigned by an upstream barcode extractor, if any.
Cluster = collections.namedtuple('Cluster', ['lane', 'tile', 'x', 'y', 'pf', 'reads', 'matched_barcode'],
                                 defaults=(None,))


def decode_bases(bases):
    if not isinstance(bases, str):
        bases = bytes(bases).decode('ascii')
    return bases.replace(NO_CALL, AMBIGUOUS_BASE)


def phred_to_fastq(qualities):
    ''' Sanger (phred+33) encoding of an array of phred scores in 0..93 '''
    q = np.asarray(qualities, dtype=np.int16)
    if q.size and (q.min() < 0 or q.max() > MAX_PHRED_SCORE):
        raise DataQualityError('phred scores must be between 0 and %d, got %d..%d' %
                               (MAX_PHRED_SCORE, q.min(), q.max()))
    q = q + SANGER_SCORE_OFFSET
    return q.astype(np.uint8).tobytes().decode('ascii')


def cluster_barcode(cluster, read_structure):
    ''' The routing key of a cluster: its matched barcode if one was assigned,
        otherwise its barcode reads concatenated in order (None if the read
        structure has no barcode reads).
    '''
    if cluster.matched_barcode:
        return cluster.matched_barcode
    if not len(read_structure.barcodes):
        return None
    return ''.join(decode_bases(cluster.reads[i].bases) for i in read_structure.barcodes.segment_indices)


def describe_cluster(cluster):
    return 'lane %s tile %s x %s y %s' % (cluster.lane, cluster.tile, cluster.x, cluster.y)


class QualityEvaluator(object):
    ''' Revises raw qualities (0 becomes 1) and enforces a minimum quality.

        Qualities under the nominal Illumina minimum are tallied so the run
        can report them; anything under minimum_quality is fatal.
    '''
    ILLUMINA_ALLEGED_MINIMUM_QUALITY = 2

    def __init__(self, minimum_quality=ILLUMINA_ALLEGED_MINIMUM_QUALITY):
        self.minimum_quality = minimum_quality
        self.low_quality_counts = collections.Counter()
        self._lock = threading.Lock()

    def revise(self, qualities, cluster=None):
        raw = np.asarray(qualities, dtype=np.int16)
        if not raw.size:
            return raw
        if raw.min() < self.ILLUMINA_ALLEGED_MINIMUM_QUALITY:
            values, counts = np.unique(raw[raw < self.ILLUMINA_ALLEGED_MINIMUM_QUALITY], return_counts=True)
            with self._lock:
                for v, n in zip(values, counts):
                    self.low_quality_counts[int(v)] += int(n)
        if raw.max() > MAX_PHRED_SCORE:
            raise DataQualityError('base quality %d is above the maximum fastq quality of %d (%s)' %
                                   (int(raw.max()), MAX_PHRED_SCORE,
                                    cluster is not None and describe_cluster(cluster) or 'unknown cluster'))
        revised = np.maximum(raw, 1)
        lowest = int(revised.min())
        if lowest < self.minimum_quality:
            raise DataQualityError('base quality %d is below the minimum quality of %d (%s)' %
                                   (lowest, self.minimum_quality,
                                    cluster is not None and describe_cluster(cluster) or 'unknown cluster'))
        return revised

    def log_summary(self):
        for q, n in sorted(self.low_quality_counts.items()):
            log.warning("saw %d bases with quality %d, below the expected Illumina minimum of %d",
                        n, q, self.ILLUMINA_ALLEGED_MINIMUM_QUALITY)


class ClusterConverter(object):
    ''' Turns one Cluster into its ClusterRecords.

        Template reads are numbered /1, /2, ... in their names when there is
        more than one of them; barcode reads never are.  Holds no per-cluster
        state and may be shared by all tile workers.
    '''

    def __init__(self, read_structure, read_name_encoder, quality_evaluator=None):
        self.read_structure = read_structure
        self.read_name_encoder = read_name_encoder
        self.quality_evaluator = quality_evaluator or QualityEvaluator()
        self.template_indices = read_structure.templates.segment_indices
        self.barcode_indices = read_structure.barcodes.segment_indices

    def convert(self, cluster):
        if len(cluster.reads) != len(self.read_structure):
            raise FormatError('cluster at %s has %d reads, read structure %s has %d segments' %
                              (describe_cluster(cluster), len(cluster.reads), self.read_structure,
                               len(self.read_structure)))
        number_templates = len(self.template_indices) > 1
        return ClusterRecords(self._make_records(cluster, self.template_indices, number_templates),
                              self._make_records(cluster, self.barcode_indices, False))

    def _make_records(self, cluster, indices, append_read_number):
        recs = []
        for i, idx in enumerate(indices):
            read = cluster.reads[idx]
            if len(read.bases) != len(read.qualities):
                raise FormatError('cluster at %s has %d bases but %d qualities in read %d' %
                                  (describe_cluster(cluster), len(read.bases), len(read.qualities), idx + 1))
            name = self.read_name_encoder.generate_read_name(cluster, append_read_number and i + 1 or None)
            quals = self.quality_evaluator.revise(read.qualities, cluster)
            recs.append(FastqRecord(name, decode_bases(read.bases), phred_to_fastq(quals)))
        return tuple(recs)


# ==========================
# ***  Cluster sources   ***
# ==========================


class ClusterSource(object):
    ''' Yields the clusters of a lane, one tile at a time.

        clusters(tile) must return a fresh iterator on every call so that
        tiles can be read independently, and in parallel.
    '''

    def tiles(self):
        raise NotImplementedError()

    def clusters(self, tile):
        raise NotImplementedError()


class InMemoryClusterSource(ClusterSource):
    ''' Clusters already held in memory, as a dict of tile -> list of Clusters '''

    def __init__(self, clusters_by_tile):
        self.clusters_by_tile = collections.OrderedDict(clusters_by_tile)

    def tiles(self):
        return list(self.clusters_by_tile.keys())

    def clusters(self, tile):
        return iter(self.clusters_by_tile[tile])


class TabularClusterSource(ClusterSource):
    ''' Reads per-tile, tab-delimited cluster dumps named
        s_<lane>_<tile>.clusters.txt (optionally gzipped) from a directory.

        Each file has a header row and the columns x, y, pf, bases and
        qualities, plus optionally matched_barcode.  bases and qualities cover
        all cycles of the run (qualities phred+33 encoded); pf is Y/N or 1/0.
    '''
    TILE_FILE_RE = re.compile(r'^s_(\d+)_(\d+)\.clusters\.txt(?:\.gz)?$')

    def __init__(self, basecalls_dir, lane, read_structure):
        if not os.path.isdir(basecalls_dir):
            raise ConfigError('basecalls directory %s does not exist' % basecalls_dir)
        self.basecalls_dir = basecalls_dir
        self.lane = int(lane)
        self.read_structure = read_structure
        self._files = {}
        for fname in sorted(os.listdir(basecalls_dir)):
            mo = self.TILE_FILE_RE.match(fname)
            if mo and int(mo.group(1)) == self.lane:
                self._files[int(mo.group(2))] = os.path.join(basecalls_dir, fname)
        if not self._files:
            raise ConfigError('no cluster files found for lane %d in %s' % (self.lane, basecalls_dir))

    def tiles(self):
        return sorted(self._files.keys())

    def clusters(self, tile):
        ranges = self.read_structure.cycle_ranges()
        total = self.read_structure.total_cycles
        fname = self._files[tile]
        for row in util.file.read_tabfile_dict(fname):
            bases = row.get('bases', '')
            quals = row.get('qualities', '')
            if len(bases) != total or len(quals) != total:
                raise FormatError('%s: cluster at x=%s y=%s has %d bases and %d qualities, read structure %s has %d cycles'
                                  % (fname, row.get('x'), row.get('y'), len(bases), len(quals),
                                     self.read_structure, total))
            phred = np.frombuffer(quals.encode('ascii'), dtype=np.uint8).astype(np.int16) - SANGER_SCORE_OFFSET
            yield Cluster(self.lane, tile, int(row['x']), int(row['y']),
                          row.get('pf', 'Y').upper() in ('Y', '1', 'TRUE'),
                          tuple(ReadData(bases[start:stop], phred[start:stop]) for start, stop in ranges),
                          row.get('matched_barcode'))
