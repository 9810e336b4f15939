'''Parallel conversion of a lane's clusters into sorted, demultiplexed fastqs.

Tiles are read in parallel by a fixed pool of worker threads.  Every cluster
is routed to its output group, converted to fastq records and handed to that
group's OutputGroupSorter.  When all tiles are done, each group's records are
merged into read name order and written to the group's fastq files.
'''

__author__ = "dpark@broadinstitute.org"

import collections
import concurrent.futures
import contextlib
import gc
import logging
import threading

import util.file
import util.misc
from util.basecalls import cluster_barcode
from util.errors import ConfigError
from util.fastq import FastqRecordsCodec, FastqRecordsWriter
from util.sorting import DiskPartitionStore, SpillSortCollection

log = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS_IN_RAM_PER_TILE = 1200000


class RunCancelled(Exception):
    '''Raised inside a worker that stopped because another worker failed.'''
    pass


class OutputGroupSorter(object):
    ''' Everything one output group owns: its spill sort collection and,
        once all tiles are done, its fastq writer.
    '''

    def __init__(self, group, read_structure, max_records_in_ram=None, store=None,
                 compress=False, create_md5=False):
        self.group = group
        self.num_templates = len(read_structure.templates)
        self.num_barcodes = len(read_structure.barcodes)
        self.compress = compress
        self.create_md5 = create_md5
        self.collection = SpillSortCollection(FastqRecordsCodec(self.num_templates, self.num_barcodes),
                                              max_records_in_ram=max_records_in_ram,
                                              store=store,
                                              name=group.prefix)

    def add(self, bundle):
        self.collection.add(bundle)

    def write(self, cancel=None):
        ''' Drain the merged records into this group's fastq files. '''
        with FastqRecordsWriter(self.group.prefix, self.num_templates, self.num_barcodes,
                                compress=self.compress, create_md5=self.create_md5) as writer:
            for bundle in self.collection.iterate():
                if cancel is not None and cancel.is_set():
                    raise RunCancelled()
                writer.write(bundle)
        log.info("wrote %d clusters (%d spill partitions) to %s",
                 writer.num_written, self.collection.num_partitions, self.group.prefix)
        return writer.num_written

    def cleanup(self):
        self.collection.cleanup()


def select_tiles(tiles, first_tile=None, tile_limit=None):
    ''' Tiles in source order, starting at first_tile, at most tile_limit of them. '''
    tiles = list(tiles)
    if first_tile is not None:
        if first_tile not in tiles:
            raise ConfigError('first tile %s is not one of the tiles available (%s)' %
                              (first_tile, ', '.join(map(str, tiles))))
        tiles = tiles[tiles.index(first_tile):]
    if tile_limit is not None:
        if tile_limit < 0:
            raise ConfigError('tile limit must not be negative: %s' % tile_limit)
        tiles = tiles[:tile_limit]
    return tiles


class BasecallsConverter(object):
    ''' Converts the clusters of a ClusterSource into sorted fastq files,
        one set per output group of the SampleRouter.

        All settings are validated here, before any tile is read.
    '''

    def __init__(self, cluster_source, read_structure, router, converter,
                 num_processors=0,
                 first_tile=None,
                 tile_limit=None,
                 max_records_in_ram=DEFAULT_MAX_RECORDS_IN_RAM_PER_TILE,
                 include_non_pf_reads=True,
                 force_gc=True,
                 compress=False,
                 create_md5=False,
                 tmp_dir=None,
                 partition_store=None):
        if not read_structure.num_output_reads():
            raise ConfigError('read structure %s has no template or barcode reads' % read_structure)
        if router.demultiplex and not router.has_fallback:
            raise ConfigError('demultiplexing requires an output group for unmatched barcodes '
                              '(a multiplex params row with barcode N)')
        router.check_writable()

        self.cluster_source = cluster_source
        self.read_structure = read_structure
        self.router = router
        self.converter = converter
        self.tiles = select_tiles(cluster_source.tiles(), first_tile, tile_limit)
        self.num_processors = util.misc.sanitize_thread_count(num_processors)
        self.include_non_pf_reads = include_non_pf_reads
        self.force_gc = force_gc
        self.compress = compress
        self.create_md5 = create_md5
        self.tmp_dir = tmp_dir
        self.partition_store = partition_store

        # the per-tile record budget is shared by all output groups
        if max_records_in_ram is None:
            self.max_records_per_group = None
        else:
            self.max_records_per_group = max(
                1, max_records_in_ram // (read_structure.num_output_reads() * len(router)))

        log.info("read structure is %s", read_structure)
        log.info("%d tiles, %d output groups, %d threads, %s clusters in memory per output group",
                 len(self.tiles), len(router), self.num_processors,
                 self.max_records_per_group or 'unlimited')

    def _process_tile(self, tile, sorters, cancel):
        n = 0
        clusters = self.cluster_source.clusters(tile)
        try:
            for cluster in clusters:
                if cancel.is_set():
                    raise RunCancelled()
                if not (cluster.pf or self.include_non_pf_reads):
                    continue
                group = self.router.route(cluster_barcode(cluster, self.read_structure))
                sorters[group.key].add(self.converter.convert(cluster))
                n += 1
        finally:
            close = getattr(clusters, 'close', None)
            if close is not None:
                close()
        if self.force_gc:
            gc.collect()
        log.debug("processed %d clusters from tile %s", n, tile)
        return n

    def _run_all(self, executor, fn, items, cancel):
        ''' Submit fn(item, cancel) for every item and wait for all of them.  On
            the first failure, cancel the rest and re-raise it.
        '''
        futures = [executor.submit(fn, item, cancel) for item in items]
        try:
            for future in concurrent.futures.as_completed(futures):
                future.result()
        except BaseException:
            cancel.set()
            for future in futures:
                future.cancel()
            raise
        return [future.result() for future in futures]

    def process_tiles(self):
        ''' Run the conversion.  Returns an OrderedDict of output prefix ->
            number of clusters written.
        '''
        cancel = threading.Event()
        with contextlib.ExitStack() as stack:
            store = self.partition_store
            if store is None:
                store = DiskPartitionStore(stack.enter_context(
                    util.file.tmp_dir(prefix='basecalls-spill-', dir=self.tmp_dir)))
            sorters = collections.OrderedDict()
            for group in self.router.groups:
                sorters[group.key] = OutputGroupSorter(group, self.read_structure,
                                                       max_records_in_ram=self.max_records_per_group,
                                                       store=store,
                                                       compress=self.compress,
                                                       create_md5=self.create_md5)
                stack.callback(sorters[group.key].cleanup)

            with concurrent.futures.ThreadPoolExecutor(max_workers=self.num_processors) as executor:
                counts = self._run_all(executor,
                                       lambda tile, cancel: self._process_tile(tile, sorters, cancel),
                                       self.tiles, cancel)
                log.info("converted %d clusters from %d tiles", sum(counts), len(self.tiles))
                self.converter.quality_evaluator.log_summary()

                written = self._run_all(executor,
                                        lambda sorter, cancel: sorter.write(cancel),
                                        list(sorters.values()), cancel)

        return collections.OrderedDict((s.group.prefix, n) for s, n in zip(sorters.values(), written))
