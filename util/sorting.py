'''External sorting of converted clusters by read name.

A SpillSortCollection accepts ClusterRecords from any number of threads in
any order.  It keeps at most max_records_in_ram of them in memory; each time
that many have accumulated they are sorted and sealed into a partition.  Once
all input has been added, iterate() merges the partitions and whatever is
left in memory into a single stream in read name order.

Where partitions live is up to a partition store: DiskPartitionStore keeps
them as temp files, MemoryPartitionStore keeps them as strings.
'''

__author__ = "dpark@broadinstitute.org"

import contextlib
import heapq
import io
import logging
import os
import os.path
import threading

import util.file
from util.errors import ResourceError

log = logging.getLogger(__name__)

# more than this many partitions are first merged into fewer, larger ones
MAX_OPEN_PARTITIONS = 256


def queryname_key(bundle):
    ''' Sort key for ClusterRecords: the read name of the first template
        record (or first barcode record, when there are no template reads),
        compared lexicographically.  Ties fall back to comparing every
        record in read order, which makes the order total.
    '''
    recs = bundle.template_records or bundle.barcode_records
    return (recs[0].name, bundle)


# =============================
# ***  Partition storage   ***
# =============================


class DiskPartition(object):

    def __init__(self, fname):
        self.fname = fname

    def open_write(self):
        return util.file.open_or_gzopen(self.fname, 'wt')

    def open_read(self):
        return util.file.open_or_gzopen(self.fname, 'rt')

    def remove(self):
        if os.path.isfile(self.fname):
            os.unlink(self.fname)


class DiskPartitionStore(object):
    ''' Partitions as temp files in a directory (default: the temp dir). '''

    def __init__(self, directory=None, compress=False):
        self.directory = directory
        self.compress = compress

    def create(self):
        return DiskPartition(util.file.mkstempfname(
            self.compress and '.fastq.gz' or '.fastq', prefix='spill-', directory=self.directory))


class MemoryPartition(object):

    def __init__(self):
        self.data = None

    @contextlib.contextmanager
    def open_write(self):
        buf = io.StringIO()
        yield buf
        self.data = buf.getvalue()

    def open_read(self):
        if self.data is None:
            raise RuntimeError("partition was never written")
        return io.StringIO(self.data)

    def remove(self):
        self.data = None


class MemoryPartitionStore(object):
    ''' Partitions held as strings; mostly useful for testing. '''

    def create(self):
        return MemoryPartition()


# ==============================
# ***  SpillSortCollection   ***
# ==============================


class SpillSortCollection(object):
    ''' Sorts an unbounded stream of ClusterRecords with bounded memory.

        add() may be called from many threads at once.  When the in-memory
        buffer fills up, the thread that filled it sorts and spills it while
        other threads carry on filling a fresh buffer; a thread that fills
        that one too waits for the earlier spill to finish.  With
        max_records_in_ram=None nothing is ever spilled.
    '''

    def __init__(self, codec, max_records_in_ram=None, store=None, key=queryname_key, name=None,
                 max_open_partitions=MAX_OPEN_PARTITIONS):
        if max_records_in_ram is not None and max_records_in_ram < 1:
            raise ValueError("max_records_in_ram must be positive, got %s" % max_records_in_ram)
        if max_open_partitions < 2:
            raise ValueError("max_open_partitions must be at least 2, got %s" % max_open_partitions)
        self.codec = codec
        self.max_records_in_ram = max_records_in_ram
        self.store = store or DiskPartitionStore()
        self.key = key
        self.name = name
        self.max_open_partitions = max_open_partitions
        self.num_records = 0
        self._buffer = []
        self._partitions = []
        self._spilling = False
        self._done_adding = False
        self._cond = threading.Condition()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        return False

    @property
    def num_partitions(self):
        return len(self._partitions)

    def _is_full(self):
        return self.max_records_in_ram is not None and len(self._buffer) >= self.max_records_in_ram

    def add(self, bundle):
        self.codec.check(bundle)
        with self._cond:
            if self._done_adding:
                raise RuntimeError("cannot add to %s after done_adding()" % self.name)
            while self._is_full() and self._spilling:
                self._cond.wait()
            self._buffer.append(bundle)
            self.num_records += 1
            if not self._is_full() or self._spilling:
                return
            to_spill, self._buffer = self._buffer, []
            self._spilling = True
        try:
            to_spill.sort(key=self.key)
            partition = self._write_partition(to_spill)
            with self._cond:
                self._partitions.append(partition)
        finally:
            with self._cond:
                self._spilling = False
                self._cond.notify_all()

    def _write_partition(self, bundles):
        try:
            partition = self.store.create()
        except OSError as e:
            raise ResourceError('cannot create spill partition: %s' % e, self.name)
        try:
            with partition.open_write() as outf:
                n = 0
                for bundle in bundles:
                    self.codec.encode(bundle, outf)
                    n += 1
        except OSError as e:
            partition.remove()
            raise ResourceError('cannot write spill partition: %s' % e, self.name)
        except Exception:
            partition.remove()
            raise
        log.debug("spilled %d clusters of %s", n, self.name)
        return partition

    def done_adding(self):
        ''' No more records will be added; waits for any spill in progress. '''
        with self._cond:
            self._done_adding = True
            while self._spilling:
                self._cond.wait()

    def _merged(self, partitions, stack):
        sources = []
        for partition in partitions:
            try:
                inf = stack.enter_context(partition.open_read())
            except OSError as e:
                raise ResourceError('cannot read spill partition: %s' % e, self.name)
            sources.append(self.codec.clone().decode(inf))
        return sources

    def _consolidate(self):
        ''' Merge partitions together until there are few enough to open at once. '''
        while len(self._partitions) > self.max_open_partitions:
            batch = self._partitions[:self.max_open_partitions]
            with contextlib.ExitStack() as stack:
                merged = self._write_partition(heapq.merge(*self._merged(batch, stack), key=self.key))
            for partition in batch:
                partition.remove()
            self._partitions = self._partitions[self.max_open_partitions:] + [merged]

    def iterate(self):
        ''' Yield every record added, in key order.  All partitions are
            removed once the iteration finishes or is abandoned.
        '''
        self.done_adding()
        buffer, self._buffer = self._buffer, []
        buffer.sort(key=self.key)
        with contextlib.ExitStack() as stack:
            stack.callback(self.cleanup)
            self._consolidate()
            sources = [buffer] + self._merged(self._partitions, stack)
            for bundle in heapq.merge(*sources, key=self.key):
                yield bundle

    def cleanup(self):
        with self._cond:
            partitions, self._partitions = self._partitions, []
            self._buffer = []
        for partition in partitions:
            partition.remove()
