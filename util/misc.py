'''A few miscellaneous tools. '''
import logging
import multiprocessing
import os
import re

log = logging.getLogger(__name__)

__author__ = "dpark@broadinstitute.org"


def available_cpu_count():
    """
    Return the number of available virtual or physical CPUs on this system.
    The number of available CPUs can be smaller than the total number of CPUs
    when the cpuset(7) mechanism is in use, as is the case on some cluster
    systems.

    Adapted from http://stackoverflow.com/a/1006301/715090
    """
    try:
        with open('/proc/self/status') as f:
            status = f.read()
        m = re.search(r'(?m)^Cpus_allowed:\s*(.*)$', status)
        if m:
            res = bin(int(m.group(1).replace(',', ''), 16)).count('1')
            if res > 0:
                return min(res, multiprocessing.cpu_count())
    except IOError:
        pass

    return multiprocessing.cpu_count()


def sanitize_thread_count(threads=None):
    ''' Given a user specified thread count, this function will:
        - interpret None or 0 to mean max available cpus
            unless PYTEST_XDIST_WORKER_COUNT is defined as an environment
            variable, in which case we always return 1
        - interpret negative values to mean that many fewer than the
            available cpus
        - ensure that 1 <= threads <= available_cpu_count()
    '''
    if 'PYTEST_XDIST_WORKER_COUNT' in os.environ:
        return 1

    max_cores = available_cpu_count()

    if not threads:
        threads = max_cores
    elif threads < 0:
        threads = max_cores + threads

    assert type(threads) == int

    return max(1, min(threads, max_cores))

