'''This gives a number of useful quick methods for dealing with
tab-text files, gzipped files, temp files and output directories.
'''

__author__ = "dpark@broadinstitute.org"

import contextlib
import gzip
import hashlib
import logging
import os
import os.path
import shutil
import tempfile

log = logging.getLogger(__name__)


def get_project_path():
    '''Return the absolute path of the top-level project, assumed to be the
       parent of the directory containing this script.'''
    # abspath converts relative to absolute path; expanduser interprets ~
    path = __file__  # path to this script
    path = os.path.expanduser(path)  # interpret ~
    path = os.path.abspath(path)  # convert to absolute path
    path = os.path.dirname(path)  # containing directory: util
    path = os.path.dirname(path)  # containing directory: main project dir
    return path


def get_test_path():
    '''Return absolute path of "test" directory'''
    return os.path.join(get_project_path(), 'test')


def get_test_input_path(testClassInstance=None):
    '''Return the path to the directory containing input files for the specified
       test class
    '''
    if testClassInstance is not None:
        return os.path.join(get_test_path(), 'input', type(testClassInstance).__name__)
    else:
        return os.path.join(get_test_path(), 'input')


def is_writable_dir(dirpath):
    ''' True if dirpath is an existing directory we may create files in. '''
    return os.path.isdir(dirpath) and os.access(dirpath, os.W_OK | os.X_OK)


def mkstempfname(suffix='', prefix='tmp', directory=None, text=False):
    ''' There's no other one-liner way to securely ask for a temp file by
        filename only.  This calls mkstemp, which does what we want, except
        that it returns an open file handle, which causes huge problems on NFS
        if we don't close it.  So close it first then return the name part only.
    '''
    fd, fn = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory, text=text)
    os.close(fd)
    return fn


@contextlib.contextmanager
def tmp_dir(*args, **kwargs):
    """Create and return a temporary directory, which is cleaned up on context exit
    unless keep_tmp() is True."""
    name = tempfile.mkdtemp(*args, **kwargs)
    try:
        yield name
    finally:
        if keep_tmp():
            log.debug('keeping tempdir ' + name)
        else:
            shutil.rmtree(name, ignore_errors=True)


def keep_tmp():
    """Whether to preserve temporary directories and files (useful during debugging).
    Return True if the environment variable BASECALLS_TMP_DIRKEEP is set.
    """
    return 'BASECALLS_TMP_DIRKEEP' in os.environ


def open_or_gzopen(fname, *opts, **kwopts):
    # 'U' mode is gone in py3, so use newline=None when 'U' is specified
    opts = list(opts)
    for i, opt in enumerate(opts):
        if isinstance(opt, str) and 'U' in opt:
            opts[i] = opt.replace('U', '') or 'r'
            if 'newline' not in kwopts:
                kwopts['newline'] = None
            break
    if fname.endswith('.gz'):
        if opts and 'b' not in opts[0] and 't' not in opts[0]:
            opts[0] += 't'
        return gzip.open(fname, *opts, **kwopts)
    return open(fname, *opts, **kwopts)


def read_tabfile_dict(inFile):
    ''' Read a tab text file (possibly gzipped) and return contents as an
        iterator of dicts.  Empty values are left out of each dict.
    '''
    with open_or_gzopen(inFile, 'rU') as inf:
        header = None
        for line in inf:
            if not line.strip():
                continue
            row = [item.strip() for item in line.rstrip('\n').rstrip('\r').split('\t')]
            if line.startswith('#'):
                row[0] = row[0][1:]
                header = [item for item in row if len(item)]
            elif header is None:
                header = [item for item in row if len(item)]
            else:
                # if a row is longer than the header
                if len(row) > len(header):
                    # truncate the row to the header length, and only include extra items if they are not spaces
                    # (takes care of the case where the user may enter an extra space at the end of a row)
                    row = row[:len(header)] + [item for item in row[len(header):] if len(item)]
                if len(header) != len(row):
                    raise ValueError('%s: row has %d columns, header has %d: %s' %
                                     (inFile, len(row), len(header), line.rstrip('\r\n')))
                yield dict((k, v) for k, v in zip(header, row) if v)


def readFlatFileHeader(filename, headerPrefix='#', delim='\t'):
    with open_or_gzopen(filename, 'rt') as inf:
        header = [h.strip() for h in inf.readline().rstrip('\r\n').split(delim)]
    if header and header[0].startswith(headerPrefix):
        header[0] = header[0][len(headerPrefix):]
    return header


def hash_file(fname, hash_algorithm='md5'):
    ''' Hex digest of a file's contents. '''
    h = hashlib.new(hash_algorithm)
    with open(fname, 'rb') as inf:
        for chunk in iter(lambda: inf.read(1024 * 1024), b''):
            h.update(chunk)
    return h.hexdigest()


def dump_file(fname, value):
    """store string in file"""
    with open(fname, 'w') as out:
        out.write(str(value))
