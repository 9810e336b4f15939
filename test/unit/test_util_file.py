# Unit tests for util.file.py

__author__ = "ilya@broadinstitute.org"

import gzip
import os
import os.path

import pytest

import util.file


def test_mkstempfname():
    fn = util.file.mkstempfname('.tmp-file-test')
    try:
        assert fn.endswith('.tmp-file-test')
        assert os.path.getsize(fn) == 0
        util.file.dump_file(fn, 'my\ntest\ndata\n')
        assert os.path.getsize(fn) == 13
    finally:
        os.unlink(fn)


def test_tmp_dir_removed():
    with util.file.tmp_dir(prefix='test-') as d:
        util.file.dump_file(os.path.join(d, 'f1'), 'x')
        os.makedirs(os.path.join(d, 'a', 'b'))
    assert not os.path.exists(d)


def test_tmp_dir_kept(monkeypatch):
    monkeypatch.setenv('BASECALLS_TMP_DIRKEEP', '1')
    with util.file.tmp_dir() as d:
        pass
    assert os.path.isdir(d)
    os.rmdir(d)


def test_is_writable_dir(tmpdir):
    writable_dir = str(tmpdir)
    existing = os.path.join(writable_dir, 'myempty.dat')
    util.file.dump_file(existing, '')
    assert util.file.is_writable_dir(writable_dir)
    assert not util.file.is_writable_dir(existing)
    assert not util.file.is_writable_dir('/non/existent/dir')


def test_hash_file(tmpdir):
    '''Test util.file.hash_file()'''
    fn = os.path.join(str(tmpdir), 'hello.txt')
    util.file.dump_file(fn, 'hello\n')
    assert util.file.hash_file(fn, 'md5') == 'b1946ac92492d2347c6235b4d2611184'
    assert util.file.hash_file(fn, 'sha1') == 'f572d396fae9206628714fb2ce00f72e94f2258f'


def test_read_tabfile_dict(tmpdir):
    fn = os.path.join(str(tmpdir), 'table.txt.gz')
    with gzip.open(fn, 'wt') as outf:
        outf.write('#a\tb\tc\r\n1\t2\t3\r\n\r\n4\t\t6 \r\n')
    assert util.file.readFlatFileHeader(fn) == ['a', 'b', 'c']
    assert list(util.file.read_tabfile_dict(fn)) == [{'a': '1', 'b': '2', 'c': '3'}, {'a': '4', 'c': '6'}]


def test_read_tabfile_dict_short_row(tmpdir):
    fn = os.path.join(str(tmpdir), 'table.txt')
    util.file.dump_file(fn, 'a\tb\tc\n1\t2\n')
    with pytest.raises(ValueError):
        list(util.file.read_tabfile_dict(fn))


def test_open_or_gzopen(tmpdir):
    fn = os.path.join(str(tmpdir), 'x.txt.gz')
    with util.file.open_or_gzopen(fn, 'w') as outf:
        outf.write('line1\n')
    with gzip.open(fn, 'rt') as inf:
        assert inf.read() == 'line1\n'
    with util.file.open_or_gzopen(fn, 'rU') as inf:
        assert inf.read() == 'line1\n'
