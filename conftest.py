import contextlib
import tempfile

import pytest

import util.file


# Temp dirs at session, module, class and function scope, nested in that
# order.  They come from util.file.tmp_dir(), so setting BASECALLS_TMP_DIRKEEP
# keeps them around after the run.

@contextlib.contextmanager
def _tmpdir_aux(base_dir, scope, name):
    with util.file.tmp_dir(dir=base_dir, prefix='test-{}-{}-'.format(scope, name)) as tmpdir:
        yield tmpdir


@pytest.fixture(scope='session')
def tmpdir_session(request, tmpdir_factory):
    with _tmpdir_aux(str(tmpdir_factory.getbasetemp()), 'session', id(request.session)) as tmpdir:
        yield tmpdir


@pytest.fixture(scope='module')
def tmpdir_module(request, tmpdir_session):
    with _tmpdir_aux(tmpdir_session, 'module', request.module.__name__) as tmpdir:
        yield tmpdir


@pytest.fixture(scope='class')
def tmpdir_class(request, tmpdir_module):
    with _tmpdir_aux(tmpdir_module, 'class', request.cls.__name__ if request.cls else '__noclass__') as tmpdir:
        yield tmpdir


@pytest.fixture(autouse=True)
def tmpdir_function(request, tmpdir_class, monkeypatch):
    """Per-test temp dir, also installed as tempfile.tempdir and $TMPDIR so spill
    files and mkstempfname() land inside it."""
    with _tmpdir_aux(tmpdir_class, 'node', request.node.name) as tmpdir:
        monkeypatch.setattr(tempfile, 'tempdir', tmpdir)
        monkeypatch.setenv('TMPDIR', tmpdir)
        yield tmpdir
