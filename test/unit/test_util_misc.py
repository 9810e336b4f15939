# Unit tests for util/misc.py

__author__ = "dpark@broadinstitute.org"

import util.misc


def test_available_cpu_count():
    assert util.misc.available_cpu_count() >= 1


def test_sanitize_thread_count(monkeypatch):
    monkeypatch.delenv('PYTEST_XDIST_WORKER_COUNT', raising=False)
    monkeypatch.setattr(util.misc, 'available_cpu_count', lambda: 8)
    assert util.misc.sanitize_thread_count(None) == 8
    assert util.misc.sanitize_thread_count(0) == 8
    assert util.misc.sanitize_thread_count(3) == 3
    assert util.misc.sanitize_thread_count(64) == 8
    assert util.misc.sanitize_thread_count(-2) == 6
    assert util.misc.sanitize_thread_count(-20) == 1


def test_sanitize_thread_count_under_xdist(monkeypatch):
    monkeypatch.setenv('PYTEST_XDIST_WORKER_COUNT', '4')
    assert util.misc.sanitize_thread_count(6) == 1

