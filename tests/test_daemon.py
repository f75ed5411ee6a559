import os
from unittest import mock

import pytest

from mcstore.daemon import daemonize


def _patched(open_result=7):
    return (
        mock.patch.object(os, "setsid"),
        mock.patch.object(os, "chdir"),
        mock.patch.object(os, "open", return_value=open_result),
        mock.patch.object(os, "dup2"),
        mock.patch.object(os, "close"),
    )


def test_detaches_and_redirects():
    patches = _patched()
    with patches[0] as setsid, patches[1] as chdir, patches[2] as opener, \
            patches[3] as dup2, patches[4] as close:
        result = daemonize()
    assert result is True
    assert setsid.call_count == 1
    chdir.assert_called_once_with("/")
    assert opener.call_args[0][0] == os.devnull
    assert [c.args for c in dup2.call_args_list] == [(7, 0), (7, 1), (7, 2)]
    close.assert_called_once_with(7)


def test_nochdir_and_noclose_skip_steps():
    patches = _patched()
    with patches[0], patches[1] as chdir, patches[2] as opener, \
            patches[3] as dup2, patches[4]:
        result = daemonize(nochdir=True, noclose=True)
    assert result is False
    assert chdir.call_count == 0
    assert opener.call_count == 0
    assert dup2.call_count == 0


def test_nochdir_still_redirects():
    patches = _patched()
    with patches[0], patches[1] as chdir, patches[2], patches[3] as dup2, \
            patches[4]:
        result = daemonize(nochdir=True)
    assert result is True
    assert chdir.call_count == 0
    assert dup2.call_count == 3


def test_low_descriptor_is_not_closed():
    patches = _patched(open_result=2)
    with patches[0], patches[1], patches[2], patches[3] as dup2, \
            patches[4] as close:
        result = daemonize()
    assert result is True
    assert dup2.call_count == 3
    assert close.call_count == 0


def test_open_failure_is_ignored():
    patches = _patched()
    with patches[0], patches[1], \
            mock.patch.object(os, "open", side_effect=OSError("no device")), \
            patches[3] as dup2, patches[4]:
        result = daemonize()
    assert result is False
    assert dup2.call_count == 0


def test_setsid_failure_raises():
    with mock.patch.object(os, "setsid", side_effect=OSError("setsid")), \
            mock.patch.object(os, "chdir") as chdir:
        with pytest.raises(OSError):
            daemonize()
    assert chdir.call_count == 0


def test_chdir_failure_raises():
    with mock.patch.object(os, "setsid"), \
            mock.patch.object(os, "chdir", side_effect=OSError("chdir")), \
            mock.patch.object(os, "open") as opener:
        with pytest.raises(OSError):
            daemonize()
    assert opener.call_count == 0


def test_dup2_failure_raises():
    patches = _patched()
    with patches[0], patches[1], patches[2], \
            mock.patch.object(os, "dup2", side_effect=OSError("dup2")), \
            patches[4] as close:
        with pytest.raises(OSError):
            daemonize()
    assert close.call_count == 0