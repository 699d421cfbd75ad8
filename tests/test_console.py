from __future__ import annotations

import os
import signal
import subprocess
import sys

import pytest

from runnable import main as main_module
from runnable.local.console import display_status, execute_command, signal_master
from runnable.local.console.handler import resolve_master_pid
from runnable.local.supervisor import persistence


@pytest.fixture
def sleeper():
    p = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    yield p
    if p.poll() is None:
        p.kill()
        p.wait()


def test_pid_from_argument():
    assert resolve_master_pid(["123"]) == 123
    assert resolve_master_pid(["abc"]) is None


def test_pid_from_pid_file(tmp_path):
    path = tmp_path / "runnable.pid"
    persistence.write_pid_file(path, 4242)
    assert resolve_master_pid([], pid_file_path=path) == 4242
    assert resolve_master_pid([], pid_file_path=tmp_path / "missing.pid") is None


def test_stop_sends_sigterm(sleeper):
    assert signal_master("stop", sleeper.pid)
    assert sleeper.wait(timeout=10) == -signal.SIGTERM


def test_signal_to_missing_process_fails(sleeper):
    sleeper.kill()
    sleeper.wait()
    assert not signal_master("info", sleeper.pid)


def test_status_lists_master_and_children(sleeper, capsys):
    assert display_status(os.getpid())
    out = capsys.readouterr().out
    assert f"PID {os.getpid()}" in out
    assert f"PID {sleeper.pid}" in out


def test_unknown_command_prints_hint(capsys):
    assert not execute_command("explode", [])
    assert "Type 'help'" in capsys.readouterr().out


def test_help(capsys):
    assert execute_command("help", [])
    assert "runnablectl" in capsys.readouterr().out


def test_main_exit_codes(monkeypatch, capsys):
    monkeypatch.setattr(main_module, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(main_module.config, "VERBOSE_LOGGING", False)
    assert main_module.main([]) == 1
    assert not main_module.config.VERBOSE_LOGGING
    assert main_module.main(["help", "--verbose"]) == 0
    assert main_module.config.VERBOSE_LOGGING
    assert main_module.main(["stop", "not-a-pid"]) == 1
