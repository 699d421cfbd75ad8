from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import psutil
import pytest

from runnable.local.role import ProcessRole
from runnable.local.supervisor import LifecycleState, WorkerState
from runnable.local.supervisor.signals import EVENT_INFO, EVENT_STOP

ROOT = Path(__file__).resolve().parent.parent


def test_three_workers_crash_info_and_stop(make_supervisor, installer, backend):
    supervisor = make_supervisor(ProcessRole.MASTER, workers_num=3)
    supervisor.start()
    backend.emit_all_online()
    supervisor.tick()
    assert [h.state for h in supervisor.pool] == [WorkerState.ONLINE] * 3

    # An out-of-band kill is replaced by exactly one new worker.
    original = {h.pid for h in supervisor.pool}
    victim = next(iter(supervisor.pool))
    backend.emit_exit(victim.pid, signal=signal.SIGKILL)
    supervisor.tick()
    current = {h.pid for h in supervisor.pool}
    assert len(current - original) == 1
    assert original - {victim.pid} <= current
    assert len(backend.spawned) == 4

    # INFO is relayed and changes nothing.
    installer.fire(EVENT_INFO)
    supervisor.tick()
    assert len(supervisor.pool) == 3
    assert len(backend.spawned) == 4

    installer.fire(EVENT_STOP)
    supervisor.tick()
    assert supervisor.state is LifecycleState.STOPPING
    for handle in list(supervisor.pool):
        backend.emit_exit(handle.pid, exit_code=0)
    supervisor.tick()

    assert supervisor.state is LifecycleState.STOPPED
    assert backend.exits == [0]
    assert len(backend.spawned) == 4


def _wait_for(predicate, timeout=20.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(0.1)
    raise AssertionError("condition not reached in time")


def _live_children(master: psutil.Process):
    pids = set()
    for child in master.children():
        try:
            if child.status() != psutil.STATUS_ZOMBIE:
                pids.add(child.pid)
        except psutil.NoSuchProcess:
            continue
    return pids


def _pool_of(master: psutil.Process, size: int, without: int = None):
    children = _live_children(master)
    if len(children) != size or without in children:
        return None
    return children


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
def test_real_processes_respawn_and_stop(tmp_path):
    pid_file = tmp_path / "runnable.pid"
    env = dict(os.environ, RUNNABLE_WORKERS="3", RUNNABLE_PID_FILE=str(pid_file))
    env.pop("RUNNABLE_WORKER_ID", None)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), env.get("PYTHONPATH")]))

    master = subprocess.Popen(
        [sys.executable, "-m", "runnable.local.script_entry.demo"],
        cwd=tmp_path, env=env, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
    )
    try:
        _wait_for(pid_file.exists)
        proc = psutil.Process(master.pid)
        workers = _wait_for(lambda: _pool_of(proc, 3))

        victim = sorted(workers)[0]
        os.kill(victim, signal.SIGKILL)
        replaced = _wait_for(lambda: _pool_of(proc, 3, without=victim))
        assert len(replaced - workers) == 1
        assert workers - {victim} <= replaced

        worker_procs = [psutil.Process(pid) for pid in replaced]
        master.send_signal(signal.SIGTERM)
        assert master.wait(timeout=30) == 0
        assert not pid_file.exists()
        _, alive = psutil.wait_procs(worker_procs, timeout=10)
        assert alive == []
    finally:
        if master.poll() is None:
            master.kill()
            master.wait()
