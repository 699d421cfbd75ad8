from __future__ import annotations

import logging
import os
import signal

from runnable.local.role import ProcessRole
from runnable.local.supervisor import LifecycleState, WorkerState
from runnable.local.supervisor.signals import EVENT_INFO, EVENT_RESTART, EVENT_STOP, SignalDispatcher, install_os_handler


def test_dispatcher_installs_once(installer):
    dispatcher = SignalDispatcher({EVENT_STOP: lambda: None}, installer=installer)
    assert dispatcher.install()
    assert not dispatcher.install()
    assert installer.calls == 1


def test_immediate_dispatch_runs_action_in_handler(installer):
    calls = []
    dispatcher = SignalDispatcher({EVENT_INFO: lambda: calls.append("info")}, installer=installer)
    dispatcher.install()
    installer.fire(EVENT_INFO)
    assert calls == ["info"]


def test_deferred_dispatch_waits_for_drain(installer):
    calls = []
    dispatcher = SignalDispatcher(
        {EVENT_STOP: lambda: calls.append("stop"), EVENT_INFO: lambda: calls.append("info")},
        installer=installer,
        deferred=True,
    )
    dispatcher.install()
    installer.fire(EVENT_INFO)
    installer.fire(EVENT_STOP)
    assert calls == []
    assert dispatcher.drain() == 2
    assert calls == ["info", "stop"]


def test_unknown_message_type_is_ignored(installer, caplog):
    calls = []
    dispatcher = SignalDispatcher({}, message_handlers={"shutdown": lambda: calls.append("shutdown")}, installer=installer)
    with caplog.at_level(logging.WARNING):
        dispatcher.deliver_message({"type": "reload"})
    assert calls == []
    assert "No handler for control message" in caplog.text


def test_master_binds_three_signals(make_supervisor, installer):
    supervisor = make_supervisor(ProcessRole.MASTER)
    supervisor.init()
    assert set(installer.handlers) == {EVENT_STOP, EVENT_RESTART, EVENT_INFO}
    assert supervisor.dispatcher.deferred


def test_worker_binds_three_signals_and_shutdown(make_supervisor, installer):
    supervisor = make_supervisor(ProcessRole.WORKER)
    supervisor.init()
    assert set(installer.handlers) == {EVENT_STOP, EVENT_RESTART, EVENT_INFO}
    assert not supervisor.dispatcher.deferred
    assert "shutdown" in supervisor.dispatcher.message_handlers


def test_master_info_relays_to_every_worker(make_supervisor, installer, backend):
    supervisor = make_supervisor(ProcessRole.MASTER, workers_num=3)
    supervisor.start()

    installer.fire(EVENT_INFO)
    supervisor.tick()

    assert sorted(pid for pid, _ in backend.signals) == sorted(h.pid for h in supervisor.pool)
    assert {signum for _, signum in backend.signals} == {signal.SIGUSR2}
    assert len(supervisor.pool) == 3
    assert len(backend.spawned) == 3


def _assert_diagnostic_line(text: str) -> None:
    assert f": {os.getpid()}: memory usage:" in text
    assert "; uptime:" in text


def test_master_info_reports_diagnostics_without_touching_workers(make_supervisor, installer, backend, caplog):
    supervisor = make_supervisor(ProcessRole.MASTER, workers_num=2)
    supervisor.start()
    backend.emit_all_online()
    supervisor.tick()

    with caplog.at_level(logging.INFO):
        installer.fire(EVENT_INFO)
        supervisor.tick()

    _assert_diagnostic_line(caplog.text)
    assert [h.state for h in supervisor.pool] == [WorkerState.ONLINE] * 2
    assert backend.killed == []
    assert backend.messages == []


def test_worker_info_reports_diagnostics_and_keeps_running(make_supervisor, installer, backend, caplog):
    supervisor = make_supervisor(ProcessRole.WORKER)
    supervisor.start()

    with caplog.at_level(logging.INFO):
        installer.fire(EVENT_INFO)

    _assert_diagnostic_line(caplog.text)
    assert backend.exits == []
    assert supervisor.state is LifecycleState.RUNNING


def test_os_handler_unblocks_inherited_signal():
    previous_handler = signal.getsignal(signal.SIGUSR2)
    previous_mask = signal.pthread_sigmask(signal.SIG_BLOCK, {signal.SIGUSR2})
    try:
        install_os_handler(EVENT_INFO, lambda signum, frame: None)
        assert signal.SIGUSR2 not in signal.pthread_sigmask(signal.SIG_BLOCK, set())
    finally:
        signal.signal(signal.SIGUSR2, previous_handler)
        signal.pthread_sigmask(signal.SIG_SETMASK, previous_mask)
