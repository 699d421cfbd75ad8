from __future__ import annotations

import json
from pathlib import Path

from runnable.local.config import MergedSettings


def test_defaults_without_overrides_file(tmp_path):
    settings = MergedSettings(tmp_path / "missing.json")
    assert settings.GRACEFUL_SHUTDOWN_TIMEOUT == 5.0
    assert settings.SUPERVISOR_SLEEP_INTERVAL == 0.1
    assert settings.WORKER_ID_ENV == "RUNNABLE_WORKER_ID"
    assert settings.get("NOT_A_SETTING", "fallback") == "fallback"


def test_modifiable_overrides_are_coerced(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({"WORKERS_NUM": "4", "GRACEFUL_SHUTDOWN_TIMEOUT": 2, "LOKI_ENABLED": "yes"}))

    settings = MergedSettings(path)

    assert settings.WORKERS_NUM == 4
    assert settings.GRACEFUL_SHUTDOWN_TIMEOUT == 2.0
    assert isinstance(settings.GRACEFUL_SHUTDOWN_TIMEOUT, float)
    assert settings.LOKI_ENABLED is True


def test_non_modifiable_and_unknown_keys_are_ignored(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({"WORKER_ID_ENV": "OTHER", "NOPE": 1}))

    settings = MergedSettings(path)

    assert settings.WORKER_ID_ENV == "RUNNABLE_WORKER_ID"
    assert not hasattr(settings, "NOPE")


def test_malformed_overrides_keep_defaults(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text("{not json")
    settings = MergedSettings(path)
    assert settings.OVERRIDES_JSON_PATH == Path(path)
    assert settings.GRACEFUL_SHUTDOWN_TIMEOUT == 5.0


def test_unconvertible_override_keeps_default(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({"WORKERS_NUM": "many"}))
    settings = MergedSettings(path)
    assert isinstance(settings.WORKERS_NUM, int)
