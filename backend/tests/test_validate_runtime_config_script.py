from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path


def _parse_json_output(stdout: str) -> dict:
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    return json.loads(lines[-1])


def _run_script(env_overrides: dict[str, str], *args: str) -> subprocess.CompletedProcess:
    repo_root = Path(__file__).resolve().parents[2]
    script_path = repo_root / "backend" / "scripts" / "validate_runtime_config.py"

    env = os.environ.copy()
    env.update(env_overrides)
    return subprocess.run(
        [sys.executable, str(script_path), *args],
        cwd=str(repo_root),
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )


def test_validate_runtime_config_fails_with_default_pepper_in_production():
    completed = _run_script(
        {
            "APP_ENV": "production",
            "DEBUG": "false",
            "JWT_SECRET": "non-default-jwt-secret",
            "FINGERPRINT_PEPPER": "dev-fingerprint-pepper-change-in-production",
        }
    )

    assert completed.returncode == 1
    payload = _parse_json_output(completed.stdout)
    assert payload["status"] == "failed"
    assert any("fingerprint pepper" in message for message in payload["failures"])


def test_validate_runtime_config_passes_with_production_settings():
    completed = _run_script(
        {
            "APP_ENV": "production",
            "DEBUG": "false",
            "JWT_SECRET": "non-default-jwt-secret",
            "FINGERPRINT_PEPPER": "non-default-pepper",
            "DATABASE_URL": "postgresql+asyncpg://deliveryscore:secret@db:5432/deliveryscore",
            "SCORE_EVENTS_REDIS_ENABLED": "true",
        },
        "--require-score-events",
    )

    assert completed.returncode == 0
    payload = _parse_json_output(completed.stdout)
    assert payload["status"] == "success"
    assert payload["failures"] == []


def test_validate_runtime_config_requires_score_events_flag():
    completed = _run_script({"APP_ENV": "local", "SCORE_EVENTS_REDIS_ENABLED": "false"}, "--require-score-events")

    assert completed.returncode == 1
    payload = _parse_json_output(completed.stdout)
    assert any("SCORE_EVENTS_REDIS_ENABLED" in message for message in payload["failures"])
