#!/usr/bin/env python3
"""Validate runtime configuration for pre-production/production deploys.

Examples:
  python backend/scripts/validate_runtime_config.py
  python backend/scripts/validate_runtime_config.py --require-score-events --pretty
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import DEFAULT_FINGERPRINT_PEPPER, DEFAULT_JWT_SECRET, get_settings


def _is_local_env(raw_env: str) -> bool:
    env = raw_env.strip().lower()
    return env in {"", "local", "dev", "development", "test"}


def _validate_settings(*, require_score_events: bool) -> tuple[list[str], dict[str, Any]]:
    settings = get_settings()
    env = settings.app_env.strip().lower()
    local_env = _is_local_env(env)
    failures: list[str] = []

    if not local_env:
        if settings.jwt_secret == DEFAULT_JWT_SECRET:
            failures.append("JWT_SECRET must not use the default value outside local/dev/test")
        if settings.fingerprint_pepper == DEFAULT_FINGERPRINT_PEPPER:
            failures.append("FINGERPRINT_PEPPER must not use the default value outside local/dev/test")
        if settings.debug:
            failures.append("DEBUG=true is not allowed outside local/dev/test")
        if settings.database_url.startswith("sqlite"):
            failures.append("DATABASE_URL must point at a server database outside local/dev/test")

    if settings.scoring_max_attempts < 1:
        failures.append("SCORING_MAX_ATTEMPTS must be at least 1")
    if require_score_events and not settings.score_events_redis_enabled:
        failures.append("SCORE_EVENTS_REDIS_ENABLED must be true when --require-score-events is set")

    summary = {
        "status": "success" if not failures else "failed",
        "app_env": settings.app_env,
        "local_env": local_env,
        "require_score_events": bool(require_score_events),
        "failures": failures,
    }
    return failures, summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate deployment runtime config")
    parser.add_argument(
        "--require-score-events",
        action="store_true",
        help="Require Redis publication of delivery score events for this deploy target",
    )
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    args = parser.parse_args(argv)

    try:
        failures, summary = _validate_settings(require_score_events=bool(args.require_score_events))
    except Exception as exc:  # noqa: BLE001
        summary = {
            "status": "failed",
            "error": str(exc),
            "require_score_events": bool(args.require_score_events),
            "failures": [str(exc)],
        }
        failures = [str(exc)]

    if args.pretty:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        print(json.dumps(summary))

    return 0 if not failures else 1


if __name__ == "__main__":
    raise SystemExit(main())
