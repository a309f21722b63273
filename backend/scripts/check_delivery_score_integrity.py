#!/usr/bin/env python3
"""Verify that journal delta sums match customer delivery scores per tenant.

Examples:
  python backend/scripts/check_delivery_score_integrity.py
  python backend/scripts/check_delivery_score_integrity.py --tenant <uuid> --alert --pretty
  python backend/scripts/check_delivery_score_integrity.py --fix
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import uuid
from typing import Any

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import get_settings
from db.session import build_engine, build_session_factory
from scoring.integrity import check_all_tenants


async def _run(*, tenant_id: uuid.UUID | None, fix: bool, database_url: str | None = None) -> dict[str, Any]:
    engine = build_engine(database_url or get_settings().database_url)
    try:
        async with build_session_factory(engine)() as db:
            reports = await check_all_tenants(db, tenant_id=tenant_id, fix=fix)
    finally:
        await engine.dispose()

    mismatched = [r for r in reports if not r.ok]
    return {
        "status": "ok" if not mismatched else "mismatch",
        "tenant_count": len(reports),
        "mismatched_tenants": len(mismatched),
        "fixed": sum(r.fixed for r in reports),
        "fix_mode": fix,
        "tenants": [r.as_dict() for r in reports],
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check delivery score journal integrity")
    parser.add_argument("--tenant", default=None, help="Check a single tenant id only")
    parser.add_argument("--alert", action="store_true", help="Exit 1 when any mismatch is found")
    parser.add_argument(
        "--fix",
        action="store_true",
        help="Reset scores to 0 where the journal nets to 0 (the only safe repair)",
    )
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    args = parser.parse_args(argv)

    try:
        tenant_id = uuid.UUID(args.tenant) if args.tenant else None
        summary = asyncio.run(_run(tenant_id=tenant_id, fix=bool(args.fix), database_url=args.database_url))
    except Exception as exc:  # noqa: BLE001
        summary = {"status": "failed", "error": str(exc), "fix_mode": bool(args.fix)}

    if args.pretty:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        print(json.dumps(summary))

    if summary["status"] == "failed":
        return 1
    if args.alert and summary["status"] == "mismatch":
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
