#!/usr/bin/env python3
"""Link tenant customers (and their shipments) to global customer identities.

Safe to re-run: the fingerprint upsert is idempotent and only unlinked
shipments are touched.

Examples:
  python backend/scripts/backfill_global_customers.py --pretty
  python backend/scripts/backfill_global_customers.py --tenant <uuid> --dry-run
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

import structlog
from sqlalchemy import select

from core.config import get_settings
from db.models import Customer
from db.session import build_engine, build_session_factory
from scoring.global_identity import link_customer

logger = structlog.get_logger()


async def _backfill(
    *,
    tenant_id: uuid.UUID | None,
    dry_run: bool,
    batch_size: int,
    database_url: str | None = None,
) -> dict[str, Any]:
    settings = get_settings()
    engine = build_engine(database_url or settings.database_url)
    linked = 0
    skipped = 0
    global_ids: set[str] = set()
    try:
        async with build_session_factory(engine)() as db:
            query = select(Customer).where(Customer.global_customer_id.is_(None)).order_by(Customer.created_at)
            if tenant_id is not None:
                query = query.where(Customer.tenant_id == tenant_id)
            customers = list((await db.execute(query)).scalars().all())

            for index, customer in enumerate(customers, start=1):
                global_customer = await link_customer(db, customer, pepper=settings.fingerprint_pepper)
                if global_customer is None:
                    skipped += 1
                else:
                    linked += 1
                    global_ids.add(str(global_customer.id))
                if not dry_run and index % batch_size == 0:
                    await db.commit()

            if dry_run:
                await db.rollback()
            else:
                await db.commit()
    finally:
        await engine.dispose()

    summary = {
        "status": "success",
        "dry_run": dry_run,
        "customers_linked": linked,
        "customers_skipped": skipped,
        "global_customers": len(global_ids),
    }
    logger.info("global_customer.backfill_complete", **summary)
    return summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Backfill global customer links")
    parser.add_argument("--tenant", default=None, help="Limit to one tenant id")
    parser.add_argument("--dry-run", action="store_true", help="Compute links without committing")
    parser.add_argument("--batch-size", type=int, default=500, help="Commit every N customers")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    args = parser.parse_args(argv)

    try:
        summary = asyncio.run(
            _backfill(
                tenant_id=uuid.UUID(args.tenant) if args.tenant else None,
                dry_run=bool(args.dry_run),
                batch_size=max(1, args.batch_size),
                database_url=args.database_url,
            )
        )
    except Exception as exc:  # noqa: BLE001
        summary = {"status": "failed", "error": str(exc)}

    if args.pretty:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        print(json.dumps(summary))
    return 0 if summary["status"] == "success" else 1


if __name__ == "__main__":
    raise SystemExit(main())
