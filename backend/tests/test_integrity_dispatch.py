import asyncio
import uuid
from types import SimpleNamespace

from db.session import Base, build_engine, build_session_factory
from workers.scoring import dispatch_integrity_checks

ACTIVE_ID = uuid.UUID("00000000-0000-0000-0000-000000000101")
TRIAL_ID = uuid.UUID("00000000-0000-0000-0000-000000000102")
SUSPENDED_ID = uuid.UUID("00000000-0000-0000-0000-000000000103")


def _seed_tenants(db_url: str) -> None:
    from db.models import Tenant

    async def _seed() -> None:
        engine = build_engine(db_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with build_session_factory(engine)() as db:
            db.add_all(
                [
                    Tenant(id=ACTIVE_ID, name="Active Tenant", status="active"),
                    Tenant(id=TRIAL_ID, name="Trial Tenant", status="trial"),
                    Tenant(id=SUSPENDED_ID, name="Suspended Tenant", status="suspended"),
                ]
            )
            await db.commit()
        await engine.dispose()

    asyncio.run(_seed())


def _capture_sends(monkeypatch) -> list[dict]:
    sent: list[dict] = []

    def _send_task(name, kwargs=None, queue=None, **options):
        sent.append({"name": name, "kwargs": kwargs, "queue": queue})

    monkeypatch.setattr("workers.scoring.celery_app.send_task", _send_task)
    return sent


def test_integrity_checks_fan_out_to_active_and_trial_tenants(tmp_path, monkeypatch):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}"
    _seed_tenants(db_url)
    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))
    sent = _capture_sends(monkeypatch)

    result = dispatch_integrity_checks.run()

    assert result["status"] == "success"
    assert result["tenant_count"] == 2
    assert result["fix"] is False
    assert {call["name"] for call in sent} == {"workers.scoring.check_delivery_score_integrity"}
    assert {call["queue"] for call in sent} == {"maintenance"}
    assert {call["kwargs"]["tenant_id"] for call in sent} == {str(ACTIVE_ID), str(TRIAL_ID)}
    assert all(call["kwargs"]["fix"] is False for call in sent)


def test_integrity_dispatch_passes_fix_and_status_filter(tmp_path, monkeypatch):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}"
    _seed_tenants(db_url)
    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))
    sent = _capture_sends(monkeypatch)

    result = dispatch_integrity_checks.run(fix=True, statuses=["suspended"])

    assert result["tenant_ids"] == [str(SUSPENDED_ID)]
    assert [call["kwargs"] for call in sent] == [{"tenant_id": str(SUSPENDED_ID), "fix": True}]
