import asyncio
import uuid
from datetime import date, datetime, timedelta
from types import SimpleNamespace

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base
from workers.analysis import fail_stale_analyses, process_analysis

OWNER_ID = uuid.UUID("00000000-0000-0000-0000-000000000201")
STORE_ID = uuid.UUID("00000000-0000-0000-0000-000000000301")


def _setup(tmp_path, monkeypatch, name: str):
    db_path = tmp_path / f"{name}.db"
    db_url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))
    return engine, session_factory


async def _seed(engine, session_factory, **analysis_fields) -> uuid.UUID:
    from db.models import Analysis, Store, User

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as db:
        db.add(User(user_id=OWNER_ID, email="worker@shoplens.test", name="Worker Owner", credits=0))
        db.add(Store(store_id=STORE_ID, user_id=OWNER_ID, name="Worker Store"))
        analysis = Analysis(
            user_id=OWNER_ID,
            store_id=STORE_ID,
            period_start=date(2026, 3, 1),
            period_end=date(2026, 3, 15),
            credits_used=1,
            **analysis_fields,
        )
        db.add(analysis)
        await db.commit()
        return analysis.analysis_id


async def _load(session_factory, analysis_id):
    from db.models import Analysis, Suggestion, User

    async with session_factory() as db:
        analysis = await db.get(Analysis, analysis_id)
        suggestions = (
            await db.execute(select(Suggestion).where(Suggestion.analysis_id == analysis_id))
        ).scalars().all()
        owner = await db.get(User, OWNER_ID)
        return analysis, suggestions, owner.credits


def test_process_analysis_completes_and_persists_suggestions(tmp_path, monkeypatch):
    engine, session_factory = _setup(tmp_path, monkeypatch, "complete")
    analysis_id = asyncio.run(_seed(engine, session_factory))
    contexts: list[dict] = []

    async def _fake_generate(context: dict) -> dict:
        contexts.append(context)
        return {
            "summary": {"status": "ok"},
            "suggestions": [
                {"title": "Raise prices on top SKUs", "category": "pricing", "recommended_action": ["Pick SKUs"]},
            ],
            "alerts": [],
            "opportunities": [],
        }

    monkeypatch.setattr("analysis.provider.generate_analysis", _fake_generate)

    result = process_analysis.run(analysis_id=str(analysis_id))

    assert result["status"] == "success"
    assert result["suggestions"] == 1
    assert contexts[0]["store"]["name"] == "Worker Store"

    analysis, suggestions, _ = asyncio.run(_load(session_factory, analysis_id))
    assert analysis.status == "completed"
    assert analysis.started_at is not None
    assert [s.title for s in suggestions] == ["Raise prices on top SKUs"]

    # Re-delivery is a no-op.
    again = process_analysis.run(analysis_id=str(analysis_id))
    assert again == {"status": "skipped", "reason": "already_completed"}

    asyncio.run(engine.dispose())


def test_process_analysis_provider_error_fails_and_refunds(tmp_path, monkeypatch):
    engine, session_factory = _setup(tmp_path, monkeypatch, "provider_error")
    analysis_id = asyncio.run(_seed(engine, session_factory))

    async def _failing_generate(context: dict) -> dict:
        raise httpx.ConnectError("provider down")

    monkeypatch.setattr("analysis.provider.generate_analysis", _failing_generate)

    result = process_analysis.run(analysis_id=str(analysis_id))

    assert result["status"] == "failed"
    analysis, suggestions, credits = asyncio.run(_load(session_factory, analysis_id))
    assert analysis.status == "failed"
    assert analysis.error_message.startswith("provider_error")
    assert suggestions == []
    assert credits == 1

    asyncio.run(engine.dispose())


def test_process_analysis_unknown_id_is_skipped(tmp_path, monkeypatch):
    engine, session_factory = _setup(tmp_path, monkeypatch, "missing")
    asyncio.run(_seed(engine, session_factory))

    result = process_analysis.run(analysis_id=str(uuid.uuid4()))

    assert result == {"status": "skipped", "reason": "not_found"}
    asyncio.run(engine.dispose())


def test_fail_stale_analyses_sweeps_and_refunds(tmp_path, monkeypatch):
    engine, session_factory = _setup(tmp_path, monkeypatch, "stale")
    long_ago = datetime.utcnow() - timedelta(hours=2)
    analysis_id = asyncio.run(
        _seed(engine, session_factory, status="processing", created_at=long_ago, last_progress_at=long_ago)
    )

    result = fail_stale_analyses.run()

    assert result == {"status": "success", "failed_count": 1}
    analysis, _, credits = asyncio.run(_load(session_factory, analysis_id))
    assert analysis.status == "failed"
    assert analysis.error_message == "timed_out"
    assert credits == 1

    asyncio.run(engine.dispose())


def test_process_analysis_non_json_provider_body_fails_and_refunds(tmp_path, monkeypatch):
    engine, session_factory = _setup(tmp_path, monkeypatch, "non_json")
    analysis_id = asyncio.run(_seed(engine, session_factory))
    real_client = httpx.AsyncClient

    def _html_client(**kwargs):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>upstream error</html>"))
        return real_client(transport=transport, **kwargs)

    monkeypatch.setattr("analysis.provider.httpx.AsyncClient", _html_client)

    result = process_analysis.run(analysis_id=str(analysis_id))

    assert result["status"] == "failed"
    analysis, suggestions, credits = asyncio.run(_load(session_factory, analysis_id))
    assert analysis.status == "failed"
    assert "not valid JSON" in analysis.error_message
    assert suggestions == []
    assert credits == 1
