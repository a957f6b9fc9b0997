"""
Admission controller: one in flight per user, cool-down, credits, dispatch.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from analysis import admission, lifecycle
from core.config import get_settings
from core.errors import AlreadyInFlight, DispatchFailed, Forbidden, InsufficientCredits, RateLimited
from credits import ledger
from db.models import Analysis

T0 = datetime(2026, 3, 2, 9, 0, 0)


async def _in_flight_count(db, user_id) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Analysis)
        .where(Analysis.user_id == user_id, Analysis.status.in_(["pending", "processing"]))
    )
    return result.scalar_one()


async def _finish(db, analysis_id):
    await lifecycle.mark_processing(db, analysis_id)
    await lifecycle.complete_analysis(db, analysis_id, {"summary": {"status": "ok"}, "suggestions": []})
    await db.commit()


@pytest.mark.asyncio
class TestRequestAnalysis:
    async def test_admitted_request_debits_and_dispatches(self, test_db, seeded_db, no_dispatch):
        user_id = seeded_db["user_id"]

        analysis = await admission.request_analysis(test_db, user_id, now=T0)

        assert analysis.status == "pending"
        assert analysis.store_id == seeded_db["store_id"]
        assert analysis.credits_used == 1
        assert analysis.period_end == T0.date()
        assert analysis.period_start == (T0 - timedelta(days=15)).date()
        assert no_dispatch == [analysis.analysis_id]
        assert await ledger.get_balance(test_db, user_id) == 2

        tx = (await ledger.list_transactions(test_db, user_id))[0]
        assert tx.amount == -1
        assert tx.analysis_id == analysis.analysis_id

    async def test_single_credit_second_call_is_already_in_flight(self, test_db, seeded_db, no_dispatch):
        """One credit: the first request wins, the immediate retry sees the pending run first."""
        user_id = seeded_db["user_id"]
        seeded_db["user"].credits = 1
        await test_db.commit()

        first = await admission.request_analysis(test_db, user_id, now=T0)
        assert await ledger.get_balance(test_db, user_id) == 0

        with pytest.raises(AlreadyInFlight) as exc_info:
            await admission.request_analysis(test_db, user_id, now=T0)

        assert exc_info.value.extra["analysis_id"] == str(first.analysis_id)
        assert await ledger.get_balance(test_db, user_id) == 0

    async def test_racing_insert_is_caught_by_unique_index(self, test_db, seeded_db, no_dispatch, monkeypatch):
        """A second request that slips past the in-flight read still cannot insert."""
        user_id = seeded_db["user_id"]
        await admission.request_analysis(test_db, user_id, now=T0)

        async def _missed_read(db, uid):
            return None

        async def _no_cooldown(db, uid, now=None):
            return None

        monkeypatch.setattr("analysis.admission.find_in_flight", _missed_read)
        monkeypatch.setattr("analysis.admission.next_available_at", _no_cooldown)

        with pytest.raises(AlreadyInFlight):
            await admission.request_analysis(test_db, user_id, now=T0)

        assert await _in_flight_count(test_db, user_id) == 1
        assert await ledger.get_balance(test_db, user_id) == 2
        assert len(no_dispatch) == 1

    async def test_rate_limited_until_window_passes(self, test_db, seeded_db, no_dispatch):
        user_id = seeded_db["user_id"]
        first = await admission.request_analysis(test_db, user_id, now=T0)
        await _finish(test_db, first.analysis_id)

        with pytest.raises(RateLimited) as exc_info:
            await admission.request_analysis(test_db, user_id, now=T0 + timedelta(minutes=10))
        assert exc_info.value.next_available_at == T0 + timedelta(minutes=60)
        assert exc_info.value.to_dict()["next_available_at"] == "2026-03-02T10:00:00"

        second = await admission.request_analysis(test_db, user_id, now=T0 + timedelta(minutes=61))
        assert second.status == "pending"
        assert await ledger.get_balance(test_db, user_id) == 1

    async def test_rate_limit_can_be_disabled(self, test_db, seeded_db, no_dispatch, monkeypatch):
        monkeypatch.setattr(get_settings(), "analysis_rate_limit_enabled", False)
        user_id = seeded_db["user_id"]
        first = await admission.request_analysis(test_db, user_id, now=T0)
        await _finish(test_db, first.analysis_id)

        second = await admission.request_analysis(test_db, user_id, now=T0 + timedelta(minutes=1))
        assert second.analysis_id != first.analysis_id

    async def test_insufficient_credits_writes_nothing(self, test_db, seeded_db, no_dispatch):
        other_id = seeded_db["other_user_id"]

        with pytest.raises(InsufficientCredits) as exc_info:
            await admission.request_analysis(test_db, other_id, now=T0)

        assert exc_info.value.extra == {"balance": 0, "required": 1}
        assert await _in_flight_count(test_db, other_id) == 0
        assert no_dispatch == []

    async def test_foreign_store_is_forbidden(self, test_db, seeded_db, no_dispatch):
        with pytest.raises(Forbidden):
            await admission.request_analysis(
                test_db, seeded_db["user_id"], store_id=seeded_db["other_store_id"], now=T0
            )
        assert await ledger.get_balance(test_db, seeded_db["user_id"]) == 3

    async def test_dispatch_failure_refunds_and_skips_cooldown(self, test_db, seeded_db):
        user_id = seeded_db["user_id"]

        def _broker_down(analysis_id):
            raise ConnectionError("broker unreachable")

        with pytest.raises(DispatchFailed):
            await admission.request_analysis(test_db, user_id, now=T0, dispatch=_broker_down)

        failed = (await test_db.execute(select(Analysis).where(Analysis.user_id == user_id))).scalar_one()
        assert failed.status == "failed"
        assert failed.error_message == admission.DISPATCH_FAILED
        assert await ledger.get_balance(test_db, user_id) == 3
        reasons = [t.reason for t in await ledger.list_transactions(test_db, user_id)]
        assert sorted(reasons) == ["analysis_refund", "analysis_request"]

        retried = await admission.request_analysis(
            test_db, user_id, now=T0 + timedelta(minutes=1), dispatch=lambda analysis_id: None
        )
        assert retried.status == "pending"

    async def test_dispatch_failure_refunds_even_without_failure_refunds(self, test_db, seeded_db, monkeypatch):
        monkeypatch.setattr(get_settings(), "refund_credits_on_failure", False)
        user_id = seeded_db["user_id"]

        def _broker_down(analysis_id):
            raise ConnectionError("broker unreachable")

        with pytest.raises(DispatchFailed, match="refunded"):
            await admission.request_analysis(test_db, user_id, now=T0, dispatch=_broker_down)

        assert await ledger.get_balance(test_db, user_id) == 3


@pytest.mark.asyncio
class TestCurrentState:
    async def test_pending_run_and_hints(self, test_db, seeded_db, no_dispatch):
        user_id = seeded_db["user_id"]
        analysis = await admission.request_analysis(test_db, user_id)

        state = await admission.get_current_state(test_db, user_id)

        assert state["analysis"] is None
        assert state["pending_analysis"].analysis_id == analysis.analysis_id
        assert state["next_available_at"] is not None
        assert state["credits"] == 2

    async def test_recent_failure_stays_visible(self, test_db, seeded_db, no_dispatch):
        user_id = seeded_db["user_id"]
        analysis = await admission.request_analysis(test_db, user_id)
        await lifecycle.fail_analysis(test_db, analysis.analysis_id, "timed_out")
        await test_db.commit()

        state = await admission.get_current_state(test_db, user_id)
        assert state["pending_analysis"].status == "failed"

        later = datetime.utcnow() + timedelta(minutes=30)
        state = await admission.get_current_state(test_db, user_id, now=later)
        assert state["pending_analysis"] is None

    async def test_latest_completed_analysis(self, test_db, seeded_db, no_dispatch):
        user_id = seeded_db["user_id"]
        analysis = await admission.request_analysis(test_db, user_id)
        await _finish(test_db, analysis.analysis_id)

        state = await admission.get_current_state(test_db, user_id)

        assert state["analysis"].analysis_id == analysis.analysis_id
        assert state["pending_analysis"] is None


@pytest.mark.asyncio
class TestAnalysesApi:
    async def test_request_and_read(self, client, seeded_db, no_dispatch):
        resp = await client.post("/api/v1/analyses", json={"analysis_type": "financial"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "pending"
        assert body["analysis_type"] == "financial"
        assert body["progress_percentage"] == 0
        assert body["current_stage_name"] == "Waiting"

        get_resp = await client.get(f"/api/v1/analyses/{body['analysis_id']}")
        assert get_resp.status_code == 200

        current = await client.get("/api/v1/analyses/current")
        assert current.json()["pending_analysis"]["analysis_id"] == body["analysis_id"]
        assert current.json()["credits"] == 2

    async def test_second_request_conflicts(self, client, seeded_db, no_dispatch):
        assert (await client.post("/api/v1/analyses")).status_code == 201

        resp = await client.post("/api/v1/analyses")

        assert resp.status_code == 409
        assert resp.json()["error"] == "already_in_flight"

    async def test_insufficient_credits_maps_to_402(self, client, seeded_db, no_dispatch, mock_user):
        mock_user["sub"] = str(seeded_db["other_user_id"])

        resp = await client.post("/api/v1/analyses")

        assert resp.status_code == 402
        assert resp.json() == {
            "error": "insufficient_credits",
            "message": "Not enough credits",
            "balance": 0,
            "required": 1,
        }

    async def test_unknown_analysis_type_is_rejected(self, client, seeded_db, no_dispatch):
        resp = await client.post("/api/v1/analyses", json={"analysis_type": "astrology"})
        assert resp.status_code == 422

    async def test_other_users_analysis_is_hidden(self, client, seeded_db, no_dispatch, mock_user):
        created = await client.post("/api/v1/analyses")
        mock_user["sub"] = str(seeded_db["other_user_id"])

        resp = await client.get(f"/api/v1/analyses/{created.json()['analysis_id']}")

        assert resp.status_code == 404
