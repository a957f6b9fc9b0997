"""
Impact dashboard rollup.
"""

import uuid
from datetime import datetime

import pytest
from httpx import AsyncClient

from db.models import Suggestion
from suggestions.impact import dashboard


async def _seed_outcomes(db, store_id):
    db.add_all(
        [
            Suggestion(
                store_id=store_id,
                title="Restock best sellers",
                category="inventory",
                recommended_action=[],
                status="completed",
                was_successful=True,
                in_progress_at=datetime(2026, 2, 1),
                completed_at=datetime(2026, 2, 10),
            ),
            Suggestion(
                store_id=store_id,
                title="Weekend coupon",
                category="coupon",
                recommended_action=[],
                status="completed",
                was_successful=False,
                in_progress_at=datetime(2026, 1, 15),
                completed_at=datetime(2026, 1, 20),
            ),
            Suggestion(
                store_id=store_id,
                title="Clearance sale",
                category="inventory",
                recommended_action=[],
                status="completed",
                in_progress_at=datetime(2026, 2, 5),
                completed_at=datetime(2026, 2, 6),
            ),
            Suggestion(
                store_id=store_id,
                # Analysis was deleted; the suggestion still counts.
                analysis_id=uuid.uuid4(),
                title="New banner",
                category="marketing",
                recommended_action=[],
                status="in_progress",
                in_progress_at=datetime(2026, 2, 20),
            ),
            Suggestion(
                store_id=store_id,
                title="Price matching",
                category="pricing",
                recommended_action=[],
                status="ignored",
            ),
        ]
    )
    await db.flush()


@pytest.mark.asyncio
class TestImpactDashboard:
    async def test_rollup(self, test_db, seeded_db):
        await _seed_outcomes(test_db, seeded_db["store_id"])

        result = await dashboard(test_db, seeded_db["store_id"])

        assert result["total"] == 6
        assert result["pending"] == 1
        assert result["in_progress"] == 1
        assert result["completed"] == 3
        assert result["ignored"] == 1
        assert result["successful"] == 1
        assert result["unsuccessful"] == 1
        assert result["pending_feedback"] == 1
        assert result["success_rate"] == 50.0

        inventory = result["by_category"][0]
        assert inventory == {
            "category": "inventory",
            "count": 2,
            "in_progress": 0,
            "completed": 2,
            "successful": 1,
            "unsuccessful": 0,
        }
        assert [t["title"] for t in result["timeline"]] == [
            "Weekend coupon",
            "Restock best sellers",
            "Clearance sale",
            "New banner",
        ]

    async def test_no_feedback_has_no_success_rate(self, test_db, seeded_db):
        result = await dashboard(test_db, seeded_db["store_id"])
        assert result["success_rate"] is None
        assert result["timeline"] == []

    async def test_other_store_is_empty(self, test_db, seeded_db):
        result = await dashboard(test_db, seeded_db["other_store_id"])
        assert result["total"] == 0
        assert result["by_category"] == []

    async def test_endpoint(self, client: AsyncClient, test_db, seeded_db):
        await _seed_outcomes(test_db, seeded_db["store_id"])
        await test_db.commit()

        resp = await client.get("/api/v1/impact/dashboard")

        assert resp.status_code == 200
        assert resp.json()["success_rate"] == 50.0
        assert len(resp.json()["timeline"]) == 4

    async def test_endpoint_checks_store_access(self, client: AsyncClient, seeded_db):
        resp = await client.get("/api/v1/impact/dashboard", params={"store_id": str(seeded_db["other_store_id"])})
        assert resp.status_code == 403
