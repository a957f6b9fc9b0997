"""
Seed Test Data: creates a dev account, its store and a finished analysis.

Run: python scripts/seed_test_data.py
"""

import asyncio
import random
import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from analysis.lifecycle import complete_analysis, mark_processing
from core.config import get_settings
from credits import ledger
from db.models import Analysis, Store, User
from db.session import Base
from suggestions.lifecycle import accept, set_feedback

settings = get_settings()

# Must match api.deps.DEV_USER_ID
DEV_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
DEV_STORE_ID = uuid.UUID("00000000-0000-0000-0000-000000000101")

SAMPLE_SUGGESTIONS = [
    ("inventory", "Restock the top 5 sellers before the weekend", "high",
     ["List top sellers by revenue", "Check stock cover", "Place purchase order"]),
    ("coupon", "Create a first-purchase coupon", "medium",
     ["Define discount", "Create coupon code", "Announce on the storefront"]),
    ("conversion", "Shorten the mobile checkout", "high",
     ["Audit checkout steps", "Remove the extra address step", "Compare conversion after 7 days"]),
    ("marketing", "Retarget cart abandoners", "medium",
     ["Enable abandoned cart e-mails", "Write the reminder copy"]),
    ("pricing", "Review prices below competitors", "low",
     ["Export competitor prices", "Adjust 3 products"]),
]


async def seed_data():
    """Create demo data for development."""
    engine = create_async_engine(settings.database_url)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        # ── Account + store ──────────────────────────────────
        user = User(user_id=DEV_USER_ID, email="dev@shoplens.app", name="Dev Owner", role="client", credits=0)
        db.add(user)
        await db.flush()

        store = Store(store_id=DEV_STORE_ID, user_id=user.user_id, name="Loja Demo", platform="nuvemshop")
        db.add(store)
        await db.flush()
        user.active_store_id = store.store_id

        await ledger.credit(db, user.user_id, 10, reason="signup", note="dev seed")

        # ── A finished analysis (outside the cool-down window) ─────
        requested_at = datetime.utcnow() - timedelta(days=2)
        analysis = Analysis(
            user_id=user.user_id,
            store_id=store.store_id,
            period_start=(requested_at - timedelta(days=settings.analysis_period_days)).date(),
            period_end=requested_at.date(),
            credits_used=settings.analysis_credit_cost,
            total_stages=settings.analysis_total_stages,
            created_at=requested_at,
        )
        db.add(analysis)
        await db.flush()
        await ledger.debit(db, user.user_id, settings.analysis_credit_cost,
                           reason="analysis_request", analysis_id=analysis.analysis_id)

        await mark_processing(db, analysis.analysis_id, now=requested_at)
        payload = {
            "summary": {"status": "attention", "main_insight": "Mobile conversion dropped 18% this fortnight"},
            "suggestions": [
                {
                    "category": category,
                    "title": title,
                    "description": title,
                    "expected_impact": impact,
                    "recommended_action": actions,
                }
                for category, title, impact, actions in SAMPLE_SUGGESTIONS
            ],
            "alerts": [{"type": "stock", "message": "3 products out of stock"}],
            "opportunities": [],
        }
        _, suggestions = await complete_analysis(
            db, analysis.analysis_id, payload, now=requested_at + timedelta(minutes=4)
        )

        # ── Some tracked outcomes ────────────────────────────
        for suggestion in random.sample(suggestions, k=2):
            await accept(db, suggestion, acting_user_id=user.user_id)
            await set_feedback(db, suggestion, random.choice([True, False]), acting_user_id=user.user_id)

        await db.commit()
        print(f"✅ Seeded: 1 user, 1 store, 1 analysis, {len(suggestions)} suggestions")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
