"""
Step checklist: progress, custom steps and the system-step guard.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from core.errors import CannotDeleteSystemStep, NotFound, SystemStepImmutable
from db.models import SuggestionComment
from suggestions import comments, steps


@pytest.mark.asyncio
class TestStepService:
    async def test_system_steps_from_recommended_actions(self, test_db, seeded_db):
        listed = await steps.list_steps(test_db, seeded_db["suggestion_id"])
        assert [(s.position, s.title, s.is_custom) for s in listed] == [
            (0, "a", False),
            (1, "b", False),
            (2, "c", False),
        ]
        assert await steps.progress(test_db, seeded_db["suggestion_id"]) == {
            "total": 3,
            "completed": 0,
            "percentage": 0,
        }

    async def test_progress_after_adding_incomplete_step(self, test_db, seeded_db):
        """Four steps with two done is 50; a fifth open step drops it to 40."""
        suggestion = seeded_db["suggestion"]
        user_id = seeded_db["user_id"]
        await steps.add_step(test_db, suggestion, "d")
        listed = await steps.list_steps(test_db, suggestion.suggestion_id)
        await steps.toggle_step(test_db, listed[0], user_id)
        await steps.toggle_step(test_db, listed[1], user_id)

        assert (await steps.progress(test_db, suggestion.suggestion_id))["percentage"] == 50

        await steps.add_step(test_db, suggestion, "e")
        assert (await steps.progress(test_db, suggestion.suggestion_id))["percentage"] == 40

    async def test_progress_rounds(self, test_db, seeded_db):
        listed = await steps.list_steps(test_db, seeded_db["suggestion_id"])
        await steps.toggle_step(test_db, listed[0], seeded_db["user_id"])
        assert (await steps.progress(test_db, seeded_db["suggestion_id"]))["percentage"] == 33

    async def test_custom_step_appended_after_last(self, test_db, seeded_db):
        step = await steps.add_step(test_db, seeded_db["suggestion"], "  Follow up with supplier  ")
        assert step.position == 3
        assert step.is_custom is True
        assert step.title == "Follow up with supplier"

    async def test_toggle_stamps_and_clears_completer(self, test_db, seeded_db):
        step = (await steps.list_steps(test_db, seeded_db["suggestion_id"]))[0]

        await steps.toggle_step(test_db, step, seeded_db["user_id"])
        assert step.status == "completed"
        assert step.completed_by == seeded_db["user_id"]
        assert step.completed_at is not None

        await steps.toggle_step(test_db, step, seeded_db["user_id"])
        assert step.status == "pending"
        assert step.completed_by is None
        assert step.completed_at is None

    async def test_system_step_cannot_be_deleted(self, test_db, seeded_db):
        step = (await steps.list_steps(test_db, seeded_db["suggestion_id"]))[0]

        for _ in range(2):
            with pytest.raises(CannotDeleteSystemStep):
                await steps.delete_step(test_db, step)
        assert (await steps.progress(test_db, seeded_db["suggestion_id"]))["total"] == 3

    async def test_custom_step_delete_removes_it_and_its_comments(self, test_db, seeded_db):
        suggestion = seeded_db["suggestion"]
        custom = await steps.add_step(test_db, suggestion, "Extra")
        await steps.toggle_step(test_db, custom, seeded_db["user_id"])
        await comments.add_comment(test_db, suggestion, seeded_db["user"], "Done on Friday", custom.step_id)

        await steps.delete_step(test_db, custom)

        assert await steps.progress(test_db, suggestion.suggestion_id) == {
            "total": 3,
            "completed": 0,
            "percentage": 0,
        }
        remaining = (
            await test_db.execute(select(SuggestionComment).where(SuggestionComment.step_id == custom.step_id))
        ).scalars().all()
        assert remaining == []

    async def test_system_step_edits_are_rejected(self, test_db, seeded_db):
        step = (await steps.list_steps(test_db, seeded_db["suggestion_id"]))[0]

        with pytest.raises(SystemStepImmutable):
            await steps.update_step(test_db, step, seeded_db["user_id"], title="renamed")

        await steps.update_step(test_db, step, seeded_db["user_id"], status="completed")
        assert step.status == "completed"

    async def test_step_from_other_suggestion_is_not_found(self, test_db, seeded_db):
        from suggestions.lifecycle import create_suggestion

        other = await create_suggestion(
            test_db, seeded_db["user"], seeded_db["store_id"], title="Other", recommended_action=["x"]
        )
        foreign = (await steps.list_steps(test_db, other.suggestion_id))[0]

        with pytest.raises(NotFound):
            await steps.get_step(test_db, seeded_db["suggestion"], foreign.step_id)


@pytest.mark.asyncio
class TestStepsApi:
    async def test_list_add_toggle_delete(self, client: AsyncClient, seeded_db):
        base = f"/api/v1/suggestions/{seeded_db['suggestion_id']}/steps"

        listed = await client.get(base)
        assert listed.status_code == 200
        assert listed.json()["progress"]["total"] == 3

        created = await client.post(base, json={"title": "Call the supplier"})
        assert created.status_code == 201
        step_id = created.json()["step"]["step_id"]
        assert created.json()["progress"] == {"total": 4, "completed": 0, "percentage": 0}

        toggled = await client.post(f"{base}/{step_id}/toggle")
        assert toggled.json()["step"]["status"] == "completed"
        assert toggled.json()["progress"]["percentage"] == 25

        renamed = await client.patch(f"{base}/{step_id}", json={"title": "Email the supplier"})
        assert renamed.json()["step"]["title"] == "Email the supplier"

        deleted = await client.delete(f"{base}/{step_id}")
        assert deleted.status_code == 200
        assert deleted.json() == {"total": 3, "completed": 0, "percentage": 0}

    async def test_system_step_guards(self, client: AsyncClient, seeded_db):
        base = f"/api/v1/suggestions/{seeded_db['suggestion_id']}/steps"
        system_step_id = (await client.get(base)).json()["steps"][0]["step_id"]

        resp = await client.delete(f"{base}/{system_step_id}")
        assert resp.status_code == 422
        assert resp.json()["error"] == "cannot_delete_system_step"

        resp = await client.patch(f"{base}/{system_step_id}", json={"title": "renamed"})
        assert resp.status_code == 422
        assert resp.json()["error"] == "system_step_immutable"

        resp = await client.patch(f"{base}/{system_step_id}", json={"status": "completed"})
        assert resp.status_code == 200
        assert resp.json()["progress"]["completed"] == 1
