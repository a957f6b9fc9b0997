"""
Comment thread: general vs step-scoped comments and author-only delete.
"""

import pytest
from httpx import AsyncClient

from core.errors import Forbidden, InvalidStepReference, ValidationFailed
from db.models import User
from suggestions import comments, steps
from suggestions.lifecycle import create_suggestion


@pytest.mark.asyncio
class TestCommentService:
    async def test_general_and_step_comments(self, test_db, seeded_db):
        suggestion = seeded_db["suggestion"]
        user = seeded_db["user"]
        step = (await steps.list_steps(test_db, suggestion.suggestion_id))[1]

        general = await comments.add_comment(test_db, suggestion, user, "Looks promising")
        scoped = await comments.add_comment(test_db, suggestion, user, "Supplier replied", step.step_id)

        assert general.is_general
        assert not scoped.is_general

        listed = await comments.list_comments(test_db, suggestion.suggestion_id)
        titles = {comment.comment_id: step_title for comment, step_title in listed}
        assert titles == {general.comment_id: None, scoped.comment_id: "b"}

    async def test_step_of_other_suggestion_is_rejected(self, test_db, seeded_db):
        other = await create_suggestion(
            test_db, seeded_db["user"], seeded_db["store_id"], title="Other", recommended_action=["x"]
        )
        foreign_step = (await steps.list_steps(test_db, other.suggestion_id))[0]

        with pytest.raises(InvalidStepReference):
            await comments.add_comment(
                test_db, seeded_db["suggestion"], seeded_db["user"], "Wrong thread", foreign_step.step_id
            )

    async def test_blank_and_oversized_content(self, test_db, seeded_db):
        with pytest.raises(ValidationFailed):
            await comments.add_comment(test_db, seeded_db["suggestion"], seeded_db["user"], "   ")
        with pytest.raises(ValidationFailed):
            await comments.add_comment(test_db, seeded_db["suggestion"], seeded_db["user"], "x" * 2001)

    async def test_only_author_or_admin_deletes(self, test_db, seeded_db):
        comment = await comments.add_comment(test_db, seeded_db["suggestion"], seeded_db["user"], "Mine")
        stranger = User(email="stranger@shoplens.test", name="Stranger", role="client")
        admin = User(email="root@shoplens.test", name="Root", role="admin")
        test_db.add_all([stranger, admin])
        await test_db.flush()

        with pytest.raises(Forbidden):
            await comments.delete_comment(test_db, comment, stranger)

        await comments.delete_comment(test_db, comment, admin)
        assert await comments.list_comments(test_db, seeded_db["suggestion_id"]) == []


@pytest.mark.asyncio
class TestCommentsApi:
    async def test_create_list_delete(self, client: AsyncClient, seeded_db):
        base = f"/api/v1/suggestions/{seeded_db['suggestion_id']}/comments"

        created = await client.post(base, json={"content": "First note"})
        assert created.status_code == 201
        assert created.json()["is_general"] is True

        listed = await client.get(base)
        assert [c["content"] for c in listed.json()] == ["First note"]
        assert listed.json()[0]["is_general"] is True

        deleted = await client.delete(f"{base}/{created.json()['comment_id']}")
        assert deleted.status_code == 204
        assert (await client.get(base)).json() == []

    async def test_foreign_step_reference(self, client: AsyncClient, seeded_db, test_db):
        other = await create_suggestion(
            test_db, seeded_db["user"], seeded_db["store_id"], title="Other", recommended_action=["x"]
        )
        await test_db.commit()
        foreign_step = (await steps.list_steps(test_db, other.suggestion_id))[0]

        resp = await client.post(
            f"/api/v1/suggestions/{seeded_db['suggestion_id']}/comments",
            json={"content": "Wrong thread", "step_id": str(foreign_step.step_id)},
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "invalid_step_reference"
