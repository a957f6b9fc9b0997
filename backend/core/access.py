"""
Store access rules.

  admin     -> every store
  owner     -> stores.user_id
  employee  -> parent's stores, narrowed to explicit assignments if any
  otherwise -> stores the user was assigned to through store_members
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Forbidden, NotFound
from db.models import Store, StoreMember, User


async def has_store_access(db: AsyncSession, user: User, store_id: uuid.UUID) -> bool:
    if user.is_admin:
        return True

    store = await db.get(Store, store_id)
    if store is None:
        return False
    if store.user_id == user.user_id:
        return True

    assigned = set(
        (await db.execute(select(StoreMember.store_id).where(StoreMember.user_id == user.user_id))).scalars().all()
    )

    if user.is_employee:
        if store.user_id != user.parent_user_id:
            return False
        return not assigned or store_id in assigned

    return store_id in assigned


async def ensure_store_access(db: AsyncSession, user: User, store_id: uuid.UUID) -> None:
    if not await has_store_access(db, user, store_id):
        raise Forbidden("You do not have access to this store", store_id=str(store_id))


async def resolve_store_id(db: AsyncSession, user: User, store_id: uuid.UUID | None) -> uuid.UUID:
    """Explicit store or the user's active store, access-checked."""
    store_id = store_id or user.active_store_id
    if store_id is None:
        raise NotFound("No active store selected")
    await ensure_store_access(db, user, store_id)
    return store_id
