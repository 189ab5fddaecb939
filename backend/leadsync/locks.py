"""Per-tenant asyncio locks shared by sync runs and per-lead operations."""

import asyncio
from typing import Dict
from uuid import UUID

_locks: Dict[UUID, asyncio.Lock] = {}


def tenant_lock(tenant_id: UUID) -> asyncio.Lock:
    """
    Lock serializing writes to one tenant's lead set.

    Held only around database commits, never across network I/O.
    """
    lock = _locks.get(tenant_id)
    if lock is None:
        lock = _locks[tenant_id] = asyncio.Lock()
    return lock


def reset_locks() -> None:
    _locks.clear()
