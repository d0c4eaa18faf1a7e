"""Process-wide asyncio locks scoped to the running event loop."""

import asyncio
import weakref
from typing import Dict

_locks: Dict[str, "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]"] = {}


def get_named_lock(name: str) -> asyncio.Lock:
    """Return the lock registered under ``name`` for the running loop.

    asyncio locks bind to the loop they first wait on, so a module-level
    lock breaks when the app (or the test suite) runs more than one loop.
    """
    loop = asyncio.get_running_loop()
    per_loop = _locks.setdefault(name, weakref.WeakKeyDictionary())
    lock = per_loop.get(loop)
    if lock is None:
        lock = asyncio.Lock()
        per_loop[loop] = lock
    return lock
