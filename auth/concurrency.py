"""
auth/concurrency.py -- Run blocking store and bcrypt calls off the event loop.

UserStore is synchronous SQLAlchemy Core and bcrypt is CPU-bound. Both are
pushed onto the anyio worker-thread pool (the one Starlette uses) and bounded
by a timeout, so one slow query or hash cannot stall unrelated requests.

Failure mapping:
  - timeout                     -> InternalFailure
  - SQLAlchemyError (except the IntegrityError callers handle themselves)
                                -> InternalFailure
  - anything else               -> propagates unchanged

If the awaiting request is cancelled or times out, the worker thread is
abandoned rather than interrupted; a write it already issued stays written.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Callable, TypeVar

import anyio.to_thread
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import InternalFailure

T = TypeVar("T")


async def run_bounded(fn: Callable[..., T], *args: Any, timeout: float, **kwargs: Any) -> T:
    call = functools.partial(fn, *args, **kwargs)
    try:
        return await asyncio.wait_for(anyio.to_thread.run_sync(call, abandon_on_cancel=True), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise InternalFailure() from exc
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        raise InternalFailure() from exc
