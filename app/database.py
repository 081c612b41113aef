import asyncio
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings

settings = get_settings()

T = TypeVar("T")

_engine_options: dict = {"echo": settings.debug, "future": True, "pool_pre_ping": True}
if not settings.database_url.startswith("sqlite"):
    _engine_options.update(pool_size=10, max_overflow=20)

engine = create_engine(settings.database_url, **_engine_options)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


class PersistenceError(RuntimeError):
    """Raised when the store rejects an operation or does not answer in time."""


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Context manager for short-lived database sessions.

    Use this in WebSocket handlers instead of Depends(get_db) to avoid
    holding database connections for the entire WebSocket connection lifetime.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class _CommitGate:
    """Lets either a commit or the caller's timeout win, never both."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._abandoned = False
        self._committing = False

    def before_commit(self, session: Session) -> None:
        with self._lock:
            if self._abandoned:
                raise PersistenceError("operation abandoned after timeout")
            self._committing = True

    def abandon(self) -> bool:
        """Mark the operation abandoned; ``False`` if a commit already started."""

        with self._lock:
            if self._committing:
                return False
            self._abandoned = True
            return True


def _discard_result(future: "asyncio.Future") -> None:
    if not future.cancelled():
        future.exception()


async def run_in_session(
    session_factory: Callable[[], Session],
    operation: Callable[..., T],
    *args,
    timeout: float | None = None,
) -> T:
    """Run ``operation(db, *args)`` in the threadpool with a fresh session.

    SQLAlchemy failures and timeouts surface as :class:`PersistenceError`.
    With a timeout, the worker's first commit is gated: once the caller has
    given up the commit raises and the transaction is rolled back, so a
    reported timeout never leaves rows behind. A commit that started before
    the deadline is awaited and its outcome stands.
    """

    gate = _CommitGate() if timeout and timeout > 0 else None
    name = getattr(operation, "__name__", "operation")

    def call() -> T:
        db = session_factory()
        if gate is not None:
            event.listen(db, "before_commit", gate.before_commit)
        try:
            return operation(db, *args)
        except (SQLAlchemyError, PersistenceError):
            db.rollback()
            raise
        finally:
            db.close()

    try:
        if gate is None:
            return await run_in_threadpool(call)

        future = asyncio.ensure_future(run_in_threadpool(call))
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError as exc:
            if gate.abandon():
                future.add_done_callback(_discard_result)
                raise PersistenceError(f"{name} timed out") from exc
            return await future
    except SQLAlchemyError as exc:
        raise PersistenceError(str(exc.__class__.__name__)) from exc
