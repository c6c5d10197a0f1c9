import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from forkliftops.core.config import _env_bool, _env_float, _env_int
from forkliftops.database import SessionLocal, is_postgres
from forkliftops.services.outbox_processor import (
    process_outbox_batch,
    release_outbox_lock,
    try_acquire_outbox_lock,
)
from forkliftops.services.sweep_service import run_sweep

logger = logging.getLogger(__name__)


def outbox_worker_enabled() -> bool:
    # Disabled under pytest to keep tests deterministic.
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    return _env_bool("OUTBOX_WORKER_ENABLED", True)


def _tag_session(db: Session, name: str) -> None:
    if not is_postgres(db):
        return
    try:
        db.execute(text(f"set application_name = '{name}'"))
    except DBAPIError:
        logger.warning("Could not tag worker session", extra={"application_name": name})


def _dispose(db: Session) -> None:
    engine = db.get_bind()
    if engine is not None and hasattr(engine, "dispose"):
        engine.dispose()


def _tick(*, batch_size: int, sweep_due: bool) -> None:
    work_db: Session = SessionLocal()
    try:
        _tag_session(work_db, "forkliftops_worker_tick")
        now = datetime.now(timezone.utc)

        if sweep_due:
            run_sweep(now=now, db=work_db)
            work_db.commit()

        process_outbox_batch(db=work_db, now=now, batch_size=batch_size)
        work_db.commit()
    except Exception:
        work_db.rollback()
        raise
    finally:
        work_db.close()


async def outbox_worker_loop(
    *,
    poll_seconds: float = 1.0,
    batch_size: int = 50,
    sweep_seconds: float = 60.0,
) -> None:
    """
    Single-worker loop: drains the outbox every tick and runs the job sweep
    every ``sweep_seconds``.

      - Never crashes the server on transient DB failures.
      - Safe under uvicorn --reload (two processes) via PG advisory lock.
      - Recovers if Postgres restarts / connections are terminated.
    """
    logger.info(
        "Outbox worker started",
        extra={"poll_seconds": float(poll_seconds), "batch_size": int(batch_size), "sweep_seconds": float(sweep_seconds)},
    )

    last_sweep: Optional[float] = None

    while True:
        lock_db: Session = SessionLocal()
        have_lock = False

        try:
            _tag_session(lock_db, "forkliftops_worker_lock")

            have_lock = try_acquire_outbox_lock(lock_db)
            if not have_lock:
                lock_db.close()
                await asyncio.sleep(poll_seconds)
                continue

            # We hold the advisory lock as long as lock_db stays healthy.
            while True:
                sweep_due = last_sweep is None or time.monotonic() - last_sweep >= sweep_seconds
                try:
                    _tick(batch_size=batch_size, sweep_due=sweep_due)
                    if sweep_due:
                        last_sweep = time.monotonic()

                except asyncio.CancelledError:
                    raise

                except (OperationalError, DBAPIError):
                    # Postgres restarted / connection killed; next tick gets fresh connections.
                    _dispose(lock_db)
                    logger.exception(
                        "Outbox worker tick failed",
                        extra={"component": "outbox_worker", "reason": "dbapi_error"},
                    )

                except Exception:
                    logger.exception(
                        "Outbox worker tick failed",
                        extra={"component": "outbox_worker", "reason": "unexpected"},
                    )

                await asyncio.sleep(poll_seconds)

        except asyncio.CancelledError:
            logger.info("Outbox worker cancelled; shutting down")
            raise

        except (OperationalError, DBAPIError):
            logger.exception(
                "Outbox worker lock connection failed",
                extra={"component": "outbox_worker", "reason": "lock_dbapi_error"},
            )
            _dispose(lock_db)
            await asyncio.sleep(poll_seconds)

        except Exception:
            # Do NOT crash the server; log and keep trying.
            logger.exception(
                "Outbox worker crashed",
                extra={"component": "outbox_worker", "reason": "outer_unexpected"},
            )
            await asyncio.sleep(poll_seconds)

        finally:
            if have_lock:
                try:
                    release_outbox_lock(lock_db)
                except DBAPIError:
                    logger.warning("Outbox lock release failed", extra={"component": "outbox_worker"})
            lock_db.close()


def start_outbox_worker_task() -> Optional[asyncio.Task]:
    if not outbox_worker_enabled():
        logger.info("Outbox worker disabled")
        return None

    poll_seconds = _env_float("OUTBOX_POLL_SECONDS", 1.0)
    batch_size = _env_int("OUTBOX_BATCH_SIZE", 50)
    sweep_seconds = _env_float("SWEEP_INTERVAL_SECONDS", 60.0)
    return asyncio.create_task(
        outbox_worker_loop(poll_seconds=poll_seconds, batch_size=batch_size, sweep_seconds=sweep_seconds)
    )
