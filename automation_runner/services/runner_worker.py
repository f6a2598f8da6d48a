import asyncio
import logging

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from automation_runner.core.config import get_batch_size, get_poll_seconds, worker_enabled
from automation_runner.database import SessionLocal
from automation_runner.services.runner import (
    release_runner_lock,
    run_automation_pass,
    try_acquire_runner_lock,
)

logger = logging.getLogger(__name__)


def _dispose_engine(db: Session) -> None:
    try:
        engine = db.get_bind()
        if engine is not None and hasattr(engine, "dispose"):
            engine.dispose()
    except Exception:
        logger.debug("Engine dispose failed", exc_info=True)


def _tick(batch_size: int) -> None:
    work_db: Session = SessionLocal()
    try:
        run_automation_pass("all", db=work_db, batch_size=batch_size)
        work_db.commit()
    except Exception:
        work_db.rollback()
        raise
    finally:
        work_db.close()


async def runner_worker_loop(*, poll_seconds: float = 5.0, batch_size: int = 50) -> None:
    """
    Single-worker polling loop for deployments without an external scheduler.

    The Postgres advisory lock keeps a second process (uvicorn --reload, extra
    replicas) from running passes concurrently.
    """
    logger.info(
        "Automation worker started",
        extra={"poll_seconds": float(poll_seconds), "batch_size": int(batch_size)},
    )

    while True:
        lock_db: Session = SessionLocal()
        have_lock = False

        try:
            have_lock = try_acquire_runner_lock(lock_db)
            if not have_lock:
                lock_db.close()
                await asyncio.sleep(poll_seconds)
                continue

            while True:
                try:
                    # Passes are blocking (DB + webhooks); keep them off the event loop.
                    await asyncio.to_thread(_tick, batch_size)

                except asyncio.CancelledError:
                    raise

                except (OperationalError, DBAPIError):
                    _dispose_engine(lock_db)
                    logger.exception(
                        "Automation worker tick failed",
                        extra={"component": "runner_worker", "reason": "dbapi_error"},
                    )

                except Exception:
                    logger.exception(
                        "Automation worker tick failed",
                        extra={"component": "runner_worker", "reason": "unexpected"},
                    )

                await asyncio.sleep(poll_seconds)

        except asyncio.CancelledError:
            logger.info("Automation worker cancelled; shutting down")
            raise

        except (OperationalError, DBAPIError):
            logger.exception(
                "Automation worker lock connection failed",
                extra={"component": "runner_worker", "reason": "lock_dbapi_error"},
            )
            _dispose_engine(lock_db)
            await asyncio.sleep(poll_seconds)

        except Exception:
            # Never take the API process down with the worker.
            logger.exception(
                "Automation worker crashed",
                extra={"component": "runner_worker", "reason": "outer_unexpected"},
            )
            await asyncio.sleep(poll_seconds)

        finally:
            try:
                if have_lock:
                    release_runner_lock(lock_db)
            except Exception:
                logger.debug("Releasing runner lock failed", exc_info=True)
            lock_db.close()


def start_runner_worker_task() -> asyncio.Task | None:
    if not worker_enabled():
        logger.info("Automation worker disabled")
        return None

    return asyncio.create_task(
        runner_worker_loop(poll_seconds=get_poll_seconds(), batch_size=get_batch_size())
    )
