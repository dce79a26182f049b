"""
Terminal payment watcher: polls a card-terminal payment until it settles.

Polling strategy:
- every TERMINAL_POLL_INTERVAL seconds (default 3)
- stops once the order reaches a terminal status
- stops after TERMINAL_POLL_CEILING seconds (default 300) without touching the order
"""

import asyncio
import logging
import os
from datetime import datetime

from fastapi.concurrency import run_in_threadpool

from app.errors import NotFoundError
from app.services.reconciler import SettlementReconciler

logger = logging.getLogger(__name__)

TERMINAL_POLL_INTERVAL = float(os.getenv("TERMINAL_POLL_INTERVAL", "3"))
TERMINAL_POLL_CEILING = float(os.getenv("TERMINAL_POLL_CEILING", "300"))

# Active watch tasks {payment_intent_id: asyncio.Task}
_active_tasks: dict[str, asyncio.Task] = {}


async def watch_terminal_payment(
    reconciler: SettlementReconciler,
    payment_intent_id: str,
    store_id: str,
    interval: float = TERMINAL_POLL_INTERVAL,
    ceiling: float = TERMINAL_POLL_CEILING,
) -> int:
    """
    Poll until the order settles or the ceiling is reached.

    Returns:
        Number of status queries made.
    """
    logger.info("Terminal watch started: intent=%s, store=%s", payment_intent_id, store_id)
    start_time = datetime.now()
    poll_count = 0

    try:
        while True:
            elapsed = (datetime.now() - start_time).total_seconds()
            if elapsed >= ceiling:
                logger.info(
                    "Terminal watch ceiling reached, order left as is: intent=%s, polls=%d",
                    payment_intent_id, poll_count,
                )
                break

            poll_count += 1
            try:
                result = await run_in_threadpool(
                    reconciler.poll_terminal_payment, payment_intent_id, store_id
                )
            except NotFoundError as e:
                logger.warning("Terminal watch stopped: intent=%s, %s", payment_intent_id, e)
                break
            except Exception as e:
                logger.warning(
                    "Terminal status poll failed: intent=%s, error=%s", payment_intent_id, e
                )
            else:
                if result.order_status.is_terminal:
                    logger.info(
                        "Terminal payment settled: intent=%s, order=%s, status=%s, %.1fs, polls=%d",
                        payment_intent_id, result.order_id, result.order_status.value,
                        elapsed, poll_count,
                    )
                    break

            await asyncio.sleep(interval)

    except asyncio.CancelledError:
        logger.info("Terminal watch cancelled: intent=%s", payment_intent_id)
    finally:
        _active_tasks.pop(payment_intent_id, None)

    return poll_count


def start_terminal_watch(
    reconciler: SettlementReconciler, payment_intent_id: str, store_id: str
) -> None:
    """Start a background watch for the intent; no-op if one is already running."""
    if payment_intent_id in _active_tasks:
        logger.debug("Terminal watch already running: intent=%s", payment_intent_id)
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("Cannot start terminal watch (no event loop): intent=%s", payment_intent_id)
        return
    _active_tasks[payment_intent_id] = loop.create_task(
        watch_terminal_payment(reconciler, payment_intent_id, store_id)
    )


def cancel_terminal_watch(payment_intent_id: str) -> None:
    task = _active_tasks.pop(payment_intent_id, None)
    if task and not task.done():
        task.cancel()


def get_active_watch_count() -> int:
    return len(_active_tasks)
