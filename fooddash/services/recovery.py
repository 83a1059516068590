"""
Recovery helpers for interrupted payment redirects.

Documents (per user namespace):
    payment_backup_<order_id>  copy of the order fields taken before redirecting
    pending_orders             {order_id: {orderId, timestamp, status}}

Storage problems are logged and swallowed here: losing a backup must never
block checkout or order tracking.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from fooddash.services.storage import DocumentStorage, StorageError

logger = logging.getLogger(__name__)

PENDING_ORDERS_KEY = "pending_orders"
ORDER_TIMEOUT_MS = 30 * 60 * 1000


class PaymentVerificationError(Exception):
    """Base payment verification exception"""


class PaymentCancelledError(PaymentVerificationError):
    pass


class PaymentVerificationTimeout(PaymentVerificationError):
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def backup_key(order_id) -> str:
    return f"payment_backup_{order_id}"


def create_payment_backup(storage: DocumentStorage, order_data: dict, now: Optional[int] = None) -> None:
    backup = dict(order_data)
    backup["timestamp"] = _now_ms() if now is None else now
    backup["status"] = "pending_verification"
    try:
        storage.set(backup_key(order_data["id"]), backup)
        logger.info("Payment backup created for order %s", order_data["id"])
    except StorageError:
        logger.exception("Failed to create payment backup for order %s", order_data.get("id"))


def get_payment_backup(storage: DocumentStorage, order_id) -> Optional[dict]:
    try:
        return storage.get(backup_key(order_id))
    except StorageError:
        logger.exception("Failed to retrieve payment backup for order %s", order_id)
        return None


def clear_payment_backup(storage: DocumentStorage, order_id) -> None:
    try:
        storage.remove(backup_key(order_id))
    except StorageError:
        logger.exception("Failed to clear payment backup for order %s", order_id)


def get_pending_orders(storage: DocumentStorage) -> Dict[str, dict]:
    try:
        pending = storage.get(PENDING_ORDERS_KEY)
    except StorageError:
        logger.exception("Failed to read pending orders")
        return {}
    return pending if isinstance(pending, dict) else {}


def _write_pending(storage: DocumentStorage, pending: Dict[str, dict]) -> None:
    try:
        if pending:
            storage.set(PENDING_ORDERS_KEY, pending)
        else:
            storage.remove(PENDING_ORDERS_KEY)
    except StorageError:
        logger.exception("Failed to write pending orders")


def save_pending_order(storage: DocumentStorage, order_id, status: str = "pending", now: Optional[int] = None) -> None:
    pending = get_pending_orders(storage)
    pending[str(order_id)] = {
        "orderId": str(order_id),
        "timestamp": _now_ms() if now is None else now,
        "status": status,
    }
    _write_pending(storage, pending)


def remove_pending_order(storage: DocumentStorage, order_id) -> None:
    pending = get_pending_orders(storage)
    if pending.pop(str(order_id), None) is not None:
        _write_pending(storage, pending)


def recover_pending_orders(
    storage: DocumentStorage,
    fetch_status: Callable[[str], Optional[str]],
    now: Optional[int] = None,
) -> List[dict]:
    """
    Sweep the pending-orders index.

    Entries older than ORDER_TIMEOUT_MS, or malformed, are dropped. Entries
    whose order has left "pending" are removed and reported. Lookup failures keep the entry
    for the next sweep.
    """
    now = _now_ms() if now is None else now
    pending = get_pending_orders(storage)
    recovered = []
    changed = False

    for order_id, entry in list(pending.items()):
        try:
            timestamp = int(entry.get("timestamp") or 0)
        except (AttributeError, TypeError, ValueError):
            logger.warning("Dropping malformed pending entry for order %s: %r", order_id, entry)
            pending.pop(order_id)
            changed = True
            continue
        if now - timestamp > ORDER_TIMEOUT_MS:
            pending.pop(order_id)
            changed = True
            continue
        try:
            status = fetch_status(order_id)
        except Exception:
            logger.exception("Error recovering order %s", order_id)
            continue
        if status is None:
            logger.warning("Pending order %s no longer exists", order_id)
            pending.pop(order_id)
            changed = True
            continue
        if status != "pending":
            pending.pop(order_id)
            changed = True
            clear_payment_backup(storage, order_id)
            recovered.append({"orderId": order_id, "status": status})

    if changed:
        _write_pending(storage, pending)
    return recovered


def verify_payment_status(
    order_id,
    fetch_status: Callable[[object], Optional[str]],
    max_attempts: int = 10,
    interval: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """
    Poll until the order is confirmed or cancelled.

    Raises PaymentCancelledError, PaymentVerificationTimeout, or whatever the
    status lookup raises.
    """
    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            sleep(interval)
        status = fetch_status(order_id)
        logger.debug("Payment verification attempt %s for order %s: %s", attempt, order_id, status)
        if status == "confirmed":
            return status
        if status == "cancelled":
            raise PaymentCancelledError("Payment was cancelled or failed")
    raise PaymentVerificationTimeout("Payment verification timeout")
