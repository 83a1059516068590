"""
Live order status: an in-process change feed and the presenter that turns
order snapshots into display state.

Topics:
    order:<order_id>              full order snapshot after every status write
    delivery-location:<order_id>  latest delivery partner position

The presenter never validates transitions. Whatever status a collaborator
writes is shown; unknown values fall back to a generic presentation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

logger = logging.getLogger(__name__)

ORDER_STATUSES = (
    "pending",
    "confirmed",
    "preparing",
    "ready_for_pickup",
    "picked_up",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "refunded",
)

STATUS_ALIASES = {
    "ready": "ready_for_pickup",
    "delivering": "out_for_delivery",
    "canceled": "cancelled",
}

TRACKING_STATUSES = ("picked_up", "out_for_delivery")


def order_topic(order_id) -> str:
    return f"order:{order_id}"


def delivery_location_topic(order_id) -> str:
    return f"delivery-location:{order_id}"


class Subscription:
    def __init__(self, feed: "ChangeFeed", topic: str, callback: Callable[[Any], None]):
        self.feed = feed
        self.topic = topic
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.feed._remove(self)


class ChangeFeed:
    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Callable[[Any], None]) -> Subscription:
        subscription = Subscription(self, topic, callback)
        with self._lock:
            self._subscribers.setdefault(topic, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            listeners = self._subscribers.get(subscription.topic, [])
            if subscription in listeners:
                listeners.remove(subscription)
            if not listeners:
                self._subscribers.pop(subscription.topic, None)

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, payload: Any) -> int:
        with self._lock:
            listeners = list(self._subscribers.get(topic, []))
        delivered = 0
        for subscription in listeners:
            if not subscription.active:
                continue
            try:
                subscription.callback(payload)
                delivered += 1
            except Exception:
                # One broken listener must not starve the others
                logger.exception("Change feed listener failed for %s", topic)
        return delivered


def get_change_feed() -> ChangeFeed:
    return current_app.extensions["change_feed"]


def publish_order_change(order, feed: Optional[ChangeFeed] = None) -> int:
    feed = feed or get_change_feed()
    return feed.publish(order_topic(order.id), order.to_dict())


def publish_delivery_location(order_id, location: dict, feed: Optional[ChangeFeed] = None) -> int:
    feed = feed or get_change_feed()
    return feed.publish(delivery_location_topic(order_id), location)


@dataclass(frozen=True)
class StatusView:
    status: str
    label: str
    icon: str
    color: str
    step: int

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "label": self.label,
            "icon": self.icon,
            "color": self.color,
            "step": self.step,
        }


# status -> (icon, color, progress step)
_PRESENTATION = {
    "pending": ("clock", "yellow", 0),
    "confirmed": ("chef-hat", "blue", 1),
    "preparing": ("chef-hat", "blue", 1),
    "ready_for_pickup": ("package", "purple", 2),
    "picked_up": ("truck", "purple", 2),
    "out_for_delivery": ("truck", "purple", 2),
    "delivered": ("check-circle", "green", 3),
    "cancelled": ("x-circle", "red", -1),
    "refunded": ("rotate-ccw", "gray", -1),
}

_GENERIC = ("circle", "gray", 0)


def status_label(status: str) -> str:
    return " ".join(word.capitalize() for word in status.split("_") if word) or "Unknown"


def present_status(status: Optional[str]) -> StatusView:
    raw = (status or "").strip().lower()
    canonical = STATUS_ALIASES.get(raw, raw)
    icon, color, step = _PRESENTATION.get(canonical, _GENERIC)
    return StatusView(
        status=raw or "unknown",
        label=status_label(canonical),
        icon=icon,
        color=color,
        step=step,
    )


class OrderStatusPresenter:
    """
    Holds the latest snapshot of one order and its derived StatusView.

    Usage:
        with OrderStatusPresenter(order_id, feed, loader) as presenter:
            presenter.view
    """

    def __init__(
        self,
        order_id,
        feed: ChangeFeed,
        loader: Optional[Callable[[Any], Optional[dict]]] = None,
        on_change: Optional[Callable[["OrderStatusPresenter"], None]] = None,
    ):
        self.order_id = order_id
        self.feed = feed
        self.loader = loader
        self.on_change = on_change
        self.snapshot: Optional[dict] = None
        self.delivery_location: Optional[dict] = None
        self._order_subscription: Optional[Subscription] = None
        self._location_subscription: Optional[Subscription] = None

    @property
    def view(self) -> StatusView:
        return present_status((self.snapshot or {}).get("status"))

    @property
    def is_tracking_location(self) -> bool:
        return self._location_subscription is not None

    def start(self) -> "OrderStatusPresenter":
        if self.loader is not None:
            self.snapshot = self.loader(self.order_id)
        if self._order_subscription is None:
            self._order_subscription = self.feed.subscribe(order_topic(self.order_id), self._handle_order)
        self._sync_location_subscription()
        return self

    def _handle_order(self, payload: dict) -> None:
        self.snapshot = dict(payload) if payload is not None else None
        logger.debug("Order %s status is now %s", self.order_id, self.view.status)
        self._sync_location_subscription()
        if self.on_change:
            self.on_change(self)

    def _handle_location(self, payload: dict) -> None:
        self.delivery_location = dict(payload) if payload is not None else None
        if self.on_change:
            self.on_change(self)

    def _sync_location_subscription(self) -> None:
        wants_location = self.view.status in TRACKING_STATUSES or STATUS_ALIASES.get(self.view.status) in TRACKING_STATUSES
        if wants_location and self._location_subscription is None and self._order_subscription is not None:
            self._location_subscription = self.feed.subscribe(
                delivery_location_topic(self.order_id), self._handle_location
            )
        elif not wants_location and self._location_subscription is not None:
            self._location_subscription.unsubscribe()
            self._location_subscription = None

    def close(self) -> None:
        if self._location_subscription is not None:
            self._location_subscription.unsubscribe()
            self._location_subscription = None
        if self._order_subscription is not None:
            self._order_subscription.unsubscribe()
            self._order_subscription = None

    def __enter__(self) -> "OrderStatusPresenter":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def to_dict(self) -> dict:
        return {
            "order": self.snapshot,
            "status": self.view.to_dict(),
            "delivery_location": self.delivery_location,
        }
