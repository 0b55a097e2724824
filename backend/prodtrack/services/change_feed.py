# Overview: Publish/subscribe change feed for ledger and transaction observers.

"""
Change feed for dashboards and other observers.

Services stage a ChangeEvent on the current session while they write; the
events are delivered to subscribers only after that session commits, and are
dropped on rollback. A subscriber therefore never sees a change that did not
become durable.

subscribe() returns the current snapshot of the channel together with the
handle that receives subsequent deltas, so an observer can render the full
table once and then apply incremental updates.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app
from sqlalchemy import event
from sqlalchemy.orm import Session

from ..extensions import db
from prodtrack.time_utils import utcnow, to_utc_z

CHANNEL_TRANSACTIONS = "transactions"
CHANNEL_INVENTORY = "inventory"
CHANNEL_WORK_STATIONS = "work_stations"

CHANNELS = (CHANNEL_TRANSACTIONS, CHANNEL_INVENTORY, CHANNEL_WORK_STATIONS)

_PENDING_KEY = "prodtrack.change_feed.pending"


@dataclass(frozen=True)
class ChangeEvent:
    channel: str
    action: str          # "created" | "updated"
    key: str
    data: dict
    occurred_at: Any = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "action": self.action,
            "key": self.key,
            "data": self.data,
            "occurred_at": to_utc_z(self.occurred_at),
        }


@dataclass
class Subscription:
    channel: str
    callback: Callable[[ChangeEvent], None]
    snapshot: list = field(default_factory=list)
    active: bool = True

    def unsubscribe(self) -> None:
        _unregister(self)


_subscribers: dict[str, list[Subscription]] = {channel: [] for channel in CHANNELS}
_snapshot_providers: dict[str, Callable[[], list]] = {}
_lock = threading.Lock()


def _require_channel(channel: str) -> None:
    if channel not in CHANNELS:
        raise ValueError(f"Unknown change feed channel {channel!r}")


def snapshot_provider(channel: str):
    """Register the function that renders the full current state of a channel."""
    _require_channel(channel)

    def decorator(fn):
        _snapshot_providers[channel] = fn
        return fn
    return decorator


def get_snapshot(channel: str) -> list:
    _require_channel(channel)
    provider = _snapshot_providers.get(channel)
    return provider() if provider else []


def subscribe(channel: str, callback: Callable[[ChangeEvent], None], *, with_snapshot: bool = True) -> Subscription:
    _require_channel(channel)
    subscription = Subscription(channel=channel, callback=callback)
    if with_snapshot:
        subscription.snapshot = get_snapshot(channel)
    with _lock:
        _subscribers[channel].append(subscription)
    return subscription


def _unregister(subscription: Subscription) -> None:
    with _lock:
        subscription.active = False
        subs = _subscribers.get(subscription.channel, [])
        if subscription in subs:
            subs.remove(subscription)


def publish(channel: str, action: str, key: str, data: dict) -> None:
    """Stage an event; it is delivered when the current session commits."""
    _require_channel(channel)
    pending = db.session.info.setdefault(_PENDING_KEY, [])
    pending.append(ChangeEvent(channel=channel, action=action, key=str(key), data=data))


def mark() -> int:
    """Position in the staged event list, for discarding work undone by a savepoint rollback."""
    return len(db.session.info.get(_PENDING_KEY, []))


def discard_since(position: int) -> None:
    pending = db.session.info.get(_PENDING_KEY)
    if pending is not None:
        del pending[position:]


def _deliver(events: list[ChangeEvent]) -> None:
    for ev in events:
        with _lock:
            targets = list(_subscribers.get(ev.channel, []))
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.callback(ev)
            except Exception:
                # A broken observer must not affect writers or other observers
                current_app.logger.exception("Change feed subscriber failed on %s", ev.channel)


@event.listens_for(Session, "after_commit")
def _flush_on_commit(session):
    if session.in_nested_transaction():
        # SAVEPOINT release; the outer transaction can still roll back
        return
    events = session.info.pop(_PENDING_KEY, None)
    if events:
        _deliver(events)


@event.listens_for(Session, "after_soft_rollback")
def _drop_on_rollback(session, previous_transaction):
    # Savepoint rollbacks are handled by the caller through mark()/discard_since()
    if previous_transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)
