"""
Change feed tests.

Events reach subscribers only once the writing session commits; rolled
back work is never observed.
"""

import pytest

from prodtrack.services import change_feed, quantity_service, transaction_service, transfer_service, zone_service

from conftest import SENDER, VIN_A


def test_delivered_after_commit(db_session, feed_events):
    quantity_service.apply_delta("BOLT-M8", "logistics", 5, SENDER)
    assert feed_events == []

    db_session.commit()

    assert len(feed_events) == 1
    event = feed_events[0]
    assert event.channel == change_feed.CHANNEL_INVENTORY
    assert event.key == "BOLT-M8_logistics"
    assert event.data["quantity"] == 5


def test_dropped_on_rollback(db_session, feed_events):
    quantity_service.apply_delta("BOLT-M8", "logistics", 5, SENDER)
    db_session.rollback()
    db_session.commit()

    assert feed_events == []


def test_transfer_publishes_ledger_and_log(db_session, feed_events):
    transfer_service.send_transfer("BOLT-M8", 3, 2, SENDER)
    db_session.commit()

    channels = [event.channel for event in feed_events]
    assert channels.count(change_feed.CHANNEL_INVENTORY) == 1
    assert channels.count(change_feed.CHANNEL_TRANSACTIONS) == 1
    created = next(e for e in feed_events if e.channel == change_feed.CHANNEL_TRANSACTIONS)
    assert created.action == "created"
    assert created.data["status"] == "pending"


def test_station_changes_published(db_session, stations, feed_events):
    zone_service.scan_car_into_zone(VIN_A, 3, SENDER)
    db_session.commit()

    station_events = [e for e in feed_events if e.channel == change_feed.CHANNEL_WORK_STATIONS]
    assert len(station_events) == 1
    assert station_events[0].data["current_car"]["vin"] == VIN_A


def test_subscribe_returns_snapshot(db_session):
    quantity_service.apply_delta("NUT-M8", "production_zone_1", 2, SENDER)
    db_session.commit()

    subscription = change_feed.subscribe(change_feed.CHANNEL_INVENTORY, lambda event: None)
    try:
        assert [row["sku"] for row in subscription.snapshot] == ["NUT-M8"]
    finally:
        subscription.unsubscribe()


def test_unsubscribed_callback_not_called(db_session):
    received = []
    subscription = change_feed.subscribe(change_feed.CHANNEL_TRANSACTIONS, received.append, with_snapshot=False)
    subscription.unsubscribe()

    transaction_service.append_transaction(
        sku="BOLT-M8",
        item_name="M8 bolt",
        amount=1,
        location="logistics",
        transaction_type="count",
        status="completed",
        performed_by=SENDER,
    )
    db_session.commit()

    assert received == []


def test_failing_subscriber_does_not_break_writers(db_session, feed_events):
    def broken(event):
        raise RuntimeError("observer crashed")

    subscription = change_feed.subscribe(change_feed.CHANNEL_INVENTORY, broken, with_snapshot=False)
    try:
        quantity_service.apply_delta("BOLT-M8", "logistics", 1, SENDER)
        db_session.commit()
    finally:
        subscription.unsubscribe()

    assert len(feed_events) == 1
    assert quantity_service.get_quantity("BOLT-M8", "logistics") == 1


def test_unknown_channel():
    with pytest.raises(ValueError):
        change_feed.subscribe("orders", lambda event: None)
