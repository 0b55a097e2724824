"""
Work completion tests: releasing the car and consuming mapped BOMs.
"""

from prodtrack.models import Transaction, ZoneBOMMapping
from prodtrack.services import bom_service, completion_service, quantity_service, transfer_service, zone_service
from prodtrack.validation import ValidationError

from conftest import RECEIVER, SENDER, VIN_A


def _stock_zone(db_session, zone_id, units=2):
    transfer_service.send_transfer("SEAT-KIT", units, zone_id, SENDER, skip_otp=True)
    db_session.commit()


def _scan(db_session, zone_id, car_type="Standard"):
    zone_service.scan_car_into_zone(VIN_A, zone_id, SENDER, car_type=car_type)
    db_session.commit()


def test_completion_consumes_mapped_bom(db_session, stations, seat_kit):
    bom_service.set_zone_mapping(4, "Standard", "SEAT-KIT")
    db_session.commit()
    _stock_zone(db_session, 4)
    _scan(db_session, 4)

    result = completion_service.complete_car_work(VIN_A, 4, RECEIVER)
    db_session.commit()

    assert result.warnings == []
    assert len(result.consumption.transactions) == 1
    txn = result.consumption.transactions[0]
    assert txn.reference == f"CAR_{VIN_A}_ZONE_4"
    assert txn.transaction_type == "adjustment"
    assert txn.bom_code == "SEAT-KIT"
    assert quantity_service.get_quantity("SEAT-FR", "production_zone_4") == 1
    assert quantity_service.get_quantity("BOLT-M8", "production_zone_4") == 4
    assert zone_service.get_current_car(4) is None


def test_mapping_for_other_car_type_is_ignored(db_session, stations, seat_kit):
    bom_service.set_zone_mapping(4, "SUV", "SEAT-KIT")
    db_session.commit()
    _stock_zone(db_session, 4)
    _scan(db_session, 4, car_type="Standard")

    result = completion_service.complete_car_work(VIN_A, 4, RECEIVER)
    db_session.commit()

    assert result.consumption.transactions == []
    assert quantity_service.get_quantity("SEAT-FR", "production_zone_4") == 2


def test_non_consuming_mapping_is_ignored(db_session, stations, seat_kit):
    bom_service.set_zone_mapping(4, "Standard", "SEAT-KIT", consume_on_completion=False)
    db_session.commit()
    _stock_zone(db_session, 4)
    _scan(db_session, 4)

    result = completion_service.complete_car_work(VIN_A, 4, RECEIVER)
    db_session.commit()

    assert result.consumption.transactions == []


def test_consumption_below_zero_is_warned(db_session, stations, seat_kit):
    bom_service.set_zone_mapping(4, "Standard", "SEAT-KIT")
    db_session.commit()
    _scan(db_session, 4)

    result = completion_service.complete_car_work(VIN_A, 4, RECEIVER)
    db_session.commit()

    assert len(result.consumption.transactions) == 1
    assert len(result.warnings) == 3
    assert quantity_service.get_quantity("NUT-M8", "production_zone_4") == -4


def test_missing_bom_is_skipped_with_warning(db_session, stations, seat_kit):
    db_session.add(ZoneBOMMapping(zone_id=4, car_type="Standard", bom_code="RETIRED-KIT"))
    db_session.commit()
    _scan(db_session, 4)

    result = completion_service.complete_car_work(VIN_A, 4, RECEIVER)
    db_session.commit()

    assert result.consumption.transactions == []
    assert any("RETIRED-KIT" in w for w in result.warnings)


def test_consumption_failure_still_releases_car(db_session, stations, seat_kit, monkeypatch):
    bom_service.set_zone_mapping(4, "Standard", "SEAT-KIT")
    db_session.commit()
    _stock_zone(db_session, 4)
    _scan(db_session, 4)
    before = db_session.query(Transaction).count()

    def broken_expand(bom, units):
        raise ValidationError("component table unavailable")

    monkeypatch.setattr(bom_service, "expand_bom", broken_expand)

    result = completion_service.complete_car_work(VIN_A, 4, RECEIVER)
    db_session.commit()

    assert result.consumption is None
    assert result.warnings == ["BOM consumption failed: component table unavailable"]
    assert result.entry.exited_at is not None
    assert zone_service.get_current_car(4) is None
    assert zone_service.get_car(VIN_A).current_zone is None
    assert db_session.query(Transaction).count() == before
    assert quantity_service.get_quantity("SEAT-FR", "production_zone_4") == 2



def test_unexpected_consumption_error_still_releases_car(db_session, stations, seat_kit, monkeypatch):
    bom_service.set_zone_mapping(4, "Standard", "SEAT-KIT")
    db_session.commit()
    _stock_zone(db_session, 4)
    _scan(db_session, 4)

    def broken_consume(vin, zone_id, car_type, actor):
        raise KeyError("quantity")

    monkeypatch.setattr(completion_service, "consume_for_completion", broken_consume)

    result = completion_service.complete_car_work(VIN_A, 4, RECEIVER)
    db_session.commit()

    assert result.consumption is None
    assert result.warnings == ["BOM consumption failed: 'quantity'"]
    assert zone_service.get_current_car(4) is None
    assert quantity_service.get_quantity("SEAT-FR", "production_zone_4") == 2

def test_consumption_reference_format():
    assert completion_service.consumption_reference(VIN_A, 12) == f"CAR_{VIN_A}_ZONE_12"


def test_consumption_without_mappings_is_a_no_op(db_session, stations, seat_kit):
    before = db_session.query(Transaction).count()

    result = completion_service.consume_for_completion(VIN_A, 4, "Standard", RECEIVER)

    assert result.transactions == []
    assert result.warnings == []
    assert db_session.query(Transaction).count() == before
