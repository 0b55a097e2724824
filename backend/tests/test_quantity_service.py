"""
Quantity ledger tests.

Verifies:
- Deltas accumulate and commute
- First touch creates the row; untouched keys read as zero
- Negative results are allowed and reported, not rejected
- Input normalization (SKU case, location keys)
"""

import pytest

from prodtrack.services import quantity_service
from prodtrack.validation import ValidationError

from conftest import SENDER


class TestApplyDelta:
    def test_first_touch_creates_row(self, db_session):
        change = quantity_service.apply_delta("BOLT-M8", "logistics", 10, SENDER)
        db_session.commit()

        assert change.previous_amount == 0
        assert change.new_amount == 10
        assert quantity_service.get_quantity("BOLT-M8", "logistics") == 10

    def test_untouched_key_reads_zero(self, db_session):
        assert quantity_service.get_quantity("NEVER-SEEN", "production_zone_4") == 0

    def test_deltas_commute(self, db_session):
        for delta in (5, -3, 7):
            quantity_service.apply_delta("NUT-M8", "logistics", delta, SENDER)
        db_session.commit()
        first_order = quantity_service.get_quantity("NUT-M8", "logistics")

        for delta in (7, 5, -3):
            quantity_service.apply_delta("NUT-M8", "production_zone_2", delta, SENDER)
        db_session.commit()
        second_order = quantity_service.get_quantity("NUT-M8", "production_zone_2")

        assert first_order == second_order == 9

    def test_negative_result_is_warned_not_rejected(self, db_session):
        quantity_service.apply_delta("SEAT-FR", "logistics", 2, SENDER)
        change = quantity_service.apply_delta("SEAT-FR", "logistics", -5, SENDER)
        db_session.commit()

        assert change.new_amount == -3
        assert change.is_negative
        assert "Negative inventory" in change.warning()
        assert quantity_service.get_quantity("SEAT-FR", "logistics") == -3

    def test_positive_result_has_no_warning(self, db_session):
        change = quantity_service.apply_delta("SEAT-FR", "logistics", 1, SENDER)
        assert change.warning() is None

    def test_sku_is_normalized(self, db_session):
        quantity_service.apply_delta("bolt-m8", "LOGISTICS", 3, SENDER)
        db_session.commit()
        assert quantity_service.get_quantity("BOLT-M8", "logistics") == 3

    def test_zero_padded_zone_shares_one_row(self, db_session):
        quantity_service.apply_delta("BOLT-M8", "production_zone_05", 10, SENDER)
        quantity_service.apply_delta("BOLT-M8", "production_zone_5", 3, SENDER)
        db_session.commit()

        rows = quantity_service.list_quantities(sku="BOLT-M8")
        assert [(row.location, row.quantity) for row in rows] == [("production_zone_5", 13)]
        assert quantity_service.get_quantity("BOLT-M8", "Production_Zone_005") == 13

    def test_updated_by_is_last_writer(self, db_session):
        quantity_service.apply_delta("BOLT-M8", "logistics", 1, "a@plant.local")
        quantity_service.apply_delta("BOLT-M8", "logistics", 1, "B@Plant.local")
        db_session.commit()

        row = quantity_service.list_quantities(sku="BOLT-M8")[0]
        assert row.updated_by == "b@plant.local"
        assert row.quantity == 2

    @pytest.mark.parametrize("location", ["warehouse", "production_zone_0", "production_zone_24", ""])
    def test_unknown_location_rejected(self, db_session, location):
        with pytest.raises(ValidationError):
            quantity_service.apply_delta("BOLT-M8", location, 1, SENDER)

    @pytest.mark.parametrize("delta", ["1.5", 2.0, True, "1e3"])
    def test_non_integer_delta_rejected(self, db_session, delta):
        with pytest.raises(ValidationError):
            quantity_service.apply_delta("BOLT-M8", "logistics", delta, SENDER)


class TestReads:
    def test_sku_totals_across_locations(self, db_session):
        quantity_service.apply_delta("BOLT-M8", "logistics", 40, SENDER)
        quantity_service.apply_delta("BOLT-M8", "production_zone_1", 8, SENDER)
        quantity_service.apply_delta("BOLT-M8", "production_zone_2", -2, SENDER)
        db_session.commit()

        totals = quantity_service.get_sku_totals("bolt-m8")
        assert totals["sku"] == "BOLT-M8"
        assert totals["total"] == 46
        assert totals["locations"]["production_zone_2"] == -2

    def test_list_excludes_zero_rows_on_request(self, db_session):
        quantity_service.apply_delta("BOLT-M8", "logistics", 5, SENDER)
        quantity_service.apply_delta("BOLT-M8", "logistics", -5, SENDER)
        quantity_service.apply_delta("NUT-M8", "logistics", 1, SENDER)
        db_session.commit()

        all_rows = quantity_service.list_quantities()
        non_zero = quantity_service.list_quantities(include_zero=False)
        assert len(all_rows) == 2
        assert [row.sku for row in non_zero] == ["NUT-M8"]

    def test_item_name_from_item_master(self, db_session, items):
        quantity_service.apply_delta("BOLT-M8", "logistics", 1, SENDER)
        db_session.commit()
        assert quantity_service.list_quantities(sku="BOLT-M8")[0].item_name == "M8 bolt"

    def test_zero_delta_guard(self):
        with pytest.raises(ValidationError):
            quantity_service.require_nonzero_delta(0)
        assert quantity_service.require_nonzero_delta("-4") == -4
