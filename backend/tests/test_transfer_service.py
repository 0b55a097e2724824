"""
Transfer orchestrator tests.

Verifies:
- send debits the source and leaves a pending row with an OTP
- confirm credits the destination; reject re-credits the source
- a wrong OTP changes nothing
- terminal transfers cannot be resolved again
- BOM and multi-item sends, rectification, adjustments, counts and waste
"""

import pytest

from prodtrack.models import Transaction, TransactionOTP
from prodtrack.services import otp_service, quantity_service, transaction_service, transfer_service
from prodtrack.services.transfer_service import TransferItem
from prodtrack.validation import ConflictError, ValidationError

from conftest import RECEIVER, SENDER


def _stock(db_session, sku, amount, location="logistics"):
    quantity_service.apply_delta(sku, location, amount, SENDER)
    db_session.commit()


def _wrong(code: str) -> str:
    return "0000" if code != "0000" else "9999"


class TestSend:
    def test_send_debits_source_and_issues_otp(self, db_session):
        _stock(db_session, "BOLT-M8", 50)

        result = transfer_service.send_transfer("BOLT-M8", 10, 3, SENDER)
        db_session.commit()

        txn = result.transaction
        assert txn.status == "pending"
        assert txn.transaction_type == "transfer_out"
        assert txn.from_location == "logistics"
        assert txn.to_location == "production_zone_3"
        assert txn.previous_amount == 50
        assert txn.new_amount == 40
        assert len(result.otp) == 4
        assert otp_service.get_otp(txn.id) == result.otp
        assert quantity_service.get_quantity("BOLT-M8", "logistics") == 40
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_3") == 0

    def test_oversend_is_allowed_with_warning(self, db_session):
        _stock(db_session, "BOLT-M8", 3)

        result = transfer_service.send_transfer("BOLT-M8", 5, 1, SENDER)
        db_session.commit()

        assert quantity_service.get_quantity("BOLT-M8", "logistics") == -2
        assert any("Negative inventory" in w for w in result.warnings)

    @pytest.mark.parametrize("amount", [0, -3, "2.5"])
    def test_amount_must_be_positive_integer(self, db_session, amount):
        with pytest.raises(ValidationError):
            transfer_service.send_transfer("BOLT-M8", amount, 1, SENDER)

    def test_unknown_zone_rejected(self, db_session):
        with pytest.raises(ValidationError):
            transfer_service.send_transfer("BOLT-M8", 1, 24, SENDER)

    def test_failed_send_leaves_nothing(self, db_session):
        _stock(db_session, "BOLT-M8", 10)

        with pytest.raises(ValidationError):
            transfer_service.send_transfer(
                None, None, 2, SENDER,
                items=[TransferItem("BOLT-M8", 4), TransferItem("NUT-M8", 0)],
            )
        db_session.rollback()

        assert quantity_service.get_quantity("BOLT-M8", "logistics") == 10
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(TransactionOTP).count() == 0

    def test_bom_send_expands_components(self, db_session, seat_kit):
        result = transfer_service.send_transfer("seat-kit", 2, 5, SENDER)
        db_session.commit()

        txn = result.transaction
        assert txn.sku == "SEAT-KIT"
        assert txn.bom_code == "SEAT-KIT"
        assert txn.bom_quantity == 2
        assert {line.sku: line.amount for line in txn.lines} == {"SEAT-FR": 2, "BOLT-M8": 8, "NUT-M8": 8}
        assert quantity_service.get_quantity("BOLT-M8", "logistics") == -8

    def test_multi_item_send(self, db_session, items):
        result = transfer_service.send_transfer(
            None, None, 6, SENDER,
            items=[TransferItem("BOLT-M8", 10), TransferItem("NUT-M8", 12)],
        )
        db_session.commit()

        txn = result.transaction
        assert txn.item_name == "2 items"
        assert txn.amount == 22
        assert txn.previous_amount is None
        assert [line.sku for line in txn.lines] == ["BOLT-M8", "NUT-M8"]

    def test_skip_otp_completes_immediately(self, db_session):
        _stock(db_session, "BOLT-M8", 10)

        result = transfer_service.send_transfer("BOLT-M8", 4, 2, SENDER, skip_otp=True)
        db_session.commit()

        assert result.otp is None
        assert result.transaction.status == "completed"
        assert quantity_service.get_quantity("BOLT-M8", "logistics") == 6
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_2") == 4

    def test_skip_otp_requires_bypass_setting(self, app, db_session):
        app.config["ALLOW_OTP_BYPASS"] = False
        try:
            with pytest.raises(ValidationError, match="bypass"):
                transfer_service.send_transfer("BOLT-M8", 1, 2, SENDER, skip_otp=True)
        finally:
            app.config["ALLOW_OTP_BYPASS"] = True


class TestConfirmReject:
    def test_confirm_moves_stock_with_zero_net(self, db_session):
        _stock(db_session, "BOLT-M8", 50)
        sent = transfer_service.send_transfer("BOLT-M8", 10, 3, SENDER)
        db_session.commit()

        result = transfer_service.confirm_transfer(sent.transaction.id, sent.otp, RECEIVER)
        db_session.commit()

        assert result.transaction.status == "completed"
        assert result.transaction.approved_by == RECEIVER
        assert quantity_service.get_quantity("BOLT-M8", "logistics") == 40
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_3") == 10
        assert quantity_service.get_sku_totals("BOLT-M8")["total"] == 50
        assert otp_service.get_otp(sent.transaction.id) is None

    def test_wrong_otp_changes_nothing(self, db_session):
        _stock(db_session, "BOLT-M8", 50)
        sent = transfer_service.send_transfer("BOLT-M8", 10, 3, SENDER)
        db_session.commit()

        with pytest.raises(ConflictError, match="Invalid OTP"):
            transfer_service.confirm_transfer(sent.transaction.id, _wrong(sent.otp), RECEIVER)
        db_session.rollback()

        assert transaction_service.get_transaction(sent.transaction.id).status == "pending"
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_3") == 0

        transfer_service.confirm_transfer(sent.transaction.id, sent.otp, RECEIVER)
        db_session.commit()
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_3") == 10

    def test_reject_re_credits_source(self, db_session):
        _stock(db_session, "BOLT-M8", 50)
        sent = transfer_service.send_transfer("BOLT-M8", 10, 3, SENDER)
        db_session.commit()

        result = transfer_service.reject_transfer(sent.transaction.id, "wrong parts", RECEIVER)
        db_session.commit()

        assert result.transaction.status == "cancelled"
        assert result.transaction.notes == "Rejected: wrong parts"
        assert quantity_service.get_quantity("BOLT-M8", "logistics") == 50
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_3") == 0
        assert otp_service.get_otp(sent.transaction.id) is None

    def test_reject_requires_reason(self, db_session):
        sent = transfer_service.send_transfer("BOLT-M8", 1, 3, SENDER)
        db_session.commit()
        with pytest.raises(ValidationError):
            transfer_service.reject_transfer(sent.transaction.id, "  ", RECEIVER)

    def test_confirm_after_reject_conflicts(self, db_session):
        sent = transfer_service.send_transfer("BOLT-M8", 1, 3, SENDER)
        db_session.commit()
        transfer_service.reject_transfer(sent.transaction.id, "not needed", RECEIVER)
        db_session.commit()

        with pytest.raises(ConflictError):
            transfer_service.confirm_transfer(sent.transaction.id, sent.otp, RECEIVER)

    def test_reject_after_confirm_conflicts(self, db_session):
        sent = transfer_service.send_transfer("BOLT-M8", 1, 3, SENDER)
        db_session.commit()
        transfer_service.confirm_transfer(sent.transaction.id, sent.otp, RECEIVER)
        db_session.commit()

        with pytest.raises(ConflictError):
            transfer_service.reject_transfer(sent.transaction.id, "too late", RECEIVER)
        db_session.rollback()
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_3") == 1

    def test_bom_confirm_credits_every_component(self, db_session, seat_kit):
        sent = transfer_service.send_transfer("SEAT-KIT", 1, 5, SENDER)
        db_session.commit()
        transfer_service.confirm_transfer(sent.transaction.id, sent.otp, RECEIVER)
        db_session.commit()

        assert quantity_service.get_quantity("SEAT-FR", "production_zone_5") == 1
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_5") == 4
        assert quantity_service.get_quantity("NUT-M8", "production_zone_5") == 4


class TestRectify:
    def _completed(self, db_session):
        _stock(db_session, "BOLT-M8", 20)
        sent = transfer_service.send_transfer("BOLT-M8", 5, 3, SENDER)
        db_session.commit()
        transfer_service.confirm_transfer(sent.transaction.id, sent.otp, RECEIVER)
        db_session.commit()
        return sent.transaction

    def test_rectify_reverses_stock(self, db_session):
        original = self._completed(db_session)

        result = transfer_service.rectify_transfer(original.id, SENDER, "sent to wrong zone")
        db_session.commit()

        txn = result.transaction
        assert txn.is_rectification
        assert txn.parent_transaction_id == original.id
        assert txn.transaction_type == "transfer_in"
        assert txn.status == "completed"
        assert txn.location == "production_zone_3"
        assert (txn.previous_amount, txn.new_amount) == (5, 0)
        assert quantity_service.get_quantity("BOLT-M8", "logistics") == 20
        assert quantity_service.get_quantity("BOLT-M8", "production_zone_3") == 0

    def test_rectify_only_once(self, db_session):
        original = self._completed(db_session)
        transfer_service.rectify_transfer(original.id, SENDER, "first")
        db_session.commit()

        with pytest.raises(ConflictError, match="already rectified"):
            transfer_service.rectify_transfer(original.id, SENDER, "second")

    def test_pending_transfer_cannot_be_rectified(self, db_session):
        sent = transfer_service.send_transfer("BOLT-M8", 1, 3, SENDER)
        db_session.commit()
        with pytest.raises(ConflictError):
            transfer_service.rectify_transfer(sent.transaction.id, SENDER, "oops")


class TestAdjustmentsCountsWaste:
    def test_adjust_records_snapshot(self, db_session):
        _stock(db_session, "NUT-M8", 10)

        result = transfer_service.adjust_stock("NUT-M8", "logistics", -4, SENDER, "damaged", notes="box crushed")
        db_session.commit()

        txn = result.transaction
        assert txn.transaction_type == "adjustment"
        assert txn.status == "completed"
        assert (txn.previous_amount, txn.new_amount, txn.amount) == (10, 6, -4)
        assert txn.notes == "damaged - box crushed"

    def test_adjust_rejects_zero(self, db_session):
        with pytest.raises(ValidationError):
            transfer_service.adjust_stock("NUT-M8", "logistics", 0, SENDER, "nothing")

    def test_count_sets_counted_amount(self, db_session):
        _stock(db_session, "NUT-M8", 10)

        result = transfer_service.record_count("NUT-M8", "logistics", 7, SENDER)
        db_session.commit()

        assert quantity_service.get_quantity("NUT-M8", "logistics") == 7
        assert result.transaction.transaction_type == "count"
        assert (result.transaction.previous_amount, result.transaction.new_amount) == (10, 7)

    def test_initial_stock(self, db_session):
        result = transfer_service.record_count("SEAT-FR", "production_zone_8", 12, SENDER, initial=True)
        db_session.commit()
        assert result.transaction.transaction_type == "initial_stock"
        assert quantity_service.get_quantity("SEAT-FR", "production_zone_8") == 12

    def test_negative_count_rejected(self, db_session):
        with pytest.raises(ValidationError):
            transfer_service.record_count("SEAT-FR", "logistics", -1, SENDER)

    def test_waste_moves_to_waste_location(self, db_session):
        _stock(db_session, "BOLT-M8", 10, location="production_zone_3")

        result = transfer_service.report_waste(3, "BOLT-M8", 2, SENDER, "defect", "stripped thread")
        db_session.commit()

        assert quantity_service.get_quantity("BOLT-M8", "production_zone_3") == 8
        assert quantity_service.get_quantity("BOLT-M8", "waste_lost_zone_3") == 2
        assert result.transaction.reference == "DEFECT"
        assert result.transaction.amount == -2

    def test_waste_type_validated(self, db_session):
        with pytest.raises(ValidationError):
            transfer_service.report_waste(3, "BOLT-M8", 2, SENDER, "stolen", "gone")
