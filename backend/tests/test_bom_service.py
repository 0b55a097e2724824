"""
BOM tests.

Verifies:
- Expansion multiplies per-unit quantities and never writes
- Definitions are validated against the item master
- Zone / car-type mappings
"""

import pytest

from prodtrack.models import ZoneBOMMapping
from prodtrack.services import bom_service
from prodtrack.services.bom_service import ComponentInput
from prodtrack.validation import ConflictError, NotFoundError, ValidationError


class TestExpansion:
    def test_units_multiply_component_quantity(self, db_session, items):
        bom_service.create_bom("BRACKET", "Bracket set", [ComponentInput(sku="BOLT-M8", quantity=2)])
        db_session.commit()

        lines = bom_service.expand_bom(bom_service.get_bom("bracket"), 3)
        assert len(lines) == 1
        assert lines[0].sku == "BOLT-M8"
        assert lines[0].quantity == 6
        assert lines[0].component_quantity == 2
        assert lines[0].bom_code == "BRACKET"

    def test_expansion_keeps_component_order(self, db_session, seat_kit):
        lines = bom_service.expand_bom(seat_kit, 2)
        assert [(line.sku, line.quantity) for line in lines] == [
            ("SEAT-FR", 2),
            ("BOLT-M8", 8),
            ("NUT-M8", 8),
        ]

    @pytest.mark.parametrize("units", [0, -1, "x"])
    def test_units_must_be_positive(self, db_session, seat_kit, units):
        with pytest.raises(ValidationError):
            bom_service.expand_bom(seat_kit, units)

    def test_preview(self, db_session, seat_kit):
        preview = bom_service.preview_expansion("SEAT-KIT", "2")
        assert preview["units"] == 2
        assert preview["total_lines"] == 3
        assert preview["bom"]["total_components"] == 9

    def test_unknown_code(self, db_session):
        assert bom_service.find_bom("NOPE") is None
        with pytest.raises(NotFoundError):
            bom_service.get_bom("NOPE")


class TestDefinitions:
    def test_total_components(self, db_session, seat_kit):
        assert seat_kit.total_components == 9

    def test_empty_bom_rejected(self, db_session, items):
        with pytest.raises(ValidationError):
            bom_service.create_bom("EMPTY", "Nothing", [])

    def test_unknown_component_sku_rejected(self, db_session, items):
        with pytest.raises(ValidationError, match="not found in item master"):
            bom_service.create_bom("BAD", "Bad", [ComponentInput(sku="GHOST-1", quantity=1)])

    def test_non_positive_quantity_rejected(self, db_session, items):
        with pytest.raises(ValidationError):
            bom_service.create_bom("BAD", "Bad", [ComponentInput(sku="BOLT-M8", quantity=0)])

    def test_duplicate_component_rejected(self, db_session, items):
        with pytest.raises(ValidationError, match="listed twice"):
            bom_service.create_bom("BAD", "Bad", [
                ComponentInput(sku="BOLT-M8", quantity=1),
                ComponentInput(sku="bolt-m8", quantity=2),
            ])

    def test_duplicate_code_conflicts(self, db_session, seat_kit):
        with pytest.raises(ConflictError):
            bom_service.create_bom("seat-kit", "Again", [ComponentInput(sku="BOLT-M8", quantity=1)])

    def test_update_replaces_components(self, db_session, seat_kit):
        bom_service.update_bom("SEAT-KIT", components=[
            ComponentInput(sku="BOLT-M8", quantity=6),
            ComponentInput(sku="SEAT-FR", quantity=1),
        ])
        db_session.commit()

        bom = bom_service.get_bom("SEAT-KIT")
        assert [c.sku for c in bom.components] == ["BOLT-M8", "SEAT-FR"]
        assert bom.total_components == 7

    def test_delete_removes_mappings(self, db_session, seat_kit):
        bom_service.set_zone_mapping(4, "Standard", "SEAT-KIT")
        db_session.commit()

        bom_service.delete_bom("SEAT-KIT")
        db_session.commit()

        assert bom_service.find_bom("SEAT-KIT") is None
        assert db_session.query(ZoneBOMMapping).count() == 0

    def test_search_and_reverse_lookup(self, db_session, seat_kit):
        assert [b.bom_code for b in bom_service.search_boms("mounting")] == ["SEAT-KIT"]
        assert [b.bom_code for b in bom_service.get_boms_containing_sku("nut-m8")] == ["SEAT-KIT"]
        assert bom_service.get_boms_containing_sku("GHOST-1") == []


class TestZoneMappings:
    def test_set_mapping_is_idempotent(self, db_session, seat_kit):
        bom_service.set_zone_mapping(4, "Standard", "seat-kit")
        bom_service.set_zone_mapping(4, "Standard", "SEAT-KIT", consume_on_completion=False)
        db_session.commit()

        mappings = bom_service.get_zone_mappings(4, "Standard")
        assert len(mappings) == 1
        assert mappings[0].consume_on_completion is False
        assert bom_service.get_zone_mappings(4, "Standard", consuming_only=True) == []

    def test_mapping_needs_existing_bom(self, db_session):
        with pytest.raises(NotFoundError):
            bom_service.set_zone_mapping(4, "Standard", "NOPE")

    def test_mapping_needs_valid_zone(self, db_session, seat_kit):
        with pytest.raises(ValidationError):
            bom_service.set_zone_mapping(99, "Standard", "SEAT-KIT")


class TestItemMaster:
    def test_upsert_updates_existing(self, db_session, items):
        bom_service.upsert_item("bolt-m8", "M8 hex bolt", unit="pcs", category="fasteners")
        db_session.commit()

        item = bom_service.get_item("BOLT-M8")
        assert item.name == "M8 hex bolt"
        assert item.category == "fasteners"
