"""
Tests for the entity store mutator API.

Every test runs against an in-memory backed store (see conftest.py).
"""

import json
import pytest
from datetime import date
from decimal import Decimal

from budgetblocks.config import Settings
from budgetblocks.models import StoreEventType
from budgetblocks.services.storage import InMemoryStateStorage, StorageError
from budgetblocks.store import EntityStore, ImportDataError
from budgetblocks.validation import ValidationFailedError


def bill_block(store, base_id, day=20, amount="40", executed=False):
    row = {"fromBaseId": base_id, "amount": Decimal(amount), "source": "Landlord"}
    if executed:
        row["executed"] = True
    return store.add_block({
        "type": "Fixed Bill",
        "title": "Rent",
        "date": date(2025, 1, day),
        "rows": [row],
    })


def event_types(event_logger):
    return [event.event_type for event in event_logger.recent]


def balance(store, base_id):
    return store.get_base(base_id).balance


class TestRowExecution:
    """Tests for executing and undoing rows."""

    def test_fixed_bill_execute_and_undo(self, store, base_a):
        """Test a fixed bill moves A from 100 to 60 and back."""
        block = bill_block(store, base_a.id)
        row_id = block.rows[0].id

        assert store.execute_row(block.id, row_id) is True
        assert balance(store, base_a.id) == Decimal("60")
        assert store.get_block(block.id).rows[0].executed is True

        assert store.undo_execute_row(block.id, row_id) is True
        assert balance(store, base_a.id) == Decimal("100")
        assert store.get_block(block.id).rows[0].executed is False

    def test_round_trip_keeps_every_digit(self, store):
        """Test execute then undo restores a high-precision balance exactly."""
        opening = Decimal("0.1234567890123456789012345678")
        base = store.add_base({"name": "Exact", "type": "Checking", "balance": opening})
        block = bill_block(store, base.id, amount="1000")
        store.execute_row(block.id, block.rows[0].id)
        store.undo_execute_row(block.id, block.rows[0].id)
        assert str(balance(store, base.id)) == str(opening)

    def test_execute_is_idempotent(self, store, base_a):
        """Test executing twice applies the effect once."""
        block = bill_block(store, base_a.id)
        row_id = block.rows[0].id
        store.execute_row(block.id, row_id)
        assert store.execute_row(block.id, row_id) is False
        assert balance(store, base_a.id) == Decimal("60")

    def test_undo_unexecuted_row(self, store, base_a):
        """Test undoing a row that never ran changes nothing."""
        block = bill_block(store, base_a.id)
        assert store.undo_execute_row(block.id, block.rows[0].id) is False
        assert balance(store, base_a.id) == Decimal("100")

    def test_flow_moves_between_bases(self, store, base_a, base_b):
        """Test a flow row debits one base and credits the other."""
        block = store.add_block({
            "type": "Flow",
            "title": "Save",
            "date": date(2025, 1, 5),
            "rows": [{"fromBaseId": base_a.id, "toBaseId": base_b.id, "amount": Decimal("25")}],
        })
        store.execute_row(block.id, block.rows[0].id)
        assert balance(store, base_a.id) == Decimal("75")
        assert balance(store, base_b.id) == Decimal("525")

    def test_added_executed_rows_apply_once(self, store, base_a, event_logger):
        """Test rows created as executed go through the ledger."""
        block = bill_block(store, base_a.id, executed=True)
        assert block.rows[0].executed is True
        assert balance(store, base_a.id) == Decimal("60")
        assert StoreEventType.ROW_EXECUTED in event_types(event_logger)

    def test_stale_row(self, store, base_a, event_logger):
        """Test unknown blocks or rows are silent no-ops."""
        block = bill_block(store, base_a.id)
        assert store.execute_row("nope", block.rows[0].id) is False
        assert store.execute_row(block.id, "nope") is False
        assert event_logger.recent[-1].event_type == StoreEventType.REFERENCE_MISSING


class TestBlocks:
    """Tests for block mutators."""

    def test_block_filed_and_refiled_on_date_change(self, store, january_bands):
        """Test a date change moves the block from b2 to b1."""
        b1, b2 = january_bands
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 1, 20)})
        assert block.band_id == b2.id

        updated = store.update_block(block.id, {"date": date(2025, 1, 5)})
        assert updated.band_id == b1.id

    def test_block_outside_bands(self, store, january_bands, event_logger):
        """Test a block with no covering band is unassigned."""
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 3, 1)})
        assert block.band_id is None
        assert [b.id for b in store.list_unassigned_blocks()] == [block.id]
        assert StoreEventType.BLOCK_UNASSIGNED in event_types(event_logger)

    def test_band_id_in_payload_ignored(self, store, january_bands):
        """Test the band is always derived from the date."""
        b1, b2 = january_bands
        block = store.add_block({
            "type": "Income",
            "title": "Pay",
            "date": date(2025, 1, 20),
            "bandId": b1.id,
        })
        assert block.band_id == b2.id

    def test_delete_block_reverses_and_undo_reapplies(self, store, base_a):
        """Test delete behaves like manual undo, and undo re-executes."""
        block = bill_block(store, base_a.id, executed=True)
        history_id = store.delete_block(block.id)
        assert balance(store, base_a.id) == Decimal("100")
        assert store.get_block(block.id) is None

        assert store.undo_delete(history_id) is True
        restored = store.get_block(block.id)
        assert restored.rows[0].executed is True
        assert balance(store, base_a.id) == Decimal("60")

    def test_restored_block_refiled_when_band_gone(self, store, january_bands):
        """Test a restored block whose band was deleted is re-filed."""
        b1, b2 = january_bands
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 1, 20)})
        history_id = store.delete_block(block.id)
        store.delete_band(b2.id)
        store.undo_delete(history_id)
        assert store.get_block(block.id).band_id is None

    def test_removed_executed_row_reversed(self, store, base_a):
        """Test dropping an executed row from a block reverses it."""
        block = bill_block(store, base_a.id, executed=True)
        store.update_block(block.id, {"rows": []})
        assert balance(store, base_a.id) == Decimal("100")

    def test_row_flags_requested_on_update(self, store, base_a):
        """Test an explicit executed flag in an update goes through the ledger."""
        block = bill_block(store, base_a.id)
        row = block.rows[0].model_dump()
        row["executed"] = True
        updated = store.update_block(block.id, {"rows": [row]})
        assert updated.rows[0].executed is True
        assert balance(store, base_a.id) == Decimal("60")

    def test_row_without_flag_keeps_stored_state(self, store, base_a, event_logger):
        """Test editing an executed row's amount keeps it executed."""
        block = bill_block(store, base_a.id, executed=True)
        row_id = block.rows[0].id
        store.update_block(block.id, {
            "rows": [{"id": row_id, "fromBaseId": base_a.id, "amount": Decimal("50")}],
        })
        assert store.get_block(block.id).rows[0].executed is True
        assert balance(store, base_a.id) == Decimal("60")
        assert StoreEventType.EXECUTED_AMOUNT_EDITED in event_types(event_logger)

        # Undo reverses the edited amount
        store.undo_execute_row(block.id, row_id)
        assert balance(store, base_a.id) == Decimal("110")

    def test_rejected_block_changes_nothing(self, store, base_a, event_logger):
        """Test a row pointing at an unknown base is rejected."""
        with pytest.raises(ValidationFailedError):
            store.add_block({
                "type": "Fixed Bill",
                "title": "Rent",
                "date": date(2025, 1, 1),
                "rows": [{"fromBaseId": "missing", "amount": Decimal("5")}],
            })
        assert store.list_blocks() == []
        assert event_logger.recent[-1].event_type == StoreEventType.VALIDATION_FAILED

    def test_delete_block_matches_manual_undo(self, store, base_a, base_b):
        """Test deleting multi-row blocks leaves the balances that undoing each row would."""
        flow = store.add_block({
            "type": "Flow",
            "title": "Split",
            "date": date(2025, 1, 5),
            "rows": [
                {"fromBaseId": base_a.id, "toBaseId": base_b.id, "amount": Decimal("30"), "executed": True},
                {"fromBaseId": base_b.id, "toBaseId": base_a.id, "amount": Decimal("7")},
            ],
        })
        income = store.add_block({
            "type": "Income",
            "title": "Pay",
            "date": date(2025, 1, 5),
            "rows": [
                {"toBaseId": base_a.id, "amount": Decimal("250.55"), "executed": True},
                {"toBaseId": base_b.id, "amount": Decimal("12")},
            ],
        })
        assert balance(store, base_a.id) == Decimal("320.55")
        assert balance(store, base_b.id) == Decimal("530")
        twin = EntityStore(state=store.snapshot())

        for block in (flow, income):
            store.delete_block(block.id)
            for row in block.rows:
                twin.undo_execute_row(block.id, row.id)
            twin.delete_block(block.id)

        for base_id in (base_a.id, base_b.id):
            assert balance(store, base_id) == balance(twin, base_id)
        assert balance(store, base_a.id) == Decimal("100")
        assert balance(store, base_b.id) == Decimal("500")

    def test_move_block_to_band(self, store, january_bands):
        """Test manual filing, unfiling and a missing target band."""
        b1, b2 = january_bands
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 1, 20)})
        assert store.move_block_to_band(block.id, b1.id).band_id == b1.id
        assert store.move_block_to_band(block.id, "nope") is None
        assert store.get_block(block.id).band_id == b1.id
        assert store.move_block_to_band(block.id, None).band_id is None


class TestBases:
    """Tests for base mutators."""

    def test_add_base_defaults_currency(self, store):
        """Test bases get the default currency."""
        base = store.add_base({"name": "Wallet", "type": "Vault"})
        assert base.currency == "USD"
        assert base.balance == Decimal("0")

    def test_update_base_refuses_balance_change(self, store, base_a):
        """Test balance edits must go through the ledger."""
        with pytest.raises(ValidationFailedError):
            store.update_base(base_a.id, {"balance": Decimal("5")})
        renamed = store.update_base(base_a.id, {"name": "Main", "balance": Decimal("100")})
        assert renamed.name == "Main"
        assert renamed.balance == Decimal("100")

    def test_delete_base_leaves_dangling_rows(self, store, base_a, base_b):
        """Test deleting a base keeps row references and other balances."""
        block = bill_block(store, base_a.id, executed=True)
        store.delete_base(base_a.id)

        row = store.get_block(block.id).rows[0]
        assert row.from_base_id == base_a.id
        assert row.executed is True
        assert balance(store, base_b.id) == Decimal("500")

        # Undoing against the missing base moves nothing but succeeds
        assert store.undo_execute_row(block.id, row.id) is True
        assert balance(store, base_b.id) == Decimal("500")

    def test_undo_delete_is_single_use(self, store, base_a, event_logger):
        """Test the second undo of the same item returns False."""
        history_id = store.delete_base(base_a.id)
        assert store.undo_delete(history_id) is True
        assert balance(store, base_a.id) == Decimal("100")
        assert store.undo_delete(history_id) is False
        assert event_logger.recent[-1].event_type == StoreEventType.UNDO_FAILED

    def test_reorder_bases(self, store, base_a, base_b):
        """Test listed ids come first and sort orders are renumbered."""
        store.reorder_bases([base_b.id])
        bases = store.list_bases()
        assert [b.id for b in bases] == [base_b.id, base_a.id]
        assert [b.sort_order for b in bases] == [0, 1]

    def test_toggle_group_by_type(self, store):
        """Test the grouping preference flips."""
        assert store.toggle_group_by_type() is True
        assert store.group_bases_by_type is True
        assert store.toggle_group_by_type() is False

    def test_returned_entities_are_copies(self, store, base_a):
        """Test editing a returned entity does not touch the store."""
        base = store.get_base(base_a.id)
        base.name = "Changed"
        assert store.get_base(base_a.id).name == "A"


class TestBands:
    """Tests for band mutators and generators."""

    def test_add_band_does_not_refile(self, store):
        """Test existing blocks stay unassigned until reassigned."""
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 1, 20)})
        band = store.add_band({
            "title": "January",
            "startDate": date(2025, 1, 1),
            "endDate": date(2025, 1, 31),
        })
        assert band.display_month == "2025-01"
        assert store.get_block(block.id).band_id is None

        assert store.reassign_blocks_to_bands() == 1
        assert store.get_block(block.id).band_id == band.id

    def test_add_band_rejects_inverted_range(self, store):
        """Test end before start is rejected."""
        with pytest.raises(ValidationFailedError):
            store.add_band({
                "title": "Bad",
                "start_date": date(2025, 1, 10),
                "end_date": date(2025, 1, 1),
            })
        assert store.list_bands() == []

    def test_update_band_refiles_blocks(self, store, january_bands):
        """Test moving a boundary re-files the blocks it uncovers."""
        b1, b2 = january_bands
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 1, 20)})
        store.update_band(b2.id, {"start_date": date(2025, 1, 21)})
        assert store.get_block(block.id).band_id is None

    def test_update_band_rule_refreshes_display_month(self, store, january_bands):
        """Test shift-plus-1 moves the band 30 days past its end."""
        b1, b2 = january_bands
        updated = store.update_band(b2.id, {"attributionRule": "shift-plus-1"})
        assert updated.display_month == "2025-03"

    def test_delete_band_and_undo(self, store, january_bands):
        """Test band delete unassigns its blocks and undo files them back."""
        b1, b2 = january_bands
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 1, 20)})
        history_id = store.delete_band(b2.id)
        assert store.get_block(block.id).band_id is None

        assert store.undo_delete(history_id) is True
        assert store.get_band(b2.id) is not None
        assert store.get_block(block.id).band_id == b2.id

    def test_archive_band(self, store, january_bands):
        """Test archived bands are hidden unless asked for."""
        b1, b2 = january_bands
        store.archive_band(b1.id)
        assert [b.id for b in store.list_bands()] == [b2.id]
        assert len(store.list_bands(include_archived=True)) == 2
        store.unarchive_band(b1.id)
        assert len(store.list_bands()) == 2

    def test_generate_monthly_bands(self, store):
        """Test generated bands file existing blocks."""
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 1, 20)})
        bands = store.generate_monthly_bands(date(2025, 1, 15), months_before=0, months_after=0)
        assert [b.title for b in bands] == ["January 2025"]
        assert store.get_block(block.id).band_id == bands[0].id

    def test_generate_bands_from_schedules(self, store, event_logger):
        """Test schedule paydays become consecutive bands."""
        store.add_schedule({"name": "Salary", "frequency": "Monthly", "anchorDay": 15})
        block = store.add_block({"type": "Income", "title": "Pay", "date": date(2025, 1, 20)})
        bands = store.generate_bands_from_schedules(date(2025, 1, 1), date(2025, 2, 28))
        assert [(b.start_date, b.end_date) for b in bands] == [
            (date(2025, 1, 1), date(2025, 1, 14)),
            (date(2025, 1, 15), date(2025, 2, 14)),
            (date(2025, 2, 15), date(2025, 2, 28)),
        ]
        assert store.get_block(block.id).band_id == bands[1].id
        assert StoreEventType.BANDS_GENERATED in event_types(event_logger)

    def test_generate_biweekly_bands(self, store):
        """Test biweekly generation creates ordered bands."""
        bands = store.generate_biweekly_bands(date(2025, 1, 1), count=3)
        assert [b.order for b in bands] == [0, 1, 2]


class TestLibrary:
    """Tests for templates."""

    def test_templates_never_executed_or_filed(self, store, base_a, january_bands):
        """Test saved templates drop execution state and band."""
        template = store.save_to_library({
            "type": "Fixed Bill",
            "title": "Rent",
            "date": date(2025, 1, 20),
            "bandId": january_bands[1].id,
            "rows": [{"fromBaseId": base_a.id, "amount": Decimal("40"), "executed": True}],
        })
        assert template.is_template is True
        assert template.band_id is None
        assert template.rows[0].executed is False
        assert balance(store, base_a.id) == Decimal("100")

    def test_duplicate_template(self, store):
        """Test duplicates get a new id, title and row ids."""
        template = store.save_to_library({
            "type": "Income",
            "title": "Pay",
            "date": date(2025, 1, 1),
            "rows": [{"amount": Decimal("10")}],
        })
        duplicate = store.duplicate_template(template.id)
        assert duplicate.title == "Pay (Copy)"
        assert duplicate.id != template.id
        assert duplicate.rows[0].id != template.rows[0].id
        assert len(store.list_library()) == 2

    def test_create_block_from_template(self, store, january_bands):
        """Test a template becomes a filed block with fresh rows."""
        template = store.save_to_library({
            "type": "Income",
            "title": "Pay",
            "date": date(2025, 1, 1),
            "rows": [{"amount": Decimal("10")}],
        })
        block = store.create_block_from_template(template.id, date(2025, 1, 20))
        assert block.band_id == january_bands[1].id
        assert block.is_template is False
        assert block.rows[0].date == date(2025, 1, 20)
        assert block.rows[0].id != template.rows[0].id
        assert store.create_block_from_template("nope") is None

    def test_template_with_unknown_base_rejected(self, store):
        """Test a template cannot be saved pointing at a missing base."""
        with pytest.raises(ValidationFailedError):
            store.save_to_library({
                "type": "Fixed Bill",
                "title": "Rent",
                "date": date(2025, 1, 1),
                "rows": [{"fromBaseId": "ghost", "amount": Decimal("40")}],
            })
        assert store.list_library() == []

    def test_template_keeps_base_deleted_later(self, store, base_a, january_bands):
        """Test a template whose base was deleted can still be edited and used."""
        template = store.save_to_library({
            "type": "Fixed Bill",
            "title": "Rent",
            "date": date(2025, 1, 1),
            "rows": [{"fromBaseId": base_a.id, "amount": Decimal("40")}],
        })
        store.delete_base(base_a.id)

        renamed = store.update_template(template.id, {"title": "Old rent"})
        assert renamed.rows[0].from_base_id == base_a.id
        block = store.create_block_from_template(template.id, date(2025, 1, 20))
        assert block.rows[0].from_base_id == base_a.id
        assert block.rows[0].id != template.rows[0].id

        # A newly typed missing base is still refused
        with pytest.raises(ValidationFailedError):
            store.update_template(template.id, {"rows": [{"fromBaseId": "ghost", "amount": Decimal("1")}]})

    def test_remove_from_library_and_undo(self, store):
        """Test removed templates can be restored."""
        template = store.save_to_library({"type": "Flow", "title": "Split", "date": date(2025, 1, 1)})
        history_id = store.remove_from_library(template.id)
        assert store.get_template(template.id) is None
        store.undo_delete(history_id)
        assert store.get_template(template.id).title == "Split"


class TestFixedBills:
    """Tests for the bills library."""

    def test_find_duplicate_only_active(self, store, base_a):
        """Test inactive bills are not reported as duplicates."""
        bill = store.add_fixed_bill({
            "vendor": "Power",
            "fromBaseId": base_a.id,
            "defaultAmount": Decimal("80"),
            "dueDay": 20,
        })
        assert store.find_duplicate_fixed_bill("", "Power", base_a.id, 20).id == bill.id
        store.update_fixed_bill(bill.id, {"active": False})
        assert store.find_duplicate_fixed_bill("", "Power", base_a.id, 20) is None
        assert store.list_fixed_bills() == []
        assert len(store.list_fixed_bills(include_inactive=True)) == 1

    def test_rows_from_fixed_bills(self, store, base_a, january_bands):
        """Test bills are dated on their due day, or the band start."""
        b1, b2 = january_bands
        bill = store.add_fixed_bill({
            "vendor": "Power",
            "fromBaseId": base_a.id,
            "defaultAmount": Decimal("80"),
            "dueDay": 20,
        })
        rows = store.rows_from_fixed_bills(b2.id, [bill.id])
        assert rows[0].date == date(2025, 1, 20)
        assert rows[0].source == "Power"
        assert rows[0].amount == Decimal("80")
        assert store.rows_from_fixed_bills(b1.id, [bill.id])[0].date == date(2025, 1, 1)
        assert store.rows_from_fixed_bills("nope", [bill.id]) == []

    def test_save_rows_as_fixed_bills(self, store, base_a):
        """Test rows create bills, and saving again updates them."""
        block = store.add_block({
            "type": "Fixed Bill",
            "title": "Utilities",
            "date": date(2025, 1, 31),
            "rows": [{"fromBaseId": base_a.id, "amount": Decimal("30"), "source": "Water"}],
        })
        row_id = block.rows[0].id
        assert store.save_rows_as_fixed_bills(block.id, [row_id]) == (1, 0)
        bill = store.list_fixed_bills()[0]
        assert bill.vendor == "Water"
        assert bill.due_day == "Last"

        assert store.save_rows_as_fixed_bills(block.id, [row_id]) == (0, 1)
        assert len(store.list_fixed_bills()) == 1

    def test_bill_with_unknown_base_rejected(self, store, base_a):
        """Test bills cannot be saved or edited to point at a missing base."""
        with pytest.raises(ValidationFailedError):
            store.add_fixed_bill({"vendor": "Power", "fromBaseId": "ghost"})
        bill = store.add_fixed_bill({"vendor": "Power", "fromBaseId": base_a.id})
        with pytest.raises(ValidationFailedError):
            store.update_fixed_bill(bill.id, {"fromBaseId": "ghost"})
        assert store.get_fixed_bill(bill.id).from_base_id == base_a.id

    def test_bill_rows_drop_deleted_base(self, store, base_a, january_bands, event_logger):
        """Test rows drafted from a bill whose base is gone can be added."""
        bill = store.add_fixed_bill({
            "vendor": "Power",
            "fromBaseId": base_a.id,
            "defaultAmount": Decimal("80"),
            "dueDay": 20,
        })
        store.delete_base(base_a.id)
        assert store.update_fixed_bill(bill.id, {"notes": "old account"}).from_base_id == base_a.id

        rows = store.rows_from_fixed_bills(january_bands[1].id, [bill.id])
        assert rows[0].from_base_id is None
        assert event_logger.recent[-1].event_type == StoreEventType.REFERENCE_MISSING

        block = store.add_block({
            "type": "Fixed Bill",
            "title": "Bills",
            "date": date(2025, 1, 20),
            "rows": rows,
        })
        assert block.rows[0].source == "Power"

    def test_delete_fixed_bill_and_undo(self, store):
        """Test deleted bills can be restored."""
        bill = store.add_fixed_bill({"vendor": "Gym"})
        history_id = store.delete_fixed_bill(bill.id)
        assert store.get_fixed_bill(bill.id) is None
        store.undo_delete(history_id)
        assert store.get_fixed_bill(bill.id).vendor == "Gym"


class TestOwnersAndCategories:
    """Tests for owner and category entities."""

    def test_delete_owner_reassigns_and_undo_restores(self, store):
        """Test rows in blocks and templates follow the reassignment."""
        alex = store.add_owner("Alex")
        sam = store.add_owner("Sam")
        block = store.add_block({
            "type": "Income",
            "title": "Pay",
            "date": date(2025, 1, 1),
            "rows": [{"owner": alex.id, "amount": Decimal("10")}],
        })
        template = store.save_to_library({
            "type": "Income",
            "title": "Pay",
            "date": date(2025, 1, 1),
            "rows": [{"owner": alex.id}],
        })

        history_id = store.delete_owner(alex.id, reassign_to=sam.id)
        assert store.get_block(block.id).rows[0].owner == sam.id
        assert store.get_template(template.id).rows[0].owner == sam.id

        store.undo_delete(history_id)
        assert [o.name for o in store.list_owners()] == ["Alex", "Sam"]
        assert store.get_block(block.id).rows[0].owner == alex.id
        assert store.get_template(template.id).rows[0].owner == alex.id

    def test_delete_owner_without_target(self, store):
        """Test rows lose their owner when nobody takes over."""
        alex = store.add_owner("Alex")
        block = store.add_block({
            "type": "Income",
            "title": "Pay",
            "date": date(2025, 1, 1),
            "rows": [{"owner": alex.id}],
        })
        store.delete_owner(alex.id)
        assert store.get_block(block.id).rows[0].owner == ""

    def test_delete_owner_unknown_target(self, store):
        """Test reassigning to a missing owner is rejected."""
        alex = store.add_owner("Alex")
        with pytest.raises(ValidationFailedError):
            store.delete_owner(alex.id, reassign_to="nope")
        assert len(store.list_owners()) == 1

    def test_delete_category_and_undo(self, store):
        """Test category delete clears rows and undo puts it back."""
        rent = store.add_category("Rent")
        block = store.add_block({
            "type": "Fixed Bill",
            "title": "Rent",
            "date": date(2025, 1, 1),
            "rows": [{"category": rent.id}],
        })
        history_id = store.delete_category(rent.id)
        assert store.get_block(block.id).rows[0].category is None
        store.undo_delete(history_id)
        assert store.get_block(block.id).rows[0].category == rent.id

    def test_category_colors_and_reorder(self, store):
        """Test colours are handed out in turn and reorder renumbers."""
        first = store.add_category("Rent")
        second = store.add_category("Food")
        assert first.color != second.color
        store.reorder_categories([second.id, first.id])
        assert [c.name for c in store.list_categories()] == ["Food", "Rent"]


class TestMasterListsAndPreferences:
    """Tests for master lists and template preferences."""

    def test_add_to_master_list(self, store):
        """Test values are stripped and deduplicated."""
        assert store.add_to_master_list("vendors", " Acme ") is True
        assert store.add_to_master_list("vendors", "Acme") is False
        assert store.master_list("vendors") == ["Acme"]

    def test_camel_case_list_names(self, store):
        """Test persisted list names are accepted."""
        store.add_to_master_list("baseTypes", "Crypto")
        assert "Crypto" in store.master_list("base_types")

    def test_unknown_master_list(self, store):
        """Test unknown lists are rejected."""
        with pytest.raises(ValidationFailedError):
            store.add_to_master_list("planets", "Mars")

    def test_update_template_preference(self, store):
        """Test the per-type template offer flag."""
        preferences = store.update_template_preference("Income", True)
        assert preferences.dont_offer_for_income is True
        assert store.template_preferences.dont_offer_for_income is True
        assert store.template_preferences.dont_offer_for_flow is False


class TestUndoHistory:
    """Tests for the bounded undo history."""

    def test_history_limit(self, monkeypatch, storage, event_logger):
        """Test the oldest items drop off past the configured limit."""
        monkeypatch.setenv("UNDO_HISTORY_LIMIT", "2")
        store = EntityStore(storage=storage, settings=Settings(), logger=event_logger)
        ids = [store.add_schedule({"name": f"S{i}", "frequency": "Monthly", "anchorDay": 1}).id for i in range(3)]
        history_ids = [store.delete_schedule(schedule_id) for schedule_id in ids]

        assert [item.id for item in store.undo_history] == history_ids[1:]
        assert store.undo_delete(history_ids[0]) is False

    def test_clear_undo_history(self, store, base_a):
        """Test clearing reports how many items went."""
        store.delete_base(base_a.id)
        assert store.clear_undo_history() == 1
        assert store.undo_history == []


class TestImportExport:
    """Tests for JSON import and export."""

    def test_export_and_import(self, store, base_a, storage):
        """Test an export restores into a fresh store without history."""
        bill_block(store, base_a.id)
        store.delete_base(base_a.id)
        text = store.export_data()
        assert "undoHistory" not in json.loads(text)

        other = EntityStore(storage=InMemoryStateStorage(storage_key="other"))
        other.import_data(text)
        assert len(other.list_blocks()) == 1
        assert other.list_bases() == []
        assert other.undo_history == []

    def test_malformed_import_keeps_state(self, store, base_a):
        """Test invalid input raises and leaves the state alone."""
        with pytest.raises(ImportDataError):
            store.import_data("{not json")
        with pytest.raises(ImportDataError):
            store.import_data('{"bases": "oops"}')
        assert [b.id for b in store.list_bases()] == [base_a.id]

    def test_deeply_nested_import_keeps_state(self, store, base_a, event_logger):
        """Test input nested too deep to parse is refused like any bad import."""
        with pytest.raises(ImportDataError):
            store.import_data("[" * 100000 + "]" * 100000)
        assert [b.id for b in store.list_bases()] == [base_a.id]
        assert event_logger.recent[-1].event_type == StoreEventType.IMPORT_FAILED

    def test_missing_collections_become_empty(self, store, base_a):
        """Test collections missing from the import are emptied."""
        store.import_data('{"vendors": ["Acme"]}')
        assert store.list_bases() == []
        assert store.master_list("vendors") == ["Acme"]
        assert store.master_list("base_types") == []

    def test_import_accepts_persisted_document(self, store, base_a, storage):
        """Test a full persisted document can be imported."""
        document = storage.items[storage.storage_key]
        other = EntityStore()
        other.import_data(document)
        assert other.get_base(base_a.id).name == "A"

    def test_clear_all(self, store, base_a):
        """Test everything resets to initial values."""
        store.add_to_master_list("vendors", "Acme")
        store.clear_all()
        assert store.list_bases() == []
        assert store.master_list("vendors") == []
        assert "Checking" in store.master_list("base_types")


class TestTransactions:
    """Tests for copy-on-write mutations."""

    def test_untouched_collections_are_shared(self, store, base_a, base_b):
        """Test a row execution copies bases and blocks but not the library or history."""
        template = store.save_to_library({"type": "Income", "title": "Pay", "date": date(2025, 1, 1)})
        store.delete_base(base_b.id)
        block = bill_block(store, base_a.id)

        bases_before = store._state.bases
        stored_template = store._state.library[template.id]
        history_item = store._state.undo_history[0]
        store.execute_row(block.id, block.rows[0].id)

        assert bases_before[base_a.id].balance == Decimal("100")
        assert balance(store, base_a.id) == Decimal("60")
        assert store._state.library[template.id] is stored_template
        assert store._state.undo_history[0] is history_item

    def test_error_inside_transaction_discards_changes(self, store, base_a, monkeypatch):
        """Test a failure half way through a mutation leaves the state as it was."""
        def fail(state, block):
            state.bases[base_a.id].name = "Changed"
            raise RuntimeError("boom")

        monkeypatch.setattr(store, "_file_block", fail)
        with pytest.raises(RuntimeError):
            bill_block(store, base_a.id, executed=True)
        assert store.get_base(base_a.id).name == "A"
        assert balance(store, base_a.id) == Decimal("100")
        assert store.list_blocks() == []


class FailingStorage(InMemoryStateStorage):

    def save(self, state):
        raise StorageError("disk full")


class TestPersistence:
    """Tests for write-through persistence."""

    def test_every_mutation_saves(self, store, storage, base_a):
        """Test a successful mutation writes the full state."""
        assert storage.save_count == 1
        store.toggle_group_by_type()
        assert storage.save_count == 2

    def test_rejected_mutation_does_not_save(self, store, storage, base_a):
        """Test nothing is written when validation fails."""
        with pytest.raises(ValidationFailedError):
            store.update_base(base_a.id, {"balance": Decimal("1")})
        assert storage.save_count == 1

    def test_from_storage(self, store, storage, base_a):
        """Test a new store picks up the persisted state and history."""
        history_id = store.delete_base(base_a.id)
        reloaded = EntityStore.from_storage(storage)
        assert reloaded.undo_delete(history_id) is True
        assert reloaded.get_base(base_a.id).balance == Decimal("100")

    def test_load_with_nothing_stored(self, storage):
        """Test loading empty storage keeps the fresh state."""
        store = EntityStore(storage=storage)
        assert store.load() is False
        assert store.list_bases() == []

    def test_save_failure_is_swallowed(self, event_logger):
        """Test a failing save keeps the mutation and logs the failure."""
        store = EntityStore(storage=FailingStorage(), logger=event_logger)
        base = store.add_base({"name": "A", "type": "Checking"})
        assert store.get_base(base.id) is not None
        assert StoreEventType.SAVE_FAILED in event_types(event_logger)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
