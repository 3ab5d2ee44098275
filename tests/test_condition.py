import pytest

from circulation.models import DamageLevel, RecordStatus, RecordType


def _counts(lib, item_id):
    item = lib.get_item(item_id).unwrap()
    return item.total_copies, item.available_copies


# ------------------------- Lost ------------------------- #
def test_report_lost_withdraws_a_copy(lib, make_item):
    item = make_item(copies=2)

    record = lib.report_lost(item.item_id, "front desk", "not on shelf", last_seen_location="Aisle 4").unwrap()

    assert record.type is RecordType.LOST
    assert record.status is RecordStatus.REPORTED
    assert record.withdrawn
    assert record.last_seen_location == "Aisle 4"
    assert _counts(lib, item.item_id) == (2, 1)

def test_report_lost_without_shelf_copy(lib, make_item, make_patron):
    item = make_item(copies=1)
    lib.issue(make_patron().patron_id, item.item_id).unwrap()
    assert lib.report_lost(item.item_id, "desk").error_code == "OutOfStock"
    assert lib.lost_damaged_records().unwrap() == []

def test_report_requires_reporter(lib, make_item):
    assert lib.report_lost(make_item().item_id, "  ").error_code == "InvalidArgument"

def test_found_copy_returns_to_shelf(lib, make_item):
    item = make_item(copies=1)
    record = lib.report_lost(item.item_id, "desk").unwrap()
    lib.update_lost_damaged_status(record.record_id, RecordStatus.INVESTIGATING).unwrap()

    found = lib.update_lost_damaged_status(record.record_id, RecordStatus.FOUND).unwrap()

    assert found.status is RecordStatus.FOUND
    assert found.resolved_at is not None
    assert _counts(lib, item.item_id) == (1, 1)

def test_closing_lost_report_writes_copy_off(lib, make_item):
    item = make_item(copies=3)
    record = lib.report_lost(item.item_id, "desk").unwrap()

    lib.update_lost_damaged_status(record.record_id, RecordStatus.CLOSED).unwrap()

    assert _counts(lib, item.item_id) == (2, 2)
    assert lib.audit_item(item.item_id).unwrap().consistent

def test_lost_report_cannot_be_repaired(lib, make_item):
    record = lib.report_lost(make_item().item_id, "desk").unwrap()
    outcome = lib.update_lost_damaged_status(record.record_id, RecordStatus.REPAIRED)
    assert outcome.error_code == "InvalidTransition"


# ------------------------- Damaged ------------------------- #
def test_minor_repairable_damage_keeps_copy_circulating(lib, make_item):
    item = make_item(copies=2)

    record = lib.report_damaged(item.item_id, "desk", DamageLevel.MINOR, repairable=True, repair_cost="4.5").unwrap()

    assert not record.withdrawn
    assert record.damage_level is DamageLevel.MINOR
    assert str(record.repair_cost) == "4.50"
    assert _counts(lib, item.item_id) == (2, 2)

    lib.update_lost_damaged_status(record.record_id, RecordStatus.REPAIRED).unwrap()
    assert _counts(lib, item.item_id) == (2, 2)

@pytest.mark.parametrize("level, repairable", [
    (DamageLevel.SEVERE, True),
    (DamageLevel.MODERATE, False),
])
def test_severe_or_unrepairable_damage_withdraws(lib, make_item, level, repairable):
    item = make_item(copies=2)
    record = lib.report_damaged(item.item_id, "desk", level, repairable=repairable).unwrap()
    assert record.withdrawn
    assert _counts(lib, item.item_id) == (2, 1)

def test_repaired_copy_is_restored(lib, make_item):
    item = make_item(copies=1)
    record = lib.report_damaged(item.item_id, "desk", DamageLevel.SEVERE).unwrap()
    assert _counts(lib, item.item_id) == (1, 0)

    lib.update_lost_damaged_status(record.record_id, RecordStatus.REPAIRED).unwrap()

    assert _counts(lib, item.item_id) == (1, 1)

def test_irreparable_withdrawn_copy_shrinks_total(lib, make_item):
    item = make_item(copies=2)
    record = lib.report_damaged(item.item_id, "desk", DamageLevel.SEVERE, repairable=False).unwrap()

    lib.update_lost_damaged_status(record.record_id, RecordStatus.IRREPARABLE).unwrap()

    assert _counts(lib, item.item_id) == (1, 1)

def test_irreparable_circulating_copy_is_taken_off_shelf(lib, make_item):
    item = make_item(copies=2)
    record = lib.report_damaged(item.item_id, "desk", DamageLevel.MODERATE).unwrap()

    lib.update_lost_damaged_status(record.record_id, RecordStatus.IRREPARABLE).unwrap()

    assert _counts(lib, item.item_id) == (1, 1)

def test_irreparable_needs_copy_on_shelf(lib, make_item, make_patron):
    item = make_item(copies=1)
    record = lib.report_damaged(item.item_id, "desk", DamageLevel.MINOR).unwrap()
    lib.issue(make_patron().patron_id, item.item_id).unwrap()

    outcome = lib.update_lost_damaged_status(record.record_id, RecordStatus.IRREPARABLE)

    assert outcome.error_code == "OutOfStock"
    assert lib.lost_damaged_records().unwrap()[0].status is RecordStatus.REPORTED
    assert _counts(lib, item.item_id) == (1, 0)

@pytest.mark.parametrize("report", [
    lambda lib, item_id: lib.report_lost(item_id, "desk"),
    lambda lib, item_id: lib.report_damaged(item_id, "desk", DamageLevel.SEVERE),
])
def test_replaced_copy_returns_to_shelf(lib, make_item, report):
    item = make_item(copies=2)
    record = report(lib, item.item_id).unwrap()
    assert _counts(lib, item.item_id) == (2, 1)

    replaced = lib.update_lost_damaged_status(record.record_id, RecordStatus.REPLACED).unwrap()

    assert replaced.status is RecordStatus.REPLACED
    assert replaced.resolved_at is not None
    assert _counts(lib, item.item_id) == (2, 2)
    assert lib.audit_item(item.item_id).unwrap().consistent
    assert lib.inventory_stats().unwrap()["withdrawn"] == 0

def test_replacing_circulating_copy_changes_nothing(lib, make_item):
    item = make_item(copies=2)
    record = lib.report_damaged(item.item_id, "desk", DamageLevel.MINOR, repairable=True).unwrap()

    lib.update_lost_damaged_status(record.record_id, RecordStatus.REPLACED).unwrap()

    assert _counts(lib, item.item_id) == (2, 2)
    assert lib.audit_item(item.item_id).unwrap().consistent

def test_unknown_damage_level(lib, make_item):
    assert lib.report_damaged(make_item().item_id, "desk", "CATASTROPHIC").error_code == "InvalidArgument"


# ------------------------- Transitions ------------------------- #
def test_terminal_records_cannot_move(lib, make_item):
    item = make_item(copies=1)
    record = lib.report_lost(item.item_id, "desk").unwrap()
    lib.update_lost_damaged_status(record.record_id, RecordStatus.FOUND).unwrap()

    outcome = lib.update_lost_damaged_status(record.record_id, RecordStatus.CLOSED)

    assert outcome.error_code == "InvalidTransition"
    assert "already resolved" in outcome.message
    assert _counts(lib, item.item_id) == (1, 1)

def test_cannot_move_back_to_reported(lib, make_item):
    record = lib.report_damaged(make_item().item_id, "desk", DamageLevel.MINOR).unwrap()
    lib.update_lost_damaged_status(record.record_id, RecordStatus.INVESTIGATING).unwrap()
    outcome = lib.update_lost_damaged_status(record.record_id, RecordStatus.REPORTED)
    assert outcome.error_code == "InvalidTransition"

def test_unknown_status_and_record(lib, make_item):
    record = lib.report_lost(make_item().item_id, "desk").unwrap()
    assert lib.update_lost_damaged_status(record.record_id, "MISPLACED").error_code == "InvalidArgument"
    assert lib.update_lost_damaged_status(999, RecordStatus.FOUND).error_code == "NotFound"


# ------------------------- Listings ------------------------- #
def test_records_filtered_by_type(lib, make_item):
    item = make_item(copies=3)
    lib.report_lost(item.item_id, "desk").unwrap()
    lib.report_damaged(item.item_id, "desk", DamageLevel.MINOR).unwrap()

    assert len(lib.lost_damaged_records().unwrap()) == 2
    lost = lib.lost_damaged_records(RecordType.LOST).unwrap()
    assert [r.type for r in lost] == [RecordType.LOST]
    assert lib.lost_damaged_records("STOLEN").error_code == "InvalidArgument"

def test_inventory_stats(lib, make_item, make_patron):
    first = make_item(title="A", copies=2)
    make_item(title="B", copies=1)
    lib.issue(make_patron().patron_id, first.item_id).unwrap()
    lib.report_lost(first.item_id, "desk").unwrap()

    stats = lib.inventory_stats().unwrap()

    assert stats == {
        "total_items": 2,
        "total_copies": 3,
        "available_copies": 1,
        "checked_out": 2,
        "on_loan": 1,
        "withdrawn": 1,
        "lost_reports": 1,
        "damaged_reports": 0,
    }
