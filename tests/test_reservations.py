def _checked_out_item(lib, make_item, make_patron, copies=1):
    item = make_item(copies=copies)
    loans = [lib.issue(make_patron().patron_id, item.item_id).unwrap() for _ in range(copies)]
    return item, loans


def test_reserve_when_no_copy_is_free(lib, clock, make_item, make_patron):
    item, _ = _checked_out_item(lib, make_item, make_patron)
    patron = make_patron()

    reservation = lib.reserve(patron.patron_id, item.item_id).unwrap()

    assert reservation.patron_id == patron.patron_id
    assert reservation.item_id == item.item_id
    assert reservation.reserved_at == clock.now
    # reserving never touches the copy counts
    assert lib.get_item(item.item_id).unwrap().available_copies == 0

def test_reserve_available_item_is_rejected(lib, make_item, make_patron):
    item = make_item(copies=2)
    outcome = lib.reserve(make_patron().patron_id, item.item_id)
    assert outcome.error_code == "ItemAvailableNoReservationNeeded"
    assert lib.reservations_for_item(item.item_id).unwrap() == []

def test_duplicate_reservation(lib, make_item, make_patron):
    item, _ = _checked_out_item(lib, make_item, make_patron)
    patron = make_patron()
    lib.reserve(patron.patron_id, item.item_id).unwrap()

    outcome = lib.reserve(patron.patron_id, item.item_id)

    assert outcome.error_code == "DuplicateReservation"
    assert len(lib.reservations_for_item(item.item_id).unwrap()) == 1

def test_reserve_unknown_or_hidden(lib, make_item, make_patron):
    patron = make_patron()
    assert lib.reserve(patron.patron_id, 999).error_code == "NotFound"
    assert lib.reserve(999, make_item().item_id).error_code == "NotFound"
    hidden = make_item(title="Hidden", copies=0, visible=False)
    assert lib.reserve(patron.patron_id, hidden.item_id).error_code == "ItemHidden"

def test_cancel_is_idempotent(lib, make_item, make_patron):
    item, _ = _checked_out_item(lib, make_item, make_patron)
    patron = make_patron()
    lib.reserve(patron.patron_id, item.item_id).unwrap()

    assert lib.cancel_reservation(patron.patron_id, item.item_id).unwrap() is True
    assert lib.cancel_reservation(patron.patron_id, item.item_id).unwrap() is False
    assert lib.reservations_for_patron(patron.patron_id).unwrap() == []

def test_cancel_without_reservation(lib):
    outcome = lib.cancel_reservation(1, 1)
    assert outcome.ok
    assert outcome.value is False

def test_return_does_not_consume_reservations(lib, make_item, make_patron):
    item, (loan,) = _checked_out_item(lib, make_item, make_patron)
    waiting = make_patron()
    lib.reserve(waiting.patron_id, item.item_id).unwrap()

    lib.return_loan(loan.loan_id).unwrap()

    assert [r.patron_id for r in lib.reservations_for_item(item.item_id).unwrap()] == [waiting.patron_id]
    assert lib.get_item(item.item_id).unwrap().available_copies == 1

def test_first_issue_wins_regardless_of_reservation_order(lib, clock, make_item, make_patron):
    item, (loan,) = _checked_out_item(lib, make_item, make_patron)
    first, second = make_patron(), make_patron()
    lib.reserve(first.patron_id, item.item_id).unwrap()
    clock.advance(hours=1)
    lib.reserve(second.patron_id, item.item_id).unwrap()
    lib.return_loan(loan.loan_id).unwrap()

    assert lib.issue(second.patron_id, item.item_id).ok
    assert lib.issue(first.patron_id, item.item_id).error_code == "OutOfStock"
    assert [r.patron_id for r in lib.reservations_for_item(item.item_id).unwrap()] == [first.patron_id]

def test_listings_are_ordered_by_reservation_time(lib, clock, make_item, make_patron):
    patron = make_patron()
    early, _ = _checked_out_item(lib, make_item, make_patron)
    late, _ = _checked_out_item(lib, make_item, make_patron)
    lib.reserve(patron.patron_id, early.item_id).unwrap()
    clock.advance(hours=2)
    lib.reserve(patron.patron_id, late.item_id).unwrap()

    mine = lib.reservations_for_patron(patron.patron_id).unwrap()
    assert [r.item_id for r in mine] == [late.item_id, early.item_id]
