import threading
from datetime import datetime, timedelta, timezone

import pytest

from gateway import SQLiteGateway
from loan import LOAN_PERIOD
from results import Outcome
from services.loan_service import LoanService


def test_create_loan_success(loan_service, gateway, make_book, make_member):
    book = make_book(copies=2)
    member = make_member()

    result = loan_service.create_loan(book.id, member.id)

    assert result.is_ok
    view = result.value
    assert view.book_id == book.id
    assert view.member_id == member.id
    assert view.book_title == "Dune"
    assert view.member_name == "Alice"
    assert view.return_date is None
    assert view.due_date - view.loan_date == timedelta(days=14)
    assert gateway.get_book(book.id).available_copies == 1


def test_create_loan_uses_clock_for_dates(gateway, make_book, make_member):
    fixed = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
    service = LoanService(gateway, clock=lambda: fixed)
    book = make_book()
    member = make_member()

    view = service.create_loan(book.id, member.id).value

    assert view.loan_date == fixed
    assert view.due_date == fixed + LOAN_PERIOD


def test_create_loan_book_not_found(loan_service, make_member):
    member = make_member()

    result = loan_service.create_loan(999, member.id)

    assert result.outcome is Outcome.NOT_FOUND
    assert result.entity == "Book"


def test_create_loan_missing_book_reported_before_missing_member(loan_service):
    result = loan_service.create_loan(999, 888)

    assert result.outcome is Outcome.NOT_FOUND
    assert result.entity == "Book"


def test_create_loan_no_copies_is_conflict_and_changes_nothing(loan_service, gateway, make_book, make_member):
    book = make_book(copies=0)
    member = make_member()

    result = loan_service.create_loan(book.id, member.id)

    assert result.outcome is Outcome.CONFLICT
    assert "No available copies" in result.message
    assert gateway.get_book(book.id).available_copies == 0
    assert gateway.list_loans() == []


def test_create_loan_no_copies_reported_before_missing_member(loan_service, make_book):
    book = make_book(copies=0)

    result = loan_service.create_loan(book.id, 999)

    assert result.outcome is Outcome.CONFLICT


def test_create_loan_member_not_found(loan_service, gateway, make_book):
    book = make_book(copies=1)

    result = loan_service.create_loan(book.id, 999)

    assert result.outcome is Outcome.NOT_FOUND
    assert result.entity == "Member"
    assert gateway.get_book(book.id).available_copies == 1


def test_member_cannot_borrow_same_book_twice(loan_service, gateway, make_book, make_member):
    book = make_book(copies=3)
    member = make_member()
    assert loan_service.create_loan(book.id, member.id)

    second = loan_service.create_loan(book.id, member.id)

    assert second.outcome is Outcome.CONFLICT
    assert "already borrowed" in second.message
    assert gateway.get_book(book.id).available_copies == 2
    assert len(gateway.get_loans_by_member(member.id)) == 1


def test_member_can_borrow_again_after_returning(loan_service, make_book, make_member):
    book = make_book(copies=1)
    member = make_member()
    first = loan_service.create_loan(book.id, member.id).value
    assert loan_service.return_book(first.id)

    again = loan_service.create_loan(book.id, member.id)

    assert again.is_ok
    assert again.value.id != first.id


def test_other_members_can_borrow_remaining_copies(loan_service, gateway, make_book, make_member):
    book = make_book(copies=2)
    alice = make_member("alice")
    bob = make_member("bob")

    assert loan_service.create_loan(book.id, alice.id)
    assert loan_service.create_loan(book.id, bob.id)

    assert gateway.get_book(book.id).available_copies == 0


@pytest.mark.parametrize("book_id, member_id", [(0, 1), (1, 0), (-5, 1), ("1", 1), (None, 1)])
def test_create_loan_invalid_ids(loan_service, book_id, member_id):
    result = loan_service.create_loan(book_id, member_id)

    assert result.outcome is Outcome.INVALID_INPUT


def test_return_book_success(loan_service, gateway, make_book, make_member):
    book = make_book(copies=1)
    member = make_member()
    view = loan_service.create_loan(book.id, member.id).value

    result = loan_service.return_book(view.id)

    assert result.is_ok
    assert result.value is True
    assert gateway.get_loan(view.id).return_date is not None
    assert gateway.get_book(book.id).available_copies == 1


def test_return_unknown_loan_is_falsy_not_found(loan_service, gateway, make_book):
    # Callers that only look at truthiness still see "false" for a missing loan.
    book = make_book(copies=1)

    result = loan_service.return_book(12345)

    assert not result
    assert result.outcome is Outcome.NOT_FOUND
    assert gateway.get_book(book.id).available_copies == 1


def test_return_twice_is_conflict_and_does_not_increment_again(loan_service, gateway, make_book, make_member):
    book = make_book(copies=1)
    member = make_member()
    view = loan_service.create_loan(book.id, member.id).value
    assert loan_service.return_book(view.id)
    returned_at = gateway.get_loan(view.id).return_date

    second = loan_service.return_book(view.id)

    assert second.outcome is Outcome.CONFLICT
    assert "already been returned" in second.message
    assert gateway.get_book(book.id).available_copies == 1
    assert gateway.get_loan(view.id).return_date == returned_at


def test_return_invalid_id(loan_service):
    assert loan_service.return_book(0).outcome is Outcome.INVALID_INPUT


def test_round_trip_restores_copies(loan_service, gateway, make_book, make_member):
    book = make_book(copies=4)
    member = make_member()

    view = loan_service.create_loan(book.id, member.id).value
    assert gateway.get_book(book.id).available_copies == 3
    loan_service.return_book(view.id)

    assert gateway.get_book(book.id).available_copies == 4
    assert loan_service.get_loan(view.id).return_date is not None


def test_scenario_single_copy(gateway, loan_service, make_book, make_member):
    book = make_book(copies=1)
    for name in ("m1", "m2", "m3", "m4", "m5", "m6"):
        make_member(name)
    member = make_member("seventh")
    assert member.id == 7

    first = loan_service.create_loan(book.id, 7)
    assert first.is_ok
    assert gateway.get_book(book.id).available_copies == 0

    assert loan_service.create_loan(book.id, 7).outcome is Outcome.CONFLICT

    assert loan_service.return_book(first.value.id).value is True
    assert gateway.get_book(book.id).available_copies == 1

    assert loan_service.return_book(first.value.id).outcome is Outcome.CONFLICT


def test_copies_never_negative_over_a_sequence(loan_service, gateway, make_book, make_member):
    book = make_book(copies=2)
    members = [make_member(f"user{i}") for i in range(4)]
    loan_ids = []

    for m in members:
        result = loan_service.create_loan(book.id, m.id)
        if result:
            loan_ids.append(result.value.id)
        assert gateway.get_book(book.id).available_copies >= 0
    assert len(loan_ids) == 2

    for loan_id in loan_ids + loan_ids:
        loan_service.return_book(loan_id)
        assert gateway.get_book(book.id).available_copies >= 0
    assert gateway.get_book(book.id).available_copies == 2


def test_queries(loan_service, make_book, make_member):
    b1 = make_book(title="Dune")
    b2 = make_book(title="Emma", author="Jane Austen")
    alice = make_member("alice")
    bob = make_member("bob")
    l1 = loan_service.create_loan(b1.id, alice.id).value
    loan_service.create_loan(b2.id, bob.id)

    assert [v.id for v in loan_service.list_loans()] == [1, 2]
    assert [v.book_title for v in loan_service.list_loans_by_member(bob.id)] == ["Emma"]
    assert loan_service.list_loans_by_member(999) == []
    assert loan_service.get_loan(l1.id).member_name == "Alice"
    assert loan_service.get_loan(999) is None
    assert loan_service.get_loan(0) is None


def test_unit_of_work_rolls_back_on_error(gateway, make_book):
    book = make_book(copies=5)

    def failing(gw):
        loaded = gw.get_book(book.id)
        loaded.checkout_copy()
        gw.save_book(loaded)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        gateway.run_in_transaction(failing)

    assert gateway.get_book(book.id).available_copies == 5
    assert not gateway.in_transaction


def test_persistence_errors_propagate(loan_service, gateway, make_book, make_member, monkeypatch):
    book = make_book(copies=1)
    member = make_member()

    def broken_save(loan):
        raise OSError("disk full")

    monkeypatch.setattr(gateway, "save_loan", broken_save)

    with pytest.raises(OSError):
        loan_service.create_loan(book.id, member.id)


def test_concurrent_borrowers_of_last_copy_are_serialised(db_file, make_book, make_member):
    book = make_book(copies=1)
    members = [make_member(f"racer{i}") for i in range(8)]
    barrier = threading.Barrier(len(members))
    outcomes = []
    errors = []

    def borrow(member_id):
        # Separate gateway per thread, as each HTTP request gets one
        service = LoanService(SQLiteGateway(db_file))
        barrier.wait()
        try:
            outcomes.append(service.create_loan(book.id, member_id).outcome)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=borrow, args=(m.id,)) for m in members]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert outcomes.count(Outcome.OK) == 1
    assert outcomes.count(Outcome.CONFLICT) == len(members) - 1
    gateway = SQLiteGateway(db_file)
    assert gateway.get_book(book.id).available_copies == 0
    assert len(gateway.list_loans()) == 1
