#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_circulation
    ~~~~~~~~~~~~~~~~~~~~~~

    Borrow requests, acceptance, direct loans and returns.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import datetime
import threading
import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError
from stacks.core.circulation import Circulation
from stacks.core.models import (
    Copy, BorrowRequest, BorrowRecord, CopyStatus, RequestStatus, RecordStatus
)
from stacks.core.utils import naive, utcnow
from stacks.core.exceptions import (
    ValidationError,
    ConflictError,
    CopyNotFoundError,
    StudentNotFoundError,
    RequestNotFoundError,
    RequestAlreadyProcessedError,
    CopyUnavailableError,
    InconsistentStateError,
    StorageError,
)

PICKUP = ("2026-10-20", "10:00")


def copy_status(stacks, copy_id):
    return stacks.catalog.get_copy(copy_id).status


def request_status(stacks, request_id):
    with stacks.db.reader() as session:
        return session.get(BorrowRequest, request_id).status


def submit(stacks, copy_id, student_id):
    return stacks.circulation.submit_borrow_request(copy_id, student_id, *PICKUP)


def test_submit_records_pending_request_without_reserving(stacks, copy_id, student):
    request = submit(stacks, copy_id, student.id)

    assert request.id is not None
    assert request.status == RequestStatus.PENDING
    assert request.requested_at is not None
    assert request.pickup_date == datetime.date(2026, 10, 20)
    assert copy_status(stacks, copy_id) == CopyStatus.AVAILABLE


@pytest.mark.parametrize("field", ["copy_id", "student_id", "pickup_date", "pickup_time"])
def test_submit_missing_field(stacks, copy_id, student, field):
    kwargs = dict(copy_id=copy_id, student_id=student.id,
                  pickup_date=PICKUP[0], pickup_time=PICKUP[1])
    kwargs[field] = None
    with pytest.raises(ValidationError):
        stacks.circulation.submit_borrow_request(**kwargs)


def test_submit_unknown_copy_or_student(stacks, copy_id, student):
    with pytest.raises(CopyNotFoundError):
        submit(stacks, 9999, student.id)
    with pytest.raises(StudentNotFoundError):
        submit(stacks, copy_id, "nobody")


def test_submit_rejects_malformed_pickup_date(stacks, copy_id, student):
    with pytest.raises(ValidationError):
        stacks.circulation.submit_borrow_request(copy_id, student.id, "next tuesday", "10:00")


def test_accept_then_return_end_to_end(stacks, copy_id, student, active_records, check_loans):
    request = submit(stacks, copy_id, student.id)

    outcome = stacks.circulation.resolve_borrow_request(request.id, "Accept")

    assert outcome.status == RequestStatus.ACCEPTED
    assert outcome.book_title == "Noli Me Tangere"
    assert request_status(stacks, request.id) == RequestStatus.ACCEPTED
    assert copy_status(stacks, copy_id) == CopyStatus.BORROWED
    assert active_records(copy_id) == 1
    with stacks.db.reader() as session:
        record = session.query(BorrowRecord).filter(BorrowRecord.copy_id == copy_id).one()
    assert record.status == RecordStatus.ACTIVE
    assert record.request_id == request.id
    assert record.return_date is None
    assert naive(record.due_date) - naive(record.borrow_date) == datetime.timedelta(days=14)
    check_loans()

    returned = stacks.circulation.return_copy(copy_id)

    assert returned.already_available is False
    assert returned.borrow_record_id == record.id
    assert returned.student_id == student.id
    assert returned.book_title == "Noli Me Tangere"
    assert copy_status(stacks, copy_id) == CopyStatus.AVAILABLE
    with stacks.db.reader() as session:
        record = session.get(BorrowRecord, record.id)
    assert record.status == RecordStatus.RETURNED
    assert record.return_date is not None
    check_loans()


def test_reject_changes_only_the_request(stacks, copy_id, student, active_records):
    request = submit(stacks, copy_id, student.id)

    outcome = stacks.circulation.resolve_borrow_request(request.id, "Reject")

    assert outcome.status == RequestStatus.REJECTED
    assert outcome.record is None
    assert request_status(stacks, request.id) == RequestStatus.REJECTED
    assert copy_status(stacks, copy_id) == CopyStatus.AVAILABLE
    assert active_records(copy_id) == 0


def test_request_resolves_only_once(stacks, copy_id, student):
    request = submit(stacks, copy_id, student.id)
    stacks.circulation.resolve_borrow_request(request.id, "Reject")

    with pytest.raises(RequestAlreadyProcessedError):
        stacks.circulation.resolve_borrow_request(request.id, "Accept")
    assert request_status(stacks, request.id) == RequestStatus.REJECTED


def test_resolve_unknown_request(stacks):
    with pytest.raises(RequestNotFoundError):
        stacks.circulation.resolve_borrow_request(12345, "Accept")


def test_resolve_invalid_decision(stacks, copy_id, student):
    request = submit(stacks, copy_id, student.id)
    with pytest.raises(ValidationError):
        stacks.circulation.resolve_borrow_request(request.id, "Maybe")
    assert request_status(stacks, request.id) == RequestStatus.PENDING


def test_accept_unavailable_copy_leaves_request_pending(stacks, copy_id, student, check_loans):
    first = submit(stacks, copy_id, student.id)
    second = submit(stacks, copy_id, student.id)
    stacks.circulation.resolve_borrow_request(first.id, "Accept")

    with pytest.raises(CopyUnavailableError) as excinfo:
        stacks.circulation.resolve_borrow_request(second.id, "Accept")

    assert "not currently available" in str(excinfo.value)
    assert request_status(stacks, second.id) == RequestStatus.PENDING
    check_loans()


@pytest.mark.parametrize("status", ["Lost", "Damaged", "Missing"])
def test_accept_copy_off_the_shelf(stacks, copy_id, student, status):
    request = submit(stacks, copy_id, student.id)
    stacks.catalog.set_copy_status(copy_id, status)

    with pytest.raises(ConflictError):
        stacks.circulation.resolve_borrow_request(request.id, "Accept")
    assert request_status(stacks, request.id) == RequestStatus.PENDING


def test_accept_rolls_back_when_loan_insert_fails(stacks, copy_id, student, active_records):
    request = submit(stacks, copy_id, student.id)
    failure = OperationalError("INSERT INTO borrow_records", {}, Exception("disk I/O error"))

    with patch.object(Circulation, "_new_record", side_effect=failure):
        with pytest.raises(StorageError):
            stacks.circulation.resolve_borrow_request(request.id, "Accept")

    assert request_status(stacks, request.id) == RequestStatus.PENDING
    assert copy_status(stacks, copy_id) == CopyStatus.AVAILABLE
    assert active_records(copy_id) == 0


def test_concurrent_accepts_on_same_copy(stacks, copy_id, students, check_loans):
    requests = [submit(stacks, copy_id, s.id) for s in students[:2]]
    barrier = threading.Barrier(len(requests))
    results = []

    def accept(request_id):
        barrier.wait()
        try:
            stacks.circulation.resolve_borrow_request(request_id, "Accept")
            results.append("accepted")
        except CopyUnavailableError:
            results.append("conflict")

    threads = [threading.Thread(target=accept, args=(r.id,)) for r in requests]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["accepted", "conflict"]
    statuses = sorted(request_status(stacks, r.id).value for r in requests)
    assert statuses == ["Accepted", "Pending"]
    check_loans()


def test_return_twice_is_idempotent(stacks, copy_id, student):
    stacks.circulation.borrow_copy(copy_id, student.id)

    first = stacks.circulation.return_copy(copy_id)
    second = stacks.circulation.return_copy(copy_id)

    assert first.already_available is False
    assert second.already_available is True
    assert "already marked as Available" in second.message
    with stacks.db.reader() as session:
        assert session.query(BorrowRecord).filter(BorrowRecord.copy_id == copy_id).count() == 1


def test_return_unknown_copy(stacks):
    with pytest.raises(CopyNotFoundError):
        stacks.circulation.return_copy(9999)


def test_return_lost_copy_is_a_conflict(stacks, copy_id):
    stacks.catalog.set_copy_status(copy_id, "Lost")
    with pytest.raises(ConflictError) as excinfo:
        stacks.circulation.return_copy(copy_id)
    assert "Current status: Lost" in str(excinfo.value)


def test_return_borrowed_copy_without_record_is_reported(stacks, copy_id):
    with stacks.db.transaction() as session:
        session.get(Copy, copy_id).status = CopyStatus.BORROWED

    with pytest.raises(InconsistentStateError):
        stacks.circulation.return_copy(copy_id)
    assert copy_status(stacks, copy_id) == CopyStatus.BORROWED


def test_direct_borrow(stacks, copy_id, student, check_loans):
    record = stacks.circulation.borrow_copy(copy_id, student.id)

    assert record.status == RecordStatus.ACTIVE
    assert record.request_id is None
    assert copy_status(stacks, copy_id) == CopyStatus.BORROWED
    with pytest.raises(CopyUnavailableError):
        stacks.circulation.borrow_copy(copy_id, student.id)
    check_loans()


def test_direct_borrow_unknown_student(stacks, copy_id):
    with pytest.raises(StudentNotFoundError):
        stacks.circulation.borrow_copy(copy_id, "nobody")
    assert copy_status(stacks, copy_id) == CopyStatus.AVAILABLE


def test_mixed_sequence_keeps_loans_consistent(stacks, book, students, check_loans):
    first, second = (c.id for c in book.copies)
    a, b = students[0].id, students[1].id

    r1 = submit(stacks, first, a)
    r2 = submit(stacks, first, b)
    r3 = submit(stacks, second, b)
    stacks.circulation.resolve_borrow_request(r1.id, "Accept")
    check_loans()
    stacks.circulation.resolve_borrow_request(r3.id, "Accept")
    check_loans()
    stacks.circulation.return_copy(first)
    check_loans()
    stacks.circulation.resolve_borrow_request(r2.id, "Accept")
    check_loans()
    stacks.circulation.return_copy(second)
    stacks.circulation.return_copy(second)
    check_loans()


def test_pending_requests_listing(stacks, copy_id, student):
    kept = submit(stacks, copy_id, student.id)
    rejected = submit(stacks, copy_id, student.id)
    stacks.circulation.resolve_borrow_request(rejected.id, "Reject")

    pending = stacks.circulation.pending_requests()

    assert [r.id for r in pending] == [kept.id]
    assert pending[0].student.name == "Maria Santos"
    assert pending[0].copy.book.title == "Noli Me Tangere"


def test_overdue_and_stats(stacks, book, student):
    stacks.circulation.borrow_copy(book.copies[0].id, student.id)
    submit(stacks, book.copies[1].id, student.id)
    later = utcnow() + datetime.timedelta(days=15)

    assert stacks.circulation.overdue_loans() == []
    overdue = stacks.circulation.overdue_loans(now=later)
    assert [r.copy_id for r in overdue] == [book.copies[0].id]
    assert stacks.circulation.student_stats(student.id, now=later) == {
        "student_id": student.id,
        "books_on_loan": 1,
        "overdue_books": 1,
        "pending_requests": 1,
    }


def test_student_loans_and_recent_activity(stacks, book, student):
    stacks.circulation.borrow_copy(book.copies[0].id, student.id)
    stacks.circulation.return_copy(book.copies[0].id)
    stacks.circulation.borrow_copy(book.copies[1].id, student.id)

    loans = stacks.circulation.student_loans(student.id)
    assert {r.status for r in loans} == {RecordStatus.ACTIVE, RecordStatus.RETURNED}
    assert len(stacks.circulation.active_loans(student_id=student.id)) == 1
    recent = stacks.circulation.recent_activity(limit=1)
    assert recent[0].copy_id == book.copies[1].id
    with pytest.raises(StudentNotFoundError):
        stacks.circulation.student_loans("nobody")


def test_loan_period_is_configurable(stacks, copy_id, student):
    circulation = Circulation(stacks.db, stacks.locks, loan_period_days=7)
    record = circulation.borrow_copy(copy_id, student.id)
    assert naive(record.due_date) - naive(record.borrow_date) == datetime.timedelta(days=7)


def test_concurrent_resolutions_of_one_request(stacks, copy_id, student, active_records,
                                               check_loans):
    request = submit(stacks, copy_id, student.id)
    decisions = ["Accept", "Reject"] * 3
    barrier = threading.Barrier(len(decisions))
    resolved, duplicates, errors = [], [], []

    def resolve(decision):
        barrier.wait()
        try:
            resolved.append(stacks.circulation.resolve_borrow_request(request.id, decision))
        except RequestAlreadyProcessedError:
            duplicates.append(decision)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=resolve, args=(d,)) for d in decisions]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(resolved) == 1
    assert len(duplicates) == len(decisions) - 1
    assert request_status(stacks, request.id) == resolved[0].status
    assert active_records(copy_id) == (1 if resolved[0].status == RequestStatus.ACCEPTED else 0)
    check_loans()


def test_library_stats(stacks, book, student):
    stacks.circulation.borrow_copy(book.copies[0].id, student.id)
    stacks.occupancy.toggle_attendance(student.id)

    assert stacks.circulation.library_stats() == {
        "total_books": 1,
        "total_copies": 2,
        "borrowed_copies": 1,
        "active_students": 1,
        "visits_today": 1,
    }
    tomorrow = utcnow() + datetime.timedelta(days=1)
    assert stacks.circulation.library_stats(now=tomorrow)["visits_today"] == 0


def test_recommendations(stacks, book, student, students):
    lost = stacks.catalog.add_book("Ibong Adarna", "Anonymous", "9789710000001", "Literature")
    stacks.catalog.set_copy_status(lost.copies[0].id, "Lost")
    stacks.catalog.add_book("El Filibusterismo", "Jose Rizal", "9789710000002", "Literature")
    stacks.catalog.add_book("Cosmos", "Carl Sagan", "9780345539434", "Science")
    stacks.catalog.add_book("Florante at Laura", "Francisco Balagtas", "9789710000003",
                            "Literature")
    stacks.catalog.add_book("The Guns of August", "Barbara Tuchman", "9780345476098",
                            "History")

    stacks.circulation.borrow_copy(book.copies[0].id, student.id)
    stacks.circulation.return_copy(book.copies[0].id)

    picked = stacks.circulation.recommendations(student.id)
    assert [b.title for b in picked] == ["El Filibusterismo", "Florante at Laura", "Cosmos"]

    fresh = stacks.circulation.recommendations(students[0].id)
    assert [b.title for b in fresh] == ["Noli Me Tangere", "El Filibusterismo", "Cosmos"]
    assert len(stacks.circulation.recommendations(students[0].id, limit=10)) == 5

    with pytest.raises(StudentNotFoundError):
        stacks.circulation.recommendations("nobody")
