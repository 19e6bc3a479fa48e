#!/usr/bin/env python

"""
    Circulation for Stacks: borrow requests, loans and returns

    A borrow request records intent only; availability is checked again when
    a librarian accepts it. Accepting, borrowing directly and returning each
    run as one transaction while holding the lock for the copy, and every
    status flip is a conditional UPDATE whose row count is checked, so a
    copy is Borrowed exactly when one Active borrow record points at it.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import enum
import logging
from typing import Optional
from sqlalchemy import func, select
from sqlalchemy.orm import joinedload
from stacks.configs import LOAN_PERIOD_DAYS
from stacks.core.db import Database
from stacks.core.locks import KeyedLocks, copy_key, request_key
from stacks.core.models import (
    Book,
    Copy,
    Student,
    BorrowRequest,
    BorrowRecord,
    CopyStatus,
    RequestStatus,
    RecordStatus,
    AttendanceEntry,
)
from stacks.core.utils import utcnow, require
from stacks.core.exceptions import (
    ValidationError,
    ConflictError,
    CopyNotFoundError,
    StudentNotFoundError,
    RequestNotFoundError,
    RequestAlreadyProcessedError,
    CopyUnavailableError,
    InconsistentStateError,
)
from stacks.schemas.borrow import ResolveOutcome, ReturnOutcome, BorrowRecord as BorrowRecordSchema

logger = logging.getLogger(__name__)


class Decision(str, enum.Enum):
    ACCEPT = 'Accept'
    REJECT = 'Reject'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        for member in cls:
            if isinstance(value, str) and value.strip().lower() == member.value.lower():
                return member
        raise ValidationError(f"Invalid action type: {value}. Expected Accept or Reject.")


def _parse_pickup_date(pickup_date):
    if isinstance(pickup_date, datetime.date):
        return pickup_date
    try:
        return datetime.date.fromisoformat(str(pickup_date))
    except ValueError:
        raise ValidationError(f"Invalid pickup date: {pickup_date}. Expected YYYY-MM-DD.")


def _lock_copy(session, copy_id):
    return session.query(Copy).options(joinedload(Copy.book)).filter(
        Copy.id == copy_id).with_for_update(of=Copy).first()


class Circulation:

    def __init__(self, db: Database, locks: Optional[KeyedLocks] = None,
                 loan_period_days: int = LOAN_PERIOD_DAYS):
        self.db = db
        self.locks = locks or KeyedLocks()
        self.loan_period = datetime.timedelta(days=loan_period_days)

    def submit_borrow_request(self, copy_id, student_id, pickup_date, pickup_time) -> BorrowRequest:
        """Records a Pending request. The copy is not reserved."""
        if missing := require(copy_id=copy_id, student_id=student_id,
                              pickup_date=pickup_date, pickup_time=pickup_time):
            raise ValidationError(
                f"Missing required fields for borrow request: {', '.join(missing)}")
        pickup_date = _parse_pickup_date(pickup_date)
        with self.db.transaction() as session:
            if not Copy.exists(session, copy_id):
                raise CopyNotFoundError(f"Copy {copy_id} not found.")
            if not Student.exists(session, student_id):
                raise StudentNotFoundError(f"Student {student_id} not found.")
            request = BorrowRequest(
                student_id=student_id,
                copy_id=copy_id,
                pickup_date=pickup_date,
                pickup_time=str(pickup_time),
                status=RequestStatus.PENDING,
                requested_at=utcnow(),
            )
            session.add(request)
            session.flush()
        logger.info(f"Borrow request {request.id}: student {student_id} wants copy {copy_id}")
        return request

    def _new_record(self, session, copy, student_id, request_id=None):
        now = utcnow()
        flipped = session.query(Copy).filter(
            Copy.id == copy.id,
            Copy.status == CopyStatus.AVAILABLE
        ).update({Copy.status: CopyStatus.BORROWED}, synchronize_session=False)
        if flipped != 1:
            raise CopyUnavailableError(
                f'Book "{copy.title}" is not currently available for borrowing.')
        record = BorrowRecord(
            student_id=student_id,
            copy_id=copy.id,
            request_id=request_id,
            borrow_date=now,
            due_date=now + self.loan_period,
            status=RecordStatus.ACTIVE,
        )
        session.add(record)
        session.flush()
        return record

    def resolve_borrow_request(self, request_id, decision) -> ResolveOutcome:
        """Accepts or rejects a Pending request, exactly once.

        Accepting marks the request Accepted, opens a loan due after the
        configured loan period and flips the copy to Borrowed in a single
        transaction. If the copy is not Available nothing is written and
        the request stays Pending.
        """
        if request_id is None:
            raise ValidationError("Missing request ID.")
        decision = Decision.parse(decision)

        with self.db.reader() as session:
            request = BorrowRequest.exists(session, request_id)
            if not request:
                raise RequestNotFoundError(
                    "Pending borrow request not found or already processed.")
            copy_id = request.copy_id

        with self.locks.hold(request_key(request_id), copy_key(copy_id)):
            with self.db.transaction() as session:
                request = session.query(BorrowRequest).filter(
                    BorrowRequest.id == request_id).with_for_update().first()
                if not request or request.status != RequestStatus.PENDING:
                    raise RequestAlreadyProcessedError(
                        "Pending borrow request not found or already processed.")
                copy = _lock_copy(session, copy_id)
                if not copy:
                    raise CopyNotFoundError(f"Copy {copy_id} not found.")
                title = copy.title

                if decision == Decision.ACCEPT and copy.status != CopyStatus.AVAILABLE:
                    raise CopyUnavailableError(
                        f'Book "{title}" is not currently available for borrowing. '
                        f'Current status: {copy.status.value}.')

                new_status = (RequestStatus.ACCEPTED if decision == Decision.ACCEPT
                              else RequestStatus.REJECTED)
                updated = session.query(BorrowRequest).filter(
                    BorrowRequest.id == request_id,
                    BorrowRequest.status == RequestStatus.PENDING
                ).update({
                    BorrowRequest.status: new_status,
                    BorrowRequest.resolved_at: utcnow(),
                }, synchronize_session=False)
                if updated != 1:
                    raise RequestAlreadyProcessedError(
                        "Pending borrow request not found or already processed.")

                record = None
                if decision == Decision.ACCEPT:
                    record = self._new_record(
                        session, copy, request.student_id, request_id=request_id)

        if record is not None:
            logger.info(f"Borrow request {request_id} accepted; loan {record.id} on copy "
                        f"{copy_id} due {record.due_date}")
            return ResolveOutcome(
                request_id=request_id,
                status=new_status,
                book_title=title,
                message=f'Borrow request for "{title}" accepted. Book marked as Borrowed.',
                record=BorrowRecordSchema.model_validate(record),
            )
        logger.info(f"Borrow request {request_id} rejected")
        return ResolveOutcome(
            request_id=request_id,
            status=new_status,
            book_title=title,
            message=f'Borrow request for "{title}" rejected.',
        )

    def borrow_copy(self, copy_id, student_id) -> BorrowRecord:
        """Librarian-initiated loan without a prior request."""
        if missing := require(copy_id=copy_id, student_id=student_id):
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        with self.locks.hold(copy_key(copy_id)):
            with self.db.transaction() as session:
                copy = _lock_copy(session, copy_id)
                if not copy:
                    raise CopyNotFoundError(f"Copy {copy_id} not found.")
                if not Student.exists(session, student_id):
                    raise StudentNotFoundError(f"Student {student_id} not found.")
                if copy.status != CopyStatus.AVAILABLE:
                    raise CopyUnavailableError(
                        f'Book "{copy.title}" is not currently available for borrowing. '
                        f'Current status: {copy.status.value}.')
                record = self._new_record(session, copy, student_id)
        logger.info(f"Copy {copy_id} lent directly to student {student_id} (loan {record.id})")
        return record

    def return_copy(self, copy_id) -> ReturnOutcome:
        """Closes the Active loan on a copy and puts it back on the shelf.

        Returning a copy that is already Available succeeds without
        writing anything. A Borrowed copy with no Active loan is reported
        as `InconsistentStateError` and left untouched.
        """
        if copy_id is None:
            raise ValidationError("Copy ID is required to return a book.")
        with self.locks.hold(copy_key(copy_id)):
            with self.db.transaction() as session:
                copy = _lock_copy(session, copy_id)
                if not copy:
                    raise CopyNotFoundError("Book copy not found in the system.")
                title = copy.title
                record = BorrowRecord.active_for_copy(session, copy_id)

                if record is None:
                    if copy.status == CopyStatus.AVAILABLE:
                        logger.info(f"Return of copy {copy_id} ignored, already Available")
                        return ReturnOutcome(
                            copy_id=copy_id,
                            book_title=title,
                            already_available=True,
                            message=f'Book "{title}" (copy {copy_id}) is already marked as Available.',
                        )
                    if copy.status == CopyStatus.BORROWED:
                        logger.error(f"Copy {copy_id} is Borrowed but has no active borrow record")
                        raise InconsistentStateError(
                            f'Book "{title}" (copy {copy_id}) is marked Borrowed '
                            f'but has no active borrow record.')
                    raise ConflictError(
                        f'Book "{title}" (copy {copy_id}) is not currently marked as borrowed. '
                        f'Current status: {copy.status.value}.')

                if copy.status != CopyStatus.BORROWED:
                    logger.error(f"Copy {copy_id} has active loan {record.id} "
                                 f"but status {copy.status.value}")
                    raise InconsistentStateError(
                        f'Book "{title}" (copy {copy_id}) has an active borrow record '
                        f'but is marked {copy.status.value}.')

                record.status = RecordStatus.RETURNED
                record.return_date = utcnow()
                flipped = session.query(Copy).filter(
                    Copy.id == copy_id,
                    Copy.status == CopyStatus.BORROWED
                ).update({Copy.status: CopyStatus.AVAILABLE}, synchronize_session=False)
                if flipped != 1:
                    raise InconsistentStateError(
                        f"Copy {copy_id} changed status while being returned.")

        logger.info(f"Borrow record {record.id} returned; copy {copy_id} is Available")
        return ReturnOutcome(
            copy_id=copy_id,
            book_title=title,
            message=f'Book "{title}" returned successfully.',
            borrow_record_id=record.id,
            student_id=record.student_id,
        )

    def _loans_query(self, session):
        return session.query(BorrowRecord).options(
            joinedload(BorrowRecord.student),
            joinedload(BorrowRecord.copy).joinedload(Copy.book),
        )

    def pending_requests(self):
        with self.db.reader() as session:
            return session.query(BorrowRequest).options(
                joinedload(BorrowRequest.student),
                joinedload(BorrowRequest.copy).joinedload(Copy.book),
            ).filter(
                BorrowRequest.status == RequestStatus.PENDING
            ).order_by(BorrowRequest.requested_at.asc()).all()

    def student_loans(self, student_id):
        """Every loan a student has had, soonest due first."""
        with self.db.reader() as session:
            if not Student.exists(session, student_id):
                raise StudentNotFoundError(f"Student {student_id} not found.")
            return self._loans_query(session).filter(
                BorrowRecord.student_id == student_id
            ).order_by(BorrowRecord.due_date.asc()).all()

    def active_loans(self, student_id=None):
        with self.db.reader() as session:
            query = self._loans_query(session).filter(
                BorrowRecord.status == RecordStatus.ACTIVE)
            if student_id is not None:
                query = query.filter(BorrowRecord.student_id == student_id)
            return query.order_by(BorrowRecord.due_date.asc()).all()

    def overdue_loans(self, student_id=None, now=None):
        now = now or utcnow()
        with self.db.reader() as session:
            query = self._loans_query(session).filter(
                BorrowRecord.status == RecordStatus.ACTIVE,
                BorrowRecord.due_date < now,
            )
            if student_id is not None:
                query = query.filter(BorrowRecord.student_id == student_id)
            return query.order_by(BorrowRecord.due_date.asc()).all()

    def recent_activity(self, limit=5):
        with self.db.reader() as session:
            return self._loans_query(session).order_by(
                BorrowRecord.borrow_date.desc(), BorrowRecord.id.desc()
            ).limit(limit).all()

    def student_stats(self, student_id, now=None):
        now = now or utcnow()
        with self.db.reader() as session:
            if not Student.exists(session, student_id):
                raise StudentNotFoundError(f"Student {student_id} not found.")
            active = session.query(BorrowRecord).filter(
                BorrowRecord.student_id == student_id,
                BorrowRecord.status == RecordStatus.ACTIVE)
            pending = session.query(BorrowRequest).filter(
                BorrowRequest.student_id == student_id,
                BorrowRequest.status == RequestStatus.PENDING).count()
            return {
                "student_id": student_id,
                "books_on_loan": active.count(),
                "overdue_books": active.filter(BorrowRecord.due_date < now).count(),
                "pending_requests": pending,
            }

    def library_stats(self, now=None):
        """Counts for the librarian dashboard. `visits_today` counts
        attendance check-ins since midnight UTC.
        """
        now = now or utcnow()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        with self.db.reader() as session:
            return {
                "total_books": session.query(func.count(Book.id)).scalar(),
                "total_copies": session.query(func.count(Copy.id)).scalar(),
                "borrowed_copies": session.query(func.count(Copy.id)).filter(
                    Copy.status == CopyStatus.BORROWED).scalar(),
                "active_students": session.query(func.count(Student.id)).scalar(),
                "visits_today": session.query(func.count(AttendanceEntry.id)).filter(
                    AttendanceEntry.entry_timestamp >= midnight).scalar(),
            }

    def recommendations(self, student_id, limit=3):
        """Books with an Available copy the student has never borrowed,
        from categories they have borrowed before, topped up from any
        category when those run short.
        """
        with self.db.reader() as session:
            if not Student.exists(session, student_id):
                raise StudentNotFoundError(f"Student {student_id} not found.")
            borrowed = select(Copy.book_id).join(
                BorrowRecord, BorrowRecord.copy_id == Copy.id
            ).where(BorrowRecord.student_id == student_id)
            preferred = [row[0] for row in session.query(Book.category).filter(
                Book.id.in_(borrowed)).distinct()]
            shelf = session.query(Book).filter(
                Book.id.notin_(borrowed),
                Book.copies.any(Copy.status == CopyStatus.AVAILABLE),
            ).order_by(Book.id.asc())

            books = shelf.filter(Book.category.in_(preferred)).limit(limit).all() \
                if preferred else []
            if len(books) < limit:
                books += shelf.filter(Book.id.notin_([b.id for b in books])).limit(
                    limit - len(books)).all()
            for book in books:
                book.copies
            return books
