#!/usr/bin/env python

"""
    Occupancy tracking for Stacks

    A student is either Outside or Inside. Scanning a student toggles
    between the two; checking in is refused while the room is at capacity.
    Each decision runs under the occupancy lock and inside one transaction
    that first locks the occupancy gate row, so two check-ins can never
    both see the last free seat.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from typing import Optional
from sqlalchemy.exc import IntegrityError
from stacks.configs import MAX_CAPACITY
from stacks.core.db import Database
from stacks.core.locks import KeyedLocks, OCCUPANCY
from stacks.core.models import Student, AttendanceEntry, OccupancyGate
from stacks.core.utils import utcnow
from stacks.core.exceptions import (
    ValidationError,
    StudentNotFoundError,
    AtCapacityError,
    AlreadyCheckedInError,
    NotCheckedInError,
    StorageError,
)
from stacks.schemas.attendance import AttendanceAction, ToggleOutcome, OccupancyStatus

logger = logging.getLogger(__name__)


class Occupancy:

    def __init__(self, db: Database, locks: Optional[KeyedLocks] = None,
                 max_capacity: int = MAX_CAPACITY):
        self.db = db
        self.locks = locks or KeyedLocks()
        self.max_capacity = max_capacity

    def _capacity(self, max_capacity):
        if max_capacity is None:
            return self.max_capacity
        try:
            max_capacity = int(max_capacity)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid max capacity: {max_capacity}")
        if max_capacity < 0:
            raise ValidationError("Max capacity cannot be negative.")
        return max_capacity

    def current_occupancy(self) -> int:
        with self.db.reader() as session:
            return AttendanceEntry.occupancy(session)

    def status(self, max_capacity=None) -> OccupancyStatus:
        return OccupancyStatus(
            count=self.current_occupancy(),
            max_capacity=self._capacity(max_capacity))

    def open_entries(self):
        with self.db.reader() as session:
            return session.query(AttendanceEntry).filter(
                AttendanceEntry.exit_timestamp.is_(None)
            ).order_by(AttendanceEntry.entry_timestamp.asc()).all()

    def _check_in(self, session, student, max_capacity):
        current = AttendanceEntry.occupancy(session)
        if current >= max_capacity:
            logger.warning(f"Check-in refused for {student.id}: "
                           f"occupancy {current}/{max_capacity}")
            raise AtCapacityError(
                f"Library is at full capacity ({current}/{max_capacity}).")
        session.add(AttendanceEntry(student_id=student.id, entry_timestamp=utcnow()))
        session.flush()
        return AttendanceEntry.occupancy(session)

    def _check_out(self, session, entry):
        entry.exit_timestamp = utcnow()
        session.flush()
        return AttendanceEntry.occupancy(session)

    def _decide(self, student_id, decide):
        if not student_id:
            raise ValidationError("Student ID is required.")
        try:
            with self.locks.hold(OCCUPANCY):
                with self.db.transaction() as session:
                    student = Student.exists(session, student_id)
                    if not student:
                        raise StudentNotFoundError(f"Student {student_id} not found.")
                    OccupancyGate.acquire(session)
                    entry = AttendanceEntry.open_for(session, student_id)
                    return decide(session, student, entry)
        except StorageError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise AlreadyCheckedInError(f"Student {student_id} is already checked in.")
            raise

    def toggle_attendance(self, student_id, max_capacity=None) -> ToggleOutcome:
        """Checks the student out if inside, otherwise checks them in if
        there is room. `new_occupancy` is counted after the write, inside
        the same transaction.
        """
        max_capacity = self._capacity(max_capacity)

        def decide(session, student, entry):
            if entry is not None:
                action = AttendanceAction.CHECKED_OUT
                count = self._check_out(session, entry)
            else:
                action = AttendanceAction.CHECKED_IN
                count = self._check_in(session, student, max_capacity)
            return ToggleOutcome(
                action=action,
                student_id=student.id,
                student_name=student.name,
                new_occupancy=count,
                max_capacity=max_capacity)

        outcome = self._decide(student_id, decide)
        logger.info(f"{outcome.action.value}: {student_id} "
                    f"(occupancy {outcome.new_occupancy}/{max_capacity})")
        return outcome

    def check_in(self, student_id, max_capacity=None) -> ToggleOutcome:
        max_capacity = self._capacity(max_capacity)

        def decide(session, student, entry):
            if entry is not None:
                raise AlreadyCheckedInError(f"Student {student.id} is already checked in.")
            return ToggleOutcome(
                action=AttendanceAction.CHECKED_IN,
                student_id=student.id,
                student_name=student.name,
                new_occupancy=self._check_in(session, student, max_capacity),
                max_capacity=max_capacity)

        outcome = self._decide(student_id, decide)
        logger.info(f"CheckedIn: {student_id} (occupancy {outcome.new_occupancy}/{max_capacity})")
        return outcome

    def check_out(self, student_id) -> ToggleOutcome:
        def decide(session, student, entry):
            if entry is None:
                raise NotCheckedInError(f"Student {student.id} is not checked in.")
            return ToggleOutcome(
                action=AttendanceAction.CHECKED_OUT,
                student_id=student.id,
                student_name=student.name,
                new_occupancy=self._check_out(session, entry))

        outcome = self._decide(student_id, decide)
        logger.info(f"CheckedOut: {student_id} (occupancy {outcome.new_occupancy})")
        return outcome
