#!/usr/bin/env python

"""
    Models for Stacks,
    the catalog (books and their physical copies), the student directory,
    the borrow ledger (requests and loan records) and attendance entries.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import enum
from sqlalchemy import (
    Column, String, Integer, Date, DateTime, ForeignKey, Index,
    Enum as SQLAlchemyEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stacks.core.db import Base


class Category(str, enum.Enum):
    GENERAL_WORKS = 'General Works'
    PHILOSOPHY_PSYCHOLOGY = 'Philosophy & Psychology'
    RELIGION = 'Religion'
    SOCIAL_SCIENCES = 'Social Sciences'
    LANGUAGE = 'Language'
    SCIENCE = 'Science'
    TECHNOLOGY = 'Technology'
    ARTS_RECREATION = 'Arts & Recreation'
    LITERATURE = 'Literature'
    HISTORY_GEOGRAPHY_BIOGRAPHY = 'History, Geography, & Biography'


class CopyStatus(str, enum.Enum):
    AVAILABLE = 'Available'
    BORROWED = 'Borrowed'
    LOST = 'Lost'
    DAMAGED = 'Damaged'
    MISSING = 'Missing'


class RequestStatus(str, enum.Enum):
    PENDING = 'Pending'
    ACCEPTED = 'Accepted'
    REJECTED = 'Rejected'


class RecordStatus(str, enum.Enum):
    ACTIVE = 'Active'
    RETURNED = 'Returned'


def _values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_column(enum_cls, name):
    return SQLAlchemyEnum(
        enum_cls, name=name, values_callable=_values,
        validate_strings=True, native_enum=False, length=40)


class Book(Base):
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    isbn = Column(String(20), nullable=False, unique=True)
    category = Column(_enum_column(Category, 'book_category'), nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    copies = relationship('Copy', back_populates='book', cascade='all, delete-orphan')

    @classmethod
    def exists(cls, session, book_id):
        return session.get(cls, book_id)

    @classmethod
    def by_isbn(cls, session, isbn):
        return session.query(cls).filter(cls.isbn == isbn).first()


class Copy(Base):
    """A single physical, borrowable instance of a Book. Its `status` is
    authoritative for availability.
    """
    __tablename__ = 'copies'

    id = Column(Integer, primary_key=True)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), nullable=False, index=True)
    status = Column(_enum_column(CopyStatus, 'copy_status'),
                    default=CopyStatus.AVAILABLE, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    book = relationship('Book', back_populates='copies')

    @classmethod
    def exists(cls, session, copy_id):
        return session.get(cls, copy_id)

    @property
    def title(self):
        return self.book.title if self.book else None


class Student(Base):
    __tablename__ = 'students'

    id = Column(String(50), primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    grade_level = Column(String(50))
    created_at = Column(DateTime(timezone=True), default=func.now())

    @classmethod
    def exists(cls, session, student_id):
        return session.get(cls, student_id)


class BorrowRequest(Base):
    __tablename__ = 'borrow_requests'

    id = Column(Integer, primary_key=True)
    student_id = Column(String(50), ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    copy_id = Column(Integer, ForeignKey('copies.id', ondelete='CASCADE'), nullable=False, index=True)
    pickup_date = Column(Date, nullable=False)
    pickup_time = Column(String(20), nullable=False)
    status = Column(_enum_column(RequestStatus, 'request_status'),
                    default=RequestStatus.PENDING, nullable=False, index=True)
    requested_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True))

    student = relationship('Student')
    copy = relationship('Copy')

    @classmethod
    def exists(cls, session, request_id):
        return session.get(cls, request_id)


class BorrowRecord(Base):
    __tablename__ = 'borrow_records'

    id = Column(Integer, primary_key=True)
    student_id = Column(String(50), ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    copy_id = Column(Integer, ForeignKey('copies.id', ondelete='CASCADE'), nullable=False, index=True)
    request_id = Column(Integer, ForeignKey('borrow_requests.id', ondelete='SET NULL'))
    borrow_date = Column(DateTime(timezone=True), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    return_date = Column(DateTime(timezone=True))
    status = Column(_enum_column(RecordStatus, 'record_status'),
                    default=RecordStatus.ACTIVE, nullable=False)

    student = relationship('Student')
    copy = relationship('Copy')

    __table_args__ = (
        # at most one open loan per copy
        Index(
            'uq_borrow_records_active_copy', 'copy_id', unique=True,
            sqlite_where=(status == RecordStatus.ACTIVE.value),
            postgresql_where=(status == RecordStatus.ACTIVE.value),
        ),
    )

    @classmethod
    def active_for_copy(cls, session, copy_id):
        return session.query(cls).filter(
            cls.copy_id == copy_id,
            cls.status == RecordStatus.ACTIVE
        ).order_by(cls.borrow_date.desc(), cls.id.desc()).first()


class AttendanceEntry(Base):
    __tablename__ = 'attendance_entries'

    id = Column(Integer, primary_key=True)
    student_id = Column(String(50), ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    entry_timestamp = Column(DateTime(timezone=True), nullable=False)
    exit_timestamp = Column(DateTime(timezone=True))

    student = relationship('Student')

    __table_args__ = (
        # a student is inside at most once
        Index(
            'uq_attendance_open_student', 'student_id', unique=True,
            sqlite_where=(exit_timestamp.is_(None)),
            postgresql_where=(exit_timestamp.is_(None)),
        ),
    )

    @classmethod
    def open_for(cls, session, student_id):
        return session.query(cls).filter(
            cls.student_id == student_id,
            cls.exit_timestamp.is_(None)
        ).first()

    @classmethod
    def occupancy(cls, session):
        return session.query(func.count(cls.id)).filter(
            cls.exit_timestamp.is_(None)
        ).scalar() or 0


class OccupancyGate(Base):
    """Single row locked with SELECT ... FOR UPDATE so check-ins from
    separate processes take turns reading the occupancy count.
    """
    __tablename__ = 'occupancy_gates'

    id = Column(String(20), primary_key=True)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    DEFAULT = 'library'

    @classmethod
    def acquire(cls, session, gate_id=DEFAULT):
        gate = session.query(cls).filter(cls.id == gate_id).with_for_update().first()
        if gate is None:
            gate = cls(id=gate_id)
            session.add(gate)
            session.flush()
        return gate
