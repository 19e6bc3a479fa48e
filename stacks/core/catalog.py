#!/usr/bin/env python

"""
    Catalog and student directory for Stacks

    Plain CRUD over books, their physical copies and students. The
    circulation and occupancy services only depend on lookups here.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from typing import Optional
from sqlalchemy.exc import IntegrityError
from stacks.core.db import Database
from stacks.core.locks import KeyedLocks, copy_key
from stacks.core.models import Book, Copy, Student, BorrowRecord, Category, CopyStatus
from stacks.core.utils import require
from stacks.core.exceptions import (
    ValidationError,
    BookExistsError,
    BookNotFoundError,
    CopyNotFoundError,
    StudentExistsError,
    StudentNotFoundError,
    ConflictError,
    InconsistentStateError,
    StorageError,
)

logger = logging.getLogger(__name__)


def parse_category(category) -> Category:
    if isinstance(category, Category):
        return category
    try:
        return Category(category)
    except ValueError:
        raise ValidationError(f"Invalid category: {category}")


def parse_copy_status(status) -> CopyStatus:
    if isinstance(status, CopyStatus):
        return status
    try:
        return CopyStatus(status)
    except ValueError:
        raise ValidationError(f"Invalid status: {status}")


class Catalog:

    DEFAULT_LIMIT = 100

    def __init__(self, db: Database, locks: Optional[KeyedLocks] = None):
        self.db = db
        self.locks = locks or KeyedLocks()

    def add_book(self, title: str, author: str, isbn: str, category, copies: int = 1) -> Book:
        if missing := require(title=title, author=author, isbn=isbn, category=category):
            raise ValidationError(f"Missing required book fields: {', '.join(missing)}")
        category = parse_category(category)
        if copies < 0:
            raise ValidationError("Number of copies cannot be negative.")
        try:
            with self.db.transaction() as session:
                if Book.by_isbn(session, isbn):
                    raise BookExistsError(f"ISBN '{isbn}' already exists.")
                book = Book(title=title, author=author, isbn=isbn, category=category)
                book.copies = [Copy(status=CopyStatus.AVAILABLE) for _ in range(copies)]
                session.add(book)
                session.flush()
        except StorageError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise BookExistsError(f"ISBN '{isbn}' already exists.")
            raise
        logger.info(f"Added book {book.id} '{title}' with {copies} copies")
        return book

    def get_book(self, book_id: int) -> Book:
        with self.db.reader() as session:
            if book := Book.exists(session, book_id):
                book.copies  # load before the session closes
                return book
        raise BookNotFoundError(f"Book {book_id} not found.")

    def list_books(self, category=None, offset=None, limit=None):
        return self.search_books(category=category, offset=offset, limit=limit)

    def search_books(self, title: Optional[str] = None, author: Optional[str] = None,
                     category=None, offset=None, limit=None):
        with self.db.reader() as session:
            query = session.query(Book)
            if category:
                query = query.filter(Book.category == parse_category(category))
            if title:
                query = query.filter(Book.title.ilike(f"%{title}%"))
            if author:
                query = query.filter(Book.author.ilike(f"%{author}%"))
            books = query.order_by(Book.title.asc()).offset(offset).limit(
                limit or self.DEFAULT_LIMIT).all()
            for book in books:
                book.copies
            return books

    def categories(self):
        """Categories that currently have at least one book."""
        with self.db.reader() as session:
            rows = session.query(Book.category).distinct().all()
            return sorted(row[0].value for row in rows)

    def add_copy(self, book_id: int) -> Copy:
        with self.db.transaction() as session:
            if not Book.exists(session, book_id):
                raise BookNotFoundError(f"Book {book_id} not found.")
            copy = Copy(book_id=book_id, status=CopyStatus.AVAILABLE)
            session.add(copy)
            session.flush()
            copy.book
        logger.info(f"Added copy {copy.id} of book {book_id}")
        return copy

    def get_copy(self, copy_id: int) -> Copy:
        with self.db.reader() as session:
            if copy := Copy.exists(session, copy_id):
                copy.book
                return copy
        raise CopyNotFoundError(f"Copy {copy_id} not found.")

    def set_copy_status(self, copy_id: int, status) -> Copy:
        """Marks a copy Lost, Damaged, Missing or back on the shelf.

        Borrowed is only ever set by circulation, and a copy with an open
        loan must be returned before its status can change here.
        """
        status = parse_copy_status(status)
        if status == CopyStatus.BORROWED:
            raise ValidationError("Copies become Borrowed through circulation only.")
        with self.locks.hold(copy_key(copy_id)):
            with self.db.transaction() as session:
                copy = Copy.exists(session, copy_id)
                if not copy:
                    raise CopyNotFoundError(f"Copy {copy_id} not found.")
                if BorrowRecord.active_for_copy(session, copy_id):
                    raise ConflictError(
                        f"Copy {copy_id} is on loan; return it before changing its status.")
                if copy.status == CopyStatus.BORROWED:
                    logger.error(f"Copy {copy_id} is Borrowed with no active borrow record")
                    raise InconsistentStateError(
                        f"Copy {copy_id} is marked Borrowed but has no active borrow record.")
                previous = copy.status
                copy.status = status
                copy.book
        logger.info(f"Copy {copy_id} status {previous.value} -> {status.value}")
        return copy


class StudentDirectory:

    def __init__(self, db: Database):
        self.db = db

    def register(self, student_id: str, name: str, email: str,
                 grade_level: Optional[str] = None) -> Student:
        if missing := require(student_id=student_id, name=name, email=email):
            raise ValidationError(f"Missing required student fields: {', '.join(missing)}")
        try:
            with self.db.transaction() as session:
                if Student.exists(session, student_id) or session.query(Student).filter(
                        Student.email == email).first():
                    raise StudentExistsError("ID or email already exists.")
                student = Student(id=student_id, name=name, email=email, grade_level=grade_level)
                session.add(student)
        except StorageError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise StudentExistsError("ID or email already exists.")
            raise
        logger.info(f"Registered student {student_id}")
        return student

    def get(self, student_id: str) -> Student:
        with self.db.reader() as session:
            if student := Student.exists(session, student_id):
                return student
        raise StudentNotFoundError(f"Student {student_id} not found.")
