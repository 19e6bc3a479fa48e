#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.conftest
    ~~~~~~~~~~~~~~

    Shared fixtures: a fresh SQLite file database per test, so threads in
    the concurrency tests get real, separate connections.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import pytest
from sqlalchemy import func
from stacks.core.api import StacksAPI
from stacks.core.db import Database
from stacks.core.models import Copy, BorrowRecord, CopyStatus, RecordStatus

LOAN_PERIOD_DAYS = 14
MAX_CAPACITY = 3


@pytest.fixture
def stacks(tmp_path):
    api = StacksAPI(
        Database(f"sqlite:///{tmp_path / 'stacks.db'}"),
        loan_period_days=LOAN_PERIOD_DAYS,
        max_capacity=MAX_CAPACITY,
    )
    api.open()
    try:
        yield api
    finally:
        api.close()


@pytest.fixture
def book(stacks):
    return stacks.catalog.add_book(
        "Noli Me Tangere", "Jose Rizal", "9789710810736", "Literature", copies=2)


@pytest.fixture
def copy_id(book):
    return book.copies[0].id


@pytest.fixture
def student(stacks):
    return stacks.students.register(
        "2024-0001", "Maria Santos", "maria.santos@example.edu", "Grade 11")


@pytest.fixture
def students(stacks):
    return [
        stacks.students.register(f"2024-1{i:03d}", f"Student {i}", f"student{i}@example.edu")
        for i in range(10)
    ]


def _active_records(stacks, copy_id):
    with stacks.db.reader() as session:
        return session.query(func.count(BorrowRecord.id)).filter(
            BorrowRecord.copy_id == copy_id,
            BorrowRecord.status == RecordStatus.ACTIVE
        ).scalar()


@pytest.fixture
def active_records(stacks):
    return lambda copy_id: _active_records(stacks, copy_id)


@pytest.fixture
def check_loans(stacks):
    """Every copy is Borrowed exactly when it has one Active record."""
    return lambda: _check_loans(stacks)


def _check_loans(stacks):
    with stacks.db.reader() as session:
        copies = session.query(Copy).all()
    for copy in copies:
        active = _active_records(stacks, copy.id)
        if copy.status == CopyStatus.BORROWED:
            assert active == 1, f"copy {copy.id} Borrowed with {active} active records"
        else:
            assert active == 0, f"copy {copy.id} {copy.status.value} with {active} active records"
