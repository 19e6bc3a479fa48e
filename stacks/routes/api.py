#!/usr/bin/env python

"""
    API routes for Stacks,
    circulation (borrow requests, loans, returns), occupancy and the
    catalog/student lookups they depend on.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from typing import Optional, List
from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Request,
    status,
)
from fastapi.responses import JSONResponse
from stacks.core.api import StacksAPI
from stacks.core.exceptions import (
    ValidationError,
    NotFoundError,
    ConflictError,
    AtCapacityError,
    BookExistsError,
    StudentExistsError,
    RequestAlreadyProcessedError,
    InconsistentStateError,
    StorageError,
)
from stacks.routes.schemas import (
    BorrowRequestBody,
    ResolveBody,
    DirectBorrowBody,
    ToggleBody,
    CheckOutBody,
    BookBody,
    CopyStatusBody,
    StudentBody,
)
from stacks.schemas.book import Book, CopyDetail
from stacks.schemas.student import Student, StudentStats
from stacks.schemas.borrow import BorrowRecord, PendingRequest, LoanSummary, LibraryStats
from stacks.schemas.attendance import AttendanceEntry

logger = logging.getLogger(__name__)

router = APIRouter()


def get_stacks(request: Request) -> StacksAPI:
    return request.app.state.stacks


def _loan_summary(record) -> LoanSummary:
    book = record.copy.book
    return LoanSummary(
        **BorrowRecord.model_validate(record).model_dump(),
        book_id=book.id,
        title=book.title,
        author=book.author,
        student=record.student.name if record.student else None,
    )


def _storage_failure(e: StorageError, what: str):
    logger.error(f"{what}: {e}")
    return HTTPException(status_code=500, detail=f"Database error {what.lower()}.")


@router.get('/health')
def health(stacks: StacksAPI = Depends(get_stacks)):
    if stacks.healthcheck():
        return {"status": "ok"}
    return JSONResponse(status_code=503, content={"status": "unavailable"})


# Borrow requests

@router.post('/borrow/requests', status_code=status.HTTP_201_CREATED)
def submit_borrow_request(body: BorrowRequestBody, stacks: StacksAPI = Depends(get_stacks)):
    try:
        request = stacks.circulation.submit_borrow_request(
            copy_id=body.copy_id,
            student_id=body.student_id,
            pickup_date=body.pickup_date,
            pickup_time=body.pickup_time,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageError as e:
        raise _storage_failure(e, "Submitting borrow request")
    return {
        "success": True,
        "message": "Borrow request submitted successfully.",
        "request_id": request.id,
    }


@router.get('/borrow/requests/pending', response_model=List[PendingRequest])
def pending_borrow_requests(stacks: StacksAPI = Depends(get_stacks)):
    return [PendingRequest(
        id=r.id,
        student_id=r.student_id,
        student=r.student.name,
        copy_id=r.copy_id,
        book=r.copy.book.title,
        pickup_date=r.pickup_date,
        pickup_time=r.pickup_time,
        requested_at=r.requested_at,
    ) for r in stacks.circulation.pending_requests()]


@router.post('/borrow/requests/{request_id}/resolve')
def resolve_borrow_request(request_id: int, body: ResolveBody,
                           stacks: StacksAPI = Depends(get_stacks)):
    try:
        outcome = stacks.circulation.resolve_borrow_request(request_id, body.decision)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (NotFoundError, RequestAlreadyProcessedError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise _storage_failure(e, "Processing borrow request")
    return {"success": True, **outcome.model_dump(mode="json")}


# Loans

@router.post('/copies/{copy_id}/borrow', response_model=BorrowRecord)
def borrow_copy(copy_id: int, body: DirectBorrowBody, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.circulation.borrow_copy(copy_id, body.student_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise _storage_failure(e, "Borrowing book")


@router.post('/copies/{copy_id}/return')
def return_copy(copy_id: int, stacks: StacksAPI = Depends(get_stacks)):
    try:
        outcome = stacks.circulation.return_copy(copy_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InconsistentStateError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except StorageError as e:
        raise _storage_failure(e, "Returning book")
    return {"success": True, **outcome.model_dump(mode="json")}


@router.get('/loans/overdue', response_model=List[LoanSummary])
def overdue_loans(stacks: StacksAPI = Depends(get_stacks)):
    return [_loan_summary(r) for r in stacks.circulation.overdue_loans()]


@router.get('/loans/recent', response_model=List[LoanSummary])
def recent_activity(limit: int = Query(5, ge=1, le=100), stacks: StacksAPI = Depends(get_stacks)):
    return [_loan_summary(r) for r in stacks.circulation.recent_activity(limit=limit)]


@router.get('/students/{student_id}/loans', response_model=List[LoanSummary])
def student_loans(student_id: str, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return [_loan_summary(r) for r in stacks.circulation.student_loans(student_id)]
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get('/students/{student_id}/overdue', response_model=List[LoanSummary])
def student_overdue(student_id: str, stacks: StacksAPI = Depends(get_stacks)):
    try:
        stacks.students.get(student_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return [_loan_summary(r) for r in stacks.circulation.overdue_loans(student_id=student_id)]


@router.get('/students/{student_id}/stats', response_model=StudentStats)
def student_stats(student_id: str, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.circulation.student_stats(student_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get('/students/{student_id}/recommendations', response_model=List[Book])
def recommendations(student_id: str, limit: int = Query(3, ge=1, le=20),
                    stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.circulation.recommendations(student_id, limit=limit)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get('/stats', response_model=LibraryStats)
def library_stats(stacks: StacksAPI = Depends(get_stacks)):
    return stacks.circulation.library_stats()


# Occupancy

@router.get('/occupancy')
def occupancy(max_capacity: Optional[int] = None, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.occupancy.status(max_capacity).model_dump()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post('/attendance/toggle')
def toggle_attendance(body: ToggleBody, stacks: StacksAPI = Depends(get_stacks)):
    try:
        outcome = stacks.occupancy.toggle_attendance(body.student_id, body.max_capacity)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AtCapacityError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise _storage_failure(e, "Recording attendance")
    return {"success": True, **outcome.model_dump(mode="json")}


@router.post('/attendance/checkout')
def check_out(body: CheckOutBody, stacks: StacksAPI = Depends(get_stacks)):
    try:
        outcome = stacks.occupancy.check_out(body.student_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise _storage_failure(e, "Recording attendance")
    return {"success": True, **outcome.model_dump(mode="json")}


@router.get('/attendance/open', response_model=List[AttendanceEntry])
def open_attendance(stacks: StacksAPI = Depends(get_stacks)):
    return stacks.occupancy.open_entries()


# Catalog

@router.get('/books', response_model=List[Book])
def list_books(category: Optional[str] = None, offset: Optional[int] = None,
               limit: Optional[int] = None, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.catalog.list_books(category=category, offset=offset, limit=limit)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get('/books/search', response_model=List[Book])
def search_books(title: Optional[str] = None, author: Optional[str] = None,
                 category: Optional[str] = None, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.catalog.search_books(title=title, author=author, category=category)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get('/books/categories', response_model=List[str])
def categories(stacks: StacksAPI = Depends(get_stacks)):
    return stacks.catalog.categories()


@router.post('/books', response_model=Book, status_code=status.HTTP_201_CREATED)
def add_book(body: BookBody, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.catalog.add_book(
            title=body.title, author=body.author, isbn=body.isbn,
            category=body.category, copies=body.copies)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BookExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise _storage_failure(e, "Adding book")


@router.get('/books/{book_id}', response_model=Book)
def get_book(book_id: int, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.catalog.get_book(book_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post('/books/{book_id}/copies', response_model=CopyDetail,
             status_code=status.HTTP_201_CREATED)
def add_copy(book_id: int, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.catalog.add_copy(book_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get('/copies/{copy_id}', response_model=CopyDetail)
def get_copy(copy_id: int, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.catalog.get_copy(copy_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post('/copies/{copy_id}/status', response_model=CopyDetail)
def set_copy_status(copy_id: int, body: CopyStatusBody, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.catalog.set_copy_status(copy_id, body.status)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InconsistentStateError as e:
        raise HTTPException(status_code=500, detail=str(e))


# Students

@router.post('/students', response_model=Student, status_code=status.HTTP_201_CREATED)
def register_student(body: StudentBody, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.students.register(
            student_id=body.id, name=body.name, email=body.email,
            grade_level=body.grade_level)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StudentExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get('/students/{student_id}', response_model=Student)
def get_student(student_id: str, stacks: StacksAPI = Depends(get_stacks)):
    try:
        return stacks.students.get(student_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
