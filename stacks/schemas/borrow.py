from pydantic import BaseModel
from typing import Optional
from datetime import date, datetime
from stacks.core.models import RequestStatus, RecordStatus

class BorrowRequest(BaseModel):
    id: int
    student_id: str
    copy_id: int
    pickup_date: date
    pickup_time: str
    status: RequestStatus
    requested_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PendingRequest(BaseModel):
    id: int
    student_id: str
    student: str
    copy_id: int
    book: str
    pickup_date: date
    pickup_time: str
    requested_at: datetime

class BorrowRecord(BaseModel):
    id: int
    student_id: str
    copy_id: int
    request_id: Optional[int] = None
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: RecordStatus

    class Config:
        from_attributes = True

class LoanSummary(BorrowRecord):
    book_id: int
    title: str
    author: str
    student: Optional[str] = None

class ResolveOutcome(BaseModel):
    request_id: int
    status: RequestStatus
    book_title: str
    message: str
    record: Optional[BorrowRecord] = None

class ReturnOutcome(BaseModel):
    copy_id: int
    book_title: str
    message: str
    already_available: bool = False
    borrow_record_id: Optional[int] = None
    student_id: Optional[str] = None

class LibraryStats(BaseModel):
    total_books: int
    total_copies: int
    borrowed_copies: int
    active_students: int
    visits_today: int
