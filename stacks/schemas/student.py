from pydantic import BaseModel, EmailStr
from typing import Optional

class Student(BaseModel):
    id: str
    name: str
    email: EmailStr
    grade_level: Optional[str] = None

    class Config:
        from_attributes = True

class StudentStats(BaseModel):
    student_id: str
    books_on_loan: int
    overdue_books: int
    pending_requests: int
