from pydantic import BaseModel, EmailStr, field_validator
from typing import Optional, Union

class StudentRef(BaseModel):
    # card scanners post numeric ids as JSON numbers
    student_id: Optional[Union[int, str]] = None

    @field_validator('student_id')
    @classmethod
    def student_id_as_str(cls, v):
        return None if v is None else str(v)

class BorrowRequestBody(StudentRef):
    copy_id: Optional[int] = None
    pickup_date: Optional[str] = None
    pickup_time: Optional[str] = None

class ResolveBody(BaseModel):
    decision: Optional[str] = None

class DirectBorrowBody(StudentRef):
    pass

class ToggleBody(StudentRef):
    max_capacity: Optional[int] = None

class CheckOutBody(StudentRef):
    pass

class BookBody(BaseModel):
    title: str
    author: str
    isbn: str
    category: str
    copies: int = 1

class CopyStatusBody(BaseModel):
    status: str

class StudentBody(BaseModel):
    id: str
    name: str
    email: EmailStr
    grade_level: Optional[str] = None
