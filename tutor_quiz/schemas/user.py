from pydantic import BaseModel, EmailStr, Field
from tutor_quiz.core.base_config import BaseConfig, UtcDatetime
from uuid import UUID


class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)
    grade: str


class UserResponse(BaseConfig):
    id: UUID
    name: str
    email: EmailStr
    grade: str
    is_teacher: bool
    total_score: int
    total_questions: int
    exams_entered: int
    created_at: UtcDatetime


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshTokenRequest(BaseModel):
    refresh_token: str
