from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from tutor_quiz.core.base_config import BaseConfig, UtcDatetime


class QuestionCreate(BaseModel):
    prompt: str = Field(min_length=1)
    image: Optional[str] = None
    options: List[str] = Field(min_length=4, max_length=4)
    correct_option: int = Field(ge=1, le=4)


class QuizCreate(BaseModel):
    name: str = Field(min_length=1)
    grade: str
    duration_minutes: int = Field(gt=0)
    questions_to_show: Optional[int] = Field(default=None, gt=0)
    is_active: bool = True
    is_visible: bool = True
    is_prepaid: bool = False
    price: float = Field(default=0, ge=0)
    show_answers_after_completion: bool = True
    questions: List[QuestionCreate] = Field(min_length=1)

    @model_validator(mode="after")
    def check_questions_to_show(self):
        if self.questions_to_show is None:
            self.questions_to_show = len(self.questions)
        elif self.questions_to_show > len(self.questions):
            raise ValueError("questions_to_show cannot exceed the number of questions")
        return self


class QuizResponse(BaseConfig):
    id: UUID
    name: str
    grade: str
    duration_minutes: int
    questions_to_show: int
    pool_size: int
    is_active: bool
    is_visible: bool
    is_prepaid: bool
    price: float
    show_answers_after_completion: bool
    created_at: Optional[UtcDatetime] = None


class QuizListItem(BaseModel):
    id: UUID
    name: str
    duration_minutes: int
    questions_to_show: int
    is_prepaid: bool
    price: float
    attempt_status: str
    score: Optional[int] = None
