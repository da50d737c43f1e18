from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from tutor_quiz.api.deps import get_current_user
from tutor_quiz.crud import crud_user
from tutor_quiz.db.models import User
from tutor_quiz.db.session import get_db
from tutor_quiz.schemas.user import UserCreate, UserResponse

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register_user(user_in: UserCreate, db: Session = Depends(get_db)):
    if crud_user.get_user_by_email(db, user_in.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    if db.query(User).filter(User.name == user_in.name).first():
        raise HTTPException(status_code=400, detail="Username already registered")
    return crud_user.create_user(db, user_in)


@router.get("/me", response_model=UserResponse)
def get_current_user_profile(current_user: User = Depends(get_current_user)):
    return current_user
