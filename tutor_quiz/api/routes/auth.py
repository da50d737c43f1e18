from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from tutor_quiz.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    verify_password,
)
from tutor_quiz.crud import crud_user
from tutor_quiz.db.session import get_db
from tutor_quiz.schemas.user import RefreshTokenRequest, Token

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _issue_tokens(user_id) -> dict:
    return {
        "access_token": create_access_token(data={"sub": str(user_id)}),
        "refresh_token": create_refresh_token(data={"sub": str(user_id)}),
        "token_type": "bearer",
    }


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    user = crud_user.get_user_by_email(db, form_data.username)
    if not user or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )
    return _issue_tokens(user.id)


@router.post("/refresh", response_model=Token)
def refresh_token(
    token_data: RefreshTokenRequest,
    db: Session = Depends(get_db)
):
    payload = decode_token(token_data.refresh_token, expected_type="refresh")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    user = crud_user.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return _issue_tokens(user.id)
