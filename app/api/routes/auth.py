from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_current_user
from app.db.models.user import User
from app.db.session import get_db
from app.schemas.auth import SessionResponse, SignupRequest, TokenResponse
from app.services import auth_service

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/signup", response_model=SessionResponse)
def signup(body: SignupRequest, db: Session = Depends(get_db)):
    try:
        user = auth_service.create_user(db, body.email, body.password, body.full_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return auth_service.session_claims(user)


# OAuth2 form login (Swagger sends "username", treated as email)
@router.post("/login", response_model=TokenResponse)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    user = auth_service.authenticate(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {"access_token": auth_service.issue_token(user), "token_type": "bearer"}


@router.post("/guest", response_model=TokenResponse)
def guest_login(db: Session = Depends(get_db)):
    user = auth_service.create_guest_user(db)
    return {"access_token": auth_service.issue_token(user), "token_type": "bearer"}


@router.get("/session", response_model=SessionResponse)
def session(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Refresh the session; the avatar URL is re-read from the database."""
    return auth_service.refresh_session(db, user)
