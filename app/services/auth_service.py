"""
Authentication service.

Session tokens carry the user id, the account type (guest or regular) and
the avatar URL. Session refresh always re-reads the avatar from the user
store so uploads show up without signing in again.
"""
import logging
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from app.core.security import create_access_token, hash_password, verify_password
from app.db.models.user import User

logger = logging.getLogger(__name__)


def session_type(user: User) -> str:
    return "guest" if user.is_guest else "regular"


def session_claims(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "type": session_type(user),
        "avatar_url": user.avatar_url,
    }


def issue_token(user: User) -> str:
    return create_access_token({
        "sub": str(user.id),
        "type": session_type(user),
        "avatar_url": user.avatar_url,
    })


def create_user(db: Session, email: str, password: str, full_name: Optional[str] = None) -> User:
    """
    Create a regular account.

    Raises:
        ValueError: If the email is already registered
    """
    email = email.lower()
    if db.query(User).filter(User.email == email).first():
        raise ValueError("Email already registered")

    user = User(email=email, full_name=full_name, password_hash=hash_password(password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"User created: user_id={user.id}")
    return user


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    user = db.query(User).filter(User.email == email.lower()).first()
    if not user or user.is_guest or not verify_password(password, user.password_hash):
        return None
    return user


def create_guest_user(db: Session) -> User:
    user = User(email=f"guest-{secrets.token_hex(8)}@guest.local", is_guest=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Guest user created: user_id={user.id}")
    return user


def refresh_session(db: Session, user: User) -> dict:
    """Session payload with the avatar URL re-read from the database."""
    db.refresh(user)
    return session_claims(user)
