from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
import logging
import os
import secrets

import bcrypt
from dotenv import load_dotenv
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models, schemas
from database import get_db
from errors import (
    AccountDeactivated,
    InvalidCredentials,
    PermissionDenied,
    RoleMismatch,
    Unauthenticated,
    UserExists,
    ValidationFailed,
)

load_dotenv()

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET", "dev-only-change-me-before-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 60))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 10))

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72

bearer_scheme = HTTPBearer(auto_error=False)


# --- Passwords ---

def get_password_hash(password: str) -> str:
    raw = password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_BYTES:
        raise ValidationFailed("Password must be at most 72 bytes long")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    raw = plain_password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(raw, hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        logger.warning("Malformed password hash encountered")
        return False


# --- Tokens ---

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> int:
    """Return the user id carried by ``token``.

    Raises Unauthenticated for expired, tampered or malformed tokens.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthenticated()
    subject = payload.get("sub")
    if subject is None:
        raise Unauthenticated()
    try:
        return int(subject)
    except (TypeError, ValueError):
        raise Unauthenticated()


def token_for(user: models.User) -> str:
    return create_access_token(data={"sub": str(user.id)})


def normalize_email(email: str) -> str:
    return email.strip().lower()


# --- Login / registration ---

def login(db: Session, email: str, password: str, role: str) -> Tuple[str, models.User]:
    user = db.query(models.User).filter(models.User.email == normalize_email(email)).first()
    if not user:
        logger.info("Login failed for %s: unknown email", email)
        raise InvalidCredentials()

    if not user.is_active:
        logger.info("Login refused for user %s: account deactivated", user.id)
        raise AccountDeactivated()

    if not verify_password(password, user.hashed_password):
        logger.info("Login failed for user %s: bad password", user.id)
        raise InvalidCredentials()

    if user.role != role:
        logger.info("Login failed for user %s: requested role %s, stored role %s", user.id, role, user.role)
        raise RoleMismatch()

    logger.info("User %s logged in as %s", user.id, user.role)
    return token_for(user), user


def create_user(db: Session, user_in: schemas.UserCreate) -> models.User:
    email = normalize_email(user_in.email)
    if db.query(models.User).filter(models.User.email == email).first():
        raise UserExists()

    staff_id = user_in.staff_id or None
    if staff_id and db.query(models.User).filter(models.User.staff_id == staff_id).first():
        raise UserExists("Staff ID already in use")

    db_user = models.User(
        email=email,
        hashed_password=get_password_hash(user_in.password),
        full_name=user_in.full_name,
        staff_id=staff_id,
        role=user_in.role,
        is_active=True,
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise UserExists()
    db.refresh(db_user)
    logger.info("Created %s user %s (%s)", db_user.role, db_user.id, db_user.email)
    return db_user


def register(db: Session, user_in: schemas.UserCreate) -> Tuple[str, models.User]:
    user = create_user(db, user_in)
    return token_for(user), user


def change_password(db: Session, user: models.User, old_password: str, new_password: str):
    if not verify_password(old_password, user.hashed_password):
        raise ValidationFailed("Incorrect old password")
    user.hashed_password = get_password_hash(new_password)
    db.commit()


def start_password_reset(db: Session, email: str) -> Optional[Tuple[models.User, str]]:
    """Issue a reset token for an active user, or None when there is nobody to reset."""
    user = db.query(models.User).filter(models.User.email == normalize_email(email)).first()
    if not user or not user.is_active:
        return None

    token = secrets.token_urlsafe(32)
    user.reset_password_token = token
    user.reset_password_expires = models.utcnow() + timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES)
    db.commit()
    return user, token


def reset_password(db: Session, token: str, new_password: str) -> models.User:
    user = db.query(models.User).filter(models.User.reset_password_token == token).first()
    if not user or not user.reset_password_expires or user.reset_password_expires < models.utcnow():
        raise ValidationFailed("Password reset token is invalid or has expired")

    user.hashed_password = get_password_hash(new_password)
    user.reset_password_token = None
    user.reset_password_expires = None
    db.commit()
    logger.info("Password reset for user %s", user.id)
    return user


# --- Dependencies ---

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    if credentials is None:
        raise Unauthenticated("No token, authorization denied")

    user_id = decode_access_token(credentials.credentials)
    user = db.get(models.User, user_id)
    if user is None:
        raise Unauthenticated()
    if not user.is_active:
        raise AccountDeactivated("User account is deactivated")
    return user


def require_roles(*roles: str):
    def checker(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in roles:
            raise PermissionDenied()
        return current_user
    return checker


require_admin = require_roles("admin")
require_staff = require_roles("staff")
require_admin_or_commissioner = require_roles("admin", "commissioner")
