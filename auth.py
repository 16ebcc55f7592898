"""Password hashing, bearer token issuance/validation and ownership checks."""
import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

import config
import models
from database import get_db
from errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str):
    """Hash a plain text password using the configured password hashing context"""
    return pwd_context.hash(password)


def verify_password(plain_password, hashed_password):
    """ Verify if a plain text password matches its hashed version"""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    """Encode a JWT; it carries an exp claim only when an expiry applies"""
    if not config.SECRET_KEY:
        raise RuntimeError("SECRET_KEY environment variable not set!")
    to_encode = data.copy()
    if expires_delta is None and config.TOKEN_EXPIRE_MINUTES:
        expires_delta = timedelta(minutes=config.TOKEN_EXPIRE_MINUTES)
    if expires_delta is not None:
        to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def issue_token(db: Session, user: models.User, name: str = "auth_token") -> str:
    """Record a new personal access token for user and return its bearer string.

    The row is only flushed; committing is left to the caller so the token
    shares the caller's transaction.
    """
    token = models.PersonalAccessToken(id=str(uuid.uuid4()), user_id=user.id, name=name)
    expires_delta = None
    if config.TOKEN_EXPIRE_MINUTES:
        expires_delta = timedelta(minutes=config.TOKEN_EXPIRE_MINUTES)
        token.expires_at = datetime.now(timezone.utc) + expires_delta
    db.add(token)
    db.flush()
    return create_access_token({"sub": str(user.id), "jti": token.id}, expires_delta)


def revoke_token(db: Session, token: models.PersonalAccessToken):
    """Delete a single token; the user's other tokens stay valid"""
    token_id, user_id = token.id, token.user_id
    db.delete(token)
    db.commit()
    logger.info(f"Token {token_id} revoked for user {user_id}")


def get_user_by_email(db: Session, email: str):
    """Retrieve a user from the database by their email address"""
    return db.query(models.User).filter(models.User.email == email).first()


def authenticate(db: Session, email: str, password: str):
    """The user matching email and password, or None"""
    user = get_user_by_email(db, email)
    if not user or not user.password or not verify_password(password, user.password):
        return None
    return user


def get_current_token(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
                      db: Session = Depends(get_db)) -> models.PersonalAccessToken:
    """Resolve the bearer token of the request to its stored token row"""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    try:
        payload = jwt.decode(credentials.credentials, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise AuthenticationError()

    token_id, user_id = payload.get("jti"), payload.get("sub")
    if token_id is None or user_id is None:
        raise AuthenticationError()
    token = db.get(models.PersonalAccessToken, token_id)
    if token is None or str(token.user_id) != str(user_id):
        raise AuthenticationError()

    token.last_used_at = datetime.now(timezone.utc)
    db.commit()
    return token


def get_current_user(token: models.PersonalAccessToken = Depends(get_current_token)) -> models.User:
    """Retrieve the currently authenticated user from the bearer token"""
    return token.user


def check_self(user: models.User, target_id: int):
    """Only the user themselves may act on their record"""
    if user.id != target_id:
        raise AuthorizationError("Unauthorized")


def check_ownership(user: models.User, owner_id: int):
    """Verify the current user is the owner of a resource"""
    if user.id != owner_id:
        raise AuthorizationError("Unauthorized")
