"""
Session context.

A Session is acquired at sign-in, stored server side under a random token,
handed to endpoints through the `current_session` dependency and invalidated
at sign-out. The user's role is read from `user_roles` once, when the session
starts.
"""
import logging
import os
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError
from pydantic import BaseModel, Field

import database
from schemas import SESSION, USER, USER_ROLES, User, UserRole
from workflow import Role, STAFF_ROLES

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer = HTTPBearer(auto_error=False)

DUPLICATE_ACCOUNT = "User already registered"
INVALID_LOGIN = "Invalid login credentials"


class AuthError(Exception):
    """Raised by the identity layer; the message is shown to the user after `friendly_auth_message`."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class Session(BaseModel):
    token: str
    user_id: str
    email: str
    full_name: str
    role: Optional[Role] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def effective_role(self) -> Role:
        # A user without a role row is treated as a voyager everywhere.
        return self.role or Role.VOYAGER

    @property
    def is_staff(self) -> bool:
        return self.effective_role in STAFF_ROLES


def friendly_auth_message(message: str) -> str:
    if "already registered" in message:
        return "This email is already registered. Please sign in instead."
    if "Invalid login" in message:
        return "Invalid email or password. Please try again."
    return message


def secret_key_valid(role: Role, secret_key: str) -> bool:
    if role == Role.VOYAGER:
        return True
    expected = os.getenv("ADMIN_SECRET_KEY")
    return bool(expected) and secrets.compare_digest(secret_key.strip().encode(), expected.encode())


def register(*, email: str, password: str, full_name: str, role: Role) -> dict:
    """Create the account and its role row. Does not start a session."""
    email = email.lower()
    if database.find_document(USER, {"email": email}):
        raise AuthError(DUPLICATE_ACCOUNT)
    user = User(full_name=full_name, email=email, password_hash=pwd_context.hash(password))
    try:
        record = database.create_document(USER, user)
    except DuplicateKeyError:
        raise AuthError(DUPLICATE_ACCOUNT) from None
    database.create_document(USER_ROLES, UserRole(user_id=record["id"], role=role))
    logger.info("registered %s as %s", email, Role(role).value)
    return {"user_id": record["id"], "email": email, "full_name": full_name, "role": Role(role).value}


def fetch_user_role(user_id: str) -> Optional[Role]:
    row = database.find_document(USER_ROLES, {"user_id": user_id})
    if not row:
        logger.warning("no role found for user %s, defaulting to voyager", user_id)
        return None
    try:
        return Role(row["role"])
    except ValueError:
        logger.warning("unknown role %r for user %s", row.get("role"), user_id)
        return None


def sign_in(*, email: str, password: str) -> Session:
    user = database.find_document(USER, {"email": email.lower(), "is_active": True})
    if not user or not pwd_context.verify(password, user["password_hash"]):
        raise AuthError(INVALID_LOGIN, status_code=401)
    session = Session(
        token=secrets.token_hex(32),
        user_id=user["id"],
        email=user["email"],
        full_name=user["full_name"],
        role=fetch_user_role(user["id"]),
    )
    database.create_document(SESSION, session.model_dump(mode="json", exclude={"created_at"}))
    logger.info("session started for %s (%s)", session.email, session.effective_role.value)
    return session


def resolve_session(token: str) -> Optional[Session]:
    if not token:
        return None
    row = database.find_document(SESSION, {"token": token})
    if not row:
        return None
    return Session(**{key: row[key] for key in ("token", "user_id", "email", "full_name", "role", "created_at")})


def sign_out(token: str) -> bool:
    removed = database.delete_documents(SESSION, {"token": token})
    if removed:
        logger.info("session invalidated")
    return removed > 0


def current_session(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Session:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    session = resolve_session(credentials.credentials)
    if session is None:
        raise HTTPException(status_code=401, detail="Session expired or signed out")
    return session


def require_roles(*roles: Role):
    allowed = set(roles)

    def dependency(session: Session = Depends(current_session)) -> Session:
        if session.effective_role not in allowed:
            raise HTTPException(status_code=403, detail="Your role does not allow this action")
        return session

    return dependency
