"""
Identity store access and the authentication boundary.

Passwords are hashed with passlib/bcrypt and sessions are stateless
HS256 JWTs. Routes depend on ``get_current_principal`` (or the
``require_role`` guard) and pass the resulting ``Principal`` explicitly
into every workflow operation.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from database import collection, to_obj_id, utcnow
from errors import ConflictError, UniqueConstraintError, ValidationError
from logging_config import bind_user
from schemas import Principal, RegisterRequest, User, parse

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = config.settings
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


# Identity store

def find_user_by_id(user_id) -> Optional[dict]:
    return collection("user").find_by_id(user_id)


def find_user_by_email(email: str) -> Optional[dict]:
    return collection("user").find_one({"email": email.strip().lower()})


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "customer"),
        "isActive": user.get("isActive", True),
    }


def register_user(payload: RegisterRequest, role: str = "customer") -> dict:
    email = payload.email.lower()
    if find_user_by_email(email):
        raise ValidationError("Email already registered")
    user = parse(User, {
        "name": payload.name,
        "firstName": payload.firstName,
        "lastName": payload.lastName,
        "email": email,
        "passwordHash": hash_password(payload.password),
        "phone": payload.phone,
        "role": role,
    })
    doc = user.model_dump()
    try:
        doc["_id"] = collection("user").insert(doc)
    except UniqueConstraintError:
        raise ConflictError("Email already registered")
    logger.info("Registered user %s (%s)", doc["_id"], role)
    return doc


def authenticate(email: str, password: str) -> Optional[dict]:
    user = find_user_by_email(email)
    if not user or not verify_password(password, user.get("passwordHash", "")):
        return None
    collection("user").update_by_id(user["_id"], {"lastLogin": utcnow()})
    return user


def principal_for(user: dict) -> Principal:
    return Principal(id=str(user["_id"]), role=user.get("role", "customer"))


# Dependency: get current principal
def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    settings = config.settings
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
        user = find_user_by_id(to_obj_id(user_id))
    except (JWTError, ValidationError):
        raise credentials_exception

    if not user:
        raise credentials_exception
    if not user.get("isActive", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")
    bind_user(str(user["_id"]))
    return principal_for(user)


# Role guard
def require_role(*roles):
    def _guard(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal
    return _guard
