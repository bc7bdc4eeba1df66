import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ADMIN_ID, ADMIN_PASSWORD, JWT_ALGORITHM, JWT_SECRET
from database import get_db, oid
from errors import AuthError, AuthorizationError, ValidationError

logger = logging.getLogger(__name__)

ADMIN_USER_ID = "admin"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_user_token(user_id: str) -> str:
    return create_access_token({"userId": str(user_id)})


def check_admin_credentials(admin_id: str, password: str) -> str:
    """Return an admin token when the configured admin credentials match."""
    if not ADMIN_ID or not ADMIN_PASSWORD:
        raise AuthError("Admin login is not configured")
    if admin_id != ADMIN_ID or password != ADMIN_PASSWORD:
        raise ValidationError("Invalid admin credentials")
    return create_access_token({"userId": ADMIN_USER_ID, "isAdmin": True})


def admin_identity() -> dict:
    return {
        "_id": ADMIN_USER_ID,
        "id": ADMIN_USER_ID,
        "name": "Admin",
        "email": ADMIN_ID,
        "isAdmin": True,
        "isPublic": False,
        "profilePhoto": None,
    }


# Dependency: get current user
def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
                     db: Database = Depends(get_db)) -> dict:
    if credentials is None or not credentials.credentials:
        raise AuthError("No token, authorization denied")
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthError("Token is not valid")

    user_id = payload.get("userId")
    if user_id is None:
        raise AuthError("Token is not valid")
    if user_id == ADMIN_USER_ID and payload.get("isAdmin"):
        return admin_identity()

    try:
        user = db["user"].find_one({"_id": oid(user_id)}, {"password_hash": 0})
    except ValidationError:
        raise AuthError("Token is not valid")
    if not user:
        raise AuthError("Token is not valid")
    user["id"] = str(user["_id"])
    user["isAdmin"] = False
    return user


# Role guard
def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("isAdmin"):
        raise AuthorizationError("Admin access required")
    return user


def require_member(user: dict = Depends(get_current_user)) -> dict:
    """Swap and profile operations need a real user document, not the admin sentinel."""
    if user.get("isAdmin"):
        raise AuthorizationError("Admin account cannot perform member actions")
    return user
