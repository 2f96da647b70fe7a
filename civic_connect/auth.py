# Password hashing, JWT tokens and caller-identity dependencies

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRE_HOURS
from .database import get_db, run_db
from .errors import Forbidden, Unauthorized
from .models import UserRole, UserResponse

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

# Revoked token -> its expiry timestamp
_token_blacklist: Dict[str, float] = {}
MAX_REVOKED_TOKENS = 10000

def hash_password(password: str) -> str:
    if len(password.encode("utf-8")) > 72:
        raise ValueError("Password cannot exceed 72 bytes")
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

def revoke_token(token: str) -> None:
    try:
        expires = float(jwt.get_unverified_claims(token).get("exp", float("inf")))
    except JWTError:
        return
    _token_blacklist[token] = expires
    if len(_token_blacklist) > MAX_REVOKED_TOKENS:
        # Only entries whose token has expired may go: those fail decoding anyway
        now = datetime.now(timezone.utc).timestamp()
        for stale in [t for t, exp in _token_blacklist.items() if exp <= now]:
            del _token_blacklist[stale]

def _username_from_token(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")

async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)):
    if token is None:
        raise Unauthorized("Authentication required")
    if token in _token_blacklist:
        raise Unauthorized("Token has been revoked")
    username = _username_from_token(token)
    if username is None:
        raise Unauthorized("Invalid token")
    user = await run_db(db.users.find_one, {"username": username})
    if user is None:
        raise Unauthorized("User not found")
    return user

async def get_optional_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)):
    if token is None or token in _token_blacklist:
        return None
    username = _username_from_token(token)
    if username is None:
        return None
    return await run_db(db.users.find_one, {"username": username})

def require_role(*roles):
    async def role_checker(user=Depends(get_current_user)):
        if user["role"] not in roles:
            raise Forbidden("Admin access required")
        return user
    return role_checker

require_admin = require_role(UserRole.ADMIN.value)

def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and user.get("role") == UserRole.ADMIN.value

def user_to_response(user: dict) -> UserResponse:
    return UserResponse(
        id=str(user["_id"]), username=user["username"], email=user.get("email"),
        phone=user.get("phone"), municipality=user["municipality"], role=user["role"],
        department=user.get("department"), created_at=user["created_at"])
