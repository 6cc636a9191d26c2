from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from fastapi import HTTPException, Depends, Request
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from jose import JWTError, jwt
from config import settings
import database
from database import get_db
from sqlalchemy.orm import Session
import uuid

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/signin", auto_error=False)


@dataclass(frozen=True)
class Identity:
    """Who is calling: what the lock and realtime layers know about an actor."""
    holder_id: str
    holder_label: str
    role: str
    session_id: Optional[str] = None


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password)

def create_access_token(data: dict, session_id: Optional[str] = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "sid": session_id or uuid.uuid4().hex, "typ": "access"})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def create_refresh_token(data: dict, session_id: Optional[str] = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire, "typ": "refresh"})
    if session_id:
        to_encode["sid"] = session_id
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def verify_refresh_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    if payload.get("sub") is None or payload.get("typ") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    return payload

def _credentials_exception():
    return HTTPException(
        status_code=401,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

def decode_access_token(token: Optional[str]) -> dict:
    if not token:
        raise _credentials_exception()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise _credentials_exception()
    if payload.get("sub") is None or payload.get("typ") != "access":
        raise _credentials_exception()
    return payload

def _load_user(db: Session, payload: dict):
    from models.user import User
    user = db.query(User).filter(User.email == payload["sub"]).first()
    if user is None:
        raise _credentials_exception()
    if user.banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    return user

def identity_for(user, session_id: Optional[str] = None) -> Identity:
    return Identity(
        holder_id=str(user.id),
        holder_label=user.email,
        role=user.role or "user",
        session_id=session_id,
    )

async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    return _load_user(db, decode_access_token(token))

async def get_current_identity(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Identity:
    payload = decode_access_token(token)
    user = _load_user(db, payload)
    return identity_for(user, payload.get("sid"))

async def get_stream_identity(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Identity:
    # EventSource cannot send headers, so the stream also accepts ?access_token=
    token = token or request.query_params.get("access_token")
    payload = decode_access_token(token)
    # Own session, closed before streaming starts: a get_db session would stay
    # checked out until the stream ends
    with database.SessionLocal() as db:
        user = _load_user(db, payload)
        return identity_for(user, payload.get("sid"))

def require_role(*roles: str):
    async def _dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            raise HTTPException(status_code=403, detail=f"Requires role: {', '.join(roles)}")
        return identity
    return _dependency

require_admin = require_role("admin")
