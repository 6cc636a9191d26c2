from fastapi import HTTPException
from sqlalchemy.orm import Session
from models.user import User
from schemas.user import UserCreate, UserSignup
from security import get_password_hash, verify_password
from datetime import datetime
import logging
import re

logger = logging.getLogger(__name__)

def extract_name_from_email(email: str) -> str:
    """Extract name from email address (part before @)"""
    name_part = email.split('@')[0]

    # Replace common separators with spaces and capitalize
    name_part = re.sub(r'[._-]', ' ', name_part)
    return ' '.join(word.capitalize() for word in name_part.split())

async def get_user_by_email(db: Session, email: str):
    return db.query(User).filter(User.email == email).first()

async def get_user_by_id(db: Session, user_id: int):
    return db.query(User).filter(User.id == user_id).first()

async def create_user(db: Session, user: UserSignup, role: str = "user"):
    if await get_user_by_email(db, user.email):
        raise HTTPException(status_code=409, detail="Email address already exists")
    db_user = User(
        email=user.email,
        password=get_password_hash(user.password),
        name=user.name or extract_name_from_email(user.email),
        role=role,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info("Created user %s with role %s", db_user.email, role)
    return db_user

async def create_user_as_admin(db: Session, user: UserCreate):
    return await create_user(db, user, role=user.role)

async def authenticate_user(db: Session, email: str, password: str):
    user = await get_user_by_email(db, email)
    if not user or not verify_password(password, user.password):
        return None
    return user

async def admin_exists(db: Session) -> bool:
    return db.query(User).filter(User.role == "admin").first() is not None

async def claim_first_admin(db: Session, user: User) -> bool:
    """Promote ``user`` to admin only while the portal has no admin at all."""
    if await admin_exists(db):
        return False
    user.role = "admin"
    user.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(user)
    logger.info("User %s claimed the first admin account", user.email)
    return True
