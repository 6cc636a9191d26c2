from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from database import get_db
from schemas.user import UserSignup, Token, RefreshRequest, User as UserOut
from security import create_access_token, create_refresh_token, verify_refresh_token, get_current_user, identity_for
from auth_service import create_user, authenticate_user, get_user_by_email, claim_first_admin
from audit_service import AuditService, ADMIN_BOOTSTRAP_SUCCESS, ADMIN_BOOTSTRAP_FAILED
from models.user import User
import uuid

router = APIRouter()

@router.post("/signup", response_model=UserOut, status_code=201)
async def signup(user: UserSignup, db: Session = Depends(get_db)):
    """Register a new account with the default 'user' role"""
    return await create_user(db, user)

@router.post("/signin", response_model=Token)
async def signin(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = await authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Incorrect email or password", headers={"WWW-Authenticate": "Bearer"})
    if user.banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    session_id = uuid.uuid4().hex
    return {
        "access_token": create_access_token({"sub": user.email}, session_id=session_id),
        "refresh_token": create_refresh_token({"sub": user.email}, session_id=session_id),
        "token_type": "bearer",
    }

@router.post("/refresh", response_model=Token)
async def refresh(body: RefreshRequest, db: Session = Depends(get_db)):
    payload = verify_refresh_token(body.refresh_token)
    user = await get_user_by_email(db, payload["sub"])
    if not user or user.banned:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    session_id = payload.get("sid")
    return {
        "access_token": create_access_token({"sub": user.email}, session_id=session_id),
        "refresh_token": create_refresh_token({"sub": user.email}, session_id=session_id),
        "token_type": "bearer",
    }

@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return current_user

@router.post("/admin-setup/claim", response_model=UserOut)
async def claim_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Promote the caller to admin when the portal has no admin yet"""
    actor = identity_for(current_user)
    claimed = await claim_first_admin(db, current_user)
    audit = AuditService(db)
    if not claimed:
        audit.log_admin_action(
            actor,
            ADMIN_BOOTSTRAP_FAILED,
            target_user_id=actor.holder_id,
            target_email=actor.holder_label,
            request=request,
            success=False,
            error_message="Admin already exists",
        )
        raise HTTPException(status_code=409, detail="An admin account already exists")
    audit.log_admin_action(
        actor,
        ADMIN_BOOTSTRAP_SUCCESS,
        target_user_id=actor.holder_id,
        target_email=actor.holder_label,
        request=request,
    )
    return current_user
