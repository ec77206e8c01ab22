import logging
from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from core.config import settings
from core.database import get_store
from core.errors import InvalidRequest, PERMISSION_DENIED_MESSAGE, TokenExpired
from core.security import (
    create_token_for_user, generate_token, get_current_user,
    hash_password, verify_password,
)
from models.models import DeleteAccountToken, PasswordResetToken, User, utcnow
from schemas.user_schema import (
    DeleteAccountConfirm, MessageResponse, PasswordResetConfirm,
    PasswordResetRequest, TokenResponse, UserCreate, UserLogin, UserRead,
)
from services.email_service import email_service
from services.store import SQLStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(access_token=create_token_for_user(user), user=UserRead.model_validate(user))


# ==========================================================
# ✅ Register
# ==========================================================
@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, store: SQLStore = Depends(get_store)):
    if await store.get_user_by_email(user_data.email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this email already exists. Please log in instead.",
        )

    new_user = await store.create_user(
        User(
            name=user_data.name.strip(),
            email=user_data.email.lower(),
            password_hash=hash_password(user_data.password),
        )
    )
    logger.info("📝 New account registered: %s", new_user.id)
    return _token_response(new_user)


# ==========================================================
# ✅ Login
# ==========================================================
@router.post("/login", response_model=TokenResponse)
async def login(credentials: UserLogin, store: SQLStore = Depends(get_store)):
    db_user = await store.get_user_by_email(credentials.email)

    # OAuth-only accounts have no password hash and can never match
    if not db_user or not verify_password(credentials.password, db_user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _token_response(db_user)


# ==========================================================
# ✅ Get Current Authenticated User
# ==========================================================
@router.get("/me", response_model=UserRead)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Return the authenticated user's information"""
    return current_user


# ==========================================================
# 🔑 Password reset
# ==========================================================
@router.post("/password-reset/request", response_model=MessageResponse)
async def request_password_reset(
    payload: PasswordResetRequest,
    background_tasks: BackgroundTasks,
    store: SQLStore = Depends(get_store),
):
    """Always answers the same way so callers cannot probe which emails exist."""
    user = await store.get_user_by_email(payload.email)
    if user:
        token = generate_token()
        await store.replace_email_token(
            PasswordResetToken,
            user.email,
            token,
            utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
        )
        link = f"{settings.FRONTEND_URL}/reset-password?token={token}"
        background_tasks.add_task(email_service.send_password_reset_email, user.email, link)
    else:
        logger.info("Password reset requested for unknown email")

    return MessageResponse(message="If an account exists for this email, a reset link has been sent.")


@router.post("/password-reset/confirm", response_model=MessageResponse)
async def confirm_password_reset(payload: PasswordResetConfirm, store: SQLStore = Depends(get_store)):
    row = await store.consume_email_token(PasswordResetToken, payload.token)
    if row is None:
        raise InvalidRequest("Invalid reset token")
    if row.is_expired():
        raise TokenExpired("This reset link has expired. Please request a new one.")

    user = await store.get_user_by_email(row.email)
    if not user:
        raise InvalidRequest("Invalid reset token")

    await store.set_password_hash(user.id, hash_password(payload.password))
    logger.info("🔑 Password reset for user %s", user.id)
    return MessageResponse(message="Your password has been reset.")


# ==========================================================
# ⚠️ Account deletion
# ==========================================================
@router.post("/delete-account/request", response_model=MessageResponse)
async def request_account_deletion(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
):
    token = generate_token()
    await store.replace_email_token(
        DeleteAccountToken,
        current_user.email,
        token,
        utcnow() + timedelta(minutes=settings.DELETE_ACCOUNT_EXPIRE_MINUTES),
    )
    link = f"{settings.FRONTEND_URL}/delete-account/confirm?token={token}"
    background_tasks.add_task(email_service.send_delete_account_email, current_user.email, link)
    return MessageResponse(message="Check your email to confirm account deletion.")


@router.post("/delete-account/confirm", response_model=MessageResponse)
async def confirm_account_deletion(
    payload: DeleteAccountConfirm,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
):
    # Someone else's token is rejected without being used up
    row = await store.get_email_token(DeleteAccountToken, payload.token)
    if row is None:
        raise InvalidRequest("Invalid deletion token")
    if row.email.lower() != current_user.email.lower():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=PERMISSION_DENIED_MESSAGE)

    row = await store.consume_email_token(DeleteAccountToken, payload.token)
    if row is None:
        raise InvalidRequest("Invalid deletion token")
    if row.is_expired():
        raise TokenExpired("This confirmation link has expired. Please request a new one.")

    await store.delete_user(current_user.id)
    logger.info("🗑️ Account %s deleted", current_user.id)
    return MessageResponse(message="Your account has been deleted.")
