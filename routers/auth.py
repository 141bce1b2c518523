from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from errors import ApiError, ok
from limiter import limiter
from mailer import Mailer, get_mailer
from models import AccountStatus, User, UserRole, utcnow
from schemas import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    TokenRequest,
    UserOut,
)
from security import (
    ACCESS_TOKEN_COOKIE,
    generate_secure_token,
    get_current_user,
    get_password_hash,
    hash_token,
    set_auth_cookie,
    token_for,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def get_user_by_email(db: Session, email: str):
    return db.execute(select(User).where(User.email == email.lower())).scalar_one_or_none()


def _issue_verification(user: User, background: BackgroundTasks, mailer: Mailer):
    token, token_hash = generate_secure_token()
    user.email_verification_token_hash = token_hash
    user.email_verification_expires_at = utcnow() + timedelta(hours=settings.EMAIL_TOKEN_EXPIRE_HOURS)
    background.add_task(mailer.send_verification_email, user.email, user.first_name, token)


@router.post("/register", status_code=201)
@limiter.limit(settings.AUTH_RATE_LIMIT)
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    if get_user_by_email(db, body.email):
        raise ApiError(409, "An account with this email already exists.")

    user = User(
        email=body.email.lower(),
        password_hash=get_password_hash(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        role=UserRole.BUYER.value,
        status=AccountStatus.ACTIVE.value,
    )
    db.add(user)
    _issue_verification(user, background, mailer)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ApiError(409, "An account with this email already exists.")

    token = token_for(user)
    set_auth_cookie(response, token)
    return ok({"user": UserOut.model_validate(user), "token": token}, "Account created successfully!")


@router.post("/login")
@limiter.limit(settings.LOGIN_RATE_LIMIT)
def login(request: Request, response: Response, body: LoginRequest, db: Session = Depends(get_db)):
    user = get_user_by_email(db, body.email)
    if not user:
        raise ApiError(401, "Invalid email or password.")
    if user.status != AccountStatus.ACTIVE:
        raise ApiError(403, "Your account has been suspended or deactivated.")
    if not verify_password(body.password, user.password_hash):
        raise ApiError(401, "Invalid email or password.")

    user.last_login_at = utcnow()
    db.commit()

    token = token_for(user)
    set_auth_cookie(response, token)
    return ok({"user": UserOut.model_validate(user), "token": token}, "Login successful!")


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return ok(message="Logged out successfully")


@router.get("/me")
def me(current: User = Depends(get_current_user)):
    return ok({"user": UserOut.model_validate(current)})


@router.put("/me")
def update_me(body: ProfileUpdate, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(current, field, value)
    db.commit()
    return ok({"user": UserOut.model_validate(current)}, "Profile updated successfully")


@router.post("/change-password")
@limiter.limit(settings.AUTH_RATE_LIMIT)
def change_password(request: Request, body: ChangePasswordRequest, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not verify_password(body.current_password, current.password_hash):
        raise ApiError(400, "Current password is incorrect.")
    current.password_hash = get_password_hash(body.new_password)
    db.commit()
    return ok(message="Password changed successfully")


@router.post("/verify-email")
@limiter.limit(settings.AUTH_RATE_LIMIT)
def verify_email(request: Request, body: TokenRequest, db: Session = Depends(get_db)):
    user = db.execute(
        select(User).where(User.email_verification_token_hash == hash_token(body.token))
    ).scalar_one_or_none()
    if not user or not user.email_verification_expires_at or user.email_verification_expires_at < utcnow():
        raise ApiError(400, "Invalid or expired verification link.")
    user.email_verified = True
    user.email_verification_token_hash = None
    user.email_verification_expires_at = None
    db.commit()
    return ok(message="Email verified successfully")


@router.post("/resend-verification")
@limiter.limit(settings.EMAIL_VERIFY_RATE_LIMIT)
def resend_verification(
    request: Request,
    background: BackgroundTasks,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    if current.email_verified:
        raise ApiError(400, "Email is already verified.")
    _issue_verification(current, background, mailer)
    db.commit()
    return ok(message="Verification email sent")


@router.post("/forgot-password")
@limiter.limit(settings.PASSWORD_RESET_RATE_LIMIT)
def forgot_password(
    request: Request,
    body: EmailRequest,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    user = get_user_by_email(db, body.email)
    if user and user.status == AccountStatus.ACTIVE:
        token, token_hash = generate_secure_token()
        user.password_reset_token_hash = token_hash
        user.password_reset_expires_at = utcnow() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES)
        db.commit()
        background.add_task(mailer.send_password_reset_email, user.email, user.first_name, token)
    # Same answer whether or not the account exists
    return ok(message="If that email is registered, a reset link has been sent.")


@router.post("/reset-password")
@limiter.limit(settings.PASSWORD_RESET_RATE_LIMIT)
def reset_password(request: Request, body: ResetPasswordRequest, db: Session = Depends(get_db)):
    user = db.execute(
        select(User).where(User.password_reset_token_hash == hash_token(body.token))
    ).scalar_one_or_none()
    if not user or not user.password_reset_expires_at or user.password_reset_expires_at < utcnow():
        raise ApiError(400, "Invalid or expired reset link.")
    user.password_hash = get_password_hash(body.new_password)
    user.password_reset_token_hash = None
    user.password_reset_expires_at = None
    db.commit()
    return ok(message="Password has been reset. You can now log in.")
