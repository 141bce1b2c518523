import hashlib
import secrets
from datetime import datetime, timedelta

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from models import AccountStatus, User, UserRole

ACCESS_TOKEN_COOKIE = "access_token"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def token_for(user: User):
    return create_access_token(data={"sub": str(user.id), "email": user.email, "role": user.role})


def generate_secure_token():
    """Returns ``(token, sha256_hex)``: mail the token, store the hash."""
    token = secrets.token_hex(32)
    return token, hash_token(token)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def set_auth_cookie(response, token: str):
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


def _extract_token(request: Request, bearer: str | None):
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or bearer


def _load_user(token: str, db: Session):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token.",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str | None = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    user = db.get(User, int(user_id)) if user_id.isdigit() else None
    if user is None:
        raise HTTPException(status_code=401, detail="User no longer exists.")
    return user


def get_current_user(request: Request, token: str | None = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    token = _extract_token(request, token)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please login.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = _load_user(token, db)
    if user.status != AccountStatus.ACTIVE:
        raise HTTPException(status_code=403, detail="Your account has been suspended or deactivated.")
    request.state.user = user
    return user


async def get_current_admin(current: User = Depends(get_current_user)):
    if current.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required.")
    return current


async def get_current_seller(current: User = Depends(get_current_user)):
    if current.role not in (UserRole.SELLER, UserRole.ADMIN):
        raise HTTPException(status_code=403, detail="Seller or Admin access required.")
    return current
