"""
Authentication API endpoints.
"""
import logging
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from google.auth.transport import requests
from google.oauth2 import id_token
from google.auth.exceptions import GoogleAuthError
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from berries.config import settings
from berries.database import get_db
from berries.errors import NotFound, PersistenceError
from berries.services.credential_store import DuplicateIdentity, SqlCredentialStore

logger = logging.getLogger(__name__)


router = APIRouter()


class SignupRequest(BaseModel):
    """Local account registration."""
    email: str
    password: str
    confirm: str


class LoginRequest(BaseModel):
    """Local account login."""
    email: str
    password: str


class GoogleLoginRequest(BaseModel):
    """Google ID token issued to the frontend."""
    google_token: str


class AuthResponse(BaseModel):
    """Backend token plus the identity it was issued for."""
    token: str
    user: dict


def get_credential_store(db: Session = Depends(get_db)) -> SqlCredentialStore:
    return SqlCredentialStore(db)


def create_access_token(identity: str) -> str:
    """Sign a backend JWT whose subject is the identity."""
    payload = {
        "sub": identity,
        "email": identity,
        "exp": datetime.now(timezone.utc) + timedelta(days=settings.jwt_expire_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def verify_token(authorization: Optional[str] = Header(None)) -> dict:
    """Verify the backend JWT from the Authorization header."""
    if not authorization:
        logger.warning("Authorization header missing")
        raise HTTPException(status_code=401, detail="Authorization header missing")

    token = authorization.replace("Bearer ", "").strip()
    if not token or token == "Bearer":
        logger.warning("Empty token received")
        raise HTTPException(status_code=401, detail="Token is empty")

    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError as e:
        logger.warning(f"Token verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")

    if not payload.get("sub"):
        logger.warning(f"Token missing subject: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token: missing user information")
    return payload


async def current_identity(token: dict = Depends(verify_token)) -> str:
    """Identity (email or provider subject) of the authenticated caller."""
    return token["sub"]


def _auth_response(identity: str, user_id: str) -> AuthResponse:
    return AuthResponse(
        token=create_access_token(identity),
        user={"id": user_id, "email": identity},
    )


@router.post("/auth/signup", response_model=AuthResponse)
async def signup(
    request: SignupRequest,
    store: SqlCredentialStore = Depends(get_credential_store),
):
    """Create a local account and log it in."""
    email = request.email.strip().lower()
    if not email or not request.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    if request.password != request.confirm:
        raise HTTPException(status_code=400, detail="Passwords do not match")

    try:
        user = store.create(email, password=request.password)
    except DuplicateIdentity:
        raise HTTPException(status_code=400, detail="Email already registered")
    except PersistenceError as e:
        logger.error(f"Signup failed for {email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Could not create account")

    logger.info(f"User signed up: {email}")
    return _auth_response(email, user.id)


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    store: SqlCredentialStore = Depends(get_credential_store),
):
    """Log in with email and password."""
    email = request.email.strip().lower()
    try:
        valid = store.check_password(email, request.password)
    except PersistenceError as e:
        logger.error(f"Login lookup failed for {email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Login unavailable")

    if not valid:
        logger.warning(f"Login failed for {email}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    user = store.lookup(email)
    logger.info(f"User logged in: {email}")
    return _auth_response(email, user.id)


@router.post("/auth/google", response_model=AuthResponse)
async def google_login(
    request: GoogleLoginRequest,
    store: SqlCredentialStore = Depends(get_credential_store),
):
    """
    Verify a Google ID token and return a backend JWT.

    The identity is the token's email, or ``<sub>@google.com`` when the
    profile has no email. The account is created on first login.
    """
    if not settings.google_oauth_client_id:
        logger.error("Google OAuth Client ID not configured")
        raise HTTPException(
            status_code=500,
            detail="Google OAuth Client ID not configured. Please set GOOGLE_OAUTH_CLIENT_ID in environment variables."
        )

    # Handle clock skew by retrying with a small delay if token is "used too early"
    max_retries = 2
    retry_delay = 1.0
    idinfo = None

    for attempt in range(max_retries + 1):
        try:
            idinfo = id_token.verify_oauth2_token(
                request.google_token,
                requests.Request(),
                settings.google_oauth_client_id
            )
            break
        except ValueError as e:
            error_msg = str(e)
            if "Token used too early" in error_msg and attempt < max_retries:
                logger.warning(f"Clock skew detected (attempt {attempt + 1}/{max_retries + 1}): {error_msg}")
                await asyncio.sleep(retry_delay)
                continue
            logger.error(f"Google token verification failed (ValueError): {error_msg}")
            raise HTTPException(status_code=401, detail=f"Invalid Google token: {error_msg}")
        except GoogleAuthError as e:
            logger.error(f"Google token verification failed (GoogleAuthError): {str(e)}")
            raise HTTPException(status_code=401, detail=f"Google authentication error: {str(e)}")

    if idinfo is None:
        raise HTTPException(status_code=401, detail="Failed to verify Google token after retries")

    subject = idinfo.get("sub")
    email = (idinfo.get("email") or f"{subject}@google.com").lower()

    try:
        try:
            user = store.lookup(email)
        except NotFound:
            user = store.create(email, google_id=subject)
    except DuplicateIdentity:
        # Created concurrently by another login
        user = store.lookup(email)
    except PersistenceError as e:
        logger.error(f"Google login failed for {email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Could not complete login")

    logger.info(f"User logged in with Google: {email}")
    return _auth_response(email, user.id)
