from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from jose.utils import base64url_decode
from passlib.hash import bcrypt
from database import Database
from errors import (
    DuplicateUser, ExpiredToken, InvalidCredentials, InvalidSignature,
    MalformedToken, MissingToken, ValidationError,
)
from models import User
from utils import is_valid_email, sanitize_input
from dotenv import load_dotenv
import json
import logging
import os
from datetime import datetime, timedelta, UTC

load_dotenv()

logger = logging.getLogger(__name__)

# JWT configuration
SECRET_KEY = os.getenv("SECRET_KEY", "default-secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 5

# Verified against when the username is unknown so both failure paths run bcrypt
DUMMY_PASSWORD_HASH = bcrypt.hash("unused-dummy-password")

# OAuth2 scheme; missing headers are reported by verify_token, not by FastAPI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login", auto_error=False)

def hash_password(password: str) -> str:
    """Return a salted bcrypt hash of the password."""
    return bcrypt.hash(password)

def verify_password(password: str, hashed: str) -> bool:
    """Check a password against a stored hash using passlib's constant-time compare."""
    return bcrypt.verify(password, hashed)

def create_access_token(data: dict, expires_delta: timedelta | None = None):
    """Create a JWT access token."""
    to_encode = data.copy()
    now = datetime.now(UTC)
    expire = now + (expires_delta if expires_delta is not None else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"iat": now, "exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

def register_user(db: Database, username: str, password: str, email: str | None = None) -> dict:
    """Register a new user, storing only the password hash."""
    username = sanitize_input(username)
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if email is not None and not is_valid_email(email):
        raise ValidationError("Invalid email address")
    if db.get_user_by_username(username):
        raise DuplicateUser()
    user_id = db.add_user(User(username=username, password=hash_password(password), email=email))
    logger.info(f"User {username} registered with id {user_id}")
    return {"status": "User registered successfully!"}

def login_user(db: Database, username: str, password: str) -> dict:
    """Authenticate a user and return a signed access token."""
    username = sanitize_input(username)
    db_user = db.get_user_by_username(username)
    if db_user is None:
        verify_password(password, DUMMY_PASSWORD_HASH)
    if not db_user or not verify_password(password, db_user.password):
        logger.info(f"Failed login attempt for {username}")
        raise InvalidCredentials()
    token = create_access_token(data={"username": username})
    logger.info(f"User {username} logged in")
    return {"status": "Login successful!", "token": token}

def verify_token(token: str | None) -> dict:
    """Decode a bearer token and return its claims."""
    if not token:
        raise MissingToken()
    segments = token.split(".")
    if len(segments) != 3 or not all(segments):
        raise MalformedToken()
    try:
        jwt.get_unverified_header(token)
    except JWTError:
        raise MalformedToken()
    try:
        claims = json.loads(base64url_decode(segments[1].encode("ascii")))
    except ValueError:
        raise MalformedToken()
    if not isinstance(claims, dict):
        raise MalformedToken()
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise ExpiredToken()
    except JWTError as e:
        logger.warning(f"Token rejected: {e}")
        raise InvalidSignature()
    if not payload.get("username"):
        raise InvalidSignature()
    return payload

async def get_current_user(request: Request, token: str | None = Depends(oauth2_scheme)):
    """Verify the request's bearer token and attach its claims to request.state.user."""
    claims = verify_token(token)
    request.state.user = claims
    return claims
