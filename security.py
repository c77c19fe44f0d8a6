import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from bson import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from database import get_collection
from errors import Forbidden, NotFound, Unauthenticated, internal_error

logger = logging.getLogger(__name__)

# HTTP Bearer token dependency
security = HTTPBearer(auto_error=False)


##########
# Passwords
##########
def hash_password(password: str) -> str:
    """Hash password using bcrypt"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify password against hashed value"""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


##########
# JWT Token
##########
def create_access_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    """Create a signed token carrying the user id claim"""
    minutes = config.JWT_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    payload = {
        "id": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry. Raises Unauthenticated on any failure."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid token")
    if not payload.get("id") or not ObjectId.is_valid(str(payload["id"])):
        raise Unauthenticated("Invalid token")
    return payload


##########
# Current User
##########
def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    """Return the token claims of the caller or raise 401"""
    if not credentials or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthenticated("Access denied. No token provided.")
    return decode_access_token(credentials.credentials)


def require_admin(claims: dict = Depends(get_current_user)) -> dict:
    """Return the caller's full user document if they are an admin"""
    try:
        user = get_collection("user").find_one({"_id": ObjectId(claims["id"])})
    except Exception as e:
        logger.exception("Error loading user %s", claims["id"])
        raise internal_error("Server error while checking privileges", e)
    if not user:
        raise NotFound("User not found")
    if not user.get("is_admin"):
        logger.warning("Non-admin user %s attempted an admin operation", claims["id"])
        raise Forbidden("Access denied. Admin privileges required.")
    return user
