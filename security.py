import base64
import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import bcrypt
from bson import ObjectId
from fastapi import Cookie, Depends, Header, HTTPException, status
from pymongo.database import Database

import config
from database import get_db
from logger import get_logger

_logger = get_logger(__name__)

BCRYPT_ROUNDS = 10


# HS256 JWT, signed with the stdlib
def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()

def _b64url_decode(s: str) -> bytes:
    pad = '=' * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)

def jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(',', ':')).encode())
    payload_b64 = _b64url_encode(json.dumps(payload, default=str, separators=(',', ':')).encode())
    signing_input = f"{header_b64}.{payload_b64}".encode()
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    sig_b64 = _b64url_encode(signature)
    return f"{header_b64}.{payload_b64}.{sig_b64}"

def jwt_decode(token: str, secret: str) -> dict:
    try:
        header_b64, payload_b64, sig_b64 = token.split('.')
        signing_input = f"{header_b64}.{payload_b64}".encode()
        expected_sig = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
        if not hmac.compare_digest(_b64url_encode(expected_sig), sig_b64):
            raise ValueError("Invalid signature")
        payload = json.loads(_b64url_decode(payload_b64))
        if not isinstance(payload, dict):
            raise ValueError("Malformed payload")
        # exp check
        if 'exp' in payload:
            exp = datetime.fromisoformat(payload['exp']) if isinstance(payload['exp'], str) else datetime.fromtimestamp(payload['exp'], tz=timezone.utc)
            if datetime.now(timezone.utc) > exp:
                raise ValueError("Token expired")
        return payload
    except Exception as e:
        raise ValueError(str(e))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()

def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


def create_session_token(user: dict) -> str:
    """Session token for a stored user. Lifetime is bounded by the cookie max-age."""
    payload = {
        "name": user.get("name"),
        "user_id": str(user["_id"]),
        "admin": bool(user.get("is_admin", False)),
    }
    return jwt_encode(payload, config.JWT_SECRET)


# Dependencies
def get_token(
    token: Optional[str] = Cookie(None, alias=config.COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> Optional[str]:
    if token:
        return token
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def _decode_session(token: Optional[str]) -> Dict[str, Any]:
    if not token:
        _logger.warning("No token provided. Please login")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Please login")
    _logger.debug("Verifying token...")
    try:
        payload = jwt_decode(token, config.JWT_SECRET)
    except ValueError:
        _logger.warning("Token verification failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired or token invalid")
    user_id = payload.get("user_id")
    if not isinstance(user_id, str) or not ObjectId.is_valid(user_id):
        _logger.warning(f"User ID in token is not valid: {user_id}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please provide a valid user ID")
    return {"user_id": user_id, "admin": bool(payload.get("admin", False))}


def authentication(token: Optional[str] = Depends(get_token), db: Database = Depends(get_db)) -> Dict[str, Any]:
    """Any logged-in user whose account still exists."""
    session = _decode_session(token)
    user = db["user"].find_one({"_id": ObjectId(session["user_id"])}, {"_id": 1})
    if not user:
        _logger.warning(f"User {session['user_id']} not found")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return session


def authorization(token: Optional[str] = Depends(get_token), db: Database = Depends(get_db)) -> Dict[str, Any]:
    """Admins only: the token must say so and so must the stored user."""
    session = _decode_session(token)
    if not session["admin"]:
        _logger.warning(f"Access denied for non-admin user: {session['user_id']}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden. Admin access required.")
    user = db["user"].find_one({"_id": ObjectId(session["user_id"])}, {"is_admin": 1})
    if not user or not user.get("is_admin"):
        _logger.warning(f"Access denied for admin: {session['user_id']}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access denied")
    return session
