"""Password hashing and session tokens.

Tokens are stateless JWTs carrying ``{userId, email, role}`` plus issuer and
expiry; there is no server-side revocation list.
"""

from datetime import datetime, timezone
from typing import Any, Dict

import bcrypt as _bcrypt
from jose import JWTError, jwt

from exam_eval.config import Settings
from exam_eval.exceptions import InvalidToken
from exam_eval.models import User


# ─── Password helpers ─────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return _bcrypt.hashpw(password.encode("utf-8"), _bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Constant-time check; a malformed stored hash never verifies."""
    try:
        return _bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# ─── Token helpers ─────────────────────────────────────────────────────────────

def create_access_token(user: User, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user.id),
        "userId": user.id,
        "email": user.email,
        "role": user.role.value,
        "iss": settings.jwt_issuer,
        "iat": now,
        "exp": now + settings.token_lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Verify signature, expiry and issuer. Raises ``InvalidToken``."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except JWTError as exc:
        raise InvalidToken() from exc
    if payload.get("userId") is None:
        raise InvalidToken("Invalid token payload")
    return payload
