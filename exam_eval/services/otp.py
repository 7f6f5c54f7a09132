"""One-time password issue / verify / reset.

The store is an injected object with an explicit lifecycle (built at app
startup, closed at shutdown) so every test can start from a fresh one. Expiry
is opt-in: with ``ttl_seconds=None`` a code stays valid until it is consumed or
replaced by the next send.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from exam_eval.exceptions import InvalidOtp, NotFoundError, ValidationError
from exam_eval.models import User
from exam_eval.security import hash_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def generate_code() -> str:
    """Uniformly random 6-digit decimal code."""
    return str(100000 + secrets.randbelow(900000))


def _normalize(email: str) -> str:
    return email.strip().lower()


class OtpStore(Protocol):
    def issue(self, email: str) -> str: ...

    def check(self, email: str, code: str) -> bool: ...

    def verify(self, email: str, code: str) -> bool: ...

    def invalidate(self, email: str) -> None: ...

    def close(self) -> None: ...


class InMemoryOtpStore:
    """Process-local store; only suitable for a single instance."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _expired(self, issued_at: float) -> bool:
        return self.ttl_seconds is not None and self._clock() - issued_at >= self.ttl_seconds

    def issue(self, email: str) -> str:
        code = generate_code()
        with self._lock:
            self._entries[_normalize(email)] = (code, self._clock())
        return code

    def _matches(self, key: str, code: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        stored, issued_at = entry
        if self._expired(issued_at):
            del self._entries[key]
            return False
        return secrets.compare_digest(stored, str(code))

    def check(self, email: str, code: str) -> bool:
        """Like ``verify`` but leaves a matching code in place."""
        with self._lock:
            return self._matches(_normalize(email), code)

    def verify(self, email: str, code: str) -> bool:
        key = _normalize(email)
        with self._lock:
            if not self._matches(key, code):
                return False
            del self._entries[key]
            return True

    def invalidate(self, email: str) -> None:
        with self._lock:
            self._entries.pop(_normalize(email), None)

    def close(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisOtpStore:
    """Shared store for multi-instance deployments; expiry handled by Redis."""

    def __init__(self, client, ttl_seconds: Optional[int] = None, prefix: str = "otp:"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, email: str) -> str:
        return f"{self.prefix}{_normalize(email)}"

    def issue(self, email: str) -> str:
        code = generate_code()
        self.client.set(self._key(email), code, ex=self.ttl_seconds)
        return code

    def check(self, email: str, code: str) -> bool:
        stored = self.client.get(self._key(email))
        if stored is None:
            return False
        if isinstance(stored, bytes):
            stored = stored.decode("utf-8")
        return secrets.compare_digest(stored, str(code))

    def verify(self, email: str, code: str) -> bool:
        key = self._key(email)
        if not self.check(email, code):
            return False
        # only the caller whose DELETE removed the key wins
        return self.client.delete(key) == 1

    def invalidate(self, email: str) -> None:
        self.client.delete(self._key(email))

    def close(self) -> None:
        self.client.close()


class OtpMailer(Protocol):
    async def send_otp_email(self, to_email: str, code: str) -> None: ...


class OtpService:
    def __init__(self, store: OtpStore, mailer: OtpMailer):
        self.store = store
        self.mailer = mailer

    async def send_otp(self, email: str) -> None:
        """Issue a code (replacing any previous one) and mail it.

        The code stays stored if delivery fails; the mailer's
        ``DependencyError`` propagates to the caller.
        """
        code = self.store.issue(email)
        await self.mailer.send_otp_email(email, code)

    def verify_otp(self, email: str, code: Optional[str]) -> bool:
        if not code:
            return False
        return self.store.verify(email, code)

    def check_otp(self, email: str, code: Optional[str]) -> bool:
        if not code:
            return False
        return self.store.check(email, code)

    def reset_password(self, db: Session, email: str, code: str, new_password: str) -> User:
        """Set a new password; the code is only spent once the user is found."""
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if not self.check_otp(email, code):
            raise InvalidOtp()

        user = db.query(User).filter(User.email == _normalize(email)).first()
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        if not self.verify_otp(email, code):
            raise InvalidOtp()

        user.password_hash = hash_password(new_password)
        db.commit()
        logger.info("Password reset for user %s", user.id)
        return user
