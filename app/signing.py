import hashlib
import hmac
import time

from app.models import Identity


class SessionSigner:
    """HMAC session tokens of the form ``user_id:role:expires_at:signature``."""

    def __init__(self, secret_key: str):
        self.secret_key = secret_key.encode("utf-8")

    def _message(self, *, user_id: str, role: str, expires_at: int) -> bytes:
        return f"{user_id}:{role}:{expires_at}".encode("utf-8")

    def sign(self, *, user_id: str, role: str, expires_at: int) -> str:
        msg = self._message(user_id=user_id, role=role, expires_at=expires_at)
        return hmac.new(self.secret_key, msg, hashlib.sha256).hexdigest()

    def verify(self, *, user_id: str, role: str, expires_at: int, signature: str) -> bool:
        expected = self.sign(user_id=user_id, role=role, expires_at=expires_at)
        return hmac.compare_digest(expected, signature)

    def issue(self, *, user_id: str, role: str, ttl_seconds: int, now: int | None = None) -> str:
        now = int(time.time()) if now is None else now
        expires_at = now + ttl_seconds
        signature = self.sign(user_id=user_id, role=role, expires_at=expires_at)
        return f"{user_id}:{role}:{expires_at}:{signature}"

    def resolve(self, token: str, now: int | None = None) -> Identity | None:
        # user ids may contain ':', roles and the trailing fields may not
        parts = token.rsplit(":", 3)
        if len(parts) != 4:
            return None
        user_id, role, raw_expires_at, signature = parts
        try:
            expires_at = int(raw_expires_at)
        except ValueError:
            return None
        now = int(time.time()) if now is None else now
        if not user_id or expires_at < now:
            return None
        if not self.verify(user_id=user_id, role=role, expires_at=expires_at, signature=signature):
            return None
        return Identity(user_id=user_id, role=role)
