# botdesk/core/session.py
"""
Session context shared by the flow editor and the conversation engine.

The dashboard keeps the bearer token and the user id issued at login; both
cores receive them through a SessionContext instead of reading ambient storage.
Tokens are verified by the backend, so claims are read here without checking
the signature.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import jwt

log = logging.getLogger("botdesk.session")


class SessionContext:
    """Bearer token + user id for one logged-in business owner"""

    def __init__(self, token: Optional[str], user_id: Optional[str]):
        self.token = token
        self.user_id = user_id

    @classmethod
    def from_token(cls, token: str, user_id: Optional[str] = None) -> "SessionContext":
        """
        Build a session from a login token.

        Args:
            token: JWT issued by the backend
            user_id: Explicit user id; read from the token claims when omitted
        """
        if user_id is None:
            user_id = cls.get_user_id(cls.read_claims(token))
        return cls(token=token, user_id=user_id)

    @staticmethod
    def read_claims(token: Optional[str]) -> Dict[str, Any]:
        """Decode token claims without signature verification ({} if unreadable)"""
        if not token:
            return {}
        try:
            return jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": False},
                algorithms=["HS256", "HS384", "HS512", "RS256"],
            )
        except jwt.InvalidTokenError as e:
            log.warning(f"⚠️ Unreadable session token: {e}")
            return {}

    @staticmethod
    def get_user_id(payload: Dict[str, Any]) -> Optional[str]:
        """Extract user id from token claims"""
        user_id = (
            payload.get('userId') or
            payload.get('user_id') or
            payload.get('sub') or
            payload.get('id')
        )
        return str(user_id) if user_id else None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token and self.user_id)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True when the token carries an ``exp`` claim in the past"""
        exp = self.read_claims(self.token).get('exp')
        if not exp:
            return False
        now = now or datetime.now(timezone.utc)
        return datetime.fromtimestamp(exp, tz=timezone.utc) < now

    def auth_headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def invalidate(self) -> None:
        """Forget credentials after the backend rejected them"""
        log.warning(f"🔒 Session invalidated for user {self.user_id}")
        self.token = None
        self.user_id = None

    def __repr__(self):
        return f"SessionContext(user_id={self.user_id!r}, authenticated={self.is_authenticated})"
