"""
Anonymous identity provider.

Signing in anonymously mints a stable random user id and a signed session
token for it. Tokens are HS256 JWTs; sign-out revokes the token id in Redis
(or in-process when Redis is unavailable) until the token would have expired.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from waste_rewards.core.errors import AuthenticationError
from waste_rewards.services.redis_service import RedisService
from waste_rewards.utils.helpers import utc_now

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

AuthListener = Callable[[Optional[str]], None]


@dataclass
class AnonymousSession:
    user_id: str
    token: str
    expires_at: datetime


class IdentityService:
    def __init__(self, secret_key: str, ttl_minutes: int = 60 * 24 * 30, redis_service: Optional[RedisService] = None):
        self.secret_key = secret_key
        self.ttl = timedelta(minutes=ttl_minutes)
        self.redis_service = redis_service
        self._local_revoked: dict = {}
        self._listeners: List[AuthListener] = []

    # ---------------------------
    # Auth state subscription
    # ---------------------------
    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener called with the user id on sign-in and None on sign-out."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, user_id: Optional[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(user_id)
            except Exception:
                logger.exception("Auth state listener failed")

    # ---------------------------
    # Sessions
    # ---------------------------
    def _issue(self, user_id: str) -> AnonymousSession:
        now = utc_now()
        expires_at = now + self.ttl
        claims = {
            "sub": user_id,
            "jti": uuid.uuid4().hex,
            "anon": True,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(claims, self.secret_key, algorithm=ALGORITHM)
        return AnonymousSession(user_id=user_id, token=token, expires_at=expires_at)

    async def sign_in_anonymously(self) -> AnonymousSession:
        user_id = secrets.token_urlsafe(21)
        session = self._issue(user_id)
        logger.info(f"👤 Anonymous sign-in: {user_id[:6]}…")
        self._emit(user_id)
        return session

    def _decode(self, token: str) -> dict:
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError as e:
            raise AuthenticationError("Session expired. Please sign in again.") from e
        except JWTError as e:
            raise AuthenticationError("Could not validate session") from e
        if not claims.get("sub") or not claims.get("jti"):
            raise AuthenticationError("Could not validate session")
        return claims

    async def _is_revoked(self, jti: str) -> bool:
        expiry = self._local_revoked.get(jti)
        if expiry is not None:
            if expiry > utc_now():
                return True
            self._local_revoked.pop(jti, None)
        if self.redis_service is not None and self.redis_service.is_connected:
            return await self.redis_service.is_session_revoked(jti)
        return False

    async def verify(self, token: Optional[str]) -> str:
        """Resolve a session token to its user id."""
        if not token:
            raise AuthenticationError("Missing session token")
        claims = self._decode(token)
        if await self._is_revoked(claims["jti"]):
            raise AuthenticationError("Session has been signed out")
        return claims["sub"]

    async def sign_out(self, token: str) -> None:
        claims = self._decode(token)
        expires_at = datetime.fromtimestamp(claims["exp"], tz=utc_now().tzinfo)
        remaining = int((expires_at - utc_now()).total_seconds())
        stored = False
        if self.redis_service is not None and self.redis_service.is_connected:
            stored = await self.redis_service.revoke_session(claims["jti"], remaining)
        if not stored:
            self._local_revoked[claims["jti"]] = expires_at
        logger.info(f"👋 Signed out: {claims['sub'][:6]}…")
        self._emit(None)
