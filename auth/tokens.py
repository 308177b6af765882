"""
auth/tokens.py -- Session token issuance and validation, plus the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with JWT_SECRET_KEY and carry
       subject id, username, email, role names, iat, exp, iss and aud.
       validate() returns None on any failure -- the HTTP layer turns that
       into a 401. Nothing here raises for a bad token.

  Expiry: jose's own exp check allows no skew configuration we want and
       reads the wall clock, so it is disabled and replaced by a comparison
       against the caller-supplied `now`. A token is expired from the second
       `now >= exp`. There is no leeway.

  Roles in the token are a display convenience for clients. Authorization
       never trusts them: PermissionEvaluator re-reads grants on every check,
       so a role removed mid-session stops working immediately.

  The login flow, not the issuer, stamps last-login.

Layer rule: imports core/ and auth/models.py only.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import SessionClaims, Subject
from core.config import Settings

logger = logging.getLogger("securecms.auth")

_ALGORITHM = "HS256"
COOKIE_NAME = "access_token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionIssuer:
    """Creates and validates signed, time-bounded session tokens.

    Usage:
        issuer = SessionIssuer.from_settings(get_settings())
        token, expires_at = issuer.issue(subject, ["Author"])
        claims = issuer.validate(token)   # SessionClaims or None
    """

    def __init__(self, secret: str, issuer: str, audience: str, expire_minutes: int = 60) -> None:
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.expire_minutes = expire_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionIssuer:
        return cls(
            secret=settings.jwt_secret_key,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            expire_minutes=settings.token_expire_minutes,
        )

    def issue(self, subject: Subject, roles: list[str], now: datetime | None = None) -> tuple[str, datetime]:
        """Encode a token for subject and return (token, expires_at)."""
        issued = (now or _utcnow()).replace(microsecond=0)
        expires = issued + timedelta(minutes=self.expire_minutes)
        payload = {
            "sub": str(subject.id),
            "username": subject.username,
            "email": subject.email,
            "roles": list(roles),
            "iat": int(issued.timestamp()),
            "exp": int(expires.timestamp()),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM), expires

    def validate(self, token: str | None, now: datetime | None = None) -> SessionClaims | None:
        """Verify signature, issuer, audience and expiry. Returns claims or None."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                # Expiry is checked below against the caller's clock; a missing exp or
                # iat fails the claim lookup.
                options={"verify_exp": False},
            )
        except JWTError:
            return None

        try:
            claims = SessionClaims(
                subject_id=int(payload["sub"]),
                username=str(payload["username"]),
                email=str(payload["email"]),
                roles=tuple(payload.get("roles") or ()),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.info("Rejected token with malformed claims")
            return None

        if claims.expires_at <= claims.issued_at:
            return None
        current = int((now or _utcnow()).timestamp())
        if current >= claims.expires_at:
            return None
        return claims


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, max_age: int, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the token lifetime so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )
