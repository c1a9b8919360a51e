"""
auth/tokens.py -- Signed bearer token issuance.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry sub (user id), tenant,
       iss, iat, exp, and a random jti. The jti makes every token unique even
       when the same user logs in twice within one second, which matters
       because the token string is a UNIQUE column in the access token table.

  The JWT is a credential *string*, not the source of truth: the Session
  Resolver looks the token up in storage and trusts the stored expiry and
  revocation stamp. A signed token that was revoked is still rejected.

  Refresh tokens are signed with a separate secret and carry no exp. They are
  issued on request only; no flow in this service exchanges them.

  TokenIssuer validates its configuration on construction and refuses to exist
  with an empty secret, an empty issuer, or a non-positive lifetime. The
  composition root (api/context.py) builds exactly one instance at startup.

Layer rule: no imports from api/, tenancy/, audit/, or mailer/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

_ALGORITHM = "HS256"
_NIL_UUID = uuid.UUID(int=0)


class TokenConfigError(ValueError):
    """Raised at startup when the issuer cannot be configured safely."""


class TokenIssuer:
    """Create signed access and refresh tokens.

    Usage:
        issuer = TokenIssuer(access_secret, refresh_secret, "tenant-iam", timedelta(minutes=60))
        token, expires_at = issuer.issue_access_token(user.uuid, user.tenant_uuid)
    """

    def __init__(self, access_secret: str, refresh_secret: str, issuer: str, access_expiry: timedelta) -> None:
        if not access_secret or not refresh_secret:
            raise TokenConfigError("JWT secrets must not be empty")
        if not issuer:
            raise TokenConfigError("JWT issuer must not be empty")
        if access_expiry <= timedelta(0):
            raise TokenConfigError("access token expiry must be positive")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.issuer = issuer
        self.access_expiry = access_expiry

    def issue_access_token(self, user_id: uuid.UUID, tenant_id: uuid.UUID | None) -> tuple[str, datetime]:
        """Return (token, expiry). Users without a tenant get the nil UUID as their tenant claim."""
        now = datetime.now(timezone.utc)
        expires_at = now + self.access_expiry
        payload = {
            "sub": str(user_id),
            "tenant": str(tenant_id or _NIL_UUID),
            "iss": self.issuer,
            "iat": now,
            "exp": expires_at,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._access_secret, algorithm=_ALGORITHM), expires_at

    def issue_refresh_token(self, user_id: uuid.UUID) -> str:
        payload = {
            "sub": str(user_id),
            "iss": self.issuer,
            "iat": datetime.now(timezone.utc),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._refresh_secret, algorithm=_ALGORITHM)

    def decode_access_token(self, token: str) -> dict | None:
        """Verify signature, expiry and issuer. Returns the claims or None on any failure."""
        try:
            payload = jwt.decode(token, self._access_secret, algorithms=[_ALGORITHM], issuer=self.issuer)
        except JWTError:
            return None
        if "sub" not in payload or "tenant" not in payload:
            return None
        return payload
