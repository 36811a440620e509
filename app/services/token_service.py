"""Bearer token verification for callers of this service (ES256 JWTs).

Tokens are issued by the LMS identity service.  ``sub`` is the user UUID
and ``roles`` carries platform roles (admin, coordinator, hod, student);
course-level authority is resolved separately by AuthorityResolver.

``create_access_token`` exists for dev and tests.  The key pair is
ephemeral and generated at import.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

ALGORITHM = "ES256"
ISSUER = "lms-identity"
AUDIENCE = "course-arrangement-service"
ACCESS_TOKEN_TTL_MIN = 15
REQUIRED_CLAIMS = ["sub", "exp", "iat", "jti"]

_signing_key = ec.generate_private_key(ec.SECP256R1())
_verifying_key = _signing_key.public_key()


def create_access_token(
    *,
    sub: str,
    roles: list[str] | None = None,
    ttl_minutes: int = ACCESS_TOKEN_TTL_MIN,
) -> str:
    issued = datetime.now(UTC)
    claims = {
        "sub": sub,
        "roles": roles or ["student"],
        "iss": ISSUER,
        "aud": AUDIENCE,
        "iat": issued,
        "exp": issued + timedelta(minutes=ttl_minutes),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(claims, _signing_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Return the verified claims.

    Only ES256 is accepted.  Raises jwt.ExpiredSignatureError or
    jwt.InvalidTokenError; require_user turns both into a 401.
    """
    return jwt.decode(
        token,
        _verifying_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": REQUIRED_CLAIMS},
    )
