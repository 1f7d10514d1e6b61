"""
Bearer credentials (HS256 JWT).

Tokens carry ``sub`` (the customer or driver id) and ``role``.  Decoding
never raises to the caller: anything missing, expired, forged or
inconsistent with the requested role resolves to ``Anonymous``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

import jwt

from carryon.domain.entities import utcnow
from carryon.domain.enums import ActorRole
from carryon.domain.identity import ANONYMOUS, Customer, Driver, Identity

logger = logging.getLogger(__name__)

_ROLES = {ActorRole.CUSTOMER: Customer, ActorRole.DRIVER: Driver}


class TokenCodec:
    def __init__(self, secret: str, algorithm: str = "HS256", ttl_hours: int = 8):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = timedelta(hours=ttl_hours)

    def issue(self, identity: Identity) -> str:
        if identity.role not in _ROLES:
            raise ValueError(f"Cannot issue a token for {identity.role.value}")
        now = utcnow()
        claims = {
            "sub": str(identity.id),
            "role": identity.role.value,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def resolve(self, token: Optional[str], role: Optional[str] = None) -> Identity:
        """Map a presented credential (and optional claimed role) to an identity."""
        if not token:
            return ANONYMOUS
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
            token_role = ActorRole(claims.get("role", ActorRole.CUSTOMER.value))
            if role is not None and ActorRole(role) is not token_role:
                raise ValueError(f"role {role} does not match token")
            return _ROLES[token_role](int(claims["sub"]))
        except (jwt.PyJWTError, KeyError, ValueError) as exc:
            logger.info("Credential rejected, continuing as anonymous: %s", exc)
            return ANONYMOUS
