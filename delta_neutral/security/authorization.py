"""
Capability-based authorization.

Callers present an access token instead of being matched by address.
Tokens are HS256 JWTs signed with the authority secret and carry the
holder plus the capabilities it was granted:

- MANAGER: open, increase, decrease and close positions
- CONTROLLER: trigger rebalance-and-reinvest
- INTERNAL: held only by the engine to run its own continuation steps

Revocation is by token id and lasts for the authority's lifetime.
"""
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import FrozenSet, Optional, Set

import jwt

from delta_neutral.config.settings import Settings
from delta_neutral.errors import AuthError, ErrorCode
from delta_neutral.models.common import Capability
from delta_neutral.utils.logger import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"

AccessToken = str


@dataclass(frozen=True)
class Grant:
    """A verified token's holder and capabilities."""
    holder: str
    capabilities: FrozenSet[Capability]
    token_id: str

    def allows(self, *accepted: Capability) -> bool:
        return any(capability in self.capabilities for capability in accepted)


class CapabilityAuthority:
    """Issues, verifies and revokes capability tokens."""

    def __init__(self, secret: Optional[str] = None):
        if not secret:
            # Tokens then only survive as long as this process
            secret = secrets.token_hex(32)
            logger.warning("No authority secret configured; using an ephemeral one")
        self._secret = secret
        self._revoked: Set[str] = set()
        self._internal_token = self.issue("engine", Capability.INTERNAL)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CapabilityAuthority":
        return cls(secret=settings.authority_secret)

    @property
    def internal_token(self) -> AccessToken:
        """Token the engine uses for its own continuation steps."""
        return self._internal_token

    def issue(self, holder: str, *capabilities: Capability, ttl: Optional[int] = None) -> AccessToken:
        """
        Issue a token granting `capabilities` to `holder`.

        Args:
            holder: Name of the caller (manager, keeper, ...)
            capabilities: One or more capabilities
            ttl: Lifetime in seconds; tokens without one never expire
        """
        if not capabilities:
            raise ValueError("A token must carry at least one capability")
        now = int(time.time())
        payload = {
            "sub": holder,
            "caps": sorted(capability.value for capability in capabilities),
            "jti": uuid.uuid4().hex,
            "iat": now,
        }
        if ttl is not None:
            payload["exp"] = now + ttl
        logger.debug(
            "token_issued",
            holder=holder,
            capabilities=payload["caps"],
            ttl=ttl,
        )
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: AccessToken) -> Grant:
        """
        Decode a token.

        Raises:
            AuthError: If the token is malformed, expired, forged or revoked
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
            capabilities = frozenset(Capability(value) for value in payload.get("caps", []))
        except (jwt.InvalidTokenError, ValueError) as e:
            raise AuthError.from_error_code(ErrorCode.INVALID_TOKEN, details={"reason": str(e)})

        token_id = payload.get("jti", "")
        if token_id in self._revoked:
            raise AuthError.from_error_code(ErrorCode.INVALID_TOKEN, holder=payload.get("sub"))
        return Grant(holder=payload.get("sub", ""), capabilities=capabilities, token_id=token_id)

    def require(self, token: AccessToken, *accepted: Capability) -> Grant:
        """
        Verify a token and require any one of the accepted capabilities.

        Raises:
            AuthError: INVALID_TOKEN for a bad token, UNAUTHORIZED when no capability matches
        """
        grant = self.verify(token)
        if not grant.allows(*accepted):
            logger.warning(
                "authorization_denied",
                holder=grant.holder,
                required=[capability.value for capability in accepted],
            )
            raise AuthError.from_error_code(ErrorCode.UNAUTHORIZED, holder=grant.holder)
        return grant

    def revoke(self, token: AccessToken) -> None:
        """Revoke a token so it is rejected from now on."""
        grant = self.verify(token)
        self._revoked.add(grant.token_id)
        logger.info("token_revoked", holder=grant.holder)
