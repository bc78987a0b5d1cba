"""
xetpl CSRF Tokens
=================

Signed tokens for the hidden CSRF field the form augmenter adds to every
compiled ``<form>``.

A token is ``timestamp.nonce.session_id.signature``, signed with
HMAC-SHA256. Tokens expire after ``csrf.token_lifetime`` seconds and, when
issued for a session, only validate for that session.

Usage:
    csrf = CSRFProtection(secret_key="your-secret-key")
    token = csrf.generate_token(session_id)

    # when the form comes back
    if not csrf.validate_token(form["_csrf_token"], session_id):
        reject()
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from xetpl.core.config import Config


@dataclass
class CSRFConfig:
    """CSRF token configuration."""
    secret_key: str = ""
    token_name: str = "_csrf_token"
    token_lifetime: int = 3600  # 1 hour


class CSRFProtection:
    """
    CSRF token issuer and validator.

    Example:
        csrf = CSRFProtection.from_config(config)
        token = csrf.generate_token("sess-1")
        csrf.validate_token(token, "sess-1")   # True
        csrf.validate_token(token, "sess-2")   # False
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        config: Optional[CSRFConfig] = None,
    ) -> None:
        """
        Initialize CSRF protection.

        Args:
            secret_key: Secret key for token signing
            config: CSRF configuration
        """
        self.config = config or CSRFConfig()

        if secret_key:
            self.config.secret_key = secret_key
        elif not self.config.secret_key:
            # Tokens from a random key do not survive a restart
            self.config.secret_key = secrets.token_hex(32)

    @classmethod
    def from_config(cls, config: "Config") -> "CSRFProtection":
        return cls(
            config=CSRFConfig(
                secret_key=config.get("csrf.secret_key") or "",
                token_name=config.get("forms.csrf_field", "_csrf_token"),
                token_lifetime=config.get_int("csrf.token_lifetime", 3600),
            )
        )

    def generate_token(self, session_id: str = "") -> str:
        """
        Generate a CSRF token.

        Args:
            session_id: Optional session ID to bind token to

        Returns:
            Signed CSRF token
        """
        payload = f"{int(time.time())}.{secrets.token_hex(16)}.{session_id}"
        return f"{payload}.{self._sign(payload)}"

    def validate_token(self, token: str, session_id: str = "") -> bool:
        """
        Validate a CSRF token.

        Args:
            token: Token to validate
            session_id: Session ID token should be bound to

        Returns:
            True if token is valid
        """
        if not token:
            return False

        try:
            payload, signature = token.rsplit(".", 1)
        except ValueError:
            return False

        if not hmac.compare_digest(signature, self._sign(payload)):
            return False

        parts = payload.split(".", 2)
        if len(parts) != 3:
            return False

        timestamp, _, token_session = parts
        if session_id and token_session != session_id:
            return False

        try:
            issued = int(timestamp)
        except ValueError:
            return False

        return time.time() - issued <= self.config.token_lifetime

    def token_for(self, context: Mapping[str, Any]) -> str:
        """Token for the session in a rendering context."""
        session = context.get("session")
        session_id = ""
        if isinstance(session, Mapping):
            session_id = str(session.get("session_id") or "")
        return self.generate_token(session_id)

    def _sign(self, payload: str) -> str:
        """Sign payload with HMAC-SHA256."""
        key = self.config.secret_key.encode()
        return hmac.new(key, payload.encode(), hashlib.sha256).hexdigest()
