"""JWT Token Manager for credential expiry handling.

Reads the expiry claim of the bearer credential so renewal can be scheduled
ahead of time. Signatures are not verified client-side: the credential was
issued by the server in response to our own login/refresh call.
"""

import time
from typing import Any, Callable, Dict, Optional, cast

import jwt


class TokenValidationError(Exception):
    """Exception raised when a credential cannot be decoded."""

    pass


class JWTTokenManager:
    """Decodes credentials and computes when they should be renewed."""

    def __init__(
        self,
        refresh_margin_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize JWT token manager.

        Args:
            refresh_margin_seconds: Renew this many seconds before expiry
            clock: Source of the current epoch time in seconds
        """
        self.refresh_margin_seconds = refresh_margin_seconds
        self._clock = clock

    def decode_token(self, token: str) -> Dict[str, Any]:
        """Decode a JWT payload without signature verification.

        Raises:
            TokenValidationError: If the token is not a decodable JWT
        """
        if not token or not isinstance(token, str):
            raise TokenValidationError("Token must be a non-empty string")

        try:
            payload = jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": False},
            )
        except jwt.InvalidTokenError as e:
            raise TokenValidationError(f"Invalid JWT token: {e}")

        return cast(Dict[str, Any], payload)

    def get_expiry_epoch(self, token: str) -> Optional[int]:
        """Return the ``exp`` claim as epoch seconds, or None when absent.

        Raises:
            TokenValidationError: If the token or its exp claim is malformed
        """
        exp_claim = self.decode_token(token).get("exp")
        if exp_claim is None:
            return None

        try:
            return int(float(exp_claim))
        except (ValueError, TypeError):
            raise TokenValidationError(
                f"Invalid expiration timestamp format: {exp_claim}"
            )

    def refresh_delay(self, expiry_epoch: float) -> float:
        """Seconds to wait before renewing: ``max(0, expiry - now - margin)``."""
        remaining = expiry_epoch - self._clock()
        return max(0.0, remaining - self.refresh_margin_seconds)

    def is_token_expired(self, expiry_epoch: float) -> bool:
        return self._clock() >= expiry_epoch
