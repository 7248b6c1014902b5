"""Authentication API Client for the job service.

Wraps the ``/auth`` endpoints: registration, login, credential renewal,
logout, validation and password change. Session state lives in the
SessionManager; this client only speaks HTTP and turns responses into typed
results or AuthErrors.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as ModelValidationError

from ..remote.models import Identity
from .base_client import BaseAPIClient, CredentialProvider, send_with_reauth
from .errors import APIClientError, AuthError, AuthErrorReason, NetworkError
from .network_error_handler import extract_error_detail

logger = logging.getLogger(__name__)

INVALID_CREDENTIAL_STATUSES = (400, 401, 403, 422)
MIN_PASSWORD_LENGTH = 6


@dataclass
class LoginResult:
    """Parsed response of ``POST /auth/login``."""

    credential: str
    identity: Identity
    expiry: Optional[int]


@dataclass
class RefreshResult:
    """Parsed response of ``POST /auth/refresh``."""

    credential: str
    expiry: Optional[int]


def parse_expiry(value: Any) -> Optional[int]:
    """Parse an expiry given as epoch seconds or an ISO-8601 timestamp."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    try:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return int(datetime.fromisoformat(text).timestamp())
    except ValueError:
        logger.warning(f"Ignoring unparseable expiry value: {value!r}")
        return None


def _json_body(response: httpx.Response, reason: AuthErrorReason) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        raise AuthError(reason, "Invalid JSON in authentication response")
    if not isinstance(body, dict):
        raise AuthError(reason, "Unexpected authentication response format")
    return body


class AuthAPIClient(BaseAPIClient):
    """API client for authentication operations."""

    async def register(
        self,
        email: str,
        username: str,
        company_name: str,
        company_document: str,
        password: str,
    ) -> Dict[str, Any]:
        """Create a new account; the caller logs in afterwards.

        Not retried: the operation is not idempotent.

        Raises:
            ValidationError: If the server rejects the account (400/409/422)
            APIClientError: For any other failure
        """
        payload = {
            "email": email,
            "username": username,
            "companyName": company_name,
            "companyDocument": company_document,
            "password": password,
        }
        response = await self._send("POST", "/auth/register", json=payload)
        self._network_error_handler.classify_response(response)

        logger.info(f"Registered account {email}")
        try:
            result = response.json()
        except ValueError:
            return {}
        return result if isinstance(result, dict) else {}

    async def login(self, identifier: str, secret: str) -> LoginResult:
        """Exchange email and password for a credential.

        Network, 5xx and 429 failures are retried once before surfacing.

        Raises:
            AuthError: ``invalid-credentials``, ``network`` or ``server``
        """

        async def attempt() -> httpx.Response:
            response = await self._send(
                "POST",
                "/auth/login",
                json={"email": identifier, "password": secret},
            )
            if response.status_code in INVALID_CREDENTIAL_STATUSES:
                _, detail = extract_error_detail(response)
                raise AuthError(
                    AuthErrorReason.INVALID_CREDENTIALS,
                    f"Login failed: {detail}",
                    status_code=response.status_code,
                )
            self._network_error_handler.classify_response(response)
            return response

        try:
            response = await self._network_error_handler.retry_once(attempt, "login")
        except AuthError:
            raise
        except NetworkError as e:
            raise AuthError(AuthErrorReason.NETWORK, f"Login failed: {e}") from e
        except APIClientError as e:
            raise AuthError(
                AuthErrorReason.SERVER, f"Login failed: {e}", status_code=e.status_code
            ) from e

        body = _json_body(response, AuthErrorReason.SERVER)
        credential = body.get("accessToken") or body.get("credential")
        if not credential or not isinstance(credential, str):
            raise AuthError(AuthErrorReason.SERVER, "No access token in response")

        try:
            identity = Identity.model_validate(body.get("identity") or body)
        except ModelValidationError as e:
            raise AuthError(
                AuthErrorReason.SERVER, f"Invalid identity in login response: {e}"
            )

        return LoginResult(
            credential=credential,
            identity=identity,
            expiry=parse_expiry(body.get("expiresAt", body.get("expiry"))),
        )

    async def refresh(self, credential: str) -> RefreshResult:
        """Renew ``credential``; transient failures are retried once.

        Raises:
            AuthError: ``refresh-failed`` when the server rejects the credential
            APIClientError: Any other classified failure
        """

        async def attempt() -> httpx.Response:
            response = await self._send("POST", "/auth/refresh", credential=credential)
            if response.status_code == 401:
                raise AuthError(
                    AuthErrorReason.REFRESH_FAILED,
                    "Credential renewal was rejected",
                    status_code=401,
                )
            self._network_error_handler.classify_response(response)
            return response

        response = await self._network_error_handler.retry_once(attempt, "refresh")
        body = _json_body(response, AuthErrorReason.REFRESH_FAILED)
        new_credential = body.get("accessToken") or body.get("credential")
        if not new_credential or not isinstance(new_credential, str):
            raise AuthError(
                AuthErrorReason.REFRESH_FAILED,
                "Invalid refresh response: missing access token",
            )

        return RefreshResult(
            credential=new_credential,
            expiry=parse_expiry(body.get("expiresAt", body.get("expiry"))),
        )

    async def logout(self, credential: str) -> None:
        """Tell the server the credential is no longer in use (single attempt)."""
        response = await self._send("POST", "/auth/logout", credential=credential)
        if response.status_code >= 400 and response.status_code != 401:
            self._network_error_handler.classify_response(response)

    async def validate(self, credential: str) -> bool:
        """Ask the server whether ``credential`` is still accepted."""
        try:
            response = await self._send(
                "POST", "/auth/validate", credential=credential
            )
        except NetworkError as e:
            logger.warning(f"Credential validation failed: {e}")
            return False
        return response.is_success

    async def change_password(
        self,
        credentials: CredentialProvider,
        current_password: str,
        new_password: str,
    ) -> Dict[str, Any]:
        """Change the password of the logged-in user.

        Goes through ``send_with_reauth`` so an expiring credential is renewed
        transparently. Not retried: the operation is not idempotent.

        Raises:
            AuthError: If the session cannot be renewed
            ValidationError: If the server rejects the new password
            APIClientError: For any other failure
        """
        payload = {"currentPassword": current_password, "newPassword": new_password}
        response = await send_with_reauth(
            lambda credential: self._send(
                "POST", "/auth/change-password", credential=credential, json=payload
            ),
            credentials,
        )
        self._network_error_handler.classify_response(response)

        try:
            result: Dict[str, Any] = response.json()
        except ValueError:
            result = {}
        return result
