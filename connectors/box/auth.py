from __future__ import annotations
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from core.errors import AuthenticationFailure, InvalidConfiguration

logger = logging.getLogger(__name__)

TOKEN_URL = "https://api.box.com/oauth2/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_ALGORITHM = "RS256"
DEFAULT_TOKEN_LIFETIME = 3600
DEFAULT_SAFETY_MARGIN = 60
DEFAULT_ASSERTION_TTL = 60


@dataclass(frozen=True)
class Credential:
    """An access token and the moment (epoch seconds) it stops being usable.

    ``expires_at`` already has the safety margin subtracted.
    """

    access_token: str
    expires_at: float

    def is_usable(self, now: float) -> bool:
        return now < self.expires_at


def load_private_key(private_key: Union[str, bytes], passphrase: Optional[str] = None) -> PrivateKeyTypes:
    """Load a PEM private key given inline or as a path to a PEM file."""
    if isinstance(private_key, str):
        if "-----BEGIN" not in private_key:
            if not os.path.isfile(private_key):
                raise InvalidConfiguration(f"Private key is neither PEM content nor a readable file: {private_key}")
            with open(private_key, "rb") as f:
                private_key_bytes = f.read()
        else:
            private_key_bytes = private_key.encode("utf-8")
    else:
        private_key_bytes = private_key

    try:
        return serialization.load_pem_private_key(
            private_key_bytes,
            password=passphrase.encode() if passphrase else None,
        )
    except (ValueError, TypeError) as e:
        raise InvalidConfiguration(f"Failed to load private key: {e}") from e


def create_jwt_assertion(
    *,
    client_id: str,
    subject: str,
    key: PrivateKeyTypes,
    key_id: str,
    audience: str = TOKEN_URL,
    subject_type: str = "enterprise",
    ttl_seconds: int = DEFAULT_ASSERTION_TTL,
    now: Optional[float] = None,
) -> str:
    """Create a signed JWT assertion for Box app authentication.

    Args:
        client_id: Box app client ID (issuer)
        subject: Enterprise ID, or user ID when subject_type is "user"
        key: Loaded RSA private key
        key_id: Public key ID registered with the Box app (JWT "kid" header)
        audience: Token endpoint the assertion is exchanged at
        subject_type: "enterprise" or "user"
        ttl_seconds: Lifetime of the assertion itself

    Returns:
        JWT token string
    """
    issued_at = int(time.time() if now is None else now)
    claims = {
        "iss": client_id,
        "sub": subject,
        "box_sub_type": subject_type,
        "aud": audience,
        "jti": uuid.uuid4().hex,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
    }
    return jwt.encode(claims, key, algorithm=ASSERTION_ALGORITHM, headers={"kid": key_id})


def _error_detail(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(payload, dict):
        return payload.get("error_description") or payload.get("message") or payload.get("error") or resp.text
    return resp.text


class CredentialManager:
    """Box JWT App Authentication Manager.

    Holds at most one live credential and replaces it wholesale on refresh.
    Refresh happens under a lock: concurrent callers that find the credential
    expired wait for the first one's exchange and then reuse its token.
    """

    def __init__(
        self,
        *,
        client_id: Optional[str],
        client_secret: Optional[str],
        enterprise_id: Optional[str],
        private_key: Union[str, bytes, None],
        key_id: Optional[str],
        private_key_passphrase: Optional[str] = None,
        user_id: Optional[str] = None,
        auth_url: str = TOKEN_URL,
        assertion_ttl: int = DEFAULT_ASSERTION_TTL,
        safety_margin: int = DEFAULT_SAFETY_MARGIN,
        timeout: float = 30,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        missing = [
            name
            for name, value in (
                ("client_id", client_id),
                ("client_secret", client_secret),
                ("key_id", key_id),
                ("private_key", private_key),
            )
            if not value
        ]
        if not (enterprise_id or user_id):
            missing.append("enterprise_id or user_id")
        if missing:
            raise InvalidConfiguration(f"Missing Box JWT settings: {', '.join(missing)}")

        self.client_id = client_id
        self.client_secret = client_secret
        self.subject = user_id or enterprise_id
        self.subject_type = "user" if user_id else "enterprise"
        self.key_id = key_id
        self.auth_url = auth_url
        self.assertion_ttl = assertion_ttl
        self.safety_margin = safety_margin
        self._key = load_private_key(private_key, private_key_passphrase)
        self._http = http_client or httpx.Client(timeout=timeout)
        self._clock = clock
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "CredentialManager":
        return cls(
            client_id=settings.BOX_CLIENT_ID,
            client_secret=settings.BOX_CLIENT_SECRET,
            enterprise_id=settings.BOX_ENTERPRISE_ID,
            user_id=settings.BOX_USER_ID,
            private_key=settings.BOX_PRIVATE_KEY,
            private_key_passphrase=settings.BOX_PRIVATE_KEY_PASSWORD,
            key_id=settings.BOX_KEY_ID,
            auth_url=settings.BOX_AUTH_URL,
            assertion_ttl=settings.BOX_ASSERTION_TTL_SECONDS,
            safety_margin=settings.BOX_TOKEN_SAFETY_MARGIN_SECONDS,
            timeout=settings.BOX_HTTP_TIMEOUT_SECONDS,
            **kwargs,
        )

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def get_access_token(self) -> str:
        """Get a valid access token, refreshing if needed."""
        credential = self._credential
        if credential is not None and credential.is_usable(self._clock()):
            return credential.access_token
        return self._refresh_if_stale(credential)

    # Name used by the API client; kept short for call sites.
    get_token = get_access_token

    def _refresh_if_stale(self, seen: Optional[Credential]) -> str:
        with self._lock:
            current = self._credential
            if current is not None and current is not seen and current.is_usable(self._clock()):
                return current.access_token
            return self._exchange().access_token

    def refresh(self) -> str:
        """Unconditionally exchange a fresh assertion for a new token."""
        with self._lock:
            return self._exchange().access_token

    def invalidate(self) -> None:
        """Force the next get_access_token() to exchange a new assertion."""
        with self._lock:
            self._credential = None
        logger.info("Box access token invalidated")

    invalidate_token = invalidate

    def _exchange(self) -> Credential:
        # Caller holds self._lock.
        self._credential = None
        assertion = create_jwt_assertion(
            client_id=self.client_id,
            subject=self.subject,
            key=self._key,
            key_id=self.key_id,
            audience=self.auth_url,
            subject_type=self.subject_type,
            ttl_seconds=self.assertion_ttl,
            now=self._clock(),
        )
        data = {
            "grant_type": JWT_BEARER_GRANT,
            "assertion": assertion,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            resp = self._http.post(self.auth_url, data=data)
        except httpx.HTTPError as e:
            logger.error(f"Box token exchange failed: {e}")
            raise AuthenticationFailure(f"Failed to authenticate with Box API: {e}") from e

        if resp.status_code != 200:
            detail = _error_detail(resp)
            logger.error(f"Box token exchange rejected: {resp.status_code} - {detail}")
            raise AuthenticationFailure(
                f"Failed to authenticate with Box API: {detail}", status_code=resp.status_code
            )

        try:
            payload = resp.json()
        except ValueError as e:
            logger.error(f"Box token response is not JSON: {resp.text[:200]}")
            raise AuthenticationFailure("Failed to authenticate with Box API: malformed token response") from e
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise AuthenticationFailure("Failed to authenticate with Box API: no access_token in response")
        lifetime = payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME
        self._credential = Credential(
            access_token=access_token,
            expires_at=self._clock() + lifetime - self.safety_margin,
        )
        logger.info(f"Obtained Box access token {access_token[:6]}..., valid for {lifetime}s")
        return self._credential

    def test_connection(self, api_url: str = "https://api.box.com/2.0") -> bool:
        """Test the connection with current authentication."""
        try:
            token = self.get_access_token()
            resp = self._http.get(f"{api_url}/users/me", headers={"Authorization": f"Bearer {token}"})
        except (AuthenticationFailure, httpx.HTTPError) as e:
            logger.warning(f"Box connection test failed: {e}")
            return False
        return resp.status_code == 200

    def close(self) -> None:
        self._http.close()
