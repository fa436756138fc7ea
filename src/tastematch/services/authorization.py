"""OAuth 2.0 authorization-code flow with PKCE against the food provider.

The provider is a public client: metadata discovery, then dynamic client
registration (falling back to a configured client id), then per-room
verifier and credential stores. Blocking HTTP runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import os
import secrets
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.errors import InvalidInputError, UpstreamFailure

logger = logging.getLogger("tastematch.auth")

AUTH_SERVER = os.getenv("TASTEMATCH_AUTH_SERVER", "https://mcp.swiggy.com")
REDIRECT_URI = os.getenv("TASTEMATCH_REDIRECT_URI", "http://localhost:8000/auth/callback")
AUTH_SCOPE = os.getenv("TASTEMATCH_AUTH_SCOPE", "mcp:tools")
FALLBACK_CLIENT_ID = os.getenv("TASTEMATCH_CLIENT_ID", "swiggy-mcp")
CLIENT_NAME = "TasteMatch Valentine Agent"


@dataclass
class OAuthCredentials:
    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None

    @classmethod
    def from_token_response(cls, data: Dict[str, Any]) -> "OAuthCredentials":
        token = data.get("access_token")
        if not token:
            raise UpstreamFailure("Token response did not include an access_token")
        expires = data.get("expires_in")
        return cls(
            access_token=str(token),
            token_type=str(data.get("token_type") or "Bearer"),
            refresh_token=data.get("refresh_token"),
            expires_in=int(expires) if expires is not None else None,
            scope=data.get("scope"),
        )


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST", "GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def make_code_verifier() -> str:
    return secrets.token_urlsafe(64)[:96]


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class OAuthProvider:
    def __init__(
        self,
        auth_server: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        scope: Optional[str] = None,
        fallback_client_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self.auth_server = (auth_server or AUTH_SERVER).rstrip("/")
        self.redirect_uri = redirect_uri or REDIRECT_URI
        self.scope = scope or AUTH_SCOPE
        self.fallback_client_id = fallback_client_id or FALLBACK_CLIENT_ID
        self._session = session or _build_session()
        self._timeout = timeout
        self._metadata: Optional[Dict[str, Any]] = None
        self._client_id: Optional[str] = None
        self._verifiers: Dict[str, str] = {}
        self._credentials: Dict[str, OAuthCredentials] = {}
        self._lock = RLock()

    @property
    def client_id(self) -> Optional[str]:
        return self._client_id

    # ------------------------------------------------------------------
    # Discovery and registration
    # ------------------------------------------------------------------
    def _default_metadata(self) -> Dict[str, Any]:
        return {
            "issuer": self.auth_server,
            "authorization_endpoint": f"{self.auth_server}/authorize",
            "token_endpoint": f"{self.auth_server}/token",
            "registration_endpoint": f"{self.auth_server}/register",
        }

    def _discover(self) -> Dict[str, Any]:
        url = f"{self.auth_server}/.well-known/oauth-authorization-server"
        try:
            resp = self._session.get(url, timeout=self._timeout)
            if resp.status_code == 404:
                return self._default_metadata()
            resp.raise_for_status()
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            logger.warning("oauth_discovery_failed server=%s err=%s", self.auth_server, exc)
            return self._default_metadata()
        merged = self._default_metadata()
        merged.update({k: v for k, v in data.items() if v})
        return merged

    def _register(self, metadata: Dict[str, Any]) -> str:
        endpoint = metadata.get("registration_endpoint")
        if not endpoint:
            raise UpstreamFailure("Authorization server does not support dynamic registration")
        body = {
            "redirect_uris": [self.redirect_uri],
            "token_endpoint_auth_method": "none",
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "client_name": CLIENT_NAME,
            "scope": self.scope,
        }
        try:
            resp = self._session.post(endpoint, json=body, timeout=self._timeout)
            resp.raise_for_status()
            client_id = resp.json().get("client_id")
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise UpstreamFailure(f"Client registration failed: {exc}") from exc
        if not client_id:
            raise UpstreamFailure("Client registration returned no client_id")
        return str(client_id)

    def register_client_sync(self) -> str:
        metadata = self._discover()
        try:
            client_id = self._register(metadata)
            logger.info("oauth_client_registered client_id=%s", client_id)
        except UpstreamFailure as exc:
            client_id = self.fallback_client_id
            logger.warning("oauth_registration_fallback client_id=%s err=%s", client_id, exc.message)
        with self._lock:
            self._metadata = metadata
            self._client_id = client_id
        return client_id

    async def register_client(self) -> str:
        """Discover metadata and register once. Never raises; falls back to the configured id."""

        return await asyncio.to_thread(self.register_client_sync)

    async def _ensure_registered(self) -> Dict[str, Any]:
        with self._lock:
            metadata = self._metadata
            ready = self._client_id is not None
        if metadata is None or not ready:
            await self.register_client()
            with self._lock:
                metadata = self._metadata
        return metadata or self._default_metadata()

    # ------------------------------------------------------------------
    # Authorization code flow
    # ------------------------------------------------------------------
    async def get_authorization_url(self, room_id: str) -> str:
        metadata = await self._ensure_registered()
        endpoint = metadata.get("authorization_endpoint")
        if not endpoint:
            raise UpstreamFailure("Authorization endpoint unknown")
        verifier = make_code_verifier()
        with self._lock:
            self._verifiers[room_id] = verifier
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self._client_id,
                "code_challenge": code_challenge(verifier),
                "code_challenge_method": "S256",
                "redirect_uri": self.redirect_uri,
                "state": room_id,
                "scope": self.scope,
            }
        )
        logger.info("oauth_authorization_url_issued room=%s", room_id)
        return f"{endpoint}?{query}"

    def _exchange(self, endpoint: str, code: str, verifier: str) -> Dict[str, Any]:
        resp = self._session.post(
            endpoint,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "code_verifier": verifier,
                "client_id": self._client_id,
                "redirect_uri": self.redirect_uri,
            },
            headers={"Accept": "application/json"},
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return resp.json()

    async def exchange_code(self, code: str, room_id: str) -> OAuthCredentials:
        """Trade ``code`` for credentials bound to ``room_id``.

        Raises:
            InvalidInputError: no authorization was started for the room.
            UpstreamFailure: the token endpoint rejected or failed the exchange.
        """

        with self._lock:
            verifier = self._verifiers.get(room_id)
        if not verifier:
            raise InvalidInputError(f"No PKCE verifier found for room {room_id}")
        metadata = await self._ensure_registered()
        endpoint = metadata.get("token_endpoint")
        if not endpoint:
            raise UpstreamFailure("Token endpoint unknown")
        try:
            data = await asyncio.to_thread(self._exchange, endpoint, code, verifier)
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise UpstreamFailure(f"Code exchange failed: {exc}") from exc
        credentials = OAuthCredentials.from_token_response(data)
        with self._lock:
            self._credentials[room_id] = credentials
            self._verifiers.pop(room_id, None)
        logger.info("oauth_tokens_acquired room=%s", room_id)
        return credentials

    def has_credentials(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._credentials

    def get_credentials(self, room_id: str) -> Optional[OAuthCredentials]:
        with self._lock:
            return self._credentials.get(room_id)

    def has_pending_verifier(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._verifiers

    def clear(self, room_id: str) -> None:
        with self._lock:
            self._credentials.pop(room_id, None)
            self._verifiers.pop(room_id, None)
