"""
Async HTTP client for the grooming REST API.

Every call carries a bearer token from a TokenProvider. A 401 answer triggers
exactly one refresh-and-retry; a second 401 raises AuthenticationError. Any
other non-2xx answer raises RemoteFailure carrying the server's message.
"""
import asyncio
import logging

import httpx

from app.errors import AuthenticationError, RemoteFailure

logger = logging.getLogger(__name__)


class TokenProvider:
    """Source of bearer tokens for GroomingApiClient."""

    async def get_token(self, http: httpx.AsyncClient) -> str:
        raise NotImplementedError

    async def refresh(self, http: httpx.AsyncClient, stale_token: str = None) -> str:
        raise NotImplementedError


class StaticTokenProvider(TokenProvider):
    """A token handed over by the caller; refresh delegates to an optional callable."""

    def __init__(self, token, refresher=None):
        self.token = token
        self._refresher = refresher

    async def get_token(self, http):
        return self.token

    async def refresh(self, http, stale_token=None):
        if self._refresher is None:
            raise AuthenticationError("Session expired")
        token = self._refresher()
        if hasattr(token, "__await__"):
            token = await token
        self.token = token
        return token


class CredentialsTokenProvider(TokenProvider):
    """
    Logs in with email/password and refreshes through /api/auth/refresh.

    Concurrent callers share one login or refresh round trip.
    """

    def __init__(self, email, password):
        self.email = email
        self.password = password
        self._token = None
        self._refresh_token = None
        self._lock = None

    def _guard(self):
        # Created lazily so the lock belongs to the running event loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def get_token(self, http):
        if self._token is None:
            async with self._guard():
                if self._token is None:
                    await self._login(http)
        return self._token

    async def refresh(self, http, stale_token=None):
        async with self._guard():
            if stale_token is not None and self._token not in (None, stale_token):
                # Another caller already refreshed
                return self._token

            if self._refresh_token:
                response = await http.post(
                    "/api/auth/refresh", json={"refresh_token": self._refresh_token}
                )
                if response.status_code == 200:
                    self._store(response)
                    return self._token
                logger.info(
                    "Refresh token rejected (%s), logging in again", response.status_code
                )
            await self._login(http)
            return self._token

    async def _login(self, http):
        if not self.email or not self.password:
            raise AuthenticationError("API credentials are not configured")
        response = await http.post(
            "/api/auth/login", json={"email": self.email, "password": self.password}
        )
        if response.status_code != 200:
            raise AuthenticationError(_error_message(response) or "Invalid credentials")
        self._store(response)

    def _store(self, response):
        body = _safe_json(response)
        if not isinstance(body, dict) or not body.get("token"):
            raise AuthenticationError("Invalid response from the authentication server")
        self._token = body["token"]
        self._refresh_token = body.get("refresh_token")


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message") or body.get("error")
    return None


class GroomingApiClient:
    def __init__(self, base_url, token_provider, transport=None, timeout=None):
        self.tokens = token_provider
        self._http = httpx.AsyncClient(
            base_url=base_url, transport=transport, timeout=timeout
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def request(self, method, path, **kwargs):
        token = await self.tokens.get_token(self._http)
        response = await self._send(method, path, token, **kwargs)

        if response.status_code == 401:
            logger.info("%s %s returned 401, refreshing token", method, path)
            token = await self.tokens.refresh(self._http, stale_token=token)
            response = await self._send(method, path, token, **kwargs)
            if response.status_code == 401:
                raise AuthenticationError(_error_message(response) or "Session expired")

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "%s %s failed with %s: %s", method, path, response.status_code, message
            )
            raise RemoteFailure(message, status_code=response.status_code, payload=_safe_json(response))

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning("%s %s returned a non-JSON body (%s)", method, path, response.status_code)
            raise RemoteFailure(
                "Invalid response from server", status_code=response.status_code
            ) from e

    async def _send(self, method, path, token, **kwargs):
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {token}"
        try:
            return await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteFailure(f"Could not reach the server: {e}") from e

    # Appointment store

    async def get_appointment(self, appointment_id):
        return await self.request("GET", f"/api/appointments/{appointment_id}")

    async def list_appointments(self, **filters):
        params = {k: v for k, v in filters.items() if v is not None}
        return await self.request("GET", "/api/appointments", params=params)

    async def update_appointment(self, appointment_id, payload):
        return await self.request(
            "POST", f"/api/appointments/{appointment_id}", json=payload
        )

    # Reference data

    async def list_services(self):
        return await self.request("GET", "/api/services")

    async def list_groomers(self):
        return await self.request("GET", "/api/staff", params={"role": "groomer"})

    async def list_inventory(self):
        return await self.request("GET", "/api/inventory")

    # Inventory ledger

    async def record_usage(self, payload):
        return await self.request("POST", "/api/inventory/usage", json=payload)


def _safe_json(response):
    try:
        return response.json()
    except ValueError:
        return None
