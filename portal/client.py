"""
Async Python client for the Payment Portal API.

Wraps httpx.AsyncClient and handles the session mechanics a browser
front-end would otherwise implement:

  - CSRF: fetches GET /csrf-token once and sends X-CSRF-Token on every
    state-changing request (the session cookie rides in the cookie jar)
  - Access token: kept in memory and sent as a Bearer header
  - Refresh: when a request fails with 401 the client refreshes once
    through the refreshToken cookie and retries the request

Single-flight refresh:
  Refresh tokens rotate, and presenting an already-rotated token is treated
  by the server as theft (every session of the account is revoked). So a
  burst of concurrent 401s must never produce two refresh calls. The first
  401 starts a refresh task; every other caller awaits that same task. A
  request whose 401 arrives after a refresh has already replaced its token
  simply retries with the new token.

Usage:
    async with PortalClient("http://localhost:8000") as client:
        await client.login("12345678", "Str0ng!Pass")
        await client.create_payment(amount="150.00", currency="USD", ...)
"""

import asyncio
import logging

import httpx

log = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"
STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class PortalClientError(Exception):
    """An API call returned an error status."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.status_code = response.status_code
        try:
            self.body = response.json()
        except ValueError:
            self.body = {"detail": response.text}
        if not isinstance(self.body, dict):
            self.body = {"detail": self.body}
        self.error_type = self.body.get("error_type")
        super().__init__(f"{self.status_code} {self.error_type}: {self.body.get('detail')}")


class PortalClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self.access_token: str | None = None
        self.csrf_token: str | None = None
        self._refresh_task: asyncio.Task | None = None
        self.refresh_count = 0

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    async def fetch_csrf_token(self) -> str:
        response = await self._http.get("/csrf-token")
        if response.status_code >= 400:
            raise PortalClientError(response)
        self.csrf_token = response.json()["csrfToken"]
        return self.csrf_token

    async def _send(self, method: str, url: str, token: str | None, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if method.upper() in STATE_CHANGING_METHODS:
            if self.csrf_token is None:
                await self.fetch_csrf_token()
            headers[CSRF_HEADER] = self.csrf_token
        return await self._http.request(method, url, headers=headers, **kwargs)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request, refreshing the access token once on 401.

        Returns the final response whatever its status.
        """
        token = self.access_token
        response = await self._send(method, url, token, **kwargs)

        if response.status_code == 401 and token is not None and not url.startswith("/auth/"):
            if self.access_token == token:
                try:
                    await self.refresh()
                except PortalClientError:
                    return response
            response = await self._send(method, url, self.access_token, **kwargs)
        return response

    async def refresh(self) -> str:
        """
        Obtain a new access token. Concurrent callers share one refresh call.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._do_refresh())
        # shield: one cancelled waiter must not cancel the refresh for the others
        return await asyncio.shield(self._refresh_task)

    async def _do_refresh(self) -> str:
        self.refresh_count += 1
        response = await self._send("POST", "/auth/refresh", None)
        if response.status_code >= 400:
            self.access_token = None
            log.info("Refresh failed with %s", response.status_code)
            raise PortalClientError(response)
        self.access_token = response.json()["accessToken"]
        return self.access_token

    async def _call(self, method: str, url: str, **kwargs):
        response = await self.request(method, url, **kwargs)
        if response.status_code >= 400:
            raise PortalClientError(response)
        return response.json()

    # -----------------------------------------------------------------------
    # Authentication
    # -----------------------------------------------------------------------

    async def register(
        self,
        full_name: str,
        id_number: str,
        account_number: str,
        password: str,
        path: str = "/auth/register",
    ) -> dict:
        """
        Register an account. path selects the flavour: "/auth/register" (customer),
        "/auth/register-admin" (bootstrap) or "/auth/register-employee" (as admin).
        """
        return await self._call(
            "POST",
            path,
            json={
                "fullName": full_name,
                "idNumber": id_number,
                "accountNumber": account_number,
                "password": password,
            },
        )

    async def login(self, account_number: str, password: str) -> dict:
        data = await self._call(
            "POST",
            "/auth/login",
            json={"accountNumber": account_number, "password": password},
        )
        self.access_token = data["accessToken"]
        return data

    async def logout(self) -> None:
        await self._call("POST", "/auth/logout")
        self.access_token = None

    # -----------------------------------------------------------------------
    # Payments and the staff workflow
    # -----------------------------------------------------------------------

    async def create_payment(
        self,
        amount: str,
        currency: str,
        recipient_name: str,
        recipient_account: str,
        swift_code: str,
        provider: str = "SWIFT",
        description: str | None = None,
    ) -> dict:
        payload = {
            "amount": amount,
            "currency": currency,
            "recipientName": recipient_name,
            "recipientAccount": recipient_account,
            "swiftCode": swift_code,
            "provider": provider,
        }
        if description is not None:
            payload["description"] = description
        return await self._call("POST", "/payments", json=payload)

    async def list_payments(self) -> list[dict]:
        return (await self._call("GET", "/payments"))["payments"]

    async def list_pending(self) -> list[dict]:
        return (await self._call("GET", "/transactions/pending"))["transactions"]

    async def list_verified(self) -> list[dict]:
        return (await self._call("GET", "/transactions/verified"))["transactions"]

    async def verify(self, transaction_id: str) -> dict:
        return (await self._call("PATCH", f"/transactions/{transaction_id}/verify"))["transaction"]

    async def unverify(self, transaction_id: str) -> dict:
        return (await self._call("PATCH", f"/transactions/{transaction_id}/unverify"))["transaction"]

    async def submit_to_swift(self, transaction_ids: list[str]) -> int:
        data = await self._call(
            "POST",
            "/transactions/submit-to-swift",
            json={"transactionIds": list(transaction_ids)},
        )
        return data["submittedCount"]
