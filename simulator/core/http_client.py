from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import httpx

from app.exceptions import MissingFieldError, RequestError
from app.logger import Logger, session_logger

from simulator.core.models import integer_field

TOKEN_HEADER = "x-jwt-token"


@dataclass(frozen=True)
class HttpOutcome:
    """Normalized result of one request.

    ``status`` is None when the request failed in transport, in which case
    ``transport_error`` holds the canonical error type.
    """

    name: str
    method: str
    path: str
    status: int | None
    body: Any
    transport_error: str | None
    duration_ms: int
    accepted: tuple[int, ...] = (200,)

    @property
    def ok(self) -> bool:
        return self.transport_error is None and self.status == 200

    @property
    def status_accepted(self) -> bool:
        """True when the status is one the caller declared acceptable."""
        return self.transport_error is None and self.status in self.accepted

    @property
    def error_type(self) -> str | None:
        if self.transport_error is not None:
            return self.transport_error
        if self.status == 200:
            return None
        return _classify_http_error(self.status or 0) or f"http_{self.status}"

    @property
    def check_name(self) -> str:
        return f"{self.name} status is " + " or ".join(str(s) for s in self.accepted)

    def raise_for_status(self, *, step: str) -> None:
        if not self.ok:
            raise RequestError(
                f"{self.name} failed",
                step=step,
                status=self.status,
                transport_error=self.transport_error,
            )

    def require(self, field: str, *, step: str) -> Any:
        """Return ``body[field]`` or raise MissingFieldError."""
        if not isinstance(self.body, Mapping) or self.body.get(field) is None:
            raise MissingFieldError(field, step=step)
        return self.body[field]

    def require_int(self, field: str, *, step: str) -> int:
        """Return ``body[field]`` as an int or raise MissingFieldError."""
        if not isinstance(self.body, Mapping):
            raise MissingFieldError(field, step=step)
        return integer_field(self.body, field, step=step)


ResponseObserver = Callable[[HttpOutcome], Awaitable[None]]


class BankClient:
    """JSON-over-HTTP adapter for the money-transfer service.

    Every request carries ``Content-Type: application/json``; authenticated
    requests add the bearer token header. No retries and no timeout beyond
    the transport default unless one is configured. Callers interpret the
    returned status and body.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        observer: ResponseObserver | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._logger = logger or session_logger
        self._observer = observer

        client_kwargs: dict[str, Any] = {}
        if timeout_seconds is not None:
            client_kwargs["timeout"] = httpx.Timeout(timeout_seconds)
        if transport is not None:
            client_kwargs["transport"] = transport

        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": "gobank-sim/0.1",
            },
            **client_kwargs,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "BankClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def send(
        self,
        method: str,
        path: str,
        payload: Mapping[str, Any] | None = None,
        *,
        token: str | None = None,
        name: str | None = None,
        accept: tuple[int, ...] = (200,),
    ) -> HttpOutcome:
        """Issue one request and return its normalized outcome.

        ``name`` labels the call for checks and latency (defaults to
        ``"<METHOD> <path>"``); use it to group templated paths. ``accept``
        lists the statuses the status check counts as passing.
        """
        method = method.upper()
        label = name or f"{method} {path}"
        headers = {TOKEN_HEADER: token} if token else None

        start = time.monotonic()
        try:
            response = await self._http.request(
                method,
                path,
                json=dict(payload) if payload is not None else None,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            outcome = HttpOutcome(
                name=label,
                method=method,
                path=path,
                status=None,
                body=None,
                transport_error=_classify_exception(exc),
                duration_ms=_elapsed_ms(start),
                accepted=accept,
            )
            self._logger.warning(
                "sim.http_transport_error",
                event="sim.http_transport_error",
                request=label,
                path=path,
                error_type=outcome.transport_error,
                error=str(exc),
                duration_ms=outcome.duration_ms,
            )
        else:
            outcome = HttpOutcome(
                name=label,
                method=method,
                path=path,
                status=response.status_code,
                body=_parse_body(response),
                transport_error=None,
                duration_ms=_elapsed_ms(start),
                accepted=accept,
            )
            if outcome.status_accepted:
                self._logger.debug(
                    "sim.http_ok",
                    event="sim.http_ok",
                    request=label,
                    path=path,
                    duration_ms=outcome.duration_ms,
                )
            else:
                self._logger.warning(
                    "sim.http_error",
                    event="sim.http_error",
                    request=label,
                    path=path,
                    status_code=outcome.status,
                    error_type=outcome.error_type,
                    duration_ms=outcome.duration_ms,
                )

        if self._observer is not None:
            await self._observer(outcome)
        return outcome


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Helpers: error classification
# ---------------------------------------------------------------------------

def _classify_http_error(status_code: int) -> str | None:
    """Map an HTTP status code to a canonical error_type, or None if success."""
    if 200 <= status_code < 400:
        return None
    if status_code == 401:
        return "auth_unauthorized"
    if status_code == 403:
        return "auth_forbidden"
    if status_code == 404:
        return "not_found"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "client_error"
    if 500 <= status_code < 600:
        return "server_error"
    return f"http_{status_code}"


def _classify_exception(exc: Exception) -> str:
    """Map a network-level exception to a canonical error_type."""
    if isinstance(exc, httpx.TimeoutException):
        return "network_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "network_connect"
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return "network_protocol"
    if isinstance(exc, httpx.HTTPError):
        return "network_error"
    return type(exc).__name__
