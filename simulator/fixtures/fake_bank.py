"""In-memory money-transfer service for fixture runs and tests.

``FakeBank.handler`` plugs into ``httpx.MockTransport`` and serves the six
endpoints the workflow uses, with the live service's rules:

- ``POST /login`` is unauthenticated and returns ``{"number", "token"}``
- every other route needs ``x-jwt-token`` (401 when absent, 403 when unknown)
- admin routes need an admin token whose number matches the request's
  ``number``/``admin_account``; user routes need the caller's own number
- a transfer above the source balance is a 400; success returns the
  updated source account
- ``DELETE /account/{id}`` returns ``{"deleted": id}``

Faults can be injected per route to exercise failure paths.
"""

from __future__ import annotations

import hashlib
import hmac
import itertools
import json
import random
import re
import secrets
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.logger import Logger, session_logger

BASE_URL = "http://fake-bank.local"

_DELETE_RE = re.compile(r"^/account/(?P<id>\d+)$")


@dataclass
class _StoredAccount:
    id: int
    number: int
    first_name: str
    last_name: str
    password: str
    balance: int
    role: str
    created_at: float = field(default_factory=time.time)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "number": self.number,
            "balance": self.balance,
            "role": self.role,
            "createdAt": self.created_at,
        }


class FakeBank:
    def __init__(
        self,
        *,
        admin_number: int = 1107,
        admin_password: str = "gobank",
        seed: int | None = None,
        call_log_size: int = 1000,
        logger: Logger | None = None,
    ) -> None:
        self._logger = logger or session_logger
        self._rng = random.Random(seed)
        self._ids = itertools.count(1)
        self._accounts: dict[int, _StoredAccount] = {}
        self._secret = secrets.token_bytes(32)
        self._faults: dict[str, int] = {}
        self._dropped_fields: dict[str, set[str]] = {}
        self._calls: deque[str] = deque(maxlen=call_log_size)
        self._call_counts: Counter[str] = Counter()

        self._seed_account("admin", "admin", admin_password, 0, role="admin", number=admin_number)

    # ------------------------------------------------------------------
    # Inspection and fault injection
    # ------------------------------------------------------------------

    @property
    def account_numbers(self) -> set[int]:
        return {account.number for account in self._accounts.values()}

    def account_by_number(self, number: int) -> dict[str, Any] | None:
        account = self._find_by_number(number)
        return account.to_payload() if account else None

    @property
    def calls(self) -> list[str]:
        """The most recent routes served, oldest first."""
        return list(self._calls)

    def calls_to(self, route: str) -> int:
        """Total requests served for ``route`` since the bank was created."""
        return self._call_counts[route]

    def inject_failure(self, route: str, status: int = 500) -> None:
        """Answer every request to ``route`` (e.g. ``"POST /transfer"``) with ``status``."""
        self._faults[route] = status

    def drop_field(self, route: str, field_name: str) -> None:
        """Remove ``field_name`` from successful responses of ``route``."""
        self._dropped_fields.setdefault(route, set()).add(field_name)

    def clear_faults(self) -> None:
        self._faults.clear()
        self._dropped_fields.clear()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        route, account_id = self._route(request)
        self._calls.append(route)
        self._call_counts[route] += 1

        if route in self._faults:
            self._logger.debug(
                "sim.fake_bank_fault",
                event="sim.fake_bank_fault",
                route=route,
                status_code=self._faults[route],
            )
            return _error(self._faults[route], "injected failure")

        try:
            body = json.loads(request.content) if request.content else {}
        except ValueError:
            return _error(400, "Not Authenticated" if route == "POST /login" else "Error processing request")
        if not isinstance(body, dict):
            return _error(400, "Error processing request")

        if route == "POST /login":
            response = self._login(body)
        else:
            claims = self._claims(request)
            if isinstance(claims, httpx.Response):
                return claims

            if route == "POST /accounts":
                response = self._list_accounts(body, claims)
            elif route == "POST /account":
                response = self._create_account(body, claims)
            elif route == "POST /account/get":
                response = self._get_account(body, claims)
            elif route == "POST /transfer":
                response = self._transfer(body, claims)
            elif route == "DELETE /account/{id}":
                response = self._delete_account(body, claims, account_id)
            else:
                response = _error(404, "not found")

        return self._apply_dropped_fields(route, response)

    def _route(self, request: httpx.Request) -> tuple[str, int | None]:
        path = request.url.path
        if request.method == "DELETE":
            match = _DELETE_RE.match(path)
            if match:
                return "DELETE /account/{id}", int(match.group("id"))
        return f"{request.method} {path}", None

    def _claims(self, request: httpx.Request) -> tuple[int, str] | httpx.Response:
        token = request.headers.get("x-jwt-token")
        if not token:
            return _error(401, "authentication required")
        claims = self._verify(token)
        if claims is None:
            return _error(403, "permission denied")
        return claims

    # Tokens are signed claims, like the service's JWTs, so the bank keeps
    # no per-login state.

    def _sign(self, number: int, role: str) -> str:
        claims = f"{number}.{role}"
        return f"{claims}.{self._signature(claims)}"

    def _verify(self, token: str) -> tuple[int, str] | None:
        claims, _, signature = token.rpartition(".")
        number, _, role = claims.partition(".")
        expected = self._signature(claims)
        if not claims or not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            return None
        try:
            return int(number), role
        except ValueError:
            return None

    def _signature(self, claims: str) -> str:
        return hmac.new(self._secret, claims.encode("utf-8"), hashlib.sha256).hexdigest()

    def _login(self, body: dict[str, Any]) -> httpx.Response:
        account = self._find_by_number(body.get("number"))
        if account is None or account.password != body.get("password"):
            return _error(400, "Not Authenticated")

        token = self._sign(account.number, account.role)
        return httpx.Response(200, json={"number": account.number, "token": token})

    def _list_accounts(self, body: dict[str, Any], claims: tuple[int, str]) -> httpx.Response:
        if not _is_admin_for(claims, body.get("number")):
            return _error(400, "Error processing request")
        return httpx.Response(200, json=[a.to_payload() for a in self._accounts.values()])

    def _create_account(self, body: dict[str, Any], claims: tuple[int, str]) -> httpx.Response:
        if not _is_admin_for(claims, body.get("admin_account")):
            return _error(400, "Insufficient permissions: admin role required")

        balance = body.get("balance", 0)
        if not isinstance(balance, int) or balance < 0:
            return _error(400, "invalid balance")

        account = self._seed_account(
            str(body.get("firstName", "")),
            str(body.get("lastName", "")),
            str(body.get("password", "")),
            balance,
            role=str(body.get("role") or "user"),
        )
        return httpx.Response(200, json=account.to_payload())

    def _get_account(self, body: dict[str, Any], claims: tuple[int, str]) -> httpx.Response:
        number = body.get("number")
        if claims[0] != number:
            return _error(400, "Error processing request")
        account = self._find_by_number(number)
        if account is None:
            return _error(400, "Error processing request")
        return httpx.Response(200, json=account.to_payload())

    def _transfer(self, body: dict[str, Any], claims: tuple[int, str]) -> httpx.Response:
        amount = body.get("amount")
        if claims[0] != body.get("from_number") or not isinstance(amount, int) or amount < 0:
            return _error(400, "could not complete request")

        source = self._find_by_number(body.get("from_number"))
        if source is None:
            return _error(500, "could not complete request")
        if source.balance < amount:
            return _error(400, "could not complete request")

        destination = self._find_by_number(body.get("to_number"))
        if destination is None:
            return _error(500, "could not complete request")

        source.balance -= amount
        destination.balance += amount
        return httpx.Response(200, json=source.to_payload())

    def _delete_account(
        self,
        body: dict[str, Any],
        claims: tuple[int, str],
        account_id: int | None,
    ) -> httpx.Response:
        if not _is_admin_for(claims, body.get("admin_account")) or account_id is None:
            return _error(400, "Unable to delete account")
        if self._accounts.pop(account_id, None) is None:
            return _error(400, "Unable to delete account")
        return httpx.Response(200, json={"deleted": account_id})

    def _apply_dropped_fields(self, route: str, response: httpx.Response) -> httpx.Response:
        dropped = self._dropped_fields.get(route)
        if not dropped or response.status_code != 200:
            return response
        payload = response.json()
        if isinstance(payload, dict):
            payload = {k: v for k, v in payload.items() if k not in dropped}
        return httpx.Response(200, json=payload)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _seed_account(
        self,
        first_name: str,
        last_name: str,
        password: str,
        balance: int,
        *,
        role: str = "user",
        number: int | None = None,
    ) -> _StoredAccount:
        if number is None:
            number = self._unused_number()
        account = _StoredAccount(
            id=next(self._ids),
            number=number,
            first_name=first_name,
            last_name=last_name,
            password=password,
            balance=balance,
            role=role,
        )
        self._accounts[account.id] = account
        return account

    def _unused_number(self) -> int:
        taken = self.account_numbers
        while True:
            number = self._rng.randrange(10000, 100000)
            if number not in taken:
                return number

    def _find_by_number(self, number: Any) -> _StoredAccount | None:
        for account in self._accounts.values():
            if account.number == number:
                return account
        return None


def _is_admin_for(claims: tuple[int, str], number: Any) -> bool:
    return claims[1] == "admin" and claims[0] == number


def _error(status: int, message: str) -> httpx.Response:
    return httpx.Response(status, json={"error": message})
