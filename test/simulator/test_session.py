"""Tests for SessionManager logins against the fake bank."""

from __future__ import annotations

import httpx
import pytest

from app.exceptions import AuthError
from simulator.core.http_client import BankClient
from simulator.core.models import WorkflowState
from simulator.core.session import SessionManager
from simulator.fixtures.fake_bank import BASE_URL


@pytest.mark.asyncio
async def test_admin_login_returns_session(fake_bank, capture_logger):
    async with BankClient(BASE_URL, transport=fake_bank.transport()) as client:
        session = await SessionManager(client, logger=capture_logger).login(1107, "gobank")

    assert session.account_number == 1107
    assert session.token


@pytest.mark.asyncio
async def test_every_login_is_fresh(fake_bank):
    async with BankClient(BASE_URL, transport=fake_bank.transport()) as client:
        sessions = SessionManager(client)
        first = await sessions.login(1107, "gobank")
        second = await sessions.login(1107, "gobank")

    assert first.token != second.token
    assert fake_bank.calls_to("POST /login") == 2


@pytest.mark.asyncio
async def test_wrong_password_raises_auth_error(fake_bank, capture_logger):
    async with BankClient(BASE_URL, transport=fake_bank.transport()) as client:
        with pytest.raises(AuthError) as exc_info:
            await SessionManager(client, logger=capture_logger).login(
                1107,
                "wrong",
                step=WorkflowState.LOGIN_AS_FROM_ACCOUNT,
            )

    assert exc_info.value.status == 400
    assert exc_info.value.step == "LoginAsFromAccount"
    assert "sim.login_failed" in capture_logger.events("warning")
    # Credentials never reach the log.
    for _, _, context in capture_logger.records:
        assert "wrong" not in context.values()


@pytest.mark.asyncio
async def test_200_without_token_is_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"number": 1107, "token": ""})

    async with BankClient("http://bank.test", transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(AuthError) as exc_info:
            await SessionManager(client).login(1107, "gobank")

    assert exc_info.value.message == "login response has no token"
