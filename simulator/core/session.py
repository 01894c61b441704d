from __future__ import annotations

from app.exceptions import AuthError
from app.logger import Logger, session_logger

from simulator.core.http_client import BankClient
from simulator.core.models import Session, WorkflowState


class SessionManager:
    """Logs accounts in.

    Tokens are never cached: every call performs a fresh login, so each
    iteration holds its own sessions.
    """

    def __init__(self, client: BankClient, *, logger: Logger | None = None) -> None:
        self._client = client
        self._logger = logger or session_logger

    async def login(
        self,
        number: int,
        password: str,
        *,
        step: WorkflowState = WorkflowState.ADMIN_LOGIN,
    ) -> Session:
        outcome = await self._client.send(
            "POST",
            "/login",
            {"number": number, "password": password},
            name="POST /login",
        )

        token = outcome.body.get("token") if isinstance(outcome.body, dict) else None
        if not outcome.ok or not isinstance(token, str) or not token:
            self._logger.warning(
                "sim.login_failed",
                event="sim.login_failed",
                account_number=number,
                step=step.value,
                status_code=outcome.status,
                error_type=outcome.error_type,
            )
            reason = "login response has no token" if outcome.ok else "login rejected"
            raise AuthError(reason, step=step.value, status=outcome.status, account_number=number)

        return Session(account_number=number, token=token)
