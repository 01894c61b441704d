from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from app.exceptions import CleanupError
from app.logger import Logger, session_logger

from simulator.core.http_client import BankClient
from simulator.core.models import CheckResult, Session

if TYPE_CHECKING:
    from simulator.core.results import ResultAggregator


@dataclass(frozen=True)
class _Registered:
    label: str
    account_id: int


class CleanupManager:
    """Deletes accounts created by an iteration, authenticated as admin.

    Each deletion is attempted and checked on its own; one failing never
    stops the next.
    """

    def __init__(
        self,
        client: BankClient,
        *,
        results: "ResultAggregator | None" = None,
        logger: Logger | None = None,
    ) -> None:
        self._client = client
        self._results = results
        self._logger = logger or session_logger

    @property
    def logger(self) -> Logger:
        return self._logger

    def scope(self, iteration_id: int) -> "CleanupScope":
        return CleanupScope(self, iteration_id)

    async def cleanup(
        self,
        from_account_id: int,
        to_account_id: int,
        admin_number: int,
        admin_token: str,
    ) -> list[CheckResult]:
        return await self.delete_all(
            [_Registered("from", from_account_id), _Registered("to", to_account_id)],
            admin_number=admin_number,
            admin_token=admin_token,
        )

    async def delete_all(
        self,
        accounts: list[_Registered],
        *,
        admin_number: int,
        admin_token: str,
        iteration_id: int | None = None,
    ) -> list[CheckResult]:
        results: list[CheckResult] = []
        for account in accounts:
            try:
                await self._delete(account.account_id, admin_number=admin_number, admin_token=admin_token)
            except CleanupError as exc:
                self._logger.warning(
                    "sim.cleanup_failed",
                    event="sim.cleanup_failed",
                    iteration_id=iteration_id,
                    account=account.label,
                    account_id=account.account_id,
                    status_code=exc.status,
                )
                result = CheckResult(
                    name=f"delete {account.label} account",
                    passed=False,
                    detail=str(exc),
                )
            else:
                result = CheckResult(name=f"delete {account.label} account", passed=True)

            results.append(result)
            if self._results is not None:
                await self._results.record_check(result)
        return results

    async def _delete(self, account_id: int, *, admin_number: int, admin_token: str) -> None:
        outcome = await self._client.send(
            "DELETE",
            f"/account/{account_id}",
            {"admin_account": admin_number},
            token=admin_token,
            name="DELETE /account/{id}",
        )
        if not outcome.ok:
            raise CleanupError(
                f"could not delete account {account_id}",
                account_id=account_id,
                status=outcome.status,
            )


class CleanupScope:
    """Async context that deletes every registered account on exit.

    Accounts are registered as soon as the service reports their id, and
    deletion runs on every exit path, including failures and cancellation.
    Deletions run in registration order.
    """

    def __init__(self, manager: CleanupManager, iteration_id: int) -> None:
        self._manager = manager
        self._iteration_id = iteration_id
        self._admin: Session | None = None
        self._accounts: list[_Registered] = []
        self.results: list[CheckResult] = []
        self.attempted = False

    def bind_admin(self, session: Session) -> None:
        self._admin = session

    def register(self, label: str, account_id: int) -> None:
        self._accounts.append(_Registered(label, account_id))

    async def __aenter__(self) -> "CleanupScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if not self._accounts:
            return False

        if self._admin is None:
            # Accounts can only be created with an admin session; reaching
            # here means registration happened without one.
            self._manager.logger.error(
                "sim.cleanup_without_admin",
                event="sim.cleanup_without_admin",
                iteration_id=self._iteration_id,
                account_ids=[a.account_id for a in self._accounts],
            )
            return False

        self.attempted = True
        accounts, self._accounts = self._accounts, []
        self.results = await self._manager.delete_all(
            accounts,
            admin_number=self._admin.account_number,
            admin_token=self._admin.token,
            iteration_id=self._iteration_id,
        )
        return False
