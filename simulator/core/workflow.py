"""Per-iteration transfer workflow.

One iteration walks a fixed chain of states::

    Start -> AdminLogin -> ProbeAccounts -> CreateFromAccount -> CreateToAccount
          -> LoginAsFromAccount -> ExecuteTransfer -> FetchUpdatedToAccount
          -> VerifyInvariant -> Cleanup -> Done | Failed

Each transition takes the current ``IterationContext`` and returns a new one;
a transition that cannot proceed raises a ``WorkflowError``, which the
executor turns into a ``StepFailed`` result and stops the chain. Accounts are
registered with a ``CleanupScope`` the moment the service reports their id,
so ``Cleanup`` runs on every exit path.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Union

from app.exceptions import WorkflowError
from app.logger import Logger, session_logger

from simulator.core.cleanup import CleanupManager, CleanupScope
from simulator.core.http_client import BankClient
from simulator.core.invariants import InvariantChecker
from simulator.core.models import (
    Account,
    CheckResult,
    IntRange,
    RejectedTransferPolicy,
    Session,
    TransferIntent,
    WorkflowPolicy,
    WorkflowState,
)
from simulator.core.results import ResultAggregator
from simulator.core.session import SessionManager

TRANSFER_REJECTED = "transfer rejected for insufficient funds"


def step_check_name(state: WorkflowState) -> str:
    return f"{state.value} succeeded"


@dataclass(frozen=True)
class IterationContext:
    """State threaded through one iteration. Never shared between iterations."""

    iteration_id: int
    admin: Session | None = None
    from_account: Account | None = None
    to_account: Account | None = None
    from_session: Session | None = None
    transfer: TransferIntent | None = None
    transfer_rejected: bool = False
    from_balance_after: int | None = None
    to_balance_after: int | None = None
    checks: tuple[CheckResult, ...] = ()

    def with_checks(self, *results: CheckResult) -> "IterationContext":
        return replace(self, checks=self.checks + tuple(results))


@dataclass(frozen=True)
class StepOk:
    context: IterationContext


@dataclass(frozen=True)
class StepFailed:
    context: IterationContext
    state: WorkflowState
    error: WorkflowError


StepResult = Union[StepOk, StepFailed]
Transition = Callable[[IterationContext, CleanupScope], Awaitable[IterationContext]]


@dataclass(frozen=True)
class IterationOutcome:
    iteration_id: int
    final_state: WorkflowState
    context: IterationContext
    duration_ms: int
    failed_state: WorkflowState | None = None
    reason: str | None = None
    error_type: str | None = None
    cleanup_attempted: bool = False

    @property
    def ok(self) -> bool:
        return self.final_state is WorkflowState.DONE

    @property
    def checks_passed(self) -> bool:
        return all(check.passed for check in self.context.checks)


class WorkflowExecutor:
    """Runs transfer iterations against the service."""

    def __init__(
        self,
        client: BankClient,
        *,
        sessions: SessionManager,
        checker: InvariantChecker,
        cleanup: CleanupManager,
        results: ResultAggregator,
        policy: WorkflowPolicy | None = None,
        rng: random.Random | None = None,
        pacing_seconds: float = 0.0,
        logger: Logger | None = None,
    ) -> None:
        self._client = client
        self._sessions = sessions
        self._checker = checker
        self._cleanup = cleanup
        self._results = results
        self._policy = policy or WorkflowPolicy()
        self._rng = rng or random.Random()
        self._pacing_seconds = pacing_seconds
        self._logger = logger or session_logger

    async def run_iteration(self, iteration_id: int) -> IterationOutcome:
        started = time.monotonic()
        context = IterationContext(iteration_id=iteration_id)
        failure: StepFailed | None = None

        async with self._cleanup.scope(iteration_id) as scope:
            for state, transition in self._transitions():
                result = await self._advance(state, transition, context, scope)
                context = result.context
                if isinstance(result, StepFailed):
                    failure = result
                    break

        context = context.with_checks(*scope.results)
        outcome = self._conclude(context, failure, scope, started)
        await self._results.record_iteration(outcome)

        if outcome.ok:
            self._logger.info(
                "sim.iteration_done",
                event="sim.iteration_done",
                iteration_id=iteration_id,
                duration_ms=outcome.duration_ms,
                checks_passed=outcome.checks_passed,
            )
            if self._pacing_seconds > 0:
                await asyncio.sleep(self._pacing_seconds)
        else:
            self._logger.warning(
                "sim.iteration_failed",
                event="sim.iteration_failed",
                iteration_id=iteration_id,
                failed_state=outcome.failed_state.value if outcome.failed_state else None,
                error_type=outcome.error_type,
                reason=outcome.reason,
                cleanup_attempted=outcome.cleanup_attempted,
                duration_ms=outcome.duration_ms,
            )
        return outcome

    def _transitions(self) -> tuple[tuple[WorkflowState, Transition], ...]:
        return (
            (WorkflowState.ADMIN_LOGIN, self._admin_login),
            (WorkflowState.PROBE_ACCOUNTS, self._probe_accounts),
            (WorkflowState.CREATE_FROM_ACCOUNT, self._create_from_account),
            (WorkflowState.CREATE_TO_ACCOUNT, self._create_to_account),
            (WorkflowState.LOGIN_AS_FROM_ACCOUNT, self._login_as_from_account),
            (WorkflowState.EXECUTE_TRANSFER, self._execute_transfer),
            (WorkflowState.FETCH_UPDATED_TO_ACCOUNT, self._fetch_updated_to_account),
            (WorkflowState.VERIFY_INVARIANT, self._verify_invariant),
        )

    async def _advance(
        self,
        state: WorkflowState,
        transition: Transition,
        context: IterationContext,
        scope: CleanupScope,
    ) -> StepResult:
        try:
            advanced = await transition(context, scope)
        except WorkflowError as exc:
            self._logger.warning(
                "sim.step_failed",
                event="sim.step_failed",
                iteration_id=context.iteration_id,
                state=state.value,
                error_code=exc.code,
                error=exc.message,
            )
            await self._results.record_check(
                CheckResult(name=step_check_name(state), passed=False, detail=str(exc))
            )
            return StepFailed(context, state, exc)

        await self._results.record_check(CheckResult(name=step_check_name(state), passed=True))
        return StepOk(advanced)

    def _conclude(
        self,
        context: IterationContext,
        failure: StepFailed | None,
        scope: CleanupScope,
        started: float,
    ) -> IterationOutcome:
        duration_ms = int((time.monotonic() - started) * 1000)
        common = {
            "iteration_id": context.iteration_id,
            "context": context,
            "duration_ms": duration_ms,
            "cleanup_attempted": scope.attempted,
        }

        if failure is not None:
            return IterationOutcome(
                final_state=WorkflowState.FAILED,
                failed_state=failure.state,
                reason=str(failure.error),
                error_type=failure.error.error_type,
                **common,
            )

        failed_deletions = [r for r in scope.results if not r.passed]
        if failed_deletions:
            return IterationOutcome(
                final_state=WorkflowState.FAILED,
                failed_state=WorkflowState.CLEANUP,
                reason="; ".join(r.detail or r.name for r in failed_deletions),
                error_type="cleanup_failure",
                **common,
            )

        return IterationOutcome(final_state=WorkflowState.DONE, **common)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _admin_login(self, context: IterationContext, scope: CleanupScope) -> IterationContext:
        admin = await self._sessions.login(
            self._policy.admin_number,
            self._policy.admin_password,
            step=WorkflowState.ADMIN_LOGIN,
        )
        scope.bind_admin(admin)
        return replace(context, admin=admin)

    async def _probe_accounts(self, context: IterationContext, scope: CleanupScope) -> IterationContext:
        # Smoke check only; the listing is not carried forward.
        assert context.admin is not None
        outcome = await self._client.send(
            "POST",
            "/accounts",
            {"number": context.admin.account_number},
            token=context.admin.token,
        )
        outcome.raise_for_status(step=WorkflowState.PROBE_ACCOUNTS.value)
        return context

    async def _create_from_account(self, context: IterationContext, scope: CleanupScope) -> IterationContext:
        account = await self._create_account(
            context,
            scope,
            label="from",
            last_name=self._policy.from_last_name,
            balance_range=self._policy.from_balance,
            state=WorkflowState.CREATE_FROM_ACCOUNT,
        )
        return replace(context, from_account=account)

    async def _create_to_account(self, context: IterationContext, scope: CleanupScope) -> IterationContext:
        account = await self._create_account(
            context,
            scope,
            label="to",
            last_name=self._policy.to_last_name,
            balance_range=self._policy.to_balance,
            state=WorkflowState.CREATE_TO_ACCOUNT,
        )
        return replace(context, to_account=account)

    async def _login_as_from_account(self, context: IterationContext, scope: CleanupScope) -> IterationContext:
        assert context.from_account is not None
        session = await self._sessions.login(
            context.from_account.number,
            self._policy.account_password,
            step=WorkflowState.LOGIN_AS_FROM_ACCOUNT,
        )
        return replace(context, from_session=session)

    async def _execute_transfer(self, context: IterationContext, scope: CleanupScope) -> IterationContext:
        assert context.from_account is not None and context.to_account is not None
        assert context.from_session is not None
        step = WorkflowState.EXECUTE_TRANSFER.value

        intent = TransferIntent(
            from_number=context.from_account.number,
            to_number=context.to_account.number,
            amount=self._policy.transfer_amount.sample(self._rng),
        )
        outcome = await self._client.send(
            "POST",
            "/transfer",
            intent.to_payload(),
            token=context.from_session.token,
            accept=self._accepted_transfer_statuses(),
        )

        if outcome.ok:
            balance = outcome.require_int("balance", step=step)
            return replace(context, transfer=intent, from_balance_after=balance)

        if self._is_expected_rejection(intent, outcome.status, context.from_account):
            result = CheckResult(name=TRANSFER_REJECTED, passed=True, detail=f"amount {intent.amount}")
            await self._results.record_check(result)
            return replace(context, transfer=intent, transfer_rejected=True).with_checks(result)

        outcome.raise_for_status(step=step)
        return context  # pragma: no cover - raise_for_status raised

    async def _fetch_updated_to_account(self, context: IterationContext, scope: CleanupScope) -> IterationContext:
        assert context.to_account is not None and context.from_account is not None
        step = WorkflowState.FETCH_UPDATED_TO_ACCOUNT

        to_session = await self._sessions.login(
            context.to_account.number,
            self._policy.account_password,
            step=step,
        )
        to_balance = await self._fetch_balance(context.to_account.number, to_session, step)

        from_balance = context.from_balance_after
        if context.transfer_rejected:
            assert context.from_session is not None
            from_balance = await self._fetch_balance(context.from_account.number, context.from_session, step)

        return replace(context, to_balance_after=to_balance, from_balance_after=from_balance)

    async def _verify_invariant(self, context: IterationContext, scope: CleanupScope) -> IterationContext:
        assert context.from_account is not None and context.to_account is not None
        assert context.transfer is not None

        if context.transfer_rejected:
            checks = self._checker.check_unchanged(
                context.from_account.balance,
                context.from_balance_after,
                context.to_account.balance,
                context.to_balance_after,
            )
        else:
            checks = self._checker.check(
                context.from_account.balance,
                context.from_balance_after,
                context.to_account.balance,
                context.to_balance_after,
                context.transfer.amount,
            )

        for check in checks:
            await self._results.record_check(check)
        return context.with_checks(*checks)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _create_account(
        self,
        context: IterationContext,
        scope: CleanupScope,
        *,
        label: str,
        last_name: str,
        balance_range: IntRange,
        state: WorkflowState,
    ) -> Account:
        assert context.admin is not None
        step = state.value
        outcome = await self._client.send(
            "POST",
            "/account",
            {
                "firstName": self._policy.first_name,
                "lastName": last_name,
                "password": self._policy.account_password,
                "balance": balance_range.sample(self._rng),
                "admin_account": self._policy.admin_number,
            },
            token=context.admin.token,
        )
        outcome.raise_for_status(step=step)

        # Register before validating the rest of the body so a malformed
        # response still gets its account deleted.
        scope.register(label, outcome.require_int("id", step=step))
        return Account.from_payload(outcome.body, step=step, admin_account=self._policy.admin_number)

    async def _fetch_balance(self, number: int, session: Session, state: WorkflowState) -> int:
        outcome = await self._client.send(
            "POST",
            "/account/get",
            {"number": number},
            token=session.token,
        )
        outcome.raise_for_status(step=state.value)
        return outcome.require_int("balance", step=state.value)

    def _accepted_transfer_statuses(self) -> tuple[int, ...]:
        if self._policy.rejected_transfer is RejectedTransferPolicy.EXPECTED:
            return (200, 400)
        return (200,)

    def _is_expected_rejection(self, intent: TransferIntent, status: int | None, source: Account) -> bool:
        return (
            self._policy.rejected_transfer is RejectedTransferPolicy.EXPECTED
            and status == 400
            and intent.amount > source.balance
        )
