from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path

from app.exceptions import BankSimError
from app.logger import configure_logging
from app.logger import session_logger as logger

from simulator.api.report import build_simulation_report
from simulator.core.engine import Simulator
from simulator.core.models import (
    IntRange,
    Mode,
    RejectedTransferPolicy,
    SimulationConfig,
    WorkflowPolicy,
)
from simulator.core.profile import load_stages_file, parse_duration_to_seconds, parse_stages


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="gobank money-transfer load and correctness harness")
    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in Mode],
        default=Mode.LIVE.value,
        help="live: drive the service at --base-url; fixture: drive the in-memory fake bank",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=os.environ.get("GOBANK_SIM_BASE_URL"),
        help="Service base URL (e.g. http://localhost:3000). Required for --mode live.",
    )
    parser.add_argument(
        "--stages",
        type=str,
        default="10:30s",
        help="Ramp profile as <target>:<duration> entries, comma separated (e.g. 5:10s,10:30s,0:10s)",
    )
    parser.add_argument(
        "--stages-file",
        type=str,
        default=None,
        help="JSON file with a k6-style stages list; overrides --stages",
    )
    parser.add_argument(
        "--admin-number",
        type=int,
        default=os.environ.get("GOBANK_SIM_ADMIN_NUMBER", "1107"),
        help="Administrative account number used to create and delete test accounts",
    )
    parser.add_argument(
        "--admin-password",
        type=str,
        default=os.environ.get("GOBANK_SIM_ADMIN_PASSWORD", "gobank"),
        help="Password of the administrative account",
    )
    parser.add_argument(
        "--account-password",
        type=str,
        default=os.environ.get("GOBANK_SIM_PASSWORD", "gobank"),
        help="Password given to accounts created by the harness",
    )
    parser.add_argument(
        "--amount-min",
        type=int,
        default=20,
        help="Minimum transfer amount (inclusive)",
    )
    parser.add_argument(
        "--amount-max",
        type=int,
        default=100,
        help="Maximum transfer amount (exclusive)",
    )
    parser.add_argument(
        "--rejected-transfer",
        type=str,
        choices=[p.value for p in RejectedTransferPolicy],
        default=RejectedTransferPolicy.FAILURE.value,
        help="Treat a transfer refused for insufficient funds as a failure (default) or as expected",
    )
    parser.add_argument(
        "--pacing",
        type=str,
        default="5s",
        help="Pause after each successful iteration (e.g. 5s, 500ms, 0s)",
    )
    parser.add_argument(
        "--drain-timeout",
        type=str,
        default=None,
        help="Cancel iterations still running this long after the profile ends (default: wait)",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=None,
        help="HTTP timeout per request (default: transport default)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for balances and transfer amounts",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write summary report JSON to this path",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")
    return parser


def _build_config(args: argparse.Namespace) -> SimulationConfig:
    if args.stages_file:
        stages = load_stages_file(args.stages_file)
    else:
        stages = parse_stages(args.stages)

    policy = WorkflowPolicy(
        admin_number=args.admin_number,
        admin_password=args.admin_password,
        account_password=args.account_password,
        transfer_amount=IntRange(args.amount_min, args.amount_max),
        rejected_transfer=RejectedTransferPolicy(args.rejected_transfer),
    )

    drain_timeout = parse_duration_to_seconds(args.drain_timeout) if args.drain_timeout else None

    return SimulationConfig(
        mode=Mode(args.mode),
        base_url=(args.base_url.strip() if args.base_url else None),
        stages=stages,
        policy=policy,
        timeout_seconds=args.timeout_seconds,
        pacing_seconds=parse_duration_to_seconds(args.pacing),
        drain_timeout_seconds=drain_timeout,
        seed=args.seed,
    )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose, log_json=args.log_json)
    logger.set_level(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = _build_config(args)
    except BankSimError as exc:
        logger.error(
            "sim.invalid_arguments",
            event="sim.invalid_arguments",
            error_code=exc.code,
            error=exc.message,
            details=exc.details,
        )
        return 2

    if config.mode == Mode.LIVE and not config.base_url:
        logger.error(
            "sim.missing_base_url",
            event="sim.missing_base_url",
            recovery="Provide --base-url or set GOBANK_SIM_BASE_URL (or use --mode fixture)",
        )
        return 2

    simulator = Simulator(config, logger=logger)
    result = asyncio.run(simulator.run())

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = build_simulation_report(config, result)
        output_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        logger.info(
            "sim.report_written",
            event="sim.report_written",
            path=str(output_path),
        )

    return 0 if result.all_passed else 1


if __name__ == "__main__":
    raise SystemExit(main())
