"""
Health Rocket diagnostics CLI
=============================

Runs launch-code checks, data integrity checks, the authenticated test
suite, security probes, the new-user journey and smoke checks against the
backend configured through ``HR_*`` environment variables. Also inspects
and edits the local onboarding state.

Usage:
    healthrocket check-code BETA2024
    healthrocket integrity <user-id> --email test1@healthrocket.app
    healthrocket suite --concurrent --output report.md
    healthrocket security test1@healthrocket.app
    healthrocket onboarding complete profile_setup
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import httpx
import structlog

from healthrocket.auth.service import sign_in, sign_out
from healthrocket.backend.client import BackendClient
from healthrocket.backend.errors import describe_error
from healthrocket.config import Settings, get_settings
from healthrocket.diagnostics.integrity import run_data_integrity_check
from healthrocket.diagnostics.journey import UserJourney
from healthrocket.diagnostics.security import SecurityProbe
from healthrocket.diagnostics.smoke import SmokeRunner
from healthrocket.diagnostics.suite import AuthenticatedTestSuite, run_full_test_suite
from healthrocket.diagnostics.test_users import get_test_user_by_email, load_test_users
from healthrocket.launch_codes import (
    format_launch_code,
    get_special_code_info,
    is_valid_launch_code_format,
    validate_launch_code,
)
from healthrocket.logging_setup import setup_logging
from healthrocket.onboarding.tracker import OnboardingStep, OnboardingTracker
from healthrocket.storage import FileKeyValueStore, MemoryKeyValueStore

logger = structlog.get_logger()

STATUS_MARK = {"pass": "PASS", "warning": "WARN", "fail": "FAIL", "success": "PASS", "error": "FAIL"}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_check_code(args: argparse.Namespace, settings: Settings, transport: httpx.AsyncBaseTransport | None) -> int:
    code = format_launch_code(args.code)
    if not is_valid_launch_code_format(code):
        print(f"{code}: invalid format (3-20 letters or digits)")
        return 1

    async with BackendClient.from_settings(settings, store=MemoryKeyValueStore(), transport=transport) as client:
        result = await validate_launch_code(client, code)

    if not result.valid:
        print(f"{code}: {result.error or 'Invalid launch code'}")
        return 1

    info = get_special_code_info(code)
    print(f"{code}: valid ({info.rarity})")
    print(f"  {info.description}")
    if result.community_name:
        print(f"  Community: {result.community_name}")
    if result.plan_name:
        print(f"  Plan: {result.plan_name}")
    for benefit in info.benefits:
        print(f"  - {benefit}")
    return 0


async def _sign_in_test_user(client: BackendClient, settings: Settings, email: str, password: str | None) -> bool:
    if password is None:
        test_user = get_test_user_by_email(email, load_test_users(settings.test_users_file))
        if test_user is None:
            print(f"Unknown test user {email}; pass --password")
            return False
        password = test_user.password
    result = await sign_in(client, email, password)
    if not result.success:
        friendly = describe_error(result.error or "")
        print(f"{friendly['title']}: {result.error}")
        return False
    return True


async def cmd_integrity(args: argparse.Namespace, settings: Settings, transport: httpx.AsyncBaseTransport | None) -> int:
    store = MemoryKeyValueStore() if args.email else None
    async with BackendClient.from_settings(settings, store=store, transport=transport) as client:
        if args.email:
            if not await _sign_in_test_user(client, settings, args.email, args.password):
                return 1
        else:
            await client.auth.restore_session()

        report = await run_data_integrity_check(client, args.user_id, settings)
        if args.email:
            await sign_out(client)

    print(f"Integrity report for {report.user_name} ({report.user_id})")
    for check in report.checks:
        print(f"  [{STATUS_MARK[check.status]}] {check.name}: {check.message}")
    print(f"Overall: {report.overall_status} ({report.passed_count}/{len(report.checks)} passed)")
    return 0 if report.overall_status == "pass" else 1


async def cmd_suite(args: argparse.Namespace, settings: Settings, transport: httpx.AsyncBaseTransport | None) -> int:
    def client_factory() -> BackendClient:
        return BackendClient.from_settings(settings, store=MemoryKeyValueStore(), transport=transport)

    if args.concurrent:
        full = await run_full_test_suite(settings, client_factory)
        report, passed = full.report, full.passed
        concurrent = full.concurrent_results
        print(
            f"Concurrent: {concurrent.successful_logins}/{concurrent.total_users} logins, "
            f"{concurrent.data_isolation_violations} isolation violations, "
            f"{concurrent.performance_issues} performance issues",
            file=sys.stderr,
        )
    else:
        suite = AuthenticatedTestSuite(settings, client_factory)
        results = [await suite.run_single_user_tests(user) for user in suite.users]
        report = suite.generate_detailed_report(results)
        passed = all(r.tests_failed == 0 for r in results)

    if args.output:
        Path(args.output).write_text(report, encoding="utf-8")
        logger.info("suite_report_written", path=args.output)
    else:
        print(report)
    return 0 if passed else 1


async def cmd_security(args: argparse.Namespace, settings: Settings, transport: httpx.AsyncBaseTransport | None) -> int:
    users = load_test_users(settings.test_users_file)
    async with BackendClient.from_settings(settings, store=MemoryKeyValueStore(), transport=transport) as client:
        if not await _sign_in_test_user(client, settings, args.email, args.password):
            return 1
        user = client.auth.session.user
        results = await SecurityProbe(client, user, users).run_all()
        await sign_out(client)

    for r in results:
        print(f"  [{STATUS_MARK[r.status]}] {r.name} ({r.severity}): {r.message}")
    passed = sum(1 for r in results if r.passed)
    print(f"{passed}/{len(results)} security probes passed")
    return 0 if passed == len(results) else 1


async def cmd_journey(args: argparse.Namespace, settings: Settings, transport: httpx.AsyncBaseTransport | None) -> int:
    async with BackendClient.from_settings(settings, store=MemoryKeyValueStore(), transport=transport) as client:
        report = await UserJourney(client, email=args.email).run()

    print(f"Journey for {report.email}")
    for step in report.steps:
        mark = STATUS_MARK.get(step.status, "SKIP")
        print(f"  [{mark}] {step.name}: {step.result or '-'}")
    print(f"{report.success_count} succeeded, {report.error_count} failed, {len(report.steps)} total")
    return 0 if report.passed else 1


async def cmd_smoke(args: argparse.Namespace, settings: Settings, transport: httpx.AsyncBaseTransport | None) -> int:
    async with BackendClient.from_settings(settings, transport=transport) as client:
        await client.auth.restore_session()
        results = await SmokeRunner(client).run()

    for r in results:
        print(f"  [{STATUS_MARK[r.status]}] {r.name}: {r.result}")
    passed = sum(1 for r in results if r.passed)
    print(f"{passed}/{len(results)} smoke checks passed")
    return 0 if passed == len(results) else 1


async def cmd_onboarding(args: argparse.Namespace, settings: Settings, transport: httpx.AsyncBaseTransport | None) -> int:
    tracker = OnboardingTracker(FileKeyValueStore(settings.storage_path))
    await tracker.load()
    step = OnboardingStep(args.step) if getattr(args, "step", None) else None

    if args.action == "complete":
        await tracker.complete_step(step)
    elif args.action == "skip":
        if not tracker.can_skip_step(step):
            print(f"{step.value} cannot be skipped")
            return 1
        await tracker.skip_step(step)
    elif args.action == "next":
        next_step = tracker.get_next_step()
        if next_step is None:
            print("Onboarding already finished")
            return 0
        if next_step == OnboardingStep.COMPLETED:
            await tracker.complete_onboarding()
        else:
            await tracker.set_current_step(next_step)
    elif args.action == "reset":
        await tracker.reset()

    progress = tracker.get_progress()
    state = tracker.state
    print(f"Current step: {state.current_step.value}")
    print(f"Completed: {', '.join(s.value for s in state.completed_steps) or '-'}")
    print(f"Skipped: {', '.join(s.value for s in state.skipped_steps) or '-'}")
    print(f"Progress: {progress.current}/{progress.total} ({progress.percentage}%)")
    print(f"Finished: {'yes' if state.is_complete else 'no'}")
    return 0


COMMANDS = {
    "check-code": cmd_check_code,
    "integrity": cmd_integrity,
    "suite": cmd_suite,
    "security": cmd_security,
    "journey": cmd_journey,
    "smoke": cmd_smoke,
    "onboarding": cmd_onboarding,
}


async def run_command(
    args: argparse.Namespace,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Dispatch a parsed command and return its exit status."""
    try:
        return await COMMANDS[args.command](args, settings, transport)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="healthrocket",
        description="Health Rocket backend diagnostics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("check-code", help="Validate a launch code")
    p.add_argument("code")

    p = sub.add_parser("integrity", help="Run data integrity checks for a user")
    p.add_argument("user_id")
    p.add_argument("--email", help="Sign in as this test user first (default: saved session)")
    p.add_argument("--password", help="Password for --email (default: from test users)")

    p = sub.add_parser("suite", help="Run the authenticated test suite for every test user")
    p.add_argument(
        "--concurrent", action="store_true",
        help="Also run all test users at once",
    )
    p.add_argument("--output", "-o", help="Write the Markdown report to this file")

    p = sub.add_parser("security", help="Run row-level security probes as a test user")
    p.add_argument("email")
    p.add_argument("--password", help="Password (default: from test users)")

    p = sub.add_parser("journey", help="Register a throwaway user and walk the core features")
    p.add_argument("--email", help="Email for the new user (default: random)")

    sub.add_parser("smoke", help="Quick checks that need no test user")

    p = sub.add_parser("onboarding", help="Inspect or change local onboarding state")
    actions = p.add_subparsers(dest="action", required=True)
    actions.add_parser("show")
    actions.add_parser("next")
    actions.add_parser("reset")
    steps = [s.value for s in OnboardingStep]
    actions.add_parser("complete").add_argument("step", choices=steps)
    actions.add_parser("skip").add_argument("step", choices=steps)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings, verbose=args.verbose)

    exit_code = asyncio.run(run_command(args, settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
