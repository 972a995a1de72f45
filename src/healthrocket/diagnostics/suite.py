"""
Authenticated end-to-end test suite against a live backend.

For each test identity: sign in, exercise basic table reads, the dashboard
and FP procedures, probe row-level security, time two heavier queries, run
the integrity checker and sign out. Every call is timed.

Each identity gets its own ``BackendClient`` so concurrent runs keep
separate sessions.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from healthrocket.auth.service import sign_in, sign_out
from healthrocket.backend.client import BackendClient
from healthrocket.backend.errors import BackendError
from healthrocket.config import Settings, get_settings
from healthrocket.diagnostics.integrity import IntegrityReport, run_data_integrity_check
from healthrocket.diagnostics.performance import (
    PerformanceMonitor,
    PerformanceReport,
    measure_auth_operation,
    measure_database_query,
    measure_rpc_call,
)
from healthrocket.diagnostics.test_users import TestUser, load_test_users
from healthrocket.gamification.challenges import CHALLENGE_JOIN
from healthrocket.storage import MemoryKeyValueStore

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = structlog.get_logger()

SECURITY_VIOLATION = "SECURITY VIOLATION"


@dataclass
class TestSuiteResult:
    __test__ = False  # not a pytest test class

    test_user: TestUser
    start_time: datetime
    end_time: datetime | None = None
    duration_ms: int = 0
    tests_run: int = 0
    tests_passed: int = 0
    tests_failed: int = 0
    performance_report: PerformanceReport | None = None
    integrity_report: IntegrityReport | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ConcurrentTestResult:
    total_users: int
    successful_logins: int = 0
    failed_logins: int = 0
    data_isolation_violations: int = 0
    performance_issues: int = 0
    results: list[TestSuiteResult] = field(default_factory=list)


@dataclass
class FullSuiteResult:
    single_user_results: list[TestSuiteResult]
    concurrent_results: ConcurrentTestResult
    report: str

    @property
    def passed(self) -> bool:
        return (
            all(r.tests_failed == 0 for r in self.single_user_results)
            and self.concurrent_results.failed_logins == 0
            and self.concurrent_results.data_isolation_violations == 0
        )


class AuthenticatedTestSuite:
    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: Callable[[], BackendClient] | None = None,
        users: list[TestUser] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client_factory = client_factory or self._default_client
        self.users = users if users is not None else load_test_users(self.settings.test_users_file)

    def _default_client(self) -> BackendClient:
        return BackendClient.from_settings(self.settings, store=MemoryKeyValueStore())

    async def run_single_user_tests(self, test_user: TestUser) -> TestSuiteResult:
        result = TestSuiteResult(test_user=test_user, start_time=datetime.now(timezone.utc))
        started = time.perf_counter()
        monitor = PerformanceMonitor()
        log = logger.bind(email=test_user.email)

        try:
            async with self._client_factory() as client:
                result.tests_run += 1
                login = await measure_auth_operation(
                    "User Login",
                    lambda: sign_in(client, test_user.email, test_user.password),
                    monitor=monitor,
                )
                if not login.success:
                    result.tests_failed += 1
                    result.errors.append(f"Login failed: {login.error}")
                    return result
                result.tests_passed += 1

                user_id = login.user_id
                if not user_id:
                    result.tests_failed += 1
                    result.errors.append("No user ID returned from login")
                    return result

                await self._run_basic_data_access_tests(client, user_id, result, monitor)
                await self._run_rpc_function_tests(client, user_id, result, monitor)
                await self._run_security_tests(client, user_id, result, monitor)
                await self._run_performance_tests(client, user_id, result, monitor)

                result.integrity_report = await run_data_integrity_check(client, user_id, self.settings)

                await sign_out(client)
                result.performance_report = monitor.get_report()
        except Exception as e:
            log.error("test_suite_error", error=str(e))
            result.tests_failed += 1
            result.errors.append(f"Test suite error: {e}")
        finally:
            result.end_time = datetime.now(timezone.utc)
            result.duration_ms = round((time.perf_counter() - started) * 1000)

        log.info(
            "user_tests_completed",
            run=result.tests_run,
            passed=result.tests_passed,
            failed=result.tests_failed,
            duration_ms=result.duration_ms,
        )
        return result

    async def _record(
        self,
        result: TestSuiteResult,
        name: str,
        call: Callable[[], Awaitable[Any]],
    ) -> Any:
        result.tests_run += 1
        try:
            value = await call()
        except Exception as e:
            result.tests_failed += 1
            result.errors.append(f"{name}: {e}")
            return None
        result.tests_passed += 1
        return value

    # --- Test groups ---

    async def _run_basic_data_access_tests(
        self,
        client: BackendClient,
        user_id: str,
        result: TestSuiteResult,
        monitor: PerformanceMonitor,
    ) -> None:
        tests = [
            (
                "User Profile Access",
                "User Profile Query",
                lambda: client.table("users").select("*").eq("id", user_id).single().execute(),
            ),
            (
                "FP Earnings Access",
                "FP Earnings Query",
                lambda: client.table("fp_earnings").select("*").eq("user_id", user_id).limit(10).execute(),
            ),
            (
                "Challenge Access",
                "User Challenges Query",
                lambda: client.table("user_challenges").select("*").eq("user_id", user_id).execute(),
            ),
            (
                "Contest Access",
                "Contest Entries Query",
                lambda: client.table("active_contests").select("*").eq("user_id", user_id).execute(),
            ),
        ]
        for name, metric, query in tests:
            await self._record(
                result, name, lambda metric=metric, query=query: measure_database_query(metric, query, monitor=monitor)
            )

    async def _run_rpc_function_tests(
        self,
        client: BackendClient,
        user_id: str,
        result: TestSuiteResult,
        monitor: PerformanceMonitor,
    ) -> None:
        dashboard_params = {"p_user_id": user_id}
        earn_params = {
            "p_user_id": user_id,
            "p_source": "daily_boost",
            "p_amount": 1,
            "p_source_id": "test-boost",
            "p_metadata": {"test": True},
        }
        await self._record(
            result,
            "Dashboard RPC",
            lambda: measure_rpc_call(
                "get_user_dashboard",
                lambda: client.rpc("get_user_dashboard", dashboard_params),
                dashboard_params,
                monitor=monitor,
            ),
        )
        await self._record(
            result,
            "Earn FP RPC",
            lambda: measure_rpc_call(
                "earn_fuel_points",
                lambda: client.rpc("earn_fuel_points", earn_params),
                earn_params,
                monitor=monitor,
            ),
        )

    async def _run_security_tests(
        self,
        client: BackendClient,
        user_id: str,
        result: TestSuiteResult,
        monitor: PerformanceMonitor,
    ) -> None:
        """Selecting every user must return an error or only the caller's own row."""
        result.tests_run += 1
        try:
            query = await measure_database_query(
                "RLS Security Test",
                lambda: client.table("users").select("*").execute(),
                monitor=monitor,
            )
        except BackendError:
            result.tests_passed += 1
            return
        except Exception as e:
            result.tests_failed += 1
            result.errors.append(f"Security test error: {e}")
            return

        rows = query.data or []
        if len(rows) == 1 and rows[0].get("id") == user_id:
            result.tests_passed += 1
        elif len(rows) > 1:
            result.tests_failed += 1
            result.errors.append(f"{SECURITY_VIOLATION}: Can access {len(rows)} users' data")
        else:
            result.warnings.append("Unexpected RLS behavior")
            result.tests_passed += 1

    async def _run_performance_tests(
        self,
        client: BackendClient,
        user_id: str,
        result: TestSuiteResult,
        monitor: PerformanceMonitor,
    ) -> None:
        await self._record(
            result,
            "Bulk FP Query Performance",
            lambda: measure_database_query(
                "Bulk FP Query",
                lambda: client.table("fp_earnings").select("*").eq("user_id", user_id).limit(100).execute(),
                monitor=monitor,
            ),
        )
        await self._record(
            result,
            "Complex Join Query Performance",
            lambda: measure_database_query(
                "Complex Join Query",
                lambda: client.table("user_challenges").select(CHALLENGE_JOIN).eq("user_id", user_id).execute(),
                monitor=monitor,
            ),
        )

    # --- Concurrent runs and reporting ---

    async def run_concurrent_user_tests(self) -> ConcurrentTestResult:
        concurrent = ConcurrentTestResult(total_users=len(self.users))
        outcomes = await asyncio.gather(
            *(self.run_single_user_tests(user) for user in self.users),
            return_exceptions=True,
        )

        for user, outcome in zip(self.users, outcomes):
            if isinstance(outcome, BaseException):
                concurrent.failed_logins += 1
                logger.error("concurrent_user_test_failed", email=user.email, error=str(outcome))
                continue

            concurrent.results.append(outcome)
            if outcome.tests_passed > 0:
                concurrent.successful_logins += 1
            else:
                concurrent.failed_logins += 1
            if any(SECURITY_VIOLATION in e for e in outcome.errors):
                concurrent.data_isolation_violations += 1
            report = outcome.performance_report
            if report and report.average_response_time > self.settings.slow_response_ms:
                concurrent.performance_issues += 1

        logger.info(
            "concurrent_tests_completed",
            users=concurrent.total_users,
            successful_logins=concurrent.successful_logins,
            failed_logins=concurrent.failed_logins,
            isolation_violations=concurrent.data_isolation_violations,
            performance_issues=concurrent.performance_issues,
        )
        return concurrent

    def generate_detailed_report(self, results: list[TestSuiteResult], generated_at: datetime | None = None) -> str:
        """Render results as Markdown."""
        generated_at = generated_at or datetime.now(timezone.utc)
        total_tests = sum(r.tests_run for r in results)
        total_passed = sum(r.tests_passed for r in results)
        total_failed = sum(r.tests_failed for r in results)
        success_rate = total_passed / total_tests * 100 if total_tests else 0.0
        average_duration = sum(r.duration_ms for r in results) / len(results) if results else 0.0

        lines = [
            "# Health Rocket V3 - Authenticated Test Suite Report",
            "",
            f"Generated: {generated_at.isoformat()}",
            "",
            "## Summary",
            f"- Total Users Tested: {len(results)}",
            f"- Total Tests Run: {total_tests}",
            f"- Tests Passed: {total_passed}",
            f"- Tests Failed: {total_failed}",
            f"- Success Rate: {success_rate:.1f}%",
            f"- Average Test Duration: {average_duration:.0f}ms",
            "",
            "## Individual Test Results",
            "",
        ]

        for r in results:
            lines += [
                f"### {r.test_user.name} ({r.test_user.email})",
                f"- Role: {r.test_user.role}",
                f"- Tests Run: {r.tests_run}",
                f"- Passed: {r.tests_passed}",
                f"- Failed: {r.tests_failed}",
                f"- Duration: {r.duration_ms}ms",
            ]
            if r.errors:
                lines.append("- Errors:")
                lines += [f"  - {e}" for e in r.errors]
            if r.warnings:
                lines.append("- Warnings:")
                lines += [f"  - {w}" for w in r.warnings]
            if r.performance_report:
                perf = r.performance_report
                lines.append(f"- Average Response Time: {perf.average_response_time:.2f}ms")
                if perf.slowest_query:
                    lines.append(
                        f"- Slowest Query: {perf.slowest_query.name} ({perf.slowest_query.duration_ms:.2f}ms)"
                    )
            if r.integrity_report:
                integrity = r.integrity_report
                lines.append(f"- Data Integrity: {integrity.passed_count}/{len(integrity.checks)} checks passed")
            lines.append("")

        return "\n".join(lines) + "\n"


async def run_full_test_suite(
    settings: Settings | None = None,
    client_factory: Callable[[], BackendClient] | None = None,
    users: list[TestUser] | None = None,
) -> FullSuiteResult:
    """Run every identity sequentially, then all at once, and build the report."""
    suite = AuthenticatedTestSuite(settings, client_factory, users)
    logger.info("test_suite_started", users=len(suite.users))

    single_user_results = []
    for user in suite.users:
        logger.info("testing_user", email=user.email)
        single_user_results.append(await suite.run_single_user_tests(user))

    concurrent_results = await suite.run_concurrent_user_tests()
    report = suite.generate_detailed_report(single_user_results)
    logger.info("test_suite_completed")
    return FullSuiteResult(single_user_results, concurrent_results, report)
