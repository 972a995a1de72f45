"""
Per-user data integrity checks.

Read-only consistency checks over a user's profile, Fuel Point ledger,
challenge and contest participation, and health assessments. Each check
produces one or two ``IntegrityCheck`` entries labelled pass/warning/fail.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal

import structlog

from healthrocket.backend.errors import BackendError
from healthrocket.config import Settings, get_settings
from healthrocket.health.assessments import out_of_range_scores

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from healthrocket.backend.client import BackendClient

logger = structlog.get_logger()

Status = Literal["pass", "warning", "fail"]


@dataclass
class IntegrityCheck:
    name: str
    status: Status
    message: str
    details: Any = None


@dataclass
class IntegrityReport:
    user_id: str
    user_name: str
    checks: list[IntegrityCheck]
    overall_status: Status
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def passed_count(self) -> int:
        return sum(1 for c in self.checks if c.status == "pass")


def overall_status(checks: list[IntegrityCheck]) -> Status:
    if any(c.status == "fail" for c in checks):
        return "fail"
    if any(c.status == "warning" for c in checks):
        return "warning"
    return "pass"


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO date or datetime. Naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DataIntegrityChecker:
    """Runs every check for one user. A failing check never stops the run."""

    def __init__(self, client: BackendClient, user_id: str, settings: Settings | None = None) -> None:
        self.client = client
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.checks: list[IntegrityCheck] = []

    def _add(self, name: str, status: Status, message: str, details: Any = None) -> None:
        self.checks.append(IntegrityCheck(name, status, message, details))

    async def _guarded(self, name: str, message: str, check: Callable[[], Awaitable[None]]) -> None:
        try:
            await check()
        except Exception as e:
            logger.warning("integrity_check_error", check=name, user_id=self.user_id, error=str(e))
            self._add(name, "fail", message, str(e))

    async def run_all_checks(self) -> IntegrityReport:
        self.checks = []

        try:
            result = await self.client.table("users").select("*").eq("id", self.user_id).single().execute()
            profile = result.data
        except BackendError as e:
            logger.info("integrity_profile_unavailable", user_id=self.user_id, error=e.message)
            return IntegrityReport(
                user_id=self.user_id,
                user_name="Unknown",
                checks=[IntegrityCheck("User Profile Access", "fail", "Cannot access user profile", e.to_dict())],
                overall_status="fail",
            )

        await self._guarded(
            "FP Consistency Check", "Error checking FP consistency",
            lambda: self.check_fuel_points_consistency(profile),
        )
        await self._guarded(
            "Level Progression", "Error checking level progression",
            lambda: self.check_level_progression(profile),
        )
        await self._guarded("Challenge Progress Check", "Error checking challenge progress", self.check_challenge_progress)
        await self._guarded("Contest Entry Check", "Error checking contest entries", self.check_contest_entries)
        await self._guarded("Health Assessment Check", "Error checking health assessments", self.check_health_assessments)
        await self._guarded(
            "Streak Calculation", "Error checking streak calculation",
            lambda: self.check_streak_calculation(profile),
        )
        await self._guarded("Duplicate Earnings Check", "Error checking for duplicate earnings", self.check_duplicate_earnings)
        await self._guarded("Data Timestamps", "Error checking data timestamps", self.check_data_timestamps)

        report = IntegrityReport(
            user_id=self.user_id,
            user_name=profile.get("user_name") or "Unknown",
            checks=self.checks,
            overall_status=overall_status(self.checks),
        )
        logger.info(
            "integrity_check_completed",
            user_id=self.user_id,
            overall=report.overall_status,
            passed=report.passed_count,
            total=len(report.checks),
        )
        return report

    # --- Checks ---

    async def check_fuel_points_consistency(self, profile: dict[str, Any]) -> None:
        try:
            result = await self.client.table("fp_earnings").select("amount").eq("user_id", self.user_id).execute()
        except BackendError as e:
            self._add("FP Earnings Access", "fail", "Cannot access FP earnings data", e.to_dict())
            return

        calculated = sum(row.get("amount") or 0 for row in result.data or [])
        profile_total = profile.get("fuel_points") or 0
        discrepancy = abs(profile_total - calculated)

        if discrepancy > self.settings.fp_fail_delta:
            self._add(
                "Current FP Consistency",
                "fail",
                f"FP mismatch: Profile shows {profile_total}, calculated {calculated}",
                {"profile_total": profile_total, "calculated_total": calculated, "discrepancy": discrepancy},
            )
        elif discrepancy > self.settings.fp_warn_delta:
            self._add(
                "Current FP Consistency",
                "warning",
                f"Minor FP discrepancy: {discrepancy} points",
                {"profile_total": profile_total, "calculated_total": calculated, "discrepancy": discrepancy},
            )
        else:
            self._add(
                "Current FP Consistency",
                "pass",
                f"FP totals consistent ({profile_total} FP)",
                {"profile_total": profile_total, "calculated_total": calculated},
            )

        lifetime = profile.get("lifetime_fp_earned") or 0
        if lifetime < calculated:
            self._add(
                "Lifetime FP Consistency",
                "fail",
                f"Lifetime FP ({lifetime}) less than calculated total ({calculated})",
                {"lifetime_total": lifetime, "calculated_total": calculated},
            )
        else:
            self._add(
                "Lifetime FP Consistency",
                "pass",
                f"Lifetime FP tracking correct ({lifetime} FP)",
                {"lifetime_total": lifetime},
            )

    async def check_level_progression(self, profile: dict[str, Any]) -> None:
        current = profile.get("level") or 1
        total_fp = profile.get("lifetime_fp_earned") or 0
        expected = total_fp // self.settings.fp_per_level + 1

        if abs(current - expected) > 1:
            self._add(
                "Level Progression",
                "fail",
                f"Level mismatch: Current {current}, expected ~{expected}",
                {"current_level": current, "expected_level": expected, "total_fp": total_fp},
            )
        else:
            self._add(
                "Level Progression",
                "pass",
                f"Level progression correct (Level {current})",
                {"current_level": current, "total_fp": total_fp},
            )

    async def check_challenge_progress(self) -> None:
        try:
            result = await self.client.table("user_challenges").select("*").eq("user_id", self.user_id).execute()
        except BackendError as e:
            self._add("Challenge Progress Access", "fail", "Cannot access challenge data", e.to_dict())
            return

        rows = result.data or []
        active = [r for r in rows if r.get("status") == "active"]
        completed = [r for r in rows if r.get("status") == "completed"]
        invalid = [
            r
            for r in rows
            if (r.get("verification_count") or 0) > (r.get("required_verifications") or 0)
            or (r.get("verification_count") or 0) < 0
        ]

        if invalid:
            self._add(
                "Challenge Progress Validation",
                "fail",
                f"{len(invalid)} challenges have invalid progress",
                invalid,
            )
        else:
            self._add(
                "Challenge Progress Validation",
                "pass",
                f"Challenge progress valid ({len(active)} active, {len(completed)} completed)",
                {"active": len(active), "completed": len(completed)},
            )

    async def check_contest_entries(self) -> None:
        try:
            result = await self.client.table("active_contests").select("*").eq("user_id", self.user_id).execute()
        except BackendError as e:
            # RLS may legitimately hide contest entries
            self._add("Contest Entries Access", "warning", "Cannot access contest data (may be restricted)", e.to_dict())
            return

        rows = result.data or []
        invalid = [
            r
            for r in rows
            if (r.get("verification_count") or 0) < 0
            or (r.get("is_winner") and (r.get("verification_count") or 0) == 0)
        ]

        if invalid:
            self._add("Contest Entry Validation", "fail", f"{len(invalid)} contest entries have invalid data", invalid)
        else:
            self._add(
                "Contest Entry Validation",
                "pass",
                f"Contest entries valid ({len(rows)} entries)",
                {"total_entries": len(rows)},
            )

    async def check_health_assessments(self) -> None:
        try:
            result = await self.client.table("health_assessments").select("*").eq("user_id", self.user_id).execute()
        except BackendError as e:
            self._add("Health Assessment Access", "warning", "Cannot access health assessment data", e.to_dict())
            return

        rows = result.data or []
        if not rows:
            self._add("Health Assessment Data", "warning", "No health assessments found")
            return

        invalid = [r for r in rows if out_of_range_scores(r)]
        if invalid:
            self._add(
                "Health Assessment Scores",
                "fail",
                f"{len(invalid)} assessments have invalid scores",
                invalid,
            )
        else:
            self._add(
                "Health Assessment Scores",
                "pass",
                f"Health assessment scores valid ({len(rows)} assessments)",
                {"total_assessments": len(rows)},
            )

    async def check_streak_calculation(self, profile: dict[str, Any]) -> None:
        current = profile.get("burn_streak_days") or 0
        longest = profile.get("longest_burn_streak") or 0
        details = {"current_streak": current, "longest_streak": longest}

        if current > longest:
            self._add(
                "Streak Calculation",
                "fail",
                f"Current streak ({current}) exceeds longest streak ({longest})",
                details,
            )
        else:
            self._add(
                "Streak Calculation",
                "pass",
                f"Streak data consistent ({current} current, {longest} longest)",
                details,
            )

    async def check_duplicate_earnings(self) -> None:
        try:
            result = await (
                self.client.table("fp_earnings")
                .select("user_id, source, source_id, date, amount")
                .eq("user_id", self.user_id)
                .execute()
            )
        except BackendError as e:
            self._add("Duplicate Earnings Check", "fail", "Cannot access FP earnings for duplicate check", e.to_dict())
            return

        rows = result.data or []
        seen: dict[tuple[Any, Any, Any], dict[str, Any]] = {}
        duplicates = []
        for row in rows:
            key = (row.get("source"), row.get("source_id"), row.get("date"))
            if key in seen:
                duplicates.append({"original": seen[key], "duplicate": row})
            else:
                seen[key] = row

        if duplicates:
            self._add(
                "Duplicate Earnings Check",
                "warning",
                f"Found {len(duplicates)} potential duplicate earnings",
                duplicates,
            )
        else:
            self._add(
                "Duplicate Earnings Check",
                "pass",
                f"No duplicate earnings found ({len(rows)} records)",
                {"total_records": len(rows)},
            )

    async def check_data_timestamps(self) -> None:
        try:
            result = await (
                self.client.table("fp_earnings")
                .select("created_at, date")
                .eq("user_id", self.user_id)
                .order("created_at", ascending=False)
                .limit(self.settings.recent_earnings_window)
                .execute()
            )
        except BackendError as e:
            self._add("Data Timestamps", "warning", "Cannot check timestamp consistency", e.to_dict())
            return

        rows = result.data or []
        now = datetime.now(timezone.utc)
        future = []
        for row in rows:
            created_at = _parse_timestamp(row.get("created_at"))
            day = _parse_timestamp(row.get("date"))
            if (created_at and created_at > now) or (day and day > now):
                future.append(row)

        if future:
            self._add("Data Timestamps", "fail", f"Found {len(future)} records with future timestamps", future)
        else:
            self._add(
                "Data Timestamps",
                "pass",
                "Timestamp consistency verified",
                {"records_checked": len(rows)},
            )


async def run_data_integrity_check(
    client: BackendClient,
    user_id: str,
    settings: Settings | None = None,
) -> IntegrityReport:
    return await DataIntegrityChecker(client, user_id, settings).run_all_checks()
