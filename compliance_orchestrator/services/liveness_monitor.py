"""
Device liveness monitor.

Flags devices whose agent has gone quiet for longer than the timeout and
restores the flag once it reports in again.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog

from compliance_orchestrator.core.logging import log_business_event
from compliance_orchestrator.models.case import Case, utc_now
from compliance_orchestrator.services.repository import CaseRepository

logger = structlog.get_logger(__name__)


@dataclass
class LivenessReport:
    checked_at: datetime = field(default_factory=utc_now)
    checked: int = 0
    went_silent: int = 0
    came_back: int = 0
    failures: int = 0
    silent_case_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": self.checked_at.isoformat(),
            "checked": self.checked,
            "went_silent": self.went_silent,
            "came_back": self.came_back,
            "failures": self.failures,
            "silent_case_ids": list(self.silent_case_ids),
        }


class LivenessMonitor:
    """Keeps ``Case.liveness.is_active`` in line with the last check-in."""

    def __init__(self, cases: CaseRepository, timeout: timedelta = timedelta(minutes=15)):
        self.cases = cases
        self.timeout = timeout

    def is_fresh(self, case: Case, now: datetime) -> bool:
        last_seen = case.liveness.last_seen_at
        return last_seen is not None and now - last_seen <= self.timeout

    async def check(self, now: Optional[datetime] = None) -> LivenessReport:
        now = now or utc_now()
        report = LivenessReport(checked_at=now)

        for case in await self.cases.list_cases(active_only=True):
            # Never-seen devices are not enrolled yet; nothing to flag.
            if case.liveness.last_seen_at is None:
                continue

            report.checked += 1
            fresh = self.is_fresh(case, now)
            if fresh == case.liveness.is_active:
                continue

            try:
                await self.cases.update(case.id, lambda c, f=fresh: self._set_active(c, f))
            except Exception as e:
                logger.error("Liveness update failed", case_id=case.id, error=str(e), exc_info=True)
                report.failures += 1
                continue

            if fresh:
                report.came_back += 1
                logger.info("Device reporting again", case_id=case.id)
            else:
                report.went_silent += 1
                report.silent_case_ids.append(case.id)
                log_business_event(
                    "device_went_silent",
                    case_id=case.id,
                    last_seen_at=case.liveness.last_seen_at.isoformat(),
                )

        if report.went_silent or report.came_back:
            logger.info(
                "Liveness check completed",
                checked=report.checked,
                went_silent=report.went_silent,
                came_back=report.came_back,
            )
        return report

    @staticmethod
    def _set_active(case: Case, active: bool) -> None:
        case.liveness.is_active = active
