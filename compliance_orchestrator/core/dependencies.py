"""
Dependency injection for the FastAPI application.

One OrchestratorContainer is built from Settings at startup and stored on
``app.state``; route handlers pull services out of it with ``Depends``.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import Depends, Request

from compliance_orchestrator.core.circuit_breaker import CircuitBreakerConfig, ServiceClient
from compliance_orchestrator.core.config import Settings, get_settings
from compliance_orchestrator.core.logging import get_logger
from compliance_orchestrator.core.retry import get_push_retry_config
from compliance_orchestrator.services.command_dispatcher import CommandDispatcher
from compliance_orchestrator.services.delinquency_scanner import DelinquencyScanner
from compliance_orchestrator.services.enrollment_provisioner import EnrollmentProvisioner
from compliance_orchestrator.services.event_reconciler import EventReconciler
from compliance_orchestrator.services.google_auth import (
    ANDROID_MANAGEMENT_SCOPE,
    FCM_SCOPE,
    GoogleAccessTokenProvider,
)
from compliance_orchestrator.services.liveness_monitor import LivenessMonitor
from compliance_orchestrator.services.management_channel import ManagementChannel
from compliance_orchestrator.services.push_channel import PushChannel
from compliance_orchestrator.services.recovery_escalation import RecoveryEscalationEngine
from compliance_orchestrator.services.repository import (
    AssignmentRepository,
    CaseRepository,
    RecoveryDirectory,
)
from compliance_orchestrator.utils.scheduler import IntervalScheduler

logger = get_logger(__name__)


class OrchestratorContainer:
    """Owns every long-lived service and the background schedulers."""

    def __init__(
        self,
        settings: Settings,
        cases: Optional[CaseRepository] = None,
        push_channel: Optional[PushChannel] = None,
        management_channel: Optional[ManagementChannel] = None,
    ):
        self.settings = settings

        self.cases = cases or CaseRepository()
        self.assignments = AssignmentRepository()
        self.directory = RecoveryDirectory()

        breaker_config = CircuitBreakerConfig(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_timeout_seconds,
        )

        self.push_channel = push_channel or self._build_push_channel(breaker_config)
        self.management_channel = management_channel or self._build_management_channel(
            breaker_config
        )

        self.dispatcher = CommandDispatcher(self.cases, self.push_channel, self.management_channel)
        self.scanner = DelinquencyScanner(
            self.cases,
            self.dispatcher,
            self.push_channel,
            lock_grace_days=settings.lock_grace_days,
            redispatch_timeout=timedelta(minutes=settings.redispatch_timeout_minutes),
            max_dispatch_attempts=settings.max_dispatch_attempts,
        )
        self.provisioner = EnrollmentProvisioner(
            self.cases,
            self.management_channel,
            backend_url=settings.backend_url,
            admin_component=settings.device_admin_component,
            signature_checksum=settings.device_admin_signature_checksum,
            package_download_url=settings.device_admin_package_url,
            default_ttl_seconds=settings.enrollment_token_ttl_seconds,
        )
        self.reconciler = EventReconciler(self.cases)
        self.escalation = RecoveryEscalationEngine(
            self.cases,
            self.assignments,
            self.directory,
            escalation_window=timedelta(minutes=settings.escalation_window_minutes),
        )
        self.liveness = LivenessMonitor(
            self.cases, timeout=timedelta(minutes=settings.liveness_timeout_minutes)
        )

        self.schedulers: Dict[str, IntervalScheduler] = {
            "delinquency_scan": IntervalScheduler(
                "delinquency_scan",
                settings.scan_interval_seconds,
                self.scanner.scan,
                run_immediately=settings.scan_on_startup,
            ),
            "liveness_check": IntervalScheduler(
                "liveness_check", settings.liveness_interval_seconds, self.liveness.check
            ),
            "recovery_escalation": IntervalScheduler(
                "recovery_escalation",
                settings.escalation_interval_seconds,
                self.escalation.escalate,
            ),
        }

    def _token_provider(self, scope: str, service_name: str) -> Optional[GoogleAccessTokenProvider]:
        if not self.settings.google_credentials_file:
            return None
        return GoogleAccessTokenProvider(
            self.settings.google_credentials_file, [scope], service_name
        )

    def _build_push_channel(self, breaker_config: CircuitBreakerConfig) -> PushChannel:
        s = self.settings
        return PushChannel(
            project_id=s.fcm_project_id,
            token_provider=self._token_provider(FCM_SCOPE, "fcm"),
            base_url=s.fcm_base_url,
            timeout_seconds=s.fcm_timeout_seconds,
            enabled=s.push_enabled,
            retry_config=get_push_retry_config(s.retry_max_attempts, s.retry_base_delay_seconds),
            circuit_breaker_config=breaker_config,
        )

    def _build_management_channel(self, breaker_config: CircuitBreakerConfig) -> ManagementChannel:
        s = self.settings
        token_provider = self._token_provider(ANDROID_MANAGEMENT_SCOPE, "android_management")
        service_client = None
        if token_provider is not None:
            service_client = ServiceClient(
                service_name="android_management",
                base_url=s.amapi_base_url,
                timeout_seconds=s.amapi_timeout_seconds,
                circuit_breaker_config=breaker_config,
                token_provider=token_provider,
            )
        return ManagementChannel(
            enterprise_id=s.enterprise_id,
            service_client=service_client,
            default_policy_id=s.default_policy_id,
            agent_package_name=s.agent_package_name,
            enabled=s.management_enabled,
        )

    async def start(self) -> None:
        if not self.settings.scheduler_enabled:
            logger.info("Background schedulers disabled")
            return
        for scheduler in self.schedulers.values():
            await scheduler.start()

    async def stop(self) -> None:
        for scheduler in self.schedulers.values():
            await scheduler.stop()
        await self.push_channel.close()
        await self.management_channel.close()
        logger.info("Orchestrator container stopped")

    def scheduler_status(self) -> List[Dict[str, Any]]:
        return [s.get_status() for s in self.schedulers.values()]

    def channel_status(self) -> Dict[str, Any]:
        return {
            "push": self.push_channel.get_status(),
            "management": self.management_channel.get_status(),
        }


def build_container(settings: Optional[Settings] = None) -> OrchestratorContainer:
    return OrchestratorContainer(settings or get_settings())


def get_container(request: Request) -> OrchestratorContainer:
    """Container attached to the running application."""
    return request.app.state.container


def get_case_repository(
    container: OrchestratorContainer = Depends(get_container),
) -> CaseRepository:
    return container.cases


def get_dispatcher(
    container: OrchestratorContainer = Depends(get_container),
) -> CommandDispatcher:
    return container.dispatcher


def get_provisioner(
    container: OrchestratorContainer = Depends(get_container),
) -> EnrollmentProvisioner:
    return container.provisioner


def get_reconciler(
    container: OrchestratorContainer = Depends(get_container),
) -> EventReconciler:
    return container.reconciler


def get_escalation_engine(
    container: OrchestratorContainer = Depends(get_container),
) -> RecoveryEscalationEngine:
    return container.escalation
