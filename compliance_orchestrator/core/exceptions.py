"""
Custom exception classes for the Compliance Orchestrator.
"""
from typing import Optional, Any, Dict
import uuid
from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "success": False,
            "error": self.error_code,
            "message": self.detail,
            "correlation_id": self.correlation_id,
            "context": self.context,
        }


class ValidationError(BaseAPIException):
    """Malformed input, rejected before any side effect."""

    def __init__(
        self,
        detail: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **context
    ):
        if field:
            detail = f"Validation failed for field '{field}': {detail}"

        context_dict = {"field": field, "value": value, **context}

        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code="VALIDATION",
            context=context_dict,
        )


class MalformedPayloadError(BaseAPIException):
    """Request body could not be parsed at all."""

    def __init__(self, detail: str = "Request body is not valid JSON", **context):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="VALIDATION",
            context=context,
        )


class UnauthorizedError(BaseAPIException):
    """Signature or token failure. Raised before any state change."""

    def __init__(self, detail: str = "Request signature verification failed", **context):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            context=context,
        )


class NotFoundError(BaseAPIException):
    """Exception for a missing case, device or assignment."""

    def __init__(
        self,
        resource: str,
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        error_code: str = "NOT_FOUND",
        **context
    ):
        self.resource = resource
        self.resource_id = resource_id
        if not detail:
            detail = f"{resource} '{resource_id}' not found" if resource_id else f"{resource} not found"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code,
            context={"resource": resource, "resource_id": resource_id, **context},
        )


class ConflictError(BaseAPIException):
    """Exception for state conflicts such as duplicate active assignments."""

    def __init__(
        self,
        detail: str,
        rule_name: Optional[str] = None,
        entity_id: Optional[str] = None,
        error_code: str = "CONFLICT",
        **context
    ):
        self.rule_name = rule_name
        self.entity_id = entity_id
        context_dict = {"rule_name": rule_name, "entity_id": entity_id, **context}

        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code,
            context=context_dict,
        )


class AssignmentConflictError(ConflictError):
    """A case already holds an ACTIVE assignment."""

    def __init__(self, case_id: str, active_assignment_id: Optional[str] = None):
        super().__init__(
            detail=f"Case '{case_id}' already has an active assignment",
            rule_name="single_active_assignment",
            entity_id=case_id,
            active_assignment_id=active_assignment_id,
        )


class AlreadyEnrolledError(ConflictError):
    """Enrollment requested for a device that is enrolled and not wiped."""

    def __init__(self, case_id: str):
        super().__init__(
            detail="Device is already enrolled. Factory reset required before re-provisioning.",
            rule_name="one_shot_enrollment",
            entity_id=case_id,
            error_code="ALREADY_ENROLLED",
        )


class ServiceUnavailableError(BaseAPIException):
    """Exception for external service unavailability."""

    def __init__(
        self,
        service_name: str,
        detail: Optional[str] = None,
        retry_after: Optional[int] = None,
        error_code: str = "SERVICE_UNAVAILABLE",
        **context
    ):
        self.service_name = service_name
        self.retry_after = retry_after
        if not detail:
            detail = f"External service '{service_name}' is currently unavailable"

        headers = {}
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=error_code,
            headers=headers,
            context={"service_name": service_name, "retry_after": retry_after, **context},
        )


class RemoteRejectedError(BaseAPIException):
    """Exception surfaced when a channel API rejected or timed out a call."""

    def __init__(self, service_name: str, detail: str, **context):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail,
            error_code="REMOTE_REJECTED",
            context={"service_name": service_name, **context},
        )


class InternalServerError(BaseAPIException):
    """Exception for unexpected internal errors."""

    def __init__(self, detail: str = "An unexpected internal error occurred"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="SERVER_ERROR",
        )


# External Service Exceptions
class ExternalServiceError(Exception):
    """Exception for external service call errors."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.status_code = status_code
        self.retry_after = retry_after
        self.context = context
        super().__init__(f"[{service_name}] {message}")


class ExternalServiceTimeoutError(ExternalServiceError):
    """Exception for external service timeout errors."""

    def __init__(self, service_name: str, timeout_seconds: float, **context):
        super().__init__(
            service_name=service_name,
            message=f"Service timed out after {timeout_seconds} seconds",
            **context
        )
        self.timeout_seconds = timeout_seconds


class ExternalServiceAuthenticationError(ExternalServiceError):
    """Exception for external service authentication errors."""

    def __init__(self, service_name: str, **context):
        super().__init__(
            service_name=service_name,
            message="Service authentication failed",
            **context
        )


class ChannelUnavailableError(ExternalServiceError):
    """The channel is disabled, not configured or has no handle for the device."""

    def __init__(self, service_name: str, reason: str, **context):
        super().__init__(service_name=service_name, message=reason, **context)
        self.reason = reason


class DeviceNotFoundError(ExternalServiceError):
    """Hardware serial did not match any device in the enterprise fleet."""

    def __init__(self, service_name: str, serial: str, **context):
        super().__init__(
            service_name=service_name,
            message=f"No fleet device matches serial {serial}",
            status_code=404,
            **context
        )
        self.serial = serial


class InvalidPushTokenError(ExternalServiceError):
    """The push token is unregistered or malformed and must be discarded."""

    def __init__(self, service_name: str, error_code: str, **context):
        super().__init__(
            service_name=service_name,
            message=f"Push token rejected: {error_code}",
            status_code=404,
            **context
        )
        self.error_code = error_code


# Repository Exceptions
class StaleCaseError(Exception):
    """A guarded case write carried an outdated version."""

    def __init__(self, case_id: str, expected_version: int, actual_version: int):
        self.case_id = case_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Case '{case_id}' changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class DuplicateCaseError(ConflictError):
    """A case already exists for the primary hardware serial."""

    def __init__(self, imei1: str):
        super().__init__(
            detail=f"A case already exists for device serial {imei1}",
            rule_name="unique_primary_serial",
            entity_id=imei1,
        )


def map_external_service_error(external_error: ExternalServiceError) -> BaseAPIException:
    """Map external service error to API exception."""
    if isinstance(external_error, DeviceNotFoundError):
        return NotFoundError(
            resource="Device",
            resource_id=external_error.serial,
            error_code="DEVICE_NOT_FOUND",
        )
    elif isinstance(external_error, ChannelUnavailableError):
        return ServiceUnavailableError(
            service_name=external_error.service_name,
            detail=str(external_error),
            error_code="CHANNEL_UNAVAILABLE",
        )
    elif isinstance(external_error, ExternalServiceTimeoutError):
        return RemoteRejectedError(
            service_name=external_error.service_name,
            detail=f"Service timeout: {external_error}",
            timeout_seconds=external_error.timeout_seconds,
        )
    else:
        return RemoteRejectedError(
            service_name=external_error.service_name,
            detail=str(external_error),
            upstream_status=external_error.status_code,
        )
