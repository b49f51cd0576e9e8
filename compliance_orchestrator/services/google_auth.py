"""
OAuth access tokens for Google APIs (FCM HTTP v1 and Android Management).
"""
import asyncio
from typing import Optional, Sequence

import structlog
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from compliance_orchestrator.core.exceptions import ExternalServiceAuthenticationError
from compliance_orchestrator.core.retry import RetryConfig, create_async_retry_decorator

logger = structlog.get_logger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
ANDROID_MANAGEMENT_SCOPE = "https://www.googleapis.com/auth/androidmanagement"


class GoogleAccessTokenProvider:
    """
    Lazily loads service-account credentials and hands out fresh tokens.

    Instances are awaitable callables so they plug straight into
    ServiceClient(token_provider=...).
    """

    def __init__(self, credentials_file: str, scopes: Sequence[str], service_name: str):
        self.credentials_file = credentials_file
        self.scopes = list(scopes)
        self.service_name = service_name
        self._credentials: Optional[service_account.Credentials] = None
        self._lock = asyncio.Lock()

    @property
    def project_id(self) -> Optional[str]:
        return self._load().project_id

    def _load(self) -> service_account.Credentials:
        if self._credentials is None:
            try:
                self._credentials = service_account.Credentials.from_service_account_file(
                    self.credentials_file, scopes=self.scopes
                )
            except (OSError, ValueError) as e:
                logger.error(
                    "Service account credentials could not be loaded",
                    service_name=self.service_name,
                    credentials_file=self.credentials_file,
                    error=str(e),
                )
                raise ExternalServiceAuthenticationError(self.service_name, error=str(e))
            logger.info(
                "Service account credentials loaded",
                service_name=self.service_name,
                scopes=self.scopes,
            )
        return self._credentials

    async def __call__(self) -> str:
        async with self._lock:
            credentials = self._load()
            if not credentials.valid:
                await self._refresh(credentials)
            return credentials.token

    async def _refresh(self, credentials: service_account.Credentials) -> None:
        @create_async_retry_decorator(
            RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0,
                        retryable_exceptions=(TransportError,)),
            service_name=self.service_name,
        )
        async def refresh():
            await asyncio.to_thread(credentials.refresh, Request())

        try:
            await refresh()
        except (RefreshError, TransportError) as e:
            logger.error(
                "Access token refresh failed",
                service_name=self.service_name,
                error=str(e),
            )
            raise ExternalServiceAuthenticationError(self.service_name, error=str(e))
