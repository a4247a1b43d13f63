# =============================================================================
# File: dynajournal/infra/dynamodb/client.py
# Description: Async DynamoDB adapter for the journal backend port
# =============================================================================
# • aioboto3 with a persistent low-level client (connection reuse)
# • botocore retries disabled - handled by the reliability package
# • Circuit breaker counts connectivity / server faults only
# • ClientError -> BackendCallError (code and message kept verbatim)
# • Optional DEBUG logging of every outbound call description
# =============================================================================

from __future__ import annotations

import time
from contextlib import AsyncExitStack
from typing import Any, Dict, Optional

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from dynajournal.common.exceptions.exceptions import BackendCallError, JournalError
from dynajournal.config.journal_config import DynamoDBJournalConfig, get_journal_config
from dynajournal.config.logging_config import get_logger
from dynajournal.config.reliability_config import ReliabilityConfigs, RetryConfig
from dynajournal.infra.metrics.journal_metrics import backend_calls, backend_call_duration
from dynajournal.infra.reliability.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from dynajournal.infra.reliability.retry import retry_async
from dynajournal.journal.describe import RequestDescriber
from dynajournal.journal.requests import BackendRequest

log = get_logger("dynajournal.dynamodb.client")


def is_transient_error(error: Exception) -> bool:
    """Connectivity problems and server-side (5xx) faults; never client-side rejections."""
    if isinstance(error, BotoCoreError):
        return True
    if isinstance(error, ClientError):
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return status >= 500
    return False


class DynamoDBClient:
    """
    DynamoDB adapter implementing DynamoDBPort.

    Works with AWS DynamoDB and DynamoDB Local / compatible endpoints.
    The client is shared read-only across concurrent journal operations.
    """

    def __init__(
            self,
            config: Optional[DynamoDBJournalConfig] = None,
            describer: Optional[RequestDescriber] = None,
            circuit_breaker: Optional[CircuitBreaker] = None,
            retry_config: Optional[RetryConfig] = None,
    ):
        self.config = config or get_journal_config()
        self.describer = describer or RequestDescriber()
        self.session = aioboto3.Session()

        # Boto config (no retry - handled by reliability package)
        self._boto_config = BotoConfig(
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
            max_pool_connections=self.config.max_pool_connections,
            retries={"max_attempts": 0},
        )

        # Reliability components
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            ReliabilityConfigs.dynamodb_circuit_breaker("client"),
            failure_predicate=is_transient_error,
        )
        self._retry_config = retry_config or ReliabilityConfigs.dynamodb_retry(
            retry_condition=is_transient_error
        )

        # Persistent client (lazy initialized)
        self._client: Optional[Any] = None
        self._exit_stack: Optional[AsyncExitStack] = None

    async def _get_client(self) -> Any:
        """Get or create persistent DynamoDB client (connection reuse)"""
        if self._client is None:
            self._exit_stack = AsyncExitStack()
            self._client = await self._exit_stack.enter_async_context(
                self.session.client(
                    service_name="dynamodb",
                    config=self._boto_config,
                    **self.config.get_client_kwargs(),
                )
            )
            log.info(
                f"DynamoDB client initialized (endpoint={self.config.endpoint or 'aws'}, "
                f"region={self.config.region})"
            )
        return self._client

    async def close(self) -> None:
        """Close the persistent client connection"""
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._client = None
            self._exit_stack = None
            log.info("DynamoDB client closed")

    async def execute(self, request: BackendRequest) -> Dict[str, Any]:
        """Execute one backend request (see DynamoDBPort.execute)."""
        operation = request.operation
        if self.config.log_calls:
            log.debug(f"-> {self.describer.describe(request)}")

        async def _do_call():
            client = await self._get_client()
            return await getattr(client, request.method)(**request.to_kwargs())

        start = time.monotonic()
        try:
            response = await self._circuit_breaker.call(
                retry_async,
                _do_call,
                retry_config=self._retry_config,
                context=f"dynamodb.{operation}",
            )

        except ClientError as e:
            if is_transient_error(e):
                backend_calls.labels(operation=operation, result="error").inc()
                raise JournalError(
                    f"DynamoDB server error for {self.describer.describe(request)}: {e}"
                ) from e
            backend_calls.labels(operation=operation, result="rejected").inc()
            raise BackendCallError.from_client_error(e, request) from e

        except CircuitBreakerOpenError as e:
            backend_calls.labels(operation=operation, result="error").inc()
            raise JournalError(
                f"DynamoDB unavailable ({e}) for {self.describer.describe(request)}"
            ) from e

        except BotoCoreError as e:
            backend_calls.labels(operation=operation, result="error").inc()
            log.error(f"DynamoDB call failed for {self.describer.describe(request)}: {e}")
            raise JournalError(f"DynamoDB call failed for {self.describer.describe(request)}: {e}") from e

        finally:
            backend_call_duration.labels(operation=operation).observe(time.monotonic() - start)

        if not isinstance(response, dict):
            backend_calls.labels(operation=operation, result="error").inc()
            raise JournalError(
                f"Malformed response ({type(response).__name__}) for {self.describer.describe(request)}"
            )

        backend_calls.labels(operation=operation, result="ok").inc()
        return response

    def get_metrics(self) -> Dict[str, Any]:
        return {"circuit_breaker": self._circuit_breaker.get_metrics()}
