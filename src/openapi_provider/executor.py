"""
Operation executor.

Issues exactly one planned HTTP exchange per call, retrying transport failures
and "retry later" responses with exponential backoff, and polls asynchronous
operations until they reach a terminal status.

Polling is a bounded loop inside the caller's thread: it honors the
operation timeout, the caller's deadline and an optional cancellation event,
and fails fast with ``OperationTimeoutError`` instead of continuing in the
background.
"""

from __future__ import annotations

import email.utils
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import httpx
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from openapi_provider.catalog import OperationKind
from openapi_provider.core.errors import (
    OperationFailedError,
    OperationTimeoutError,
    RemoteRejectedError,
    RemoteServiceError,
    TransportError,
)
from openapi_provider.planner import OperationPlan

logger = structlog.get_logger()

RETRY_LATER_STATUSES = (429, 503)
NOT_FOUND_TOLERANT = (OperationKind.READ, OperationKind.UPDATE, OperationKind.DELETE)


class RetryLaterError(Exception):
    """Server asked the client to retry later (429/503)."""

    def __init__(self, response: httpx.Response, retry_after: float | None) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response
        self.retry_after = retry_after


@dataclass(frozen=True)
class ExchangeResult:
    """Outcome of an executed plan."""

    status: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    initial_body: Any = None
    polled: bool = False

    @property
    def not_found(self) -> bool:
        return self.status == 404


def parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, when.timestamp() - time.time())


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class OperationExecutor:
    """Executes operation plans over a shared ``httpx.Client``."""

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        max_backoff: float = 30.0,
        poll_interval: float = 5.0,
        poll_timeout: float = 600.0,
    ) -> None:
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._max_retries = max(1, max_retries)
        self._max_backoff = max_backoff
        self._backoff = wait_exponential(multiplier=backoff_factor, max=max_backoff)
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def execute(
        self,
        plan: OperationPlan,
        *,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ExchangeResult:
        """Run a plan; ``deadline`` is a ``time.monotonic()`` timestamp."""
        response = self._send(plan, plan.method, plan.url, body=plan.body, deadline=deadline, cancel=cancel)
        result = self._check(plan, response, plan.url)
        if result.not_found or not plan.template.asynchronous:
            return result
        if not self._is_pending(plan, response.status_code, result.body):
            return result
        return self._poll(plan, result, deadline=deadline, cancel=cancel)

    # HTTP exchange

    def _send(
        self,
        plan: OperationPlan,
        method: str,
        url: str,
        *,
        body: Any = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> httpx.Response:
        headers = dict(plan.headers)
        if method == "GET":
            headers.pop("Content-Type", None)
            headers.pop("Idempotency-Key", None)

        retrying = Retrying(
            retry=retry_if_exception_type((httpx.TransportError, RetryLaterError)),
            stop=stop_after_attempt(self._max_retries),
            wait=self._wait,
            sleep=self._sleeper(plan, deadline, cancel),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    return self._exchange(plan, method, url, headers, body)
        except RetryLaterError as exc:
            return exc.response
        except httpx.TransportError as exc:
            logger.error(
                "http_retries_exhausted",
                resource=plan.resource,
                operation=plan.operation.value,
                method=method,
                url=url,
                error=str(exc),
            )
            raise TransportError(
                f"Transport failure after {self._max_retries} attempts: {exc}",
                resource=plan.resource,
                operation=plan.operation.value,
                details={"url": url},
            ) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _exchange(
        self,
        plan: OperationPlan,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any,
    ) -> httpx.Response:
        started = time.monotonic()
        try:
            response = self._client.request(
                method,
                url,
                params=dict(plan.params) or None,
                json=body,
                headers=headers,
            )
        except httpx.TransportError as exc:
            logger.warning(
                "http_network_error",
                resource=plan.resource,
                operation=plan.operation.value,
                method=method,
                url=url,
                error=str(exc),
            )
            raise

        logger.info(
            "http_exchange",
            resource=plan.resource,
            operation=plan.operation.value,
            method=method,
            url=url,
            status=response.status_code,
            elapsed_ms=round((time.monotonic() - started) * 1000, 1),
        )
        if response.status_code in RETRY_LATER_STATUSES:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(
                "http_retry_later",
                resource=plan.resource,
                status=response.status_code,
                retry_after=retry_after,
            )
            raise RetryLaterError(response, retry_after)
        return response

    def _wait(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, RetryLaterError) and exc.retry_after is not None:
            return min(exc.retry_after, self._max_backoff)
        return self._backoff(retry_state)

    def _sleeper(self, plan: OperationPlan, deadline: float | None, cancel: threading.Event | None):
        def _sleep(seconds: float) -> None:
            if deadline is not None and time.monotonic() + seconds > deadline:
                raise OperationTimeoutError(
                    "Retry delay exceeds the operation deadline",
                    resource=plan.resource,
                    operation=plan.operation.value,
                    details={"retry_in": seconds},
                )
            if cancel is None:
                time.sleep(seconds)
                return
            if cancel.wait(seconds):
                raise OperationTimeoutError(
                    "Operation cancelled while waiting to retry",
                    resource=plan.resource,
                    operation=plan.operation.value,
                )

        return _sleep

    def _check(self, plan: OperationPlan, response: httpx.Response, url: str) -> ExchangeResult:
        status = response.status_code
        body = _decode_body(response)
        if 200 <= status < 300:
            return ExchangeResult(status=status, body=body, headers=MappingProxyType(dict(response.headers)))
        if status == 404 and plan.operation in NOT_FOUND_TOLERANT:
            return ExchangeResult(status=status, body=body, headers=MappingProxyType(dict(response.headers)))

        details = {"url": url, "body": response.text[:500]}
        if 400 <= status < 500:
            logger.error("http_rejected", resource=plan.resource, operation=plan.operation.value, status=status)
            raise RemoteRejectedError(
                f"Remote service rejected the request with HTTP {status}",
                resource=plan.resource,
                operation=plan.operation.value,
                status=status,
                details=details,
            )
        logger.error("http_server_error", resource=plan.resource, operation=plan.operation.value, status=status)
        raise RemoteServiceError(
            f"Remote service failed with HTTP {status}",
            resource=plan.resource,
            operation=plan.operation.value,
            status=status,
            details=details,
        )

    # Asynchronous completion

    def _is_pending(self, plan: OperationPlan, status_code: int, body: Any) -> bool:
        policy = plan.template.poll
        if policy is None:
            return False
        status = _status_of(body, policy.status_field)
        if status is not None:
            if status in policy.target_statuses:
                return False
            if status in policy.failed_statuses:
                raise OperationFailedError(
                    f"Operation reported status '{status}'",
                    resource=plan.resource,
                    operation=plan.operation.value,
                    details={"remote_status": status},
                )
            if status not in policy.pending_statuses:
                raise OperationFailedError(
                    f"Operation reported unrecognised status '{status}'",
                    resource=plan.resource,
                    operation=plan.operation.value,
                    details={"remote_status": status},
                )
            return True
        return status_code == 202 or plan.operation is OperationKind.DELETE

    def _poll_url(self, plan: OperationPlan, initial: ExchangeResult) -> str:
        policy = plan.template.poll
        values = initial.body if isinstance(initial.body, Mapping) else {}
        if policy is not None and policy.endpoint:
            return plan.url_for(policy.endpoint, values)
        location = initial.headers.get("location") or initial.headers.get("Location")
        if location:
            return location if location.startswith(("http://", "https://")) else f"{plan.base_url}{location}"
        return plan.url_for(plan.instance_path, values)

    def _poll(
        self,
        plan: OperationPlan,
        initial: ExchangeResult,
        *,
        deadline: float | None,
        cancel: threading.Event | None,
    ) -> ExchangeResult:
        policy = plan.template.poll
        assert policy is not None
        budget = plan.timeout if plan.timeout is not None else self._poll_timeout
        effective = time.monotonic() + budget
        if deadline is not None:
            effective = min(effective, deadline)
        url = self._poll_url(plan, initial)
        waiter = cancel or threading.Event()
        attempts = 0

        logger.info("operation_pending", resource=plan.resource, operation=plan.operation.value, poll_url=url)
        while True:
            remaining = effective - time.monotonic()
            if remaining <= 0 or (cancel is not None and cancel.is_set()):
                raise OperationTimeoutError(
                    "Asynchronous operation did not complete before the deadline",
                    resource=plan.resource,
                    operation=plan.operation.value,
                    details={"poll_url": url, "attempts": attempts},
                )
            if waiter.wait(min(self._poll_interval, remaining)):
                continue

            attempts += 1
            response = self._send(plan, "GET", url, deadline=effective, cancel=cancel)
            body = _decode_body(response)
            if response.status_code == 404:
                if plan.operation is OperationKind.DELETE:
                    logger.info("operation_completed", resource=plan.resource, operation="delete", attempts=attempts)
                    return ExchangeResult(status=404, initial_body=initial.body, polled=True)
                continue
            if not 200 <= response.status_code < 300:
                self._check(plan, response, url)

            status = _status_of(body, policy.status_field)
            if status in policy.target_statuses:
                logger.info(
                    "operation_completed",
                    resource=plan.resource,
                    operation=plan.operation.value,
                    attempts=attempts,
                )
                return ExchangeResult(
                    status=response.status_code,
                    body=body,
                    headers=MappingProxyType(dict(response.headers)),
                    initial_body=initial.body,
                    polled=True,
                )
            if status in policy.failed_statuses or (status is not None and status not in policy.pending_statuses):
                raise OperationFailedError(
                    f"Operation reported status '{status}'",
                    resource=plan.resource,
                    operation=plan.operation.value,
                    details={"remote_status": status, "poll_url": url},
                )
            logger.debug("operation_still_pending", resource=plan.resource, status=status, attempts=attempts)


def _status_of(body: Any, status_field: str) -> str | None:
    if not isinstance(body, Mapping):
        return None
    value = body.get(status_field)
    return str(value).lower() if value is not None else None
