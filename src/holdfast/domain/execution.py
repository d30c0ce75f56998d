"""Retrying execution of remote store calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from logging import getLogger
from typing import TYPE_CHECKING

from holdfast.config.retry import RetryConfig
from holdfast.domain.errors import classify
from holdfast.domain.model import OperationResult

if TYPE_CHECKING:
    from holdfast.domain.errors import Classification, Classifier, RawFailure
    from holdfast.domain.ports import StoreResponse

log = getLogger(__name__)

type Sleeper = Callable[[float], Awaitable[None]]
type StoreCall[T] = Callable[[], Awaitable[StoreResponse[T]]]


class RetryingExecutor:
    """Run store calls, retrying transient failures with exponential backoff.

    Every failure is classified right after the attempt that produced it.
    Permanent failures return at once; transient ones are retried until the
    configured retry budget is spent, after which the last error is returned
    with ``retryable=True`` so callers can tell "gave up" from "permanent".
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Sleeper = asyncio.sleep,
        classifier: Classifier = classify,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._classify = classifier

    async def execute[T](
        self,
        operation: StoreCall[T],
        *,
        tag: str = "store",
        max_retries: int | None = None,
        base_delay_seconds: float | None = None,
        idempotent: bool = True,
    ) -> OperationResult[T]:
        """Run ``operation`` and return its outcome; never raises for store failures.

        ``idempotent=False`` marks a write that must not be repeated: it is
        attempted exactly once even when the failure is transient.
        """

        policy = self._policy(max_retries, base_delay_seconds)
        attempt = 0
        while True:
            attempt += 1
            failure: RawFailure
            try:
                response = await operation()
            except Exception as exc:  # noqa: BLE001
                failure = exc
            else:
                if response.error is None:
                    _log_success(tag, attempt)
                    return OperationResult.success(
                        response.data,
                        count=response.count,
                        attempts=attempt,
                    )
                failure = response.error

            classification = self._classify(failure)
            will_retry = (
                classification.retryable and idempotent and attempt <= policy.max_retries
            )
            _log_failure(tag, attempt, classification, will_retry=will_retry)
            if not will_retry:
                return OperationResult.failure(classification.to_error(attempts=attempt))
            await self._sleep(policy.delay_for(attempt))

    def _policy(self, max_retries: int | None, base_delay_seconds: float | None) -> RetryConfig:
        if max_retries is None and base_delay_seconds is None:
            return self.config
        return RetryConfig(
            max_retries=self.config.max_retries if max_retries is None else max_retries,
            base_delay_seconds=(
                self.config.base_delay_seconds
                if base_delay_seconds is None
                else base_delay_seconds
            ),
        )


def _log_success(tag: str, attempt: int) -> None:
    extra = {"tag": tag, "attempt": attempt, "code": "OK", "retryable": False}
    if attempt > 1:
        log.info("[%s] attempt=%s code=OK succeeded after retry", tag, attempt, extra=extra)
    else:
        log.debug("[%s] attempt=%s code=OK", tag, attempt, extra=extra)


def _log_failure(
    tag: str,
    attempt: int,
    classification: Classification,
    *,
    will_retry: bool,
) -> None:
    extra = {
        "tag": tag,
        "attempt": attempt,
        "code": str(classification.code),
        "retryable": classification.retryable,
    }
    if will_retry:
        log.warning(
            "[%s] attempt=%s code=%s retryable=True retrying: %s",
            tag,
            attempt,
            classification.code,
            classification.message,
            extra=extra,
        )
    elif classification.retryable:
        log.error(
            "[%s] attempt=%s code=%s retryable=True giving up: %s",
            tag,
            attempt,
            classification.code,
            classification.message,
            extra=extra,
        )
    else:
        log.warning(
            "[%s] attempt=%s code=%s retryable=False: %s",
            tag,
            attempt,
            classification.code,
            classification.message,
            extra=extra,
        )
