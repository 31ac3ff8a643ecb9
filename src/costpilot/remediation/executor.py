"""Execution of claimed recommendations through the action adapter"""

import concurrent.futures
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional, Set
import logging

from ..core.base import (
    ActionAdapter, ActionOutcome, AttemptOutcome, ExecutionAttempt, Recommendation,
    RecommendationStatus, utcnow
)
from ..core.exceptions import (
    ConflictError, ExecutionTimeoutError, FatalExecutionError, InvalidTransitionError
)
from ..core.logging import get_audit_logger
from ..core.monitoring import (
    EXECUTION_DURATION, EXECUTION_RETRIES, EXECUTIONS, MetricsCollector
)
from ..core.retry import RetryPolicy, format_error, retry_call
from ..events.publisher import EventPublisher
from ..storage.base import RecommendationStore
from .state_machine import EXECUTED, EXECUTING, FAILED, PENDING

logger = logging.getLogger(__name__)


@dataclass
class ExecutionOutcome:
    recommendation: Recommendation
    success: bool
    attempts: int
    error: Optional[str] = None


class ActionCall:
    """The single adapter invocation behind every attempt for one recommendation.

    Each attempt waits at most ``timeout`` seconds. A call that is still running
    when an attempt times out is not started again: the next attempt waits on
    the same call, so the adapter runs once per in-flight recommendation.
    """

    def __init__(self, adapter: ActionAdapter, recommendation: Recommendation, timeout: float):
        self.adapter = adapter
        self.recommendation = recommendation
        self.timeout = timeout
        self.invocations = 0
        self._closed = False
        self._future: Optional[concurrent.futures.Future] = None
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"costpilot-action-{recommendation.id[:8]}"
        )

    @property
    def running(self) -> bool:
        return self._future is not None and not self._future.done()

    def __call__(self) -> ActionOutcome:
        if self._future is None:
            self.invocations += 1
            self._future = self._pool.submit(self.adapter.apply, self.recommendation)
        future = self._future

        done, _ = concurrent.futures.wait([future], timeout=self.timeout)
        if not done:
            raise ExecutionTimeoutError(
                f"Action for {self.recommendation.id} did not finish within {self.timeout:g}s"
            )

        self._future = None
        outcome = future.result()
        if not outcome.success:
            raise FatalExecutionError(outcome.message or "Action adapter reported failure")
        return outcome

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.running:
            logger.warning(
                f"Action for {self.recommendation.id} still running after its last attempt",
                extra={'recommendation_id': self.recommendation.id}
            )
            self._future.add_done_callback(self._log_late_result)
        self._pool.shutdown(wait=False)

    def _log_late_result(self, future: concurrent.futures.Future) -> None:
        error = future.exception()
        result = format_error(error) if error is not None else future.result().message
        logger.warning(
            f"Abandoned action for {self.recommendation.id} finished late: {result}",
            extra={'recommendation_id': self.recommendation.id}
        )


class ExecutionEngine:
    """Applies recommendations that are already in ``executing``.

    Every execution owns its adapter call (see ``ActionCall``), so a hung
    action only ever holds its own thread.
    """

    def __init__(self, store: RecommendationStore, adapter: ActionAdapter,
                 publisher: Optional[EventPublisher] = None,
                 policy: Optional[RetryPolicy] = None,
                 action_timeout: float = 30.0,
                 metrics: Optional[MetricsCollector] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.adapter = adapter
        self.publisher = publisher
        self.policy = policy or RetryPolicy()
        self.action_timeout = action_timeout
        self.metrics = metrics
        self.sleep = sleep
        self._calls: Set[ActionCall] = set()
        self._lock = threading.Lock()

    def shutdown(self) -> None:
        """Release the threads of calls that are still in flight"""
        with self._lock:
            calls = list(self._calls)
            self._calls.clear()
        for call in calls:
            call.close()

    def claim_and_execute(self, recommendation_id: str,
                          expected_status: RecommendationStatus = PENDING) -> ExecutionOutcome:
        """Atomically move ``expected_status`` -> ``executing``, then execute.

        Raises ``InvalidTransitionError`` when another actor won the claim.
        """
        claimed = self.store.update_status(recommendation_id, expected_status, EXECUTING)
        logger.info(
            f"Claimed recommendation {recommendation_id} for execution",
            extra={'recommendation_id': recommendation_id, 'resource_id': claimed.resource_id}
        )
        return self.execute(claimed)

    def execute(self, recommendation: Recommendation) -> ExecutionOutcome:
        """Run the action with retries and record the final status"""
        if recommendation.status != EXECUTING:
            raise InvalidTransitionError(
                recommendation.id, recommendation.status.value, EXECUTING.value, EXECUTED.value
            )

        attempts: List[ExecutionAttempt] = []
        started = time.monotonic()

        def on_attempt(number: int, error: Optional[BaseException], will_retry: bool, duration: float):
            if error is None:
                outcome = AttemptOutcome.SUCCESS
            elif self.policy.is_retryable(error):
                outcome = AttemptOutcome.RETRYABLE_FAILURE
            else:
                outcome = AttemptOutcome.FATAL_FAILURE
            attempt = ExecutionAttempt(
                recommendation_id=recommendation.id,
                attempt_number=number,
                outcome=outcome,
                error_detail=format_error(error) if error is not None else None,
                duration_seconds=round(duration, 3),
            )
            attempts.append(attempt)
            self.store.record_attempt(attempt)
            if will_retry and self.metrics:
                self.metrics.increment_counter(EXECUTION_RETRIES)
            logger.debug(
                f"Attempt {number} for {recommendation.id}: {outcome.value}",
                extra={'recommendation_id': recommendation.id, 'attempt': number}
            )

        call = ActionCall(self.adapter, recommendation, self.action_timeout)
        with self._lock:
            self._calls.add(call)
        error_text = None
        try:
            retry_call(call, self.policy, sleep=self.sleep, on_attempt=on_attempt)
        except Exception as e:
            error_text = format_error(e)
        finally:
            with self._lock:
                self._calls.discard(call)
            call.close()

        final = self._finish(recommendation, len(attempts), error_text)
        elapsed = time.monotonic() - started
        if self.metrics:
            self.metrics.increment_counter(EXECUTIONS, tags={'outcome': final.status.value})
            self.metrics.record_histogram(EXECUTION_DURATION, elapsed)

        if self.publisher:
            self.publisher.publish_execution_result(final)

        get_audit_logger().log_event(
            "execute", user="system", recommendation_id=final.id,
            result="success" if final.status == EXECUTED else "failure",
            details={'attempts': len(attempts), 'error': final.last_error},
        )

        return ExecutionOutcome(
            recommendation=final,
            success=final.status == EXECUTED,
            attempts=len(attempts),
            error=final.last_error,
        )

    def _finish(self, recommendation: Recommendation, attempts: int,
                error_text: Optional[str]) -> Recommendation:
        try:
            if error_text is None:
                final = self.store.update_status(
                    recommendation.id, EXECUTING, EXECUTED,
                    executed_at=utcnow(),
                    realized_monthly_savings=recommendation.projected_monthly_savings,
                    attempts=attempts,
                    last_error=None,
                )
                logger.info(
                    f"Executed {recommendation.id} ({recommendation.waste_kind.value}) "
                    f"after {attempts} attempt(s)",
                    extra={'recommendation_id': recommendation.id, 'resource_id': recommendation.resource_id}
                )
            else:
                final = self.store.update_status(
                    recommendation.id, EXECUTING, FAILED,
                    attempts=attempts,
                    last_error=error_text,
                )
                logger.error(
                    f"Execution of {recommendation.id} failed after {attempts} attempt(s): {error_text}",
                    extra={'recommendation_id': recommendation.id, 'resource_id': recommendation.resource_id}
                )
            return final
        except ConflictError as e:
            # reconciled by shutdown or restart while the action was running
            logger.warning(f"Could not record result for {recommendation.id}: {e}")
            return self.store.get_recommendation(recommendation.id)

    def mark_failed(self, recommendation_id: str, reason: str) -> Optional[Recommendation]:
        """Force an ``executing`` recommendation to ``failed``; None if it already moved on"""
        try:
            failed = self.store.update_status(recommendation_id, EXECUTING, FAILED, last_error=reason)
        except ConflictError:
            return None
        logger.warning(f"Marked {recommendation_id} as failed: {reason}",
                       extra={'recommendation_id': recommendation_id})
        if self.publisher:
            self.publisher.publish_execution_result(failed)
        return failed

    def reconcile_stale_executions(self, claim_timeout: float) -> List[Recommendation]:
        """Fail recommendations stuck in ``executing`` longer than ``claim_timeout`` seconds"""
        cutoff = utcnow() - timedelta(seconds=claim_timeout)
        reconciled = []
        for rec in self.store.list_stale_executing(cutoff):
            failed = self.mark_failed(
                rec.id,
                f"ExecutionTimeoutError: still executing after {claim_timeout:g}s, reconciled as failed",
            )
            if failed:
                reconciled.append(failed)
        if reconciled:
            logger.info(f"Reconciled {len(reconciled)} stale executing recommendation(s)")
        return reconciled
