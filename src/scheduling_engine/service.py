"""Request submission boundary around the orchestrator."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

from .constants import ALGORITHM_VERSION
from .exceptions import RequestInProgressError, UnknownEntityError
from .models import SchedulingRequest, SchedulingStatus
from .orchestrator import CancellationToken, SchedulingOrchestrator
from .results import ResponseMetadata, SchedulingApiResponse, SchedulingResult

logger = logging.getLogger(__name__)

ResultCallback = Callable[[SchedulingApiResponse[SchedulingResult]], None]


@dataclass
class _InFlight:
    token: CancellationToken
    future: Future | None = None


@dataclass
class ServiceMetrics:
    """Counters over every request the service has seen."""

    submitted: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    superseded: int = 0
    total_processing_time: float = 0.0
    by_status: dict[str, int] = field(default_factory=dict)

    @property
    def finished(self) -> int:
        return self.completed + self.failed + self.cancelled

    @property
    def average_processing_time(self) -> float:
        return self.total_processing_time / self.finished if self.finished else 0.0


class SchedulingService:
    """
    Synchronous and asynchronous submission of scheduling requests.

    Asynchronous requests run concurrently on a worker pool and share the
    orchestrator's collaborators; the booking store's commit is the only
    place where they can collide. Resubmitting a request ID that is still in
    flight cancels the earlier run.
    """

    def __init__(
        self,
        orchestrator: SchedulingOrchestrator,
        max_concurrent_requests: int = 4,
        version: str = ALGORITHM_VERSION,
    ):
        self.orchestrator = orchestrator
        self.version = version
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_requests, thread_name_prefix="scheduling"
        )
        self._lock = threading.Lock()
        self._in_flight: dict[str, _InFlight] = {}
        self._results: dict[str, SchedulingApiResponse[SchedulingResult]] = {}
        self._metrics = ServiceMetrics()

    def submit_scheduling_request(
        self, request: SchedulingRequest
    ) -> SchedulingApiResponse[SchedulingResult]:
        """
        Process a request in the calling thread.

        Args:
            request: Request to process

        Returns:
            Response envelope wrapping the SchedulingResult
        """
        entry = self._register(request)
        return self._execute(request, entry)

    def submit_async(self, request: SchedulingRequest, callback: ResultCallback | None = None) -> str:
        """
        Queue a request on the worker pool.

        Args:
            request: Request to process
            callback: Optional function called with the response when done

        Returns:
            The request ID, for get_result() and cancel()
        """
        entry = self._register(request)
        future = self._executor.submit(self._execute, request, entry)
        entry.future = future
        if callback is not None:
            future.add_done_callback(lambda f: self._notify(callback, f))
        return request.id

    def get_result(
        self, request_id: str, timeout: float | None = None
    ) -> SchedulingApiResponse[SchedulingResult]:
        """
        Wait for the result of an asynchronous request.

        Raises:
            UnknownEntityError: If the request was never submitted
            RequestInProgressError: If the request is running synchronously
                in another thread
            TimeoutError: If the result is not ready within ``timeout`` seconds
        """
        with self._lock:
            entry = self._in_flight.get(request_id)
            finished = self._results.get(request_id)
        if entry is not None:
            if entry.future is None:
                raise RequestInProgressError(request_id)
            return entry.future.result(timeout=timeout)
        if finished is not None:
            return finished
        raise UnknownEntityError("request", request_id)

    def cancel(self, request_id: str) -> bool:
        """Cancel an in-flight request; False if it is unknown or already finished."""
        with self._lock:
            entry = self._in_flight.get(request_id)
        if entry is None:
            return False
        entry.token.cancel("cancelled by caller")
        logger.info(f"Cancellation requested for '{request_id}'")
        return True

    def service_metrics(self) -> dict[str, float | int]:
        with self._lock:
            metrics = self._metrics
            return {
                "submitted": metrics.submitted,
                "in_flight": len(self._in_flight),
                "completed": metrics.completed,
                "failed": metrics.failed,
                "cancelled": metrics.cancelled,
                "superseded": metrics.superseded,
                "average_processing_time": round(metrics.average_processing_time, 4),
            }

    def close(self) -> None:
        with self._lock:
            entries = list(self._in_flight.values())
        for entry in entries:
            entry.token.cancel("cancelled on shutdown")
        self._executor.shutdown(wait=True)
        self.orchestrator.close()

    def _register(self, request: SchedulingRequest) -> _InFlight:
        entry = _InFlight(token=CancellationToken())
        with self._lock:
            previous = self._in_flight.get(request.id)
            if previous is not None:
                previous.token.cancel("superseded by a newer submission")
                self._metrics.superseded += 1
                logger.info(f"Request '{request.id}' resubmitted; superseding the earlier run")
            self._in_flight[request.id] = entry
            self._results.pop(request.id, None)
            self._metrics.submitted += 1
        return entry

    def _execute(
        self, request: SchedulingRequest, entry: _InFlight
    ) -> SchedulingApiResponse[SchedulingResult]:
        result = self.orchestrator.process(request, entry.token)
        response = SchedulingApiResponse(
            success=result.success,
            data=result,
            error=result.error,
            metadata=ResponseMetadata(
                request_id=request.id,
                timestamp=self.orchestrator.clock(),
                processing_time=result.processing_time,
                version=self.version,
            ),
        )
        with self._lock:
            if self._in_flight.get(request.id) is entry:
                del self._in_flight[request.id]
                self._results[request.id] = response
            self._record(result)
        return response

    def _record(self, result: SchedulingResult) -> None:
        metrics = self._metrics
        if result.status == SchedulingStatus.COMPLETED:
            metrics.completed += 1
        elif result.status == SchedulingStatus.CANCELLED:
            metrics.cancelled += 1
        else:
            metrics.failed += 1
        metrics.total_processing_time += result.processing_time
        metrics.by_status[result.status.value] = metrics.by_status.get(result.status.value, 0) + 1

    @staticmethod
    def _notify(callback: ResultCallback, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Scheduling request raised: {error}")
            return
        try:
            callback(future.result())
        except Exception as callback_error:
            logger.warning(f"Result callback failed: {callback_error}")
