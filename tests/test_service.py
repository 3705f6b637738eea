"""Tests for the scheduling service."""

import threading

import pytest

from scheduling_engine.exceptions import RequestInProgressError, UnknownEntityError
from scheduling_engine.memory import InMemoryContentCatalog
from scheduling_engine.models import SchedulingRequest, SchedulingStatus
from scheduling_engine.service import SchedulingService


def make_request(student_ids, request_id="req-1"):
    return SchedulingRequest.from_dict(
        {"id": request_id, "course_id": "english-a1", "student_ids": list(student_ids)}
    )


class GatedCatalog(InMemoryContentCatalog):
    """Blocks content reads until ``release`` is set."""

    def __init__(self, contents):
        super().__init__(contents)
        self.entered = threading.Event()
        self.release = threading.Event()

    def get_course_content(self, course_id):
        self.entered.set()
        self.release.wait(10)
        return super().get_course_content(course_id)


@pytest.fixture
def service(make_orchestrator):
    service = SchedulingService(make_orchestrator(), max_concurrent_requests=2)
    yield service
    service.close()


class TestSchedulingService:
    """Tests for SchedulingService class."""

    def test_submit_returns_envelope(self, service):
        response = service.submit_scheduling_request(make_request(["s1", "s2"]))

        assert response.success
        assert response.data.status == SchedulingStatus.COMPLETED
        assert response.error is None
        assert response.metadata.request_id == "req-1"
        assert response.metadata.version == service.version

    def test_failed_request_carries_error(self, service):
        response = service.submit_scheduling_request(make_request(["ghost"]))

        assert not response.success
        assert response.error.code == "UNKNOWN_STUDENT"

    def test_submit_async(self, service):
        request_id = service.submit_async(make_request(["s1"], request_id="req-async"))
        response = service.get_result(request_id, timeout=10)

        assert request_id == "req-async"
        assert response.success
        # A finished request stays retrievable
        assert service.get_result(request_id) is response

    def test_callback_receives_response(self, service):
        received = []
        done = threading.Event()

        def callback(response):
            received.append(response)
            done.set()

        service.submit_async(make_request(["s1"]), callback=callback)
        assert done.wait(10)
        assert received[0].data.request_id == "req-1"

    def test_unknown_result(self, service):
        with pytest.raises(UnknownEntityError):
            service.get_result("never-submitted")

    def test_result_of_running_sync_request(self, make_orchestrator, contents):
        catalog = GatedCatalog(contents)
        service = SchedulingService(make_orchestrator(content=catalog))
        worker = threading.Thread(
            target=service.submit_scheduling_request, args=(make_request(["s1"], "req-sync"),)
        )
        worker.start()
        try:
            assert catalog.entered.wait(10)
            with pytest.raises(RequestInProgressError) as excinfo:
                service.get_result("req-sync")
            assert excinfo.value.code == "REQUEST_IN_PROGRESS"
        finally:
            catalog.release.set()
            worker.join(timeout=30)

        assert service.get_result("req-sync").success
        service.close()

    def test_cancel_unknown(self, service):
        assert not service.cancel("never-submitted")

    def test_metrics(self, service):
        service.submit_scheduling_request(make_request(["s1"]))
        service.submit_scheduling_request(make_request(["ghost"], request_id="req-2"))
        metrics = service.service_metrics()

        assert metrics["submitted"] == 2
        assert metrics["completed"] == 1
        assert metrics["failed"] == 1
        assert metrics["in_flight"] == 0
        assert set(metrics) == {
            "submitted",
            "in_flight",
            "completed",
            "failed",
            "cancelled",
            "superseded",
            "average_processing_time",
        }
