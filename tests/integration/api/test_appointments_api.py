"""Integration tests for appointment lifecycle endpoints."""

from datetime import timedelta

import pytest
from fastapi import status

from branchqueue.db.models import AppointmentStatus
from tests.utils.assertions import assert_error_response, assert_success_response
from tests.utils.test_data import DataFactory


@pytest.fixture
def appointment(temp_db, branch, service, clock):
    return DataFactory.create_appointment(
        temp_db, branch, service, scheduled_at=clock.now() + timedelta(minutes=10)
    )


@pytest.mark.integration
class TestAppointmentEndpoints:
    """Lifecycle transitions over HTTP."""

    def test_get_appointment(self, client, appointment):
        response = client.get(f"/api/v1/appointments/{appointment.id}")

        data = assert_success_response(response)
        assert data["id"] == appointment.id
        assert data["status"] == "scheduled"
        assert data["scheduled_at"] == "2025-03-10T09:10:00"

    def test_get_missing_appointment(self, client, temp_db):
        response = client.get("/api/v1/appointments/999")

        assert_error_response(response, status.HTTP_404_NOT_FOUND, "RESOURCE_NOT_FOUND")

    def test_check_in_then_complete(self, client, appointment, clock):
        data = assert_success_response(client.post(f"/api/v1/appointments/{appointment.id}/check-in"))
        assert data["status"] == "checked-in"
        assert data["attended_at"] == "2025-03-10T09:00:00"

        clock.advance(minutes=20)
        data = assert_success_response(client.post(f"/api/v1/appointments/{appointment.id}/complete"))
        assert data["status"] == "completed"
        assert data["attended_at"] == "2025-03-10T09:00:00"

    def test_complete_scheduled_is_conflict(self, client, appointment):
        response = client.post(f"/api/v1/appointments/{appointment.id}/complete")

        body = assert_error_response(response, status.HTTP_409_CONFLICT, "INVALID_TRANSITION")
        assert body["request_id"]

    def test_cancel_with_reason(self, client, appointment):
        response = client.post(
            f"/api/v1/appointments/{appointment.id}/cancel",
            json={"reason": "client called"},
        )

        data = assert_success_response(response)
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "client called"
        assert data["cancelled_at"] == "2025-03-10T09:00:00"

    def test_reschedule(self, client, appointment):
        response = client.post(
            f"/api/v1/appointments/{appointment.id}/reschedule",
            json={"new_scheduled_at": "2025-03-12T10:00:00Z", "actor_id": 7, "reason": "traffic"},
        )

        data = assert_success_response(response)
        previous, current = data["previous"], data["current"]
        assert previous["status"] == "scheduled"
        assert previous["rescheduled_at"] == "2025-03-10T09:00:00"
        assert previous["rescheduled_by_id"] == 7
        assert previous["rescheduled_reason"] == "traffic"
        assert current["status"] == "scheduled"
        assert current["scheduled_at"] == "2025-03-12T10:00:00"
        assert current["rescheduled_from_id"] == appointment.id
        assert current["original_scheduled_at"] == "2025-03-10T09:10:00"

        history = assert_success_response(
            client.get(f"/api/v1/appointments/{current['id']}/reschedule-history")
        )
        assert len(history) == 1
        assert history[0]["appointment_id"] == appointment.id
        assert history[0]["new_appointment_id"] == current["id"]
        assert history[0]["reason"] == "traffic"

    def test_superseded_appointment_cannot_check_in(self, client, appointment):
        client.post(
            f"/api/v1/appointments/{appointment.id}/reschedule",
            json={"new_scheduled_at": "2025-03-12T10:00:00", "actor_id": 7},
        )

        response = client.post(f"/api/v1/appointments/{appointment.id}/check-in")

        assert_error_response(response, status.HTTP_409_CONFLICT, "INVALID_TRANSITION")

    def test_reschedule_into_the_past(self, client, appointment):
        response = client.post(
            f"/api/v1/appointments/{appointment.id}/reschedule",
            json={"new_scheduled_at": "2025-03-09T10:00:00", "actor_id": 7},
        )

        body = assert_error_response(response, status.HTTP_422_UNPROCESSABLE_ENTITY, "INVALID_DATE")
        assert body["field"] == "new_scheduled_at"

    def test_mark_no_show(self, client, appointment):
        data = assert_success_response(client.post(f"/api/v1/appointments/{appointment.id}/no-show"))

        assert data["status"] == "no-show"
        assert data["no_show_marked_at"] == "2025-03-10T09:00:00"
        assert data["auto_marked_as_no_show"] is False

    def test_mark_no_show_is_idempotent(self, client, temp_db, branch, service, clock):
        completed = DataFactory.create_appointment(
            temp_db, branch, service, scheduled_at=clock.now(), status=AppointmentStatus.COMPLETED
        )

        data = assert_success_response(client.post(f"/api/v1/appointments/{completed.id}/no-show"))

        assert data["status"] == "completed"
        assert data["no_show_marked_at"] is None
