"""Tests for the web front end."""

from elevation_fusion.core.types import SessionRecord
from elevation_fusion.session import EventKind, UiEvent
from elevation_fusion.web_server import app, history_payload, notice_payload, socketio


class TestPayloads:
    """Tests for browser payload helpers."""

    def test_history_payload(self):
        """History entries should carry id, time and sample count."""
        records = [SessionRecord(id=2, timestamp=2000, data_points_csv="1,2,3;4,5,6")]

        payload = history_payload(records)

        assert payload == [{"id": 2, "timestamp": 2000, "sample_count": 2, "duration_s": 3e-9}]

    def test_notice_payload_error(self):
        """Error events should become error notices."""
        event = UiEvent(kind=EventKind.ERROR, message="disk full", error="PersistenceFailure")
        assert notice_payload(event) == {
            "level": "error",
            "error": "PersistenceFailure",
            "message": "disk full",
        }

    def test_notice_payload_info(self):
        """Other events should become info notices."""
        assert notice_payload(UiEvent(kind=EventKind.NOTICE, message="saved"))["level"] == "info"


class TestRoutes:
    """Tests for HTTP and socket routes without a running controller."""

    def test_index(self):
        """The main page should be served."""
        response = app.test_client().get("/")
        assert response.status_code == 200
        assert b"Elevation recorder" in response.data

    def test_intent_without_controller(self):
        """Intents before the controller runs should yield an error notice."""
        client = socketio.test_client(app)
        client.emit("toggle_recording")

        received = client.get_received()

        notices = [m for m in received if m["name"] == "notice"]
        assert notices
        assert notices[0]["args"][0]["level"] == "error"
        client.disconnect()
