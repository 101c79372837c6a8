import json

from sqlalchemy.exc import OperationalError

from retail import queues
from retail.notifications import LOAD_FAILED_MESSAGE, ActivityNotifier, NotificationResult


def test_send_writes_timestamped_json(db):
    queues.send_message(db, "activities", "New product added: 'Kettle'")

    [raw] = queues.peek_messages(db, "activities")
    payload = json.loads(raw)
    assert payload["message"] == "New product added: 'Kettle'"
    assert payload["timestamp"].endswith("+00:00")


def test_peek_is_oldest_first_bounded_and_non_destructive(db):
    for i in range(5):
        queues.send_message(db, "activities", f"event {i}")
    queues.send_message(db, "other-queue", "not mine")

    first = queues.peek_messages(db, "activities", max_messages=3)
    again = queues.peek_messages(db, "activities", max_messages=3)

    assert [json.loads(m)["message"] for m in first] == ["event 0", "event 1", "event 2"]
    assert first == again
    assert len(queues.peek_messages(db, "activities", max_messages=100)) == 5


def test_format_activity():
    raw = json.dumps({"timestamp": "2026-01-31T09:15:00+00:00", "message": "Order placed"})
    assert queues.format_activity(raw) == "[2026-01-31T09:15:00+00:00] Order placed"


def test_format_activity_passes_malformed_through():
    assert queues.format_activity("plain text") == "plain text"
    assert queues.format_activity('{"message": "no timestamp"}') == '{"message": "no timestamp"}'
    assert queues.format_activity("[1, 2]") == "[1, 2]"


def test_notifier_reports_delivery(db):
    notifier = ActivityNotifier(db, "activities")

    assert notifier.notify("hello") == NotificationResult(delivered=True)
    assert notifier.recent_activities()[0].endswith("] hello")


def test_notifier_swallows_queue_failure(db, monkeypatch):
    def broken_send(*args, **kwargs):
        raise OperationalError("INSERT INTO queue_messages", {}, Exception("queue unavailable"))

    monkeypatch.setattr(queues, "send_message", broken_send)

    result = ActivityNotifier(db, "activities").notify("hello")

    assert result.delivered is False
    assert "queue unavailable" in result.error


def test_recent_activities_when_queue_unreadable(db, monkeypatch):
    def broken_peek(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("queue unavailable"))

    monkeypatch.setattr(queues, "peek_messages", broken_peek)

    assert ActivityNotifier(db, "activities").recent_activities() == [LOAD_FAILED_MESSAGE]
