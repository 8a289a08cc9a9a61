from unittest.mock import MagicMock, patch

import pytest

from utils.dispatchers import DispatchUnavailable, QueueDriver, SyncDriver, build_driver
from utils.push import FcmClient, PushNotConfigured, PushResult, chunk, stringify_data


def _row(nid=101, rtype="student", rid="7"):
    return {"notification_id": nid, "title": "t", "body": "b", "data": {"k": 1}, "recipient_type": rtype,
            "recipient_id": rid}


def test_sync_driver_pushes_to_each_token(db):
    push = MagicMock()
    push.send.return_value = PushResult(True)
    db.on("FROM device_tokens", [{"token": "tok-a"}, {"token": "tok-b"}])

    result = SyncDriver(push).send([_row()], db)

    assert result.sent == [101] and result.failed == []
    assert [c.args[0] for c in push.send.call_args_list] == [{"token": "tok-a"}, {"token": "tok-b"}]
    assert db.statements("UPDATE notifications SET status='sent'")
    assert db.commits == 1


def test_sync_driver_invalidates_dead_tokens(db):
    push = MagicMock()
    push.send.side_effect = [PushResult(False, "UNREGISTERED", "gone"), PushResult(True)]
    db.on("FROM device_tokens", [{"token": "dead"}, {"token": "live"}])

    result = SyncDriver(push).send([_row()], db)

    assert result.sent == [101]
    sql, params = db.statements("UPDATE device_tokens")[0]
    assert "is_valid=0" in sql
    assert params == ("dead",)


def test_sync_driver_records_failure_without_tokens(db):
    push = MagicMock()
    result = SyncDriver(push).send([_row()], db)
    assert result.failed == [101]
    push.send.assert_not_called()
    _, params = db.statements("INSERT INTO send_failures")[0]
    assert params[1:3] == ("no_tokens", "No valid device tokens")


def test_sync_driver_broadcast_uses_topics(db):
    push = MagicMock()
    push.send.return_value = PushResult(True)
    result = SyncDriver(push).send([_row(rtype="all", rid="ALL")], db)
    assert result.sent == [101]
    topics = [c.args[0]["topic"] for c in push.send.call_args_list]
    assert topics == ["admins", "students", "teachers"]


def test_sync_driver_never_raises(db):
    push = MagicMock()
    push.send.side_effect = PushNotConfigured("no credentials")
    db.on("FROM device_tokens", [{"token": "tok-a"}])
    result = SyncDriver(push).send([_row(), _row(nid=102, rtype="teacher", rid="1")], db)
    assert result.failed == [101, 102]


def test_queue_driver_writes_outbox_job(db):
    result = QueueDriver().send([_row(101), _row(102)], db)
    assert result.queued == [101, 102]
    _, params = db.statements("INSERT INTO notification_outbox")[0]
    assert params[0] == '{"notificationIds": [101, 102]}'


def test_queue_driver_failure_is_unavailable(db):
    db.on("INSERT INTO notification_outbox", RuntimeError("db gone"))
    with pytest.raises(DispatchUnavailable):
        QueueDriver().send([_row()], db)


def test_build_driver_by_name():
    assert isinstance(build_driver("sync", {}), SyncDriver)
    assert isinstance(build_driver(" QUEUE ", {}), QueueDriver)
    with pytest.raises(ValueError):
        build_driver("carrier-pigeon", {})


def test_chunk_and_stringify():
    assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert stringify_data({"a": 1, "b": None}) == {"a": "1"}
    assert stringify_data({}) is None


def test_fcm_client_requires_configuration():
    with pytest.raises(PushNotConfigured):
        FcmClient("", "").send({"token": "x"}, "t", "b")


@patch("utils.push.requests.post")
def test_fcm_error_details_are_parsed(mock_post):
    client = FcmClient("proj", "{}")
    client._credentials = MagicMock(valid=True, token="access")
    mock_post.return_value = MagicMock(
        status_code=404,
        json=lambda: {"error": {"status": "NOT_FOUND", "message": "gone",
                                "details": [{"errorCode": "UNREGISTERED"}]}},
    )

    result = client.send({"token": "x"}, "t", "b", {"n": 5})

    assert not result.ok and result.token_invalid
    assert result.error_code == "UNREGISTERED"
    payload = mock_post.call_args.kwargs["json"]["message"]
    assert payload["data"] == {"n": "5"}
    assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer access"
