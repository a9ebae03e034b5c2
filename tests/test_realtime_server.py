"""Tests for src.realtime.server — WebSocket operations and broadcasts."""

from unittest.mock import MagicMock

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from src.core.notifier import ChangeHub
from src.ports.notification_port import TimeslotsUpdated
from src.realtime.server import TRY_AGAIN_LATER, _Connection, create_app


def _slot_item(day="01", status="available", **extra):
    return {
        "startTime": f"2024-05-{day}T00:00:00Z",
        "endTime": f"2024-05-{day}T23:59:59Z",
        "status": status,
        **extra,
    }


@pytest.fixture
def client(service, directory, hub):
    # one event loop for every connection of a test
    with TestClient(create_app(service, directory, hub)) as client:
        yield client


def _add(ws, project, user, *items, frame_id=1):
    ws.send_json({
        "event": "project_add_timeslots",
        "id": frame_id,
        "data": {"projectId": project.id, "userId": user.id, "timeslots": list(items)},
    })
    broadcast = ws.receive_json()
    reply = ws.receive_json()
    return broadcast, reply


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "subscribers": 0}


class TestOperations:
    def test_add_broadcasts_then_replies(self, client, people):
        alice, _, _, project = people
        with client.websocket_connect("/socket") as ws:
            broadcast, reply = _add(ws, project, alice, _slot_item())

        assert broadcast == {
            "event": "timeslots_updated",
            "data": {"projectId": project.id, "userId": alice.id},
        }
        assert reply["event"] == "project_add_timeslots"
        assert reply["id"] == 1
        assert reply["data"]["success"] is True
        [slot] = reply["data"]["timeslots"]
        assert slot["startTime"] == "2024-05-01T00:00:00.000Z"
        assert slot["userId"] == alice.id
        assert slot["isLocked"] is False

    def test_update_and_delete(self, client, people):
        alice, _, _, project = people
        with client.websocket_connect("/socket") as ws:
            _, reply = _add(ws, project, alice, _slot_item("01"), _slot_item("02"))
            ids = [s["id"] for s in reply["data"]["timeslots"]]

            ws.send_json({"event": "project_update_timeslots", "id": 2, "data": {
                "projectId": project.id,
                "requestUserId": alice.id,
                "timeslots": [{"id": ids[0], "status": "busy"}],
            }})
            assert ws.receive_json() == {"event": "timeslots_updated", "data": {"projectId": project.id}}
            updated = ws.receive_json()
            assert updated["data"]["timeslots"][0]["status"] == "busy"

            ws.send_json({"event": "project_delete_timeslots", "id": 3, "data": {
                "projectId": project.id, "requestUserId": alice.id, "timeslotIds": ids,
            }})
            ws.receive_json()
            deleted = ws.receive_json()
            assert deleted == {
                "event": "project_delete_timeslots",
                "id": 3,
                "data": {"success": True, "deletedCount": 2},
            }

    def test_merge_by_handle(self, client, people):
        alice, _, _, project = people
        with client.websocket_connect("/socket") as ws:
            _, reply = _add(ws, project, alice, _slot_item("01", notes="x"), _slot_item("02", notes="y"))
            ids = [s["id"] for s in reply["data"]["timeslots"]]

            ws.send_json({"event": "project_merge_timeslots", "id": 9, "data": {
                "projectId": project.id,
                "requestUserHandle": alice.external_handle,
                "timeslotIds": ids,
            }})
            ws.receive_json()
            merged = ws.receive_json()["data"]

        [slot] = merged["timeslots"]
        assert slot["notes"] == "x; y"
        assert slot["endTime"] == "2024-05-02T23:59:59.000Z"
        assert slot["createdById"] == alice.id

    def test_unknown_handle(self, client, people):
        _, _, _, project = people
        with client.websocket_connect("/socket") as ws:
            ws.send_json({"event": "project_delete_timeslots", "id": 4, "data": {
                "projectId": project.id, "requestUserHandle": "nobody", "timeslotIds": [1],
            }})
            reply = ws.receive_json()
        assert reply["data"]["success"] is False
        assert reply["data"]["errorKind"] == "not_found"

    def test_forbidden_reply_has_no_broadcast(self, client, people):
        alice, bob, carol, project = people
        with client.websocket_connect("/socket") as ws:
            _, reply = _add(ws, project, bob, _slot_item(isLocked=True))
            slot_id = reply["data"]["timeslots"][0]["id"]

            ws.send_json({"event": "project_delete_timeslots", "id": 5, "data": {
                "projectId": project.id, "requestUserId": carol.id, "timeslotIds": [slot_id],
            }})
            denied = ws.receive_json()
            assert denied["event"] == "project_delete_timeslots"
            assert denied["data"]["errorKind"] == "forbidden"

            ws.send_json({"event": "get_user_timeslots", "id": 6, "data": {
                "projectId": project.id, "userId": bob.id,
            }})
            assert [s["id"] for s in ws.receive_json()["data"]] == [slot_id]

    def test_validation_error(self, client, people):
        alice, _, _, project = people
        with client.websocket_connect("/socket") as ws:
            ws.send_json({"event": "project_add_timeslots", "id": 7, "data": {
                "projectId": project.id, "userId": alice.id, "timeslots": [_slot_item(status="maybe")],
            }})
            reply = ws.receive_json()
        assert reply["data"]["errorKind"] == "validation_error"


class TestReads:
    def test_get_by_handle(self, client, people, service):
        alice, _, _, project = people
        with client.websocket_connect("/socket") as ws:
            _add(ws, project, alice, _slot_item("03"), _slot_item("01"))
            ws.send_json({"event": "get_user_timeslots_by_handle", "id": 1, "data": {
                "handle": alice.external_handle, "projectId": project.id,
            }})
            slots = ws.receive_json()["data"]
        assert [s["startTime"][:10] for s in slots] == ["2024-05-01", "2024-05-03"]

    def test_project_listing_spans_members(self, client, people):
        alice, bob, _, project = people
        with client.websocket_connect("/socket") as ws:
            _add(ws, project, bob, _slot_item("02"))
            _add(ws, project, alice, _slot_item("01"))
            ws.send_json({"event": "get_project_timeslots", "id": 3, "data": {"projectId": project.id}})
            reply = ws.receive_json()
        assert reply["id"] == 3
        assert [(s["userId"], s["startTime"][:10]) for s in reply["data"]] == [
            (alice.id, "2024-05-01"), (bob.id, "2024-05-02"),
        ]

    def test_invalid_read_is_empty(self, client):
        with client.websocket_connect("/socket") as ws:
            ws.send_json({"event": "get_user_timeslots", "id": 1, "data": {"projectId": "x"}})
            assert ws.receive_json()["data"] == []


class TestFraming:
    def test_unknown_event(self, client):
        with client.websocket_connect("/socket") as ws:
            ws.send_json({"event": "project_rename", "id": 1, "data": {}})
            reply = ws.receive_json()
        assert reply == {
            "event": "project_rename",
            "id": 1,
            "data": {"success": False, "error": "Unknown event: project_rename"},
        }

    def test_malformed_frame(self, client):
        with client.websocket_connect("/socket") as ws:
            ws.send_text("{not json")
            reply = ws.receive_json()
        assert reply["event"] == "error"
        assert reply["data"]["success"] is False

    def test_frame_without_event(self, client):
        with client.websocket_connect("/socket") as ws:
            ws.send_json({"data": {}})
            assert ws.receive_json()["event"] == "error"


class TestBroadcasts:
    def test_other_clients_are_notified(self, client, people):
        alice, _, _, project = people
        with client.websocket_connect("/socket") as watcher, \
             client.websocket_connect("/socket") as writer:
            _add(writer, project, alice, _slot_item())
            event = watcher.receive_json()
        assert event == {
            "event": "timeslots_updated",
            "data": {"projectId": project.id, "userId": alice.id},
        }

    def test_subscription_scopes_broadcasts(self, client, people, directory):
        alice, _, _, project = people
        other = directory.create_project("Other", owner_id=alice.id)
        with client.websocket_connect("/socket") as watcher, \
             client.websocket_connect("/socket") as writer:
            watcher.send_json({"event": "subscribe", "id": 1, "data": {"projectId": project.id}})
            assert watcher.receive_json()["data"] == {"success": True, "projectIds": [project.id]}

            _add(writer, other, alice, _slot_item())
            _add(writer, project, alice, _slot_item())

            event = watcher.receive_json()
        assert event["data"]["projectId"] == project.id


class TestLaggingClients:
    def test_client_that_falls_behind_is_closed(self, service, directory, people):
        _, _, _, project = people
        hub = ChangeHub(queue_size=1)
        with TestClient(create_app(service, directory, hub)) as client:
            with client.websocket_connect("/socket") as ws:
                ws.send_json({"event": "subscribe", "id": 1, "data": {"projectId": project.id}})
                assert ws.receive_json()["data"]["success"] is True

                def burst():
                    for _ in range(3):
                        hub.publish(TimeslotsUpdated(project_id=project.id))

                # publish on the app's loop without yielding to the sender
                client.portal.call(burst)
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    while True:
                        ws.receive_json()

            assert exc_info.value.code == TRY_AGAIN_LATER
            assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_subscribe_after_drop_fails(self, service, directory):
        hub = ChangeHub(queue_size=1)
        conn = _Connection(MagicMock(), service, directory, hub)
        conn._sub = hub.subscribe(name="ws")
        hub.publish(TimeslotsUpdated(project_id=1))
        hub.publish(TimeslotsUpdated(project_id=1))

        reply = conn._toggle_subscription("subscribe", {"projectId": 1})
        assert reply["success"] is False
        assert conn._sub.project_ids == set()
