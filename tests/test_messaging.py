"""
Tests for door bell call messaging.

Tests cover:
- POST /door-bell/{id}/message for guests and households
- GET /door-bell/{id}/messages ordering and empty transcripts
- The connected-only rule
- Input validation and sender policy
- The household-scoped message endpoint
"""

from datetime import timedelta

import pytest

from conftest import session_headers
from frontdoor.calls import answer_call, end_call, ring_door_bell
from frontdoor.exceptions import InvalidInput, NoActiveSession
from frontdoor.messaging import list_messages, post_message
from frontdoor.utils import utcnow


@pytest.fixture
def connected(db, site):
    """Site whose door bell has a connected call."""
    ring_door_bell(db, site.door_bell)
    answer_call(db, site.door_bell_id)
    return site


def post(client, door_bell_id, body, headers=None):
    return client.post(f"/door-bell/{door_bell_id}/message", json=body, headers=headers or {})


class TestPostMessage:
    """Test posting to a connected call."""

    def test_guest_message_success(self, client, connected):
        """Test a guest message is stored and echoed with its origin tag."""
        response = post(client, connected.door_bell_id, {"message": "On my way", "from": "guest"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"]["text"] == "On my way"
        assert data["message"]["from"] == "guest"
        assert data["message"]["id"]
        assert data["message"]["timestamp"].endswith("Z")

    def test_message_text_is_trimmed(self, client, connected):
        response = post(client, connected.door_bell_id, {"message": "  Hello  ", "from": "guest"})

        assert response.status_code == 200
        assert response.json()["message"]["text"] == "Hello"

    def test_household_message_with_member_session(self, client, connected):
        """Test a household member can post as household on the public endpoint."""
        response = post(
            client,
            connected.door_bell_id,
            {"message": "Coming down", "from": "household"},
            headers=session_headers("resident-1"),
        )

        assert response.status_code == 200
        assert response.json()["message"]["from"] == "household"

    def test_household_message_requires_credential(self, client, connected):
        """Test an anonymous caller cannot speak for the household."""
        response = post(client, connected.door_bell_id, {"message": "Hi", "from": "household"})

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_household_message_from_outsider_forbidden(self, client, connected):
        response = post(
            client,
            connected.door_bell_id,
            {"message": "Hi", "from": "household"},
            headers=session_headers("outsider-1"),
        )

        assert response.status_code == 403

    def test_forged_session_token_is_anonymous(self, client, connected):
        """Test a token with a bad signature is treated as no credential."""
        response = post(
            client,
            connected.door_bell_id,
            {"message": "Hi", "from": "household"},
            headers={"X-Session-Token": "resident-1.deadbeef"},
        )

        assert response.status_code == 401


class TestConnectedOnly:
    """Test messages are only accepted while a call is connected."""

    def test_no_call(self, client, site):
        response = post(client, site.door_bell_id, {"message": "Hello?", "from": "guest"})

        assert response.status_code == 400
        assert response.json()["code"] == "NO_ACTIVE_SESSION"

    def test_ringing_call(self, client, db, site):
        ring_door_bell(db, site.door_bell)

        response = post(client, site.door_bell_id, {"message": "Hello?", "from": "guest"})

        assert response.status_code == 400
        assert response.json()["code"] == "NO_ACTIVE_SESSION"

    def test_ended_call(self, client, db, connected):
        end_call(db, connected.door_bell_id)

        response = post(client, connected.door_bell_id, {"message": "Bye", "from": "guest"})

        assert response.status_code == 400
        assert response.json()["code"] == "NO_ACTIVE_SESSION"

    def test_routed_call(self, client, factory, site):
        factory.call_session(site.door_bell, status="routed", age_seconds=60)

        response = post(client, site.door_bell_id, {"message": "Anyone?", "from": "guest"})

        assert response.status_code == 400


class TestValidation:
    """Test request validation."""

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_message_rejected(self, client, connected, text):
        response = post(client, connected.door_bell_id, {"message": text, "from": "guest"})

        assert response.status_code == 400
        assert response.json() == {
            "detail": "Message is required",
            "code": "INVALID_INPUT",
            "field": "message",
        }

    def test_missing_message_rejected(self, client, connected):
        response = post(client, connected.door_bell_id, {"from": "guest"})

        assert response.status_code == 400
        assert response.json()["field"] == "message"

    def test_missing_sender_rejected(self, client, connected):
        """Test public callers must state who is speaking."""
        response = post(client, connected.door_bell_id, {"message": "Hi"})

        assert response.status_code == 400
        assert response.json()["field"] == "from"

    def test_unknown_sender_rejected(self, client, connected):
        response = post(client, connected.door_bell_id, {"message": "Hi", "from": "admin"})

        assert response.status_code == 400
        assert response.json()["field"] == "from"

    def test_oversized_message_rejected(self, client, connected):
        response = post(client, connected.door_bell_id, {"message": "x" * 2001, "from": "guest"})

        assert response.status_code == 400
        assert response.json()["field"] == "message"

    def test_non_object_body_rejected(self, client, connected):
        """Test a body that is not a JSON object maps to 400, not 422."""
        response = client.post(f"/door-bell/{connected.door_bell_id}/message", json=["Hi"])

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    def test_unknown_door_bell(self, client, site):
        response = post(client, "missing", {"message": "Hi", "from": "guest"})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestListMessages:
    """Test GET /door-bell/{id}/messages."""

    def test_order_matches_posting_order(self, client, connected):
        """Test the transcript preserves the order messages were posted in."""
        texts = [("Hello", "guest"), ("Who is it?", "household"), ("Delivery", "guest")]
        for text, sender in texts:
            headers = session_headers("resident-1") if sender == "household" else None
            assert post(client, connected.door_bell_id, {"message": text, "from": sender}, headers).status_code == 200

        response = client.get(f"/door-bell/{connected.door_bell_id}/messages")

        assert response.status_code == 200
        messages = response.json()["messages"]
        assert [(m["text"], m["from"]) for m in messages] == texts
        assert set(messages[0]) == {"id", "text", "from", "timestamp"}

    def test_no_call_returns_empty_list(self, client, site):
        """Test guests get an empty transcript rather than an error."""
        response = client.get(f"/door-bell/{site.door_bell_id}/messages")

        assert response.status_code == 200
        assert response.json() == {"messages": []}

    def test_ended_call_transcript_not_served(self, client, db, connected):
        post(client, connected.door_bell_id, {"message": "Hello", "from": "guest"})
        end_call(db, connected.door_bell_id)

        response = client.get(f"/door-bell/{connected.door_bell_id}/messages")

        assert response.json() == {"messages": []}

    def test_unknown_door_bell(self, client, site):
        assert client.get("/door-bell/missing/messages").status_code == 404


class TestMessagingStore:
    """Test the messaging functions directly."""

    def test_timestamp_ties_keep_insertion_order(self, db, connected):
        """Test messages with identical timestamps come back in insertion order."""
        moment = utcnow()
        for text in ["first", "second", "third"]:
            post_message(db, connected.door_bell_id, text, "guest", now=moment)

        assert [m.text for m in list_messages(db, connected.door_bell_id)] == ["first", "second", "third"]

    def test_earlier_timestamp_sorts_first(self, db, connected):
        now = utcnow()
        post_message(db, connected.door_bell_id, "later", "guest", now=now)
        post_message(db, connected.door_bell_id, "earlier", "household", now=now - timedelta(seconds=1))

        assert [m.text for m in list_messages(db, connected.door_bell_id)] == ["earlier", "later"]

    def test_post_without_call_raises(self, db, site):
        with pytest.raises(NoActiveSession):
            post_message(db, site.door_bell_id, "Hi", "guest")

    def test_invalid_sender_raises(self, db, connected):
        with pytest.raises(InvalidInput) as exc_info:
            post_message(db, connected.door_bell_id, "Hi", None)
        assert exc_info.value.field == "from"


class TestHouseholdMessageEndpoint:
    """Test POST /building/{b}/door-bell/{d}/message."""

    def url(self, site):
        return f"/building/{site.building_id}/door-bell/{site.door_bell_id}/message"

    def test_defaults_to_household(self, client, connected):
        response = client.post(
            self.url(connected),
            json={"message": "Be right there"},
            headers=session_headers("resident-1"),
        )

        assert response.status_code == 200
        assert response.json()["message"]["from"] == "household"

    def test_requires_session(self, client, connected):
        response = client.post(self.url(connected), json={"message": "Be right there"})

        assert response.status_code == 401

    def test_front_desk_may_reply(self, client, connected):
        response = client.post(
            self.url(connected),
            json={"message": "Front desk here"},
            headers=session_headers("desk-1"),
        )

        assert response.status_code == 200
