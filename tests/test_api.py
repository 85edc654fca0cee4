"""
Tests for ballot/main.py

Drives the node over HTTP with the caller identity in X-Caller-Id.

Validates:
- The full ballot flow ends with the expected winner
- Rejections map to status codes with the error class in the body
- Read endpoints: workflow, voters, proposals, events
- create_app serves the EventLog the engine actually emits to
"""

import pytest
from fastapi.testclient import TestClient

from ballot.main import create_app
from ballot.notifications import EventLog
from ballot.store import MemoryStore
from ballot.workflow import WorkflowEngine

from conftest import ADMIN


def as_caller(caller):
    return {"X-Caller-Id": caller}


@pytest.fixture
def node_events() -> EventLog:
    return EventLog(node_id="test-node")


@pytest.fixture
def client(node_events) -> TestClient:
    engine = WorkflowEngine(ADMIN, store=MemoryStore(), sink=node_events)
    app = create_app(engine=engine, events=node_events, notify_peers=[])
    return TestClient(app, raise_server_exceptions=False)


def register(client, *voters):
    for voter in voters:
        resp = client.post("/voters", json={"address": voter}, headers=as_caller(ADMIN))
        assert resp.status_code == 200


def transition(client, path, caller=ADMIN):
    return client.post(path, headers=as_caller(caller))


class TestBallotFlow:
    def test_full_ballot(self, client: TestClient) -> None:
        register(client, "A", "B", "C")
        assert transition(client, "/workflow/proposals/start").json()["status"] == (
            "ProposalsRegistrationStarted"
        )

        resp = client.post("/proposals", json={"description": "P1"}, headers=as_caller("A"))
        assert resp.json()["proposal_id"] == 0
        resp = client.post("/proposals", json={"description": "P2"}, headers=as_caller("B"))
        assert resp.json()["proposal_id"] == 1

        transition(client, "/workflow/proposals/end")
        transition(client, "/workflow/voting/start")
        for voter, proposal_id in (("A", 0), ("B", 1), ("C", 0)):
            resp = client.post("/votes", json={"proposal_id": proposal_id}, headers=as_caller(voter))
            assert resp.status_code == 200
        transition(client, "/workflow/voting/end")
        resp = transition(client, "/workflow/tally")
        assert resp.status_code == 200
        assert resp.json()["status"] == "VotesTallied"

        workflow = client.get("/workflow").json()
        assert workflow["status"] == "VotesTallied"
        assert workflow["winning_proposal_id"] == 0
        assert workflow["voters"] == 3
        assert workflow["proposals"] == 2

        winner = client.get("/winner")
        assert winner.status_code == 200
        assert winner.json() == {"description": "P1", "vote_count": 2}

    def test_read_endpoints(self, client: TestClient) -> None:
        register(client, "alice")
        transition(client, "/workflow/proposals/start")
        client.post("/proposals", json={"description": "More bike lanes"}, headers=as_caller("alice"))

        root = client.get("/").json()
        assert root["admin"] == ADMIN
        assert root["status"] == "ProposalsRegistrationStarted"

        voter = client.get("/voters/alice").json()
        assert voter == {"is_registered": True, "has_voted": False, "voted_proposal_id": 0}
        assert client.get("/voters/nobody").json()["is_registered"] is False

        assert client.get("/proposals").json() == [
            {"description": "More bike lanes", "vote_count": 0}
        ]
        assert client.get("/proposals/0").json()["description"] == "More bike lanes"
        assert client.get("/proposals/3").status_code == 400

    def test_events_endpoint(self, client: TestClient) -> None:
        register(client, "alice")
        transition(client, "/workflow/proposals/start")

        body = client.get("/events").json()
        assert body["next_seq"] == 2
        kinds = [r["event"]["kind"] for r in body["records"]]
        assert kinds == ["VoterRegistered", "WorkflowStatusChange"]

        later = client.get("/events", params={"since": 1}).json()
        assert [r["seq"] for r in later["records"]] == [1]


class TestRejections:
    def test_non_admin_transition(self, client: TestClient) -> None:
        register(client, "alice")
        resp = transition(client, "/workflow/proposals/start", caller="alice")

        assert resp.status_code == 403
        body = resp.json()
        assert body["ok"] is False
        assert body["error"] == "Unauthorized"
        assert client.get("/workflow").json()["status"] == "RegisteringVoters"

    def test_missing_caller_header(self, client: TestClient) -> None:
        resp = client.post("/voters", json={"address": "alice"})
        assert resp.status_code == 403
        assert client.get("/voters/alice").json()["is_registered"] is False

    def test_wrong_phase(self, client: TestClient) -> None:
        resp = transition(client, "/workflow/tally")
        assert resp.status_code == 409
        assert resp.json()["error"] == "InvalidPhase"

    def test_duplicate_voter(self, client: TestClient) -> None:
        register(client, "alice")
        resp = client.post("/voters", json={"address": "alice"}, headers=as_caller(ADMIN))
        assert resp.status_code == 409
        assert resp.json()["error"] == "AlreadyRegistered"

    def test_empty_description(self, client: TestClient) -> None:
        register(client, "alice")
        transition(client, "/workflow/proposals/start")
        resp = client.post("/proposals", json={"description": ""}, headers=as_caller("alice"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidInput"

    def test_double_vote(self, client: TestClient) -> None:
        register(client, "alice")
        transition(client, "/workflow/proposals/start")
        client.post("/proposals", json={"description": "P1"}, headers=as_caller("alice"))
        transition(client, "/workflow/proposals/end")
        transition(client, "/workflow/voting/start")

        assert client.post("/votes", json={"proposal_id": 0}, headers=as_caller("alice")).status_code == 200
        resp = client.post("/votes", json={"proposal_id": 0}, headers=as_caller("alice"))
        assert resp.status_code == 409
        assert resp.json()["error"] == "AlreadyVoted"
        assert client.get("/proposals/0").json()["vote_count"] == 1

    def test_winner_before_tally(self, client: TestClient) -> None:
        resp = client.get("/winner")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotYetAvailable"

    def test_winner_after_empty_tally(self, client: TestClient) -> None:
        register(client, "alice")
        for path in (
            "/workflow/proposals/start",
            "/workflow/proposals/end",
            "/workflow/voting/start",
            "/workflow/voting/end",
            "/workflow/tally",
        ):
            assert transition(client, path).status_code == 200

        resp = client.get("/winner")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotYetAvailable"

    def test_rejections_record_no_events(self, client: TestClient, node_events) -> None:
        transition(client, "/workflow/tally")
        transition(client, "/workflow/proposals/start", caller="mallory")
        assert node_events.next_seq == 0


class TestAppWiring:
    def test_events_taken_from_engine_sink(self) -> None:
        sink = EventLog(node_id="test-node")
        engine = WorkflowEngine(ADMIN, store=MemoryStore(), sink=sink)
        client = TestClient(create_app(engine=engine, notify_peers=[]))

        register(client, "alice")

        records = client.get("/events").json()["records"]
        assert [r["event"]["kind"] for r in records] == ["VoterRegistered"]

    def test_engine_without_event_log_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            create_app(engine=WorkflowEngine(ADMIN), notify_peers=[])

    def test_events_must_be_the_engine_sink(self) -> None:
        engine = WorkflowEngine(ADMIN, sink=EventLog())
        with pytest.raises(ValueError):
            create_app(engine=engine, events=EventLog(), notify_peers=[])
