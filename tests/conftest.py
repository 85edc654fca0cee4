"""
Shared fixtures for the ballot node tests.

The package lives under node/; pyproject's pytest config puts node/ on
sys.path so 'from ballot.xxx import ...' works without installing.
"""

import pytest

from ballot.models import WorkflowStatus
from ballot.notifications import EventLog
from ballot.store import MemoryStore
from ballot.workflow import WorkflowEngine

ADMIN = "admin"
VOTERS = ["alice", "bob", "carol"]

# Order in which the admin walks the workflow
STATUS_ORDER = [
    WorkflowStatus.REGISTERING_VOTERS,
    WorkflowStatus.PROPOSALS_REGISTRATION_STARTED,
    WorkflowStatus.PROPOSALS_REGISTRATION_ENDED,
    WorkflowStatus.VOTING_SESSION_STARTED,
    WorkflowStatus.VOTING_SESSION_ENDED,
    WorkflowStatus.VOTES_TALLIED,
]

ADVANCE = {
    WorkflowStatus.REGISTERING_VOTERS: WorkflowEngine.start_proposals_registration,
    WorkflowStatus.PROPOSALS_REGISTRATION_STARTED: WorkflowEngine.end_proposals_registration,
    WorkflowStatus.PROPOSALS_REGISTRATION_ENDED: WorkflowEngine.start_voting_session,
    WorkflowStatus.VOTING_SESSION_STARTED: WorkflowEngine.end_voting_session,
    WorkflowStatus.VOTING_SESSION_ENDED: WorkflowEngine.tally_votes,
}


def advance_to(engine: WorkflowEngine, target: WorkflowStatus) -> None:
    """
    Drive a fresh engine to `target`. Registers VOTERS up front and has
    alice submit "P1" when passing through the proposal phase. Nobody votes.
    """
    if engine.status == WorkflowStatus.REGISTERING_VOTERS and engine.voter_count() == 0:
        for voter in VOTERS:
            engine.register_voter(ADMIN, voter)
    while engine.status != target:
        if engine.status == WorkflowStatus.PROPOSALS_REGISTRATION_STARTED and not engine.proposals():
            engine.register_proposal("alice", "P1")
        ADVANCE[engine.status](engine, ADMIN)


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def engine(events) -> WorkflowEngine:
    return WorkflowEngine(ADMIN, store=MemoryStore(), sink=events.append)


@pytest.fixture
def event_log() -> EventLog:
    return EventLog(node_id="test-node")
