from enum import Enum
from typing import Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


class WorkflowStatus(str, Enum):
    REGISTERING_VOTERS = "RegisteringVoters"
    PROPOSALS_REGISTRATION_STARTED = "ProposalsRegistrationStarted"
    PROPOSALS_REGISTRATION_ENDED = "ProposalsRegistrationEnded"
    VOTING_SESSION_STARTED = "VotingSessionStarted"
    VOTING_SESSION_ENDED = "VotingSessionEnded"
    VOTES_TALLIED = "VotesTallied"


class Voter(BaseModel):
    is_registered: bool = False
    has_voted: bool = False
    # only meaningful once has_voted is set
    voted_proposal_id: int = 0


class Proposal(BaseModel):
    description: str
    vote_count: int = 0


class BallotState(BaseModel):
    """
    Whole durable state of one ballot, persisted as a unit after every call.
    """
    admin: str
    status: WorkflowStatus = WorkflowStatus.REGISTERING_VOTERS
    voters: Dict[str, Voter] = Field(default_factory=dict)
    proposals: List[Proposal] = Field(default_factory=list)
    winning_proposal_id: int = 0


# Request bodies

class VoterIn(BaseModel):
    address: str = Field(..., examples=["alice"])


class ProposalIn(BaseModel):
    description: str = Field(..., examples=["Extend the library opening hours"])


class VoteIn(BaseModel):
    proposal_id: int = Field(..., examples=[0])


class Winner(BaseModel):
    description: str
    vote_count: int


# Notification records, one schema per mutating operation

class VoterRegistered(BaseModel):
    kind: Literal["VoterRegistered"] = "VoterRegistered"
    voter: str


class WorkflowStatusChange(BaseModel):
    kind: Literal["WorkflowStatusChange"] = "WorkflowStatusChange"
    previous_status: WorkflowStatus
    new_status: WorkflowStatus


class ProposalRegistered(BaseModel):
    kind: Literal["ProposalRegistered"] = "ProposalRegistered"
    proposal_id: int


class Voted(BaseModel):
    kind: Literal["Voted"] = "Voted"
    voter: str
    proposal_id: int


Event = Union[VoterRegistered, WorkflowStatusChange, ProposalRegistered, Voted]


class EventRecord(BaseModel):
    """
    An event as recorded by the sink: sequence number + payload.
    Observers can resume from the last seq they saw.
    """
    seq: int
    node_id: str
    event: Event = Field(..., discriminator="kind")


class EventBatch(BaseModel):
    records: List[EventRecord]
    next_seq: Optional[int] = None
