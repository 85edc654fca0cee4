"""
Ballot workflow engine.

Status diagram (strictly linear, forward only, admin-triggered):
    RegisteringVoters
      → ProposalsRegistrationStarted
      → ProposalsRegistrationEnded
      → VotingSessionStarted
      → VotingSessionEnded
      → VotesTallied

Every operation takes the caller identity explicitly. Checks run in the
order identity → status → entity, and all of them before anything is
mutated. Changes are applied to a copy of the state, saved through the
store, and only then become the live state.
"""
import functools
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from .errors import (
    AlreadyRegistered,
    AlreadyVoted,
    BallotError,
    InvalidInput,
    InvalidPhase,
    NotYetAvailable,
    Unauthorized,
)
from .models import (
    BallotState,
    Event,
    Proposal,
    ProposalRegistered,
    Voted,
    Voter,
    VoterRegistered,
    WorkflowStatus,
    WorkflowStatusChange,
)
from .store import MemoryStore, StateStore

log = structlog.get_logger(__name__)

S = WorkflowStatus

# Successor of every status. VotesTallied is terminal.
NEXT_STATUS: Dict[WorkflowStatus, Optional[WorkflowStatus]] = {
    S.REGISTERING_VOTERS: S.PROPOSALS_REGISTRATION_STARTED,
    S.PROPOSALS_REGISTRATION_STARTED: S.PROPOSALS_REGISTRATION_ENDED,
    S.PROPOSALS_REGISTRATION_ENDED: S.VOTING_SESSION_STARTED,
    S.VOTING_SESSION_STARTED: S.VOTING_SESSION_ENDED,
    S.VOTING_SESSION_ENDED: S.VOTES_TALLIED,
    S.VOTES_TALLIED: None,
}

EventSink = Callable[[Event], None]


def compute_winner(proposals: List[Proposal]) -> int:
    """
    Index of the first proposal whose count beats every count before it.
    Ties go to the lowest index; an empty list gives 0.
    """
    winner = 0
    best = 0
    for idx, proposal in enumerate(proposals):
        if proposal.vote_count > best:
            best = proposal.vote_count
            winner = idx
    return winner


def _operation(name: str):
    """Log rejected calls under the operation name, then re-raise."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, caller, *args, **kwargs):
            try:
                return fn(self, caller, *args, **kwargs)
            except BallotError as exc:
                log.info(
                    "operation_rejected",
                    operation=name,
                    caller=caller,
                    error=type(exc).__name__,
                    reason=str(exc),
                )
                raise

        return wrapper

    return decorator


class WorkflowEngine:
    def __init__(
        self,
        admin: str,
        store: Optional[StateStore] = None,
        sink: Optional[EventSink] = None,
    ):
        if not admin:
            raise ValueError("administrator identity must not be empty")

        self._store = store if store is not None else MemoryStore()
        self._sink = sink

        state = self._store.load()
        if state is None:
            state = BallotState(admin=admin)
            self._store.save(state)
        elif state.admin != admin:
            log.warning("admin_mismatch", configured=admin, stored=state.admin)
        self._state = state

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def admin(self) -> str:
        return self._state.admin

    @property
    def sink(self) -> Optional[EventSink]:
        return self._sink

    @property
    def status(self) -> WorkflowStatus:
        return self._state.status

    @property
    def winning_proposal_id(self) -> Optional[int]:
        """None until the votes have been tallied."""
        if self._state.status != S.VOTES_TALLIED:
            return None
        return self._state.winning_proposal_id

    def get_voter(self, address: str) -> Voter:
        voter = self._state.voters.get(address)
        if voter is None:
            return Voter()
        return voter.model_copy()

    def get_proposal(self, proposal_id: int) -> Proposal:
        if not 0 <= proposal_id < len(self._state.proposals):
            raise InvalidInput(f"proposal {proposal_id} does not exist")
        return self._state.proposals[proposal_id].model_copy()

    def proposals(self) -> List[Proposal]:
        return [p.model_copy() for p in self._state.proposals]

    def voter_count(self) -> int:
        return len(self._state.voters)

    def snapshot(self) -> BallotState:
        return self._state.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    @_operation("register_voter")
    def register_voter(self, caller: Optional[str], address: str) -> None:
        self._require_admin(caller)
        self._require_status("register_voter", S.REGISTERING_VOTERS)
        if not address:
            raise InvalidInput("voter address must not be empty")
        if address in self._state.voters:
            raise AlreadyRegistered(f"voter '{address}' is already registered")

        new = self._state.model_copy(deep=True)
        new.voters[address] = Voter(is_registered=True)
        self._commit(new, VoterRegistered(voter=address))

    @_operation("start_proposals_registration")
    def start_proposals_registration(self, caller: Optional[str]) -> None:
        self._advance(caller, "start_proposals_registration", S.REGISTERING_VOTERS)

    @_operation("end_proposals_registration")
    def end_proposals_registration(self, caller: Optional[str]) -> None:
        self._advance(caller, "end_proposals_registration", S.PROPOSALS_REGISTRATION_STARTED)

    @_operation("start_voting_session")
    def start_voting_session(self, caller: Optional[str]) -> None:
        self._advance(caller, "start_voting_session", S.PROPOSALS_REGISTRATION_ENDED)

    @_operation("end_voting_session")
    def end_voting_session(self, caller: Optional[str]) -> None:
        self._advance(caller, "end_voting_session", S.VOTING_SESSION_STARTED)

    @_operation("tally_votes")
    def tally_votes(self, caller: Optional[str]) -> None:
        # An empty proposal list still tallies; get_winner() reports it.
        self._advance(
            caller,
            "tally_votes",
            S.VOTING_SESSION_ENDED,
            lambda new: setattr(new, "winning_proposal_id", compute_winner(new.proposals)),
        )

    # ------------------------------------------------------------------
    # Voter operations
    # ------------------------------------------------------------------

    @_operation("register_proposal")
    def register_proposal(self, caller: Optional[str], description: str) -> int:
        self._require_voter(caller)
        self._require_status("register_proposal", S.PROPOSALS_REGISTRATION_STARTED)
        if not description:
            raise InvalidInput("proposal description must not be empty")

        new = self._state.model_copy(deep=True)
        proposal_id = len(new.proposals)
        new.proposals.append(Proposal(description=description))
        self._commit(new, ProposalRegistered(proposal_id=proposal_id))
        return proposal_id

    @_operation("vote")
    def vote(self, caller: Optional[str], proposal_id: int) -> None:
        voter = self._require_voter(caller)
        self._require_status("vote", S.VOTING_SESSION_STARTED)
        if voter.has_voted:
            raise AlreadyVoted(f"voter '{caller}' has already voted")
        if not 0 <= proposal_id < len(self._state.proposals):
            raise InvalidInput(f"proposal {proposal_id} does not exist")

        new = self._state.model_copy(deep=True)
        new.voters[caller] = Voter(
            is_registered=True, has_voted=True, voted_proposal_id=proposal_id
        )
        new.proposals[proposal_id].vote_count += 1
        self._commit(new, Voted(voter=caller, proposal_id=proposal_id))

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def get_winner(self) -> Tuple[str, int]:
        """
        (description, vote_count) of the winning proposal.
        """
        if self._state.status != S.VOTES_TALLIED:
            raise NotYetAvailable("votes have not been tallied yet")
        proposals = self._state.proposals
        if not 0 <= self._state.winning_proposal_id < len(proposals):
            raise NotYetAvailable("no proposal was registered, there is no winner")
        winner = proposals[self._state.winning_proposal_id]
        return winner.description, winner.vote_count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_admin(self, caller: Optional[str]) -> None:
        if caller != self._state.admin:
            raise Unauthorized("only the administrator can do this")

    def _require_voter(self, caller: Optional[str]) -> Voter:
        voter = self._state.voters.get(caller) if caller else None
        if voter is None or not voter.is_registered:
            raise Unauthorized("caller is not a registered voter")
        return voter

    def _require_status(self, operation: str, required: WorkflowStatus) -> None:
        if self._state.status != required:
            raise InvalidPhase(operation, required, self._state.status)

    def _advance(
        self,
        caller: Optional[str],
        operation: str,
        required: WorkflowStatus,
        apply: Optional[Callable[[BallotState], None]] = None,
    ) -> None:
        self._require_admin(caller)
        self._require_status(operation, required)
        target = NEXT_STATUS[required]

        new = self._state.model_copy(deep=True)
        if apply is not None:
            apply(new)
        new.status = target
        self._commit(new, WorkflowStatusChange(previous_status=required, new_status=target))

    def _commit(self, new: BallotState, event: Event) -> None:
        self._store.save(new)
        self._state = new
        log.info("state_committed", status=new.status.value, kind=event.kind)
        if self._sink is not None:
            try:
                self._sink(event)
            except Exception:
                # the change is already durable at this point
                log.exception("event_sink_failed", kind=event.kind)
