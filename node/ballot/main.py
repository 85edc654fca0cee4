from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from .config import ADMIN_ID, CALLER_HEADER, NODE_ID, NOTIFY_PEERS, PORT, STATE_FILE
from .errors import BallotError
from .logging import configure_logging
from .models import Proposal, ProposalIn, VoteIn, Voter, VoterIn, Winner
from .notifications import EventLog, deliver_to_peers, router as events_router
from .store import store_from_path
from .workflow import WorkflowEngine

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    engine: WorkflowEngine = app.state.engine
    log.info("node_started", node=NODE_ID, admin=engine.admin, status=engine.status.value)
    yield


async def ballot_error_handler(request: Request, exc: BallotError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": type(exc).__name__, "detail": exc.reason, "node": NODE_ID},
    )


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


def get_caller(caller: Optional[str] = Header(None, alias=CALLER_HEADER)) -> Optional[str]:
    return caller


async def notify_observers(request: Request) -> None:
    events: EventLog = request.app.state.events
    await deliver_to_peers(events.drain(), request.app.state.notify_peers)


def create_app(
    engine: Optional[WorkflowEngine] = None,
    events: Optional[EventLog] = None,
    notify_peers: Optional[List[str]] = None,
) -> FastAPI:
    """
    Build a node around one engine instance. Without arguments the engine
    is built from the environment (ADMIN_ID, STATE_FILE).

    A given engine must feed the EventLog the node serves: pass it as
    `events`, or leave `events` out and give the engine an EventLog sink.
    """
    if engine is None:
        if events is None:
            events = EventLog()
        engine = WorkflowEngine(ADMIN_ID, store=store_from_path(STATE_FILE), sink=events)
    elif events is None:
        if not isinstance(engine.sink, EventLog):
            raise ValueError("engine has no EventLog sink; pass the one it feeds as events")
        events = engine.sink
    elif engine.sink is not events:
        raise ValueError("events must be the sink the engine emits to")

    app = FastAPI(title=f"Ballot Node ({NODE_ID})", lifespan=lifespan)
    app.state.engine = engine
    app.state.events = events
    app.state.notify_peers = NOTIFY_PEERS if notify_peers is None else notify_peers

    app.add_exception_handler(BallotError, ballot_error_handler)
    app.include_router(events_router)

    # Engine calls run on the event loop one at a time, with no await
    # between the checks and the commit.

    @app.get("/")
    async def root(engine: WorkflowEngine = Depends(get_engine)):
        return {"node": NODE_ID, "admin": engine.admin, "status": engine.status}

    @app.get("/workflow")
    async def get_workflow(engine: WorkflowEngine = Depends(get_engine)):
        return {
            "status": engine.status,
            "winning_proposal_id": engine.winning_proposal_id,
            "voters": engine.voter_count(),
            "proposals": len(engine.proposals()),
            "node": NODE_ID,
        }

    @app.post("/voters")
    async def register_voter(
        body: VoterIn,
        request: Request,
        caller: Optional[str] = Depends(get_caller),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        engine.register_voter(caller, body.address)
        await notify_observers(request)
        return {"ok": True, "node": NODE_ID, "voter": body.address}

    @app.get("/voters/{address}")
    async def get_voter(address: str, engine: WorkflowEngine = Depends(get_engine)) -> Voter:
        return engine.get_voter(address)

    @app.post("/proposals")
    async def register_proposal(
        body: ProposalIn,
        request: Request,
        caller: Optional[str] = Depends(get_caller),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        proposal_id = engine.register_proposal(caller, body.description)
        await notify_observers(request)
        return {"ok": True, "node": NODE_ID, "proposal_id": proposal_id}

    @app.get("/proposals")
    async def list_proposals(engine: WorkflowEngine = Depends(get_engine)) -> List[Proposal]:
        return engine.proposals()

    @app.get("/proposals/{proposal_id}")
    async def get_proposal(proposal_id: int, engine: WorkflowEngine = Depends(get_engine)) -> Proposal:
        return engine.get_proposal(proposal_id)

    @app.post("/votes")
    async def vote(
        body: VoteIn,
        request: Request,
        caller: Optional[str] = Depends(get_caller),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        engine.vote(caller, body.proposal_id)
        await notify_observers(request)
        return {"ok": True, "node": NODE_ID, "proposal_id": body.proposal_id}

    transitions = {
        "/workflow/proposals/start": WorkflowEngine.start_proposals_registration,
        "/workflow/proposals/end": WorkflowEngine.end_proposals_registration,
        "/workflow/voting/start": WorkflowEngine.start_voting_session,
        "/workflow/voting/end": WorkflowEngine.end_voting_session,
        "/workflow/tally": WorkflowEngine.tally_votes,
    }
    for path, operation in transitions.items():
        app.add_api_route(path, _transition_endpoint(operation), methods=["POST"])

    @app.get("/winner")
    async def get_winner(engine: WorkflowEngine = Depends(get_engine)) -> Winner:
        description, vote_count = engine.get_winner()
        return Winner(description=description, vote_count=vote_count)

    return app


def _transition_endpoint(operation):
    async def endpoint(
        request: Request,
        caller: Optional[str] = Depends(get_caller),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        operation(engine, caller)
        await notify_observers(request)
        return {"ok": True, "node": NODE_ID, "status": engine.status}

    endpoint.__name__ = operation.__name__
    return endpoint


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ballot.main:app", host="0.0.0.0", port=PORT, log_level="info")
