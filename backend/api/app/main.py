from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# -------------------------------------------------------------------
# ENV LOADING (must run before importing anything that reads env)
# Always load backend/api/.env no matter where uvicorn is launched from.
# backend/api/app/main.py -> parents[1] == backend/api
# -------------------------------------------------------------------
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402

from app import admin, audit, comments, expert, flagging, lifecycle, users, voting  # noqa: E402
from app.anchoring import ProofFields, anchor_proof, read_proof, verify_proof  # noqa: E402
from app.config import configure_logging, get_settings  # noqa: E402
from app.context import CurationContext, build_context  # noqa: E402
from app.db import db_ping, get_engine  # noqa: E402
from app.errors import (  # noqa: E402
    Conflict,
    CurationError,
    ExternalUnavailable,
    Forbidden,
    NotFound,
    PreconditionFailed,
)
from app.models import Principal, Role  # noqa: E402
from app.pinning import pin_artifact  # noqa: E402
from app.schemas import (  # noqa: E402
    AnchorAttemptOut,
    AnchorOut,
    ArtifactCreateIn,
    ArtifactListOut,
    ArtifactOut,
    ArtifactUpdateIn,
    CommentIn,
    CommentListOut,
    CommentOut,
    DecisionOut,
    EventOut,
    ExpertReviewIn,
    ExpertReviewOut,
    FileReferenceIn,
    FlagIn,
    FlagOut,
    MyVoteOut,
    PinOut,
    ProofOut,
    QueueItemOut,
    QueueOut,
    RoleIn,
    UserOut,
    VerifyIn,
    VerifyOut,
    VoteIn,
    VoteOut,
    VoteSummaryOut,
)
from app.workflow import allowed_transitions, list_states  # noqa: E402

configure_logging()


# -----------------------------
# Wiring
# -----------------------------
_context: CurationContext | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _context
    yield
    # Close the store and ledger clients the first request built.
    if _context is not None:
        _context.close()
        _context = None


app = FastAPI(title="Artifact Curation API", version="1.0.0", lifespan=lifespan)


def get_context() -> CurationContext:
    global _context
    if _context is None:
        _context = build_context(get_engine(), get_settings())
    return _context


def optional_principal(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    ctx: CurationContext = Depends(get_context),
) -> Principal | None:
    """
    Authentication happens upstream; it forwards the user id in X-User-Id.
    Here we only resolve that id to a principal with its current role.
    """
    if not x_user_id:
        return None
    try:
        return users.resolve_principal(ctx.engine, x_user_id)
    except NotFound:
        raise HTTPException(status_code=401, detail="Unknown user")


def require_principal(principal: Principal | None = Depends(optional_principal)) -> Principal:
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal


def require_reviewer(principal: Principal = Depends(require_principal)) -> Principal:
    users.require_role(principal, Role.EXPERT, Role.ADMIN)
    return principal


def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    users.require_role(principal, Role.ADMIN)
    return principal


_ERROR_STATUS: list[tuple[type[CurationError], int]] = [
    (NotFound, 404),
    (Forbidden, 403),
    (Conflict, 409),
    (ExternalUnavailable, 503),
    (PreconditionFailed, 400),
]


@app.exception_handler(CurationError)
def curation_error_handler(request: Request, exc: CurationError) -> JSONResponse:
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


# -----------------------------
# Health checks
# -----------------------------
@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/readyz")
def readyz(ctx: CurationContext = Depends(get_context)):
    db_ping(ctx.engine)
    return {
        "status": "ready",
        "db": "ok",
        "content_store": ctx.content_store is not None,
        "ledger": ctx.ledger is not None and ctx.ledger.is_available(),
    }


# -----------------------------
# Workflow helpers
# -----------------------------
@app.get("/workflow/states")
def workflow_states():
    return {"states": list_states()}


@app.get("/artifacts/{artifact_id}/allowed")
def artifact_allowed(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal | None = Depends(optional_principal),
):
    artifact = lifecycle.get_visible(ctx, artifact_id, principal)
    return {
        "artifact_id": artifact_id,
        "from_status": artifact.status.value,
        "allowed": allowed_transitions(artifact.status),
    }


# -----------------------------
# Artifact endpoints
# -----------------------------
@app.post("/artifacts", response_model=ArtifactOut, status_code=201)
def create_artifact(
    body: ArtifactCreateIn,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_principal),
):
    return lifecycle.submit(ctx, principal, **body.model_dump())


@app.get("/artifacts", response_model=ArtifactListOut)
def list_artifacts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    mine: bool = False,
    status: str | None = None,
    ctx: CurationContext = Depends(get_context),
    principal: Principal | None = Depends(optional_principal),
):
    items, total = lifecycle.list_artifacts(ctx, principal, page=page, limit=limit, mine=mine, status=status)
    return {"items": items, "page": page, "limit": limit, "total": total}


@app.get("/artifacts/{artifact_id}", response_model=ArtifactOut)
def get_artifact(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal | None = Depends(optional_principal),
):
    return lifecycle.get_visible(ctx, artifact_id, principal)


@app.patch("/artifacts/{artifact_id}", response_model=ArtifactOut)
def update_artifact(
    artifact_id: str,
    body: ArtifactUpdateIn,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_principal),
):
    return lifecycle.edit(ctx, artifact_id, principal, body.model_dump(exclude_unset=True))


@app.post("/artifacts/{artifact_id}/withdraw", response_model=ArtifactOut)
def withdraw_artifact(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_principal),
):
    return lifecycle.withdraw(ctx, artifact_id, principal)


@app.put("/artifacts/{artifact_id}/file", response_model=ArtifactOut)
def attach_file(
    artifact_id: str,
    body: FileReferenceIn,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_principal),
):
    return lifecycle.record_file(ctx, artifact_id, principal, body.file_reference, body.content_type)


@app.get("/artifacts/{artifact_id}/events", response_model=list[EventOut])
def get_artifact_events(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal | None = Depends(optional_principal),
):
    return lifecycle.activity(ctx, artifact_id, principal)


# -----------------------------
# Votes
# -----------------------------
@app.post("/artifacts/{artifact_id}/votes", response_model=VoteOut, status_code=201)
def cast_vote(
    artifact_id: str,
    body: VoteIn,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_principal),
):
    return voting.cast_vote(ctx, artifact_id, principal.user_id, body.value)


@app.get("/artifacts/{artifact_id}/votes/summary", response_model=VoteSummaryOut)
def vote_summary(artifact_id: str, ctx: CurationContext = Depends(get_context)):
    return voting.get_summary(ctx, artifact_id)


@app.get("/artifacts/{artifact_id}/votes/me", response_model=MyVoteOut)
def my_vote(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_principal),
):
    return {"value": voting.get_user_vote(ctx, artifact_id, principal.user_id)}


# -----------------------------
# Flags
# -----------------------------
@app.post("/artifacts/{artifact_id}/flags", response_model=FlagOut, status_code=201)
def create_flag(
    artifact_id: str,
    body: FlagIn,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_principal),
):
    return flagging.create_flag(ctx, artifact_id, principal.user_id, body.reason, body.details)


@app.get("/artifacts/{artifact_id}/flags", response_model=list[FlagOut])
def list_flags(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_reviewer),
):
    return flagging.list_flags(ctx, artifact_id)


# -----------------------------
# Comments
# -----------------------------
@app.post("/artifacts/{artifact_id}/comments", response_model=CommentOut, status_code=201)
def create_comment(
    artifact_id: str,
    body: CommentIn,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_principal),
):
    return comments.create_comment(ctx, artifact_id, principal.user_id, body.body)


@app.get("/artifacts/{artifact_id}/comments", response_model=CommentListOut)
def list_comments(
    artifact_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: CurationContext = Depends(get_context),
):
    items, total = comments.list_comments(ctx, artifact_id, page=page, limit=limit)
    return {"items": items, "page": page, "limit": limit, "total": total}


# -----------------------------
# Expert review
# -----------------------------
@app.get("/expert/queue", response_model=QueueOut)
def expert_queue(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_reviewer),
):
    items, total = expert.get_queue(ctx, page=page, limit=limit)
    return {
        "items": [
            QueueItemOut(
                artifact=ArtifactOut.model_validate(i.artifact),
                approve=i.approve,
                reject=i.reject,
                total=i.approve + i.reject,
                flag_count=i.flag_count,
            )
            for i in items
        ],
        "page": page,
        "limit": limit,
        "total": total,
    }


@app.post("/expert/artifacts/{artifact_id}/review", response_model=DecisionOut)
def submit_review(
    artifact_id: str,
    body: ExpertReviewIn,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_reviewer),
):
    return expert.submit_decision(ctx, artifact_id, principal.user_id, body.decision, body.notes, body.checklist)


@app.get("/expert/artifacts/{artifact_id}/reviews", response_model=list[ExpertReviewOut])
def list_reviews(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_reviewer),
):
    return expert.list_reviews(ctx, artifact_id)


# -----------------------------
# Publication: pin / anchor / proof
# -----------------------------
@app.post("/content/artifacts/{artifact_id}/pin", response_model=PinOut)
def pin(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_reviewer),
):
    return pin_artifact(ctx, artifact_id, principal.user_id)


@app.post("/chain/artifacts/{artifact_id}/anchor", response_model=AnchorAttemptOut)
def anchor(
    artifact_id: str,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_reviewer),
):
    result = anchor_proof(ctx, artifact_id, principal.user_id)
    if result is None:
        return AnchorAttemptOut(anchored=False, detail="Ledger unavailable; publication pending")
    return AnchorAttemptOut(anchored=True, anchor=AnchorOut.model_validate(result))


@app.get("/chain/artifacts/{artifact_id}/proof", response_model=ProofOut)
def get_proof(artifact_id: str, ctx: CurationContext = Depends(get_context)):
    return read_proof(ctx, artifact_id).as_dict()


@app.post("/chain/verify", response_model=VerifyOut)
def verify(body: VerifyIn):
    digest = verify_proof(
        ProofFields(
            artifact_id=body.artifact_id,
            title=body.title,
            content_id=body.content_id,
            submitter_identity=body.submitter_identity,
            verified_at=body.verified_at,
            expert_identity=body.expert_identity,
        )
    )
    matches = None if body.expected_hash is None else digest.hash == body.expected_hash.lower()
    return {"canonical": digest.canonical, "hash": digest.hash, "matches": matches}


# -----------------------------
# Admin
# -----------------------------
@app.get("/admin/stats")
def admin_stats(
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_admin),
):
    return admin.get_stats(ctx)


@app.get("/admin/events", response_model=list[EventOut])
def admin_events(
    limit: int = Query(50, ge=1, le=200),
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_admin),
):
    return audit.recent(ctx.engine, limit)


@app.put("/admin/users/{user_id}/role", response_model=UserOut)
def admin_set_role(
    user_id: str,
    body: RoleIn,
    ctx: CurationContext = Depends(get_context),
    principal: Principal = Depends(require_admin),
):
    return users.set_role(ctx.engine, user_id, body.role, ctx.settings.system_wallet)
