from __future__ import annotations

from typing import TYPE_CHECKING, List, Tuple

from app import audit, repo
from app.lifecycle import require_artifact
from app.models import Comment, EventType

if TYPE_CHECKING:
    from app.context import CurationContext


def create_comment(ctx: "CurationContext", artifact_id: str, author_id: str, body: str) -> Comment:
    now = ctx.now()
    with ctx.engine.begin() as conn:
        require_artifact(conn, artifact_id)
        comment = repo.insert_comment(conn, artifact_id, author_id, body, now)
        audit.emit(conn, artifact_id, author_id, EventType.COMMENTED, {"commentId": comment.id}, now)
    return comment


def list_comments(ctx: "CurationContext", artifact_id: str, page: int = 1, limit: int = 20) -> Tuple[List[Comment], int]:
    with ctx.engine.connect() as conn:
        require_artifact(conn, artifact_id)
        return repo.list_comments(conn, artifact_id, limit=limit, offset=(page - 1) * limit)
