from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from app import repo
from app.tables import comments, expert_reviews, flags, users, votes

if TYPE_CHECKING:
    from app.context import CurationContext


def get_stats(ctx: "CurationContext") -> Dict[str, Any]:
    with ctx.engine.connect() as conn:
        by_status = repo.count_artifacts_by_status(conn)
        pinned, anchored = repo.count_published(conn)
        return {
            "users": {"total": repo.count_rows(conn, users)},
            "artifacts": {
                "total": sum(by_status.values()),
                "by_status": by_status,
                "pinned": pinned,
                "anchored": anchored,
            },
            "activity": {
                "votes": repo.count_rows(conn, votes),
                "comments": repo.count_rows(conn, comments),
                "flags": repo.count_rows(conn, flags),
                "expert_reviews": repo.count_rows(conn, expert_reviews),
            },
        }
