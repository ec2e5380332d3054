from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from app import repo
from app.clock import Clock, utcnow
from app.errors import Forbidden, NotFound, PreconditionFailed
from app.models import Principal, Role, User

logger = logging.getLogger(__name__)


def get_or_create_user(engine: Engine, wallet: str, clock: Clock = utcnow, role: Role = Role.MEMBER) -> User:
    """
    Upsert by wallet. The login flow that proves wallet ownership lives
    outside this service; this only maps a wallet to a stable user id.
    """
    with engine.begin() as conn:
        existing = repo.get_user_by_wallet(conn, wallet)
        if existing:
            return existing
    try:
        with engine.begin() as conn:
            return repo.insert_user(conn, wallet, role, clock())
    except IntegrityError:
        # Lost a concurrent insert for the same wallet.
        with engine.begin() as conn:
            return repo.get_user_by_wallet(conn, wallet)


def ensure_system_user(engine: Engine, wallet: str = "SYSTEM", clock: Clock = utcnow) -> str:
    """
    Resolve the reserved system principal used for batch-driven events.
    Call once at process start and pass the id along.
    """
    user = get_or_create_user(engine, wallet, clock, role=Role.ADMIN)
    logger.info("System principal resolved: %s", user.id)
    return user.id


def resolve_principal(engine: Engine, user_id: Optional[str]) -> Principal:
    if not user_id:
        raise NotFound("Unknown user")
    with engine.connect() as conn:
        user = repo.get_user(conn, user_id.strip())
    if not user:
        raise NotFound("Unknown user")
    return Principal(user_id=user.id, role=user.role)


def require_role(principal: Principal, *roles: Role) -> None:
    if principal.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise Forbidden(f"Requires one of: {allowed}")


def set_role(engine: Engine, user_id: str, role: Role, system_wallet: str = "SYSTEM") -> User:
    with engine.begin() as conn:
        user = repo.get_user(conn, user_id)
        if not user:
            raise NotFound("User not found")
        if user.wallet == system_wallet:
            raise PreconditionFailed("Cannot modify SYSTEM user")
        repo.set_user_role(conn, user_id, role)
        return repo.get_user(conn, user_id)
