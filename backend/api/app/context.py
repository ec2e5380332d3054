from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from app.anchoring import Ledger, ledger_from_settings
from app.clock import Clock, utcnow
from app.config import Settings
from app.pinning import ContentStore, content_store_from_settings


@dataclass
class CurationContext:
    """Everything an operation needs besides its arguments."""

    engine: Engine
    settings: Settings
    clock: Clock = utcnow
    content_store: Optional[ContentStore] = None
    ledger: Optional[Ledger] = None

    def now(self):
        return self.clock()

    def close(self) -> None:
        """Release adapter connections. Safe to call more than once."""
        for adapter in (self.content_store, self.ledger):
            close = getattr(adapter, "close", None)
            if close is not None:
                close()


def build_context(engine: Engine, settings: Settings) -> CurationContext:
    return CurationContext(
        engine=engine,
        settings=settings,
        content_store=content_store_from_settings(settings),
        ledger=ledger_from_settings(settings),
    )
