"""Dependency helpers for the ledger service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import cast

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session

from .orchestrator import LedgerSyncOrchestrator
from .repository import InventoryLedgerRepository
from .services import LedgerService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> InventoryLedgerRepository:
    return InventoryLedgerRepository(session)


def get_ledger_service(
    repository: InventoryLedgerRepository = Depends(get_repository),
) -> LedgerService:
    return LedgerService(repository)


def get_orchestrator(request: Request) -> LedgerSyncOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger sync is not configured",
        )
    return cast(LedgerSyncOrchestrator, orchestrator)
