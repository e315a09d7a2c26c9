"""Dependency wiring for the deal service."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import ServiceSettings, lifespan_session

from .cache import DealDisplayCache
from .repository import DealRepository
from .services import DealService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an AsyncSession for the current request lifecycle."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> DealRepository:
    """Provide a repository bound to the active session."""

    return DealRepository(session)


def get_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def get_cache(request: Request) -> DealDisplayCache | None:
    return getattr(request.app.state, "deal_cache", None)


def get_service(
    repository: DealRepository = Depends(get_repository),
    cache: DealDisplayCache | None = Depends(get_cache),
) -> DealService:
    """Provide a deal service sharing the request's repository and the display cache."""

    return DealService(repository, cache=cache)
