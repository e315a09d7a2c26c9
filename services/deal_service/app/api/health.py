import logging

from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text

router = APIRouter(prefix="/health", tags=["health"])

_LOGGER = logging.getLogger(__name__)


@router.get("", status_code=status.HTTP_200_OK)
async def healthcheck(request: Request, response: Response) -> dict[str, str]:
    """Report service health, including whether the deal store answers queries."""

    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        return {"status": "ok"}
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        _LOGGER.exception("Deal store health check failed")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "degraded"}
    return {"status": "ok"}
