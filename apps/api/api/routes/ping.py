import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from apps.api.dependencies.auth import CurrentUser, Role, role_required
from apps.api.dependencies.services import DatabaseDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/secure",
    summary="RBAC protected endpoint",
    dependencies=[Depends(role_required(Role.ADMIN, Role.AGENT))],
)
async def secure_ping(user: CurrentUser) -> dict[str, str]:
    return {"status": "ok", "user": user.username}


@router.get("/ready", summary="Readiness check against the database")
async def ready(database: DatabaseDep) -> dict[str, str]:
    try:
        await database.ping()
    except (OSError, SQLAlchemyError) as exc:
        logger.warning("Readiness check failed: %s", exc)
        raise HTTPException(status_code=503, detail="Database is not reachable") from exc
    return {"status": "ready"}
