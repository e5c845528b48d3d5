"""System category endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from app.core.config import get_settings
from app.core.db import ping_database
from app.schemas import StorageHealthResponse
from app.services.trials import count_trials

router = APIRouter(prefix="/system", tags=["system"])


@router.get(
    "/storage",
    response_model=StorageHealthResponse,
    summary="Check the storage backend and database connection",
)
def getStorageHealth() -> StorageHealthResponse:
    """Return the active storage backend and whether it is reachable."""

    settings = get_settings()
    if not settings.use_database_storage:
        return StorageHealthResponse(
            backend="file",
            connected=True,
            message=f"File backend in use (path: {settings.trial_storage_path}).",
            total_trials=count_trials(),
        )

    try:
        _, total = ping_database()
    except Exception as exc:  # noqa: BLE001  # surface the message to the client
        raise HTTPException(
            status_code=503,
            detail={"message": f"Database connection failed: {exc}"},
        ) from exc

    return StorageHealthResponse(
        backend="mariadb",
        connected=True,
        message=(
            f"Database connected (host={settings.mariadb_host}:{settings.mariadb_port}, "
            f"db={settings.mariadb_db_name})."
        ),
        total_trials=total,
    )


__all__ = ["router"]
