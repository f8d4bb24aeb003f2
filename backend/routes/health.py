from fastapi import APIRouter, Request, status

from core.database import get_db_health
from core.utils.response import Response

router = APIRouter(prefix="/v1/health", tags=["Health"])


@router.get("/")
async def health(request: Request):
    """Liveness plus database reachability and open notification batches."""
    database = await get_db_health()
    notification_service = getattr(request.app.state, "notification_service", None)
    data = {
        "database": database,
        "notification_batches": notification_service.get_batch_status() if notification_service else [],
    }
    if database.get("status") != "healthy":
        return Response(success=False, data=data, message="Database unavailable",
                        status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response.success(data=data, message="Healthy")
