from datetime import datetime, timezone

from fastapi import APIRouter, status

from app.core.eth_auth import iso_timestamp
from app.schemas.my_base_model import CustomBaseModel

router = APIRouter()


class HealthCheck(CustomBaseModel):
    status: str = "ok"
    timestamp: str = ""


@router.get(
    "/health",
    tags=["Health"],
    response_model=HealthCheck,
    status_code=status.HTTP_200_OK,
)
def get_health() -> HealthCheck:
    return HealthCheck(status="ok", timestamp=iso_timestamp(datetime.now(timezone.utc)))
