from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..context import AppContext, get_context, get_session
from ..maintenance import create_maintenance_request, list_maintenance_requests
from ..models import MaintenanceStatus
from ..schemas import Envelope, MaintenanceRequestCreate, MaintenanceRequestOut

router = APIRouter(prefix="/maintenance-requests", tags=["maintenance"])


@router.post("", response_model=Envelope[MaintenanceRequestOut])
async def submit_maintenance_request(
    request: MaintenanceRequestCreate,
    background_tasks: BackgroundTasks,
    ctx: AppContext = Depends(get_context),
) -> Envelope[MaintenanceRequestOut]:
    maintenance, notifications = await create_maintenance_request(ctx, request)
    background_tasks.add_task(ctx.notifier.dispatch_all, notifications)

    return Envelope[MaintenanceRequestOut](
        message="Maintenance request created successfully",
        data=MaintenanceRequestOut.model_validate(maintenance),
    )


@router.get("", response_model=Envelope[list[MaintenanceRequestOut]])
async def get_maintenance_requests(
    status: Optional[MaintenanceStatus] = None,
    apartment: Optional[str] = Query(default=None, max_length=64),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> Envelope[list[MaintenanceRequestOut]]:
    requests = await list_maintenance_requests(
        session,
        status=status.value if status else None,
        property_id=apartment,
        limit=limit,
    )
    return Envelope[list[MaintenanceRequestOut]](
        data=[MaintenanceRequestOut.model_validate(item) for item in requests]
    )
