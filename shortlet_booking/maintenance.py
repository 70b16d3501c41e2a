"""
Maintenance requests raised by tenants and guests.

A request is stored with its first audit entry in one commit; the admin
record and the requester's confirmation email go out afterwards through the
notification queue.
"""

from typing import Optional

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .context import AppContext
from .models import MaintenanceRequest, MaintenanceStatus
from .notifications import NotificationKind, NotificationQueue
from .observability import MAINTENANCE_REQUESTS_CREATED
from .schemas import MaintenanceRequestCreate

logger = structlog.get_logger(__name__)


async def create_maintenance_request(
    ctx: AppContext,
    request: MaintenanceRequestCreate,
) -> tuple[MaintenanceRequest, NotificationQueue]:
    requester = request.requester

    async with ctx.session_factory() as session:
        maintenance = MaintenanceRequest(
            property_id=request.apartment,
            property_title=request.apartment_title,
            property_location=request.apartment_location,
            requester_type=requester.type.value,
            requester_name=requester.name,
            requester_email=requester.email,
            requester_phone=requester.phone,
            tenant_id=requester.tenant_id,
            issue_category=request.issue_category.value,
            priority=request.priority.value,
            title=request.title,
            description=request.description,
            access_details=request.access_details.model_dump() if request.access_details else None,
            status=MaintenanceStatus.PENDING.value,
            communications=[],
        )
        maintenance.add_communication(
            "Note",
            f"Maintenance request submitted by {requester.type.value.lower()}: {requester.name}",
        )
        session.add(maintenance)
        await session.commit()

    MAINTENANCE_REQUESTS_CREATED.labels(priority=maintenance.priority).inc()
    logger.info(
        "Maintenance request created",
        maintenance_request_id=str(maintenance.id),
        property_id=maintenance.property_id,
        category=maintenance.issue_category,
        priority=maintenance.priority,
    )

    queue = NotificationQueue()
    queue.add(
        NotificationKind.MAINTENANCE_REQUEST,
        maintenance_request_id=str(maintenance.id),
        guest_name=maintenance.requester_name,
        email=maintenance.requester_email,
        phone=maintenance.requester_phone,
        property_id=maintenance.property_id,
        property_title=maintenance.property_title,
        property_location=maintenance.property_location,
        issue_category=maintenance.issue_category,
        priority=maintenance.priority,
        title=maintenance.title,
        description=maintenance.description,
    )
    return maintenance, queue


async def list_maintenance_requests(
    session: AsyncSession,
    status: Optional[str] = None,
    property_id: Optional[str] = None,
    limit: int = 20,
) -> list[MaintenanceRequest]:
    """Newest first, optionally filtered by status and property."""
    filters = []
    if status:
        filters.append(MaintenanceRequest.status == status)
    if property_id:
        filters.append(MaintenanceRequest.property_id == property_id)

    query = select(MaintenanceRequest)
    if filters:
        query = query.where(and_(*filters))
    query = query.order_by(MaintenanceRequest.created_at.desc()).limit(limit)

    result = await session.execute(query)
    return list(result.scalars())
