from fastapi import APIRouter, BackgroundTasks, Depends

from ..bookings import submit_viewing_request
from ..context import AppContext, get_context
from ..schemas import SimpleResponse, ViewingRequest

router = APIRouter(tags=["viewings"])


@router.post("/schedule-viewing", response_model=SimpleResponse)
async def schedule_viewing(
    request: ViewingRequest,
    background_tasks: BackgroundTasks,
    ctx: AppContext = Depends(get_context),
) -> SimpleResponse:
    notifications = submit_viewing_request(ctx.settings, request)
    background_tasks.add_task(ctx.notifier.dispatch_all, notifications)
    return SimpleResponse(message="Viewing request submitted successfully")
