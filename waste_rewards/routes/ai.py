import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from waste_rewards.core.auth import get_current_profile, get_current_user
from waste_rewards.core.database import Services, get_services
from waste_rewards.core.errors import TransitionDenied
from waste_rewards.models.profile_model import Profile, Role
from waste_rewards.models.report_model import GuidanceRequest, ReportStatus

logger = logging.getLogger(__name__)

router = APIRouter()


class AdviceResponse(BaseModel):
    text: str


@router.post("/ai/gemini")
async def gemini_proxy(payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    """
    Forwards a generateContent payload with the server-held key; the key never
    reaches clients. Upstream status and JSON are passed through.
    """
    status_code, body = await services.gemini_proxy.forward(payload)
    return JSONResponse(status_code=status_code, content=body)


@router.post("/ai/guidance", response_model=AdviceResponse)
async def handling_guide(
    request: GuidanceRequest,
    _user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    text = await services.advisory.handling_guide(request.classification, request.priority)
    return AdviceResponse(text=text)


@router.post("/ai/reports/{report_id}/summary", response_model=AdviceResponse)
async def review_summary(
    report_id: str,
    profile: Profile = Depends(get_current_profile),
    services: Services = Depends(get_services),
):
    """
    Review assistant for monitors: only offered while a report awaits review.
    """
    if profile.role != Role.MONITOR:
        raise TransitionDenied("Only a monitor can request a review summary.")
    report = await services.engine.get_report(report_id)
    if report.status != ReportStatus.PENDING_REVIEW:
        raise TransitionDenied(f"Summaries are only available for reports pending review, not {report.status.value}.")
    return AdviceResponse(text=await services.advisory.review_summary(report))
