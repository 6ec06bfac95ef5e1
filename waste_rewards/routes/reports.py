import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, File, Form, Query, UploadFile, WebSocket
from pydantic import BaseModel, ValidationError

from waste_rewards.core.auth import get_current_profile, get_optional_profile
from waste_rewards.core.database import Services, get_services
from waste_rewards.core.errors import AuthenticationError, ValidationFailed
from waste_rewards.core.permissions import CREATE, SUBMIT_PROOF, PermissionChecker
from waste_rewards.models.notification_model import Notification
from waste_rewards.models.profile_model import Profile
from waste_rewards.models.report_model import Location, RejectRequest, ReportStatus, ReportView, RewardBreakdown
from waste_rewards.services import notification_service as notes
from waste_rewards.services.notification_service import run_with_notification
from waste_rewards.utils.images import resize_image_to_data_url
from waste_rewards.utils.websocket import POLICY_VIOLATION, stream_to_websocket

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Models ---
class ReportActionResponse(BaseModel):
    report: ReportView
    notification: Notification


class ApprovalResponse(ReportActionResponse):
    rewards: RewardBreakdown


class ReportListResponse(BaseModel):
    count: int
    reports: List[ReportView]


# --- Helpers ---
def _location(lat: float, lon: float) -> Location:
    try:
        return Location(lat=lat, lon=lon)
    except ValidationError as e:
        raise ValidationFailed(f"Invalid location: lat={lat}, lon={lon}") from e


async def _image_data_url(services: Services, image: Optional[UploadFile]) -> str:
    content = await image.read() if image is not None else b""
    settings = services.settings
    return await asyncio.to_thread(resize_image_to_data_url, content, settings.image_max_width, settings.image_quality)


def _filters(mine: Optional[str], profile: Profile) -> dict:
    if mine == "reported":
        return {"reporter_id": profile.userId}
    if mine == "claimed":
        return {"picker_id": profile.userId}
    return {}


# --- Endpoints ---
@router.post("", response_model=ReportActionResponse, status_code=201)
async def create_report(
    image: Optional[UploadFile] = File(None),
    lat: float = Form(...),
    lon: float = Form(...),
    profile: Optional[Profile] = Depends(get_optional_profile),
    services: Services = Depends(get_services),
):
    """
    Report a waste location. The photo is reduced and stored inline; the
    classification and reward are advisory and never block submission.
    """

    async def op():
        location = _location(lat, lon)
        # Check the role before paying for image work
        PermissionChecker.authorize(CREATE, profile)
        image_url = await _image_data_url(services, image)
        return await services.engine.create_report(profile, image_url, location)

    report, note = await run_with_notification(None, notes.SUBMISSION_FAILED, op, notes.report_submitted)
    return ReportActionResponse(report=services.engine.view_for(report, profile), notification=note)


@router.get("", response_model=ReportListResponse)
async def list_reports(
    status: Optional[ReportStatus] = Query(None),
    mine: Optional[str] = Query(None, pattern="^(reported|claimed)$"),
    profile: Profile = Depends(get_current_profile),
    services: Services = Depends(get_services),
):
    reports = await services.engine.list_reports(status=status, **_filters(mine, profile))
    views = [services.engine.view_for(r, profile) for r in reports]
    return ReportListResponse(count=len(views), reports=views)


@router.get("/{report_id}", response_model=ReportView)
async def get_report(
    report_id: str,
    profile: Profile = Depends(get_current_profile),
    services: Services = Depends(get_services),
):
    return services.engine.view_for(await services.engine.get_report(report_id), profile)


@router.post("/{report_id}/claim", response_model=ReportActionResponse)
async def claim_report(
    report_id: str,
    profile: Optional[Profile] = Depends(get_optional_profile),
    services: Services = Depends(get_services),
):
    report, note = await run_with_notification(
        None,
        notes.CLAIM_FAILED,
        lambda: services.engine.claim_report(profile, report_id),
        notes.report_claimed,
    )
    return ReportActionResponse(report=services.engine.view_for(report, profile), notification=note)


@router.post("/{report_id}/proof", response_model=ReportActionResponse)
async def submit_proof(
    report_id: str,
    image: Optional[UploadFile] = File(None),
    lat: float = Form(...),
    lon: float = Form(...),
    profile: Optional[Profile] = Depends(get_optional_profile),
    services: Services = Depends(get_services),
):
    async def op():
        location = _location(lat, lon)
        # Check the transition before paying for image work
        PermissionChecker.authorize(SUBMIT_PROOF, profile, await services.engine.get_report(report_id))
        image_url = await _image_data_url(services, image) if image is not None else None
        return await services.engine.submit_proof(profile, report_id, image_url, location)

    report, note = await run_with_notification(None, notes.SUBMISSION_FAILED, op, notes.proof_submitted)
    return ReportActionResponse(report=services.engine.view_for(report, profile), notification=note)


@router.post("/{report_id}/approve", response_model=ApprovalResponse)
async def approve_report(
    report_id: str,
    profile: Optional[Profile] = Depends(get_optional_profile),
    services: Services = Depends(get_services),
):
    settlement, note = await run_with_notification(
        None,
        notes.APPROVAL_FAILED,
        lambda: services.engine.approve_report(profile, report_id),
        notes.report_approved,
    )
    return ApprovalResponse(
        report=services.engine.view_for(settlement.report, profile),
        rewards=settlement.rewards,
        notification=note,
    )


@router.post("/{report_id}/reject", response_model=ReportActionResponse)
async def reject_report(
    report_id: str,
    request: Optional[RejectRequest] = Body(None),
    profile: Optional[Profile] = Depends(get_optional_profile),
    services: Services = Depends(get_services),
):
    message = request.message if request is not None else None
    report, note = await run_with_notification(
        None,
        notes.APPROVAL_FAILED,
        lambda: services.engine.reject_report(profile, report_id, message),
        notes.report_rejected,
    )
    return ReportActionResponse(report=services.engine.view_for(report, profile), notification=note)


@router.websocket("/watch")
async def watch_reports(
    websocket: WebSocket,
    token: str = Query(""),
    status: Optional[ReportStatus] = Query(None),
    services: Services = Depends(get_services),
):
    """
    Streams the sorted report list, with the caller's actions, after every change.
    """
    try:
        user_id = await services.identity.verify(token)
    except AuthenticationError as e:
        logger.warning(f"Report watch refused: {e.message}")
        await websocket.close(code=POLICY_VIOLATION)
        return

    profile = (await services.profiles.load(user_id)).profile
    if profile is None:
        logger.info(f"Report watch refused for {user_id}: profile not set up")
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()

    def encode(reports):
        views = [services.engine.view_for(r, profile) for r in reports]
        return ReportListResponse(count=len(views), reports=views).model_dump(mode="json")

    await stream_to_websocket(websocket, services.engine.watch_reports(status=status), encode)
