import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket
from pydantic import BaseModel

from waste_rewards.core.auth import get_current_user
from waste_rewards.core.database import Services, get_services
from waste_rewards.core.errors import AuthenticationError
from waste_rewards.models.notification_model import Notification
from waste_rewards.models.profile_model import ROLE_LABELS, Profile, ProfileLookup, ProfileSetupRequest, ProfileState
from waste_rewards.services import notification_service as notes
from waste_rewards.services.notification_service import run_with_notification
from waste_rewards.utils.websocket import POLICY_VIOLATION, stream_to_websocket

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Models ---
class ProfileStatusResponse(BaseModel):
    state: ProfileState
    view: str
    profile: Optional[Profile] = None
    role_label: Optional[str] = None


class ProfileCreatedResponse(BaseModel):
    profile: Profile
    notification: Notification


def _status(lookup: ProfileLookup) -> ProfileStatusResponse:
    profile = lookup.profile
    return ProfileStatusResponse(
        state=lookup.state,
        view=lookup.view,
        profile=profile,
        role_label=ROLE_LABELS[profile.role] if profile else None,
    )


# --- Endpoints ---
@router.get("/me", response_model=ProfileStatusResponse)
async def get_my_profile(user_id: str = Depends(get_current_user), services: Services = Depends(get_services)):
    """
    Where the caller belongs: the dashboard when a profile exists, setup otherwise.
    """
    return _status(await services.profiles.load(user_id))


@router.post("/me", response_model=ProfileCreatedResponse, status_code=201)
async def create_my_profile(
    request: ProfileSetupRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    profile, note = await run_with_notification(
        None,
        notes.SETUP_FAILED,
        lambda: services.profiles.create_profile(user_id, request),
        notes.profile_created,
    )
    return ProfileCreatedResponse(profile=profile, notification=note)


@router.websocket("/me/watch")
async def watch_my_profile(
    websocket: WebSocket,
    token: str = Query(""),
    services: Services = Depends(get_services),
):
    try:
        user_id = await services.identity.verify(token)
    except AuthenticationError as e:
        logger.warning(f"Profile watch refused: {e.message}")
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()
    await stream_to_websocket(
        websocket,
        services.profiles.watch(user_id),
        lambda lookup: _status(lookup).model_dump(mode="json"),
    )
