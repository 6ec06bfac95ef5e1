import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from waste_rewards.core.auth import bearer_token, get_current_user
from waste_rewards.core.database import Services, get_services
from waste_rewards.models.notification_model import Notification
from waste_rewards.services import notification_service as notes
from waste_rewards.services.notification_service import run_with_notification

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Models ---
class SessionResponse(BaseModel):
    user_id: str
    token: str
    token_type: str = "bearer"
    expires_at: datetime


class SignOutResponse(BaseModel):
    notification: Notification


class MeResponse(BaseModel):
    user_id: str


# --- Endpoints ---
@router.post("/anonymous", response_model=SessionResponse)
async def sign_in_anonymously(services: Services = Depends(get_services)):
    """
    Start an anonymous session. The returned token identifies a stable user id.
    """
    session = await services.identity.sign_in_anonymously()
    return SessionResponse(user_id=session.user_id, token=session.token, expires_at=session.expires_at)


@router.post("/signout", response_model=SignOutResponse)
async def sign_out(token: str = Depends(bearer_token), services: Services = Depends(get_services)):
    _, note = await run_with_notification(
        None, notes.LOGOUT_FAILED, lambda: services.identity.sign_out(token), notes.signed_out
    )
    return SignOutResponse(notification=note)


@router.get("/me", response_model=MeResponse)
async def who_am_i(user_id: str = Depends(get_current_user)):
    return MeResponse(user_id=user_id)
