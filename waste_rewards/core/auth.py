import logging
from typing import Optional

from fastapi import Depends, Header

from waste_rewards.core.database import Services, get_services
from waste_rewards.core.errors import AuthenticationError
from waste_rewards.models.profile_model import Profile

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    """
    Extracts the session token from an ``Authorization: Bearer`` header.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Could not validate session")
    return authorization.split(" ", 1)[1].strip()


async def get_current_user(
    token: str = Depends(bearer_token),
    services: Services = Depends(get_services),
) -> str:
    """
    Validates the anonymous session token and returns the user id.
    """
    return await services.identity.verify(token)


async def get_current_profile(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Profile:
    """
    Profile-gated dependency: every report action requires a finished setup.
    """
    return await services.profiles.require(user_id)


async def get_optional_profile(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Optional[Profile]:
    return (await services.profiles.load(user_id)).profile
