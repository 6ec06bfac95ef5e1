import logging
from typing import AsyncIterator

from pydantic import ValidationError

from waste_rewards.core.errors import PermissionDenied, ProfileAlreadyExists, ProfileRequired, ValidationFailed
from waste_rewards.models.profile_model import Profile, ProfileLookup, ProfileSetupRequest, ProfileState
from waste_rewards.services.document_store import PROFILES, DocumentSnapshot, DocumentStore, Transaction
from waste_rewards.utils.helpers import utc_now

logger = logging.getLogger(__name__)


def lookup_from_snapshot(snap: DocumentSnapshot) -> ProfileLookup:
    if not snap.exists:
        return ProfileLookup(state=ProfileState.MISSING)
    try:
        return ProfileLookup(state=ProfileState.READY, profile=Profile.from_document(snap.id, snap.data))
    except ValidationError as e:
        logger.warning(f"⚠️ Profile {snap.id} is malformed ({e.error_count()} errors); routing to setup")
        return ProfileLookup(state=ProfileState.MISSING)


class ProfileService:
    """Profile bootstrap: tells missing, denied and ready profiles apart, and creates them once."""

    def __init__(self, store: DocumentStore, *, max_attempts: int = 5):
        self.store = store
        self.max_attempts = max_attempts

    async def load(self, user_id: str) -> ProfileLookup:
        try:
            snap = await self.store.get(PROFILES, user_id)
        except PermissionDenied:
            logger.warning(f"Profile read blocked for {user_id}: user likely has no profile yet.")
            return ProfileLookup(state=ProfileState.DENIED)
        return lookup_from_snapshot(snap)

    async def require(self, user_id: str) -> Profile:
        lookup = await self.load(user_id)
        if lookup.profile is None:
            raise ProfileRequired("Please finish setup and wait for profile to load.")
        return lookup.profile

    async def create_profile(self, user_id: str, request: ProfileSetupRequest) -> Profile:
        if not request.name:
            raise ValidationFailed("Enter name.", title="Missing")

        data = {
            "name": request.name,
            "role": request.role.value,
            "totalReporterPoints": 0,
            "totalPickerPoints": 0,
            "dateJoined": utc_now(),
            "publicUserId": user_id,
        }

        async def create(tx: Transaction) -> None:
            existing = await tx.get(PROFILES, user_id)
            if existing.exists:
                raise ProfileAlreadyExists("Profile already exists; name and role are set once.")
            tx.set(PROFILES, user_id, data)

        await self.store.run_transaction(create, max_attempts=self.max_attempts)
        logger.info(f"🆕 Profile created for {user_id}: {request.name} ({request.role.value})")
        return Profile.from_document(user_id, data)

    async def watch(self, user_id: str) -> AsyncIterator[ProfileLookup]:
        """Profile lookups for ``user_id``; a read denial is yielded once and ends the stream."""
        stream = self.store.watch_document(PROFILES, user_id)
        try:
            async for snap in stream:
                yield lookup_from_snapshot(snap)
        except PermissionDenied:
            logger.warning(f"Profile watch blocked for {user_id}")
            yield ProfileLookup(state=ProfileState.DENIED)
        finally:
            await stream.aclose()
