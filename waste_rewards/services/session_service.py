"""
In-process client session.

Drives the same flow a front end does: sign in anonymously, follow identity
changes, watch the signed-in user's profile to route between setup and the
dashboard, and watch the report list only while a profile is loaded. Every
action goes through the lifecycle engine and yields one notification on the
session's channel.

State is only ever replaced from store snapshots; actions never patch it
optimistically.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from waste_rewards.core.errors import AuthenticationError
from waste_rewards.models.notification_model import Notification, NotificationType
from waste_rewards.models.profile_model import Profile, ProfileLookup, ProfileSetupRequest, ProfileState, Role
from waste_rewards.models.report_model import Location, Report
from waste_rewards.services import notification_service as notes
from waste_rewards.services.identity_service import IdentityService
from waste_rewards.services.notification_service import NotificationChannel, run_with_notification
from waste_rewards.services.profile_service import ProfileService
from waste_rewards.services.report_lifecycle import ReportLifecycleEngine, Settlement
from waste_rewards.utils.images import resize_image_to_data_url

logger = logging.getLogger(__name__)


class AppSession:
    def __init__(
        self,
        identity: IdentityService,
        profiles: ProfileService,
        engine: ReportLifecycleEngine,
        notifications: Optional[NotificationChannel] = None,
        *,
        image_max_width: int = 800,
        image_quality: int = 70,
    ):
        self.identity = identity
        self.profiles = profiles
        self.engine = engine
        self.notifications = notifications or NotificationChannel()
        self.image_max_width = image_max_width
        self.image_quality = image_quality

        self.is_system_ready = False
        self.user_id: Optional[str] = None
        self.token: Optional[str] = None
        self.lookup = ProfileLookup(state=ProfileState.LOADING)
        self.reports: List[Report] = []

        self._unsubscribe_auth: Optional[Callable[[], None]] = None
        self._profile_task: Optional[asyncio.Task] = None
        self._reports_task: Optional[asyncio.Task] = None
        self._retired: List[asyncio.Task] = []
        self._changed = asyncio.Event()

    # ---------------------------
    # Derived state
    # ---------------------------
    @property
    def profile(self) -> Optional[Profile]:
        return self.lookup.profile

    @property
    def view(self) -> str:
        if self.user_id is None:
            return "setup"
        return self.lookup.view

    def _touch(self) -> None:
        self._changed.set()

    async def wait_until(self, predicate: Callable[["AppSession"], bool], timeout: float = 2.0) -> None:
        """Wait for a state change that satisfies ``predicate``."""

        async def _wait() -> None:
            while not predicate(self):
                self._changed.clear()
                await self._changed.wait()

        await asyncio.wait_for(_wait(), timeout=timeout)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        """Follow identity changes and sign in. Safe to call again to retry a failed sign-in."""
        if self._unsubscribe_auth is None:
            self._unsubscribe_auth = self.identity.on_auth_state_changed(self._on_auth_state_changed)
        await self.sign_in()

    async def sign_in(self) -> bool:
        try:
            session = await self.identity.sign_in_anonymously()
        except Exception as e:
            # Degraded: not ready until sign-in is retried
            logger.warning(f"Anonymous sign-in failed (check auth settings): {e}")
            self.is_system_ready = False
            self.notifications.publish(
                Notification(
                    title="System Error",
                    message="Failed to initialize/authenticate session.",
                    type=NotificationType.ERROR,
                )
            )
            self._touch()
            return False
        self.token = session.token
        return True

    async def close(self) -> None:
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
        await self._stop_profile_watch()
        await self._stop_reports_watch()
        retired, self._retired = self._retired, []
        for task in retired:
            await self._cancel(task)

    def _retire(self, task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done():
            task.cancel()
            self._retired.append(task)

    def _on_auth_state_changed(self, user_id: Optional[str]) -> None:
        self.user_id = user_id
        self.is_system_ready = True
        # Cancelled here, awaited in close() so their watches release
        self._retire(self._profile_task)
        self._retire(self._reports_task)
        self._profile_task = None
        self._reports_task = None
        self._retired = [t for t in self._retired if not t.done()]
        self.reports = []
        if user_id is None:
            self.token = None
            self.lookup = ProfileLookup(state=ProfileState.MISSING)
        else:
            self.lookup = ProfileLookup(state=ProfileState.LOADING)
            self._profile_task = asyncio.get_running_loop().create_task(self._watch_profile(user_id))
        self._touch()

    async def _watch_profile(self, user_id: str) -> None:
        async for lookup in self.profiles.watch(user_id):
            self.lookup = lookup
            if lookup.state == ProfileState.READY:
                self._ensure_reports_watch()
            else:
                await self._stop_reports_watch()
                self.reports = []
            self._touch()

    async def _watch_reports(self) -> None:
        async for reports in self.engine.watch_reports():
            self.reports = reports
            self._touch()

    def _ensure_reports_watch(self) -> None:
        if self._reports_task is None or self._reports_task.done():
            self._reports_task = asyncio.get_running_loop().create_task(self._watch_reports())

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _stop_profile_watch(self) -> None:
        task, self._profile_task = self._profile_task, None
        await self._cancel(task)

    async def _stop_reports_watch(self) -> None:
        task, self._reports_task = self._reports_task, None
        await self._cancel(task)

    # ---------------------------
    # Actions
    # ---------------------------
    async def _image(self, content: Optional[bytes]) -> str:
        return await asyncio.to_thread(
            resize_image_to_data_url, content or b"", self.image_max_width, self.image_quality
        )

    async def setup_profile(self, name: str, role: Role) -> Profile:
        async def op() -> Profile:
            if self.user_id is None:
                raise AuthenticationError("Not signed in yet.")
            return await self.profiles.create_profile(self.user_id, ProfileSetupRequest(name=name, role=role))

        profile, _ = await run_with_notification(self.notifications, notes.SETUP_FAILED, op, notes.profile_created)
        return profile

    async def submit_report(self, image: Optional[bytes], location: Location) -> Report:
        async def op() -> Report:
            return await self.engine.create_report(self.profile, await self._image(image), location)

        report, _ = await run_with_notification(
            self.notifications, notes.SUBMISSION_FAILED, op, notes.report_submitted
        )
        return report

    async def claim_report(self, report_id: str) -> Report:
        report, _ = await run_with_notification(
            self.notifications,
            notes.CLAIM_FAILED,
            lambda: self.engine.claim_report(self.profile, report_id),
            notes.report_claimed,
        )
        return report

    async def submit_proof(self, report_id: str, image: Optional[bytes], location: Location) -> Report:
        async def op() -> Report:
            image_url = await self._image(image) if image else None
            return await self.engine.submit_proof(self.profile, report_id, image_url, location)

        report, _ = await run_with_notification(
            self.notifications, notes.SUBMISSION_FAILED, op, notes.proof_submitted
        )
        return report

    async def approve_report(self, report_id: str) -> Settlement:
        settlement, _ = await run_with_notification(
            self.notifications,
            notes.APPROVAL_FAILED,
            lambda: self.engine.approve_report(self.profile, report_id),
            notes.report_approved,
        )
        return settlement

    async def reject_report(self, report_id: str, message: Optional[str] = None) -> Report:
        report, _ = await run_with_notification(
            self.notifications,
            notes.APPROVAL_FAILED,
            lambda: self.engine.reject_report(self.profile, report_id, message),
            notes.report_rejected,
        )
        return report

    async def sign_out(self) -> None:
        async def op() -> None:
            if self.token is None:
                raise AuthenticationError("Not signed in.")
            await self.identity.sign_out(self.token)

        await run_with_notification(self.notifications, notes.LOGOUT_FAILED, op, notes.signed_out)
