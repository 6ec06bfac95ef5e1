"""
Uniform notification channel.

Each user-triggered operation produces exactly one Notification: the success
message when it completes, or one error notification carrying the failure
cause. Errors are re-raised after notifying, with the notification attached
as ``error.notification`` so the HTTP layer returns the same one.
"""

import logging
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional, Tuple, TypeVar

from waste_rewards.core.errors import WasteRewardsError
from waste_rewards.models.notification_model import Notification, NotificationType

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[Notification], None]


def notification_for_error(error: Exception, failure_title: Optional[str] = None) -> Notification:
    """Error notification for a failed operation.

    A title given to the error itself ("Missing", "Error") wins over the
    operation's failure title, which wins over the error class default.
    """
    if isinstance(error, WasteRewardsError):
        title = error.__dict__.get("title") or failure_title or error.title
        message = error.message
    else:
        title = failure_title or "Request Failed"
        message = str(error) or error.__class__.__name__
    return Notification(title=title, message=message, type=NotificationType.ERROR)


class NotificationChannel:
    def __init__(self, history_size: int = 50):
        self._listeners: List[Listener] = []
        self.history: Deque[Notification] = deque(maxlen=history_size)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, notification: Notification) -> Notification:
        self.history.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")
        return notification

    @property
    def last(self) -> Optional[Notification]:
        return self.history[-1] if self.history else None


async def run_with_notification(
    channel: Optional[NotificationChannel],
    failure_title: str,
    operation: Callable[[], Awaitable[T]],
    on_success: Callable[[T], Notification],
) -> Tuple[T, Notification]:
    """Run ``operation`` and publish exactly one notification for its outcome."""
    try:
        result = await operation()
    except Exception as e:
        note = notification_for_error(e, failure_title)
        logger.warning(f"{failure_title}: {note.message}")
        e.notification = note
        if channel is not None:
            channel.publish(note)
        raise
    note = on_success(result)
    if channel is not None:
        channel.publish(note)
    return result, note


# ---------------------------
# Per-action messages
# ---------------------------
SETUP_FAILED = "Setup Failed"
SUBMISSION_FAILED = "Submission Failed"
CLAIM_FAILED = "Claim Failed"
APPROVAL_FAILED = "Approval Failed"
LOGOUT_FAILED = "Logout Failed"


def profile_created(_profile) -> Notification:
    return Notification(title="Setup Success!", message="Profile created.", type=NotificationType.SUCCESS)


def report_submitted(report) -> Notification:
    return Notification(
        title="Report Submitted!",
        message=f"Classified: {report.aiClassification}. Reward: {report.baseReward} pts. ID: {report.id}",
        type=NotificationType.SUCCESS,
    )


def report_claimed(_report) -> Notification:
    return Notification(title="Report Claimed!", message="Proceed to cleanup.", type=NotificationType.SUCCESS)


def proof_submitted(_report) -> Notification:
    return Notification(title="Proof Submitted!", message="Pending monitor review.", type=NotificationType.INFO)


def report_approved(settlement) -> Notification:
    rewards = settlement.rewards
    return Notification(
        title="Report Approved",
        message=f"Rewards issued: Reporter +{rewards.reporter}, Picker +{rewards.picker}.",
        type=NotificationType.SUCCESS,
    )


def report_rejected(_report) -> Notification:
    return Notification(title="Report Rejected", message="Proof rejected. Report re-opened.", type=NotificationType.ERROR)


def signed_out(_result=None) -> Notification:
    return Notification(title="Signed Out", message="You have been signed out.", type=NotificationType.INFO)
