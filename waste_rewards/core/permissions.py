"""
Role-Based Transition Control

Every report action is declared once here: the role allowed to perform it,
the report states it may start from, and any extra guard. Services call
``authorize`` before touching the store instead of repeating checks.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from waste_rewards.core.errors import ProfileRequired, TransitionDenied
from waste_rewards.models.profile_model import Profile, Role
from waste_rewards.models.report_model import Report, ReportStatus

logger = logging.getLogger(__name__)

CREATE = "create"
CLAIM = "claim"
SUBMIT_PROOF = "submit_proof"
APPROVE = "approve"
REJECT = "reject"

Guard = Callable[[Profile, Report], Optional[str]]


def _assigned_picker(actor: Profile, report: Report) -> Optional[str]:
    if report.pickerId != actor.userId:
        return "Only the picker who claimed this report can submit proof."
    return None


def _no_existing_proof(actor: Profile, report: Report) -> Optional[str]:
    if report.cleanupPhotoUrl:
        return "Proof has already been submitted for this report."
    return None


@dataclass(frozen=True)
class Transition:
    role: Role
    from_states: Tuple[ReportStatus, ...]
    to_state: ReportStatus
    guards: Tuple[Guard, ...] = ()


CLAIMABLE_STATES = (ReportStatus.REPORTED, ReportStatus.REJECTED)


class PermissionChecker:
    """
    Transition checker based on the report action matrix
    """

    # Report Action Matrix
    TRANSITIONS: Dict[str, Transition] = {
        CREATE: Transition(Role.REPORTER, (), ReportStatus.REPORTED),
        CLAIM: Transition(Role.PICKER, CLAIMABLE_STATES, ReportStatus.CLAIMED),
        SUBMIT_PROOF: Transition(
            Role.PICKER,
            (ReportStatus.CLAIMED,),
            ReportStatus.PENDING_REVIEW,
            (_assigned_picker, _no_existing_proof),
        ),
        APPROVE: Transition(Role.MONITOR, (ReportStatus.PENDING_REVIEW,), ReportStatus.COMPLETED),
        REJECT: Transition(Role.MONITOR, (ReportStatus.PENDING_REVIEW,), ReportStatus.REJECTED),
    }

    @staticmethod
    def denial_reason(action: str, actor: Optional[Profile], report: Optional[Report] = None) -> Optional[str]:
        transition = PermissionChecker.TRANSITIONS.get(action)
        if transition is None:
            return f"Unknown action '{action}'."
        if actor is None:
            return "Profile not ready."
        if actor.role != transition.role:
            return f"Only a {transition.role.value} can {action.replace('_', ' ')} reports."
        if report is None:
            return None
        if transition.from_states and report.status not in transition.from_states:
            return f"Cannot {action.replace('_', ' ')} a report that is {report.status.value}."
        for guard in transition.guards:
            reason = guard(actor, report)
            if reason:
                return reason
        return None

    @staticmethod
    def authorize(action: str, actor: Optional[Profile], report: Optional[Report] = None) -> Transition:
        """Raise unless ``actor`` may perform ``action`` on ``report`` in its current state."""
        if actor is None:
            raise ProfileRequired("Profile not ready.")
        reason = PermissionChecker.denial_reason(action, actor, report)
        if reason:
            logger.warning(
                f"Transition denied: {actor.userId} (role: {actor.role.value}) attempted {action}"
                + (f" on {report.id} [{report.status.value}]" if report else "")
            )
            raise TransitionDenied(reason)
        return PermissionChecker.TRANSITIONS[action]

    @staticmethod
    def available_actions(report: Report, actor: Optional[Profile]) -> List[str]:
        return [
            action
            for action in (CLAIM, SUBMIT_PROOF, APPROVE, REJECT)
            if PermissionChecker.denial_reason(action, actor, report) is None
        ]
