"""
Report Lifecycle Engine

Applies every report transition (create, claim, proof, approve, reject) and
performs the reward settlement on approval.

- Transitions are checked centrally by PermissionChecker before any write.
- Single-document transitions are compare-and-swap updates conditioned on
  the state that was checked, so a concurrent writer makes them fail rather
  than silently overwrite.
- Approval moves the report and both profiles in one store transaction.
  Profile totals are read inside the transaction and written as
  current + delta; any failure leaves all three documents untouched.
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from pydantic import ValidationError

from waste_rewards.core.errors import DocumentNotFound, ReportNotFound, TransitionDenied, ValidationFailed
from waste_rewards.core.permissions import (
    APPROVE,
    CLAIM,
    CLAIMABLE_STATES,
    CREATE,
    REJECT,
    SUBMIT_PROOF,
    PermissionChecker,
)
from waste_rewards.models.profile_model import Profile
from waste_rewards.models.report_model import (
    DEFAULT_BASE_REWARD,
    Location,
    Report,
    ReportStatus,
    ReportView,
    RewardBreakdown,
)
from waste_rewards.services.advisory_service import AdvisoryClient
from waste_rewards.services.document_store import PROFILES, REPORTS, DocumentSnapshot, DocumentStore, Transaction
from waste_rewards.utils.helpers import short_id, to_millis, utc_now

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_MESSAGE = "Proof rejected. Please resubmit."


@dataclass
class Settlement:
    report: Report
    rewards: RewardBreakdown


def shape_reports(
    snapshots: Iterable[DocumentSnapshot],
    status: Optional[ReportStatus] = None,
    reporter_id: Optional[str] = None,
    picker_id: Optional[str] = None,
) -> List[Report]:
    """Newest first by reportedAt; a missing timestamp sorts as epoch 0."""
    reports = []
    for snap in snapshots:
        if not snap.exists:
            continue
        try:
            report = Report.from_document(snap.id, snap.data)
        except ValidationError as e:
            logger.warning(f"⚠️ Skipping malformed report {snap.id}: {e.error_count()} validation errors")
            continue
        if status is not None and report.status != status:
            continue
        if reporter_id is not None and report.reporterId != reporter_id:
            continue
        if picker_id is not None and report.pickerId != picker_id:
            continue
        reports.append(report)
    reports.sort(key=lambda r: to_millis(r.reportedAt), reverse=True)
    return reports


class ReportLifecycleEngine:
    def __init__(self, store: DocumentStore, advisory: AdvisoryClient, *, max_attempts: int = 5):
        self.store = store
        self.advisory = advisory
        self.max_attempts = max_attempts

    # ---------------------------
    # Reads
    # ---------------------------
    async def get_report(self, report_id: str) -> Report:
        snap = await self.store.get(REPORTS, report_id)
        if not snap.exists:
            raise ReportNotFound(f"Report {report_id} not found")
        return Report.from_document(report_id, snap.data)

    async def list_reports(
        self,
        status: Optional[ReportStatus] = None,
        reporter_id: Optional[str] = None,
        picker_id: Optional[str] = None,
    ) -> List[Report]:
        return shape_reports(await self.store.list(REPORTS), status, reporter_id, picker_id)

    async def watch_reports(
        self,
        status: Optional[ReportStatus] = None,
        reporter_id: Optional[str] = None,
        picker_id: Optional[str] = None,
    ) -> AsyncIterator[List[Report]]:
        stream = self.store.watch_collection(REPORTS)
        try:
            async for query in stream:
                yield shape_reports(query.documents, status, reporter_id, picker_id)
        finally:
            await stream.aclose()

    @staticmethod
    def view_for(report: Report, actor: Optional[Profile]) -> ReportView:
        return ReportView(report=report, actions=PermissionChecker.available_actions(report, actor))

    # ---------------------------
    # Create
    # ---------------------------
    async def _resolve_reward(self, classification: str, priority: str) -> int:
        try:
            suggested = await self.advisory.estimate_reward(classification, priority)
        except Exception as e:
            logger.warning(f"⚠️ Reward suggestion failed, using default {DEFAULT_BASE_REWARD}: {e}")
            return DEFAULT_BASE_REWARD
        if not isinstance(suggested, int) or isinstance(suggested, bool):
            return DEFAULT_BASE_REWARD
        return RewardBreakdown.for_base(suggested).reporter

    async def create_report(self, actor: Optional[Profile], image_url: Optional[str], location: Location) -> Report:
        PermissionChecker.authorize(CREATE, actor)
        if not image_url:
            raise ValidationFailed("Select an image", title="Error")

        try:
            classification, priority = await self.advisory.classify(image_url)
        except Exception as e:
            logger.warning(f"⚠️ Classification failed, stamping as unclassified: {e}")
            classification, priority = "Unclassified", "Medium"
        base_reward = await self._resolve_reward(classification, priority)

        data: Dict[str, Any] = {
            "reporterId": actor.userId,
            "reporterName": actor.name,
            "location": location.model_dump(),
            "originalImageUrl": image_url,
            "aiClassification": classification,
            "priority": priority,
            "baseReward": base_reward,
            "status": ReportStatus.REPORTED.value,
            "pickerId": None,
            "pickerName": None,
            "reportedAt": utc_now(),
            "reporterRewardIssued": False,
            "pickerRewardIssued": False,
        }
        report_id = await self.store.add(REPORTS, data)
        logger.info(f"📝 Report {short_id(report_id)} created by {actor.userId}: {classification} ({priority}), reward {base_reward}")
        return Report.from_document(report_id, data)

    # ---------------------------
    # Single-document transitions
    # ---------------------------
    async def _apply(self, report: Report, fields: Dict[str, Any], expected: Dict[str, Any]) -> Report:
        await self.store.update(REPORTS, report.id, fields, expected=expected)
        return await self.get_report(report.id)

    async def claim_report(self, actor: Optional[Profile], report_id: str) -> Report:
        report = await self.get_report(report_id)
        PermissionChecker.authorize(CLAIM, actor, report)
        updated = await self._apply(
            report,
            {
                "status": ReportStatus.CLAIMED.value,
                "pickerId": actor.userId,
                "pickerName": actor.name,
                "claimedAt": utc_now(),
            },
            expected={"status": tuple(s.value for s in CLAIMABLE_STATES), "pickerId": None},
        )
        logger.info(f"🙋 Report {short_id(report_id)} claimed by {actor.userId}")
        return updated

    async def submit_proof(
        self,
        actor: Optional[Profile],
        report_id: str,
        image_url: Optional[str],
        location: Location,
    ) -> Report:
        report = await self.get_report(report_id)
        PermissionChecker.authorize(SUBMIT_PROOF, actor, report)
        if not image_url:
            raise ValidationFailed("Please upload proof", title="Missing")
        updated = await self._apply(
            report,
            {
                "status": ReportStatus.PENDING_REVIEW.value,
                "cleanupPhotoUrl": image_url,
                "pickerLocation": location.model_dump(),
                "proofSubmittedAt": utc_now(),
            },
            expected={
                "status": ReportStatus.CLAIMED.value,
                "pickerId": actor.userId,
                "cleanupPhotoUrl": None,
            },
        )
        logger.info(f"📸 Proof submitted for report {short_id(report_id)} by {actor.userId}")
        return updated

    async def reject_report(self, actor: Optional[Profile], report_id: str, message: Optional[str] = None) -> Report:
        report = await self.get_report(report_id)
        PermissionChecker.authorize(REJECT, actor, report)
        monitor_message = (message or "").strip() or DEFAULT_REJECTION_MESSAGE
        updated = await self._apply(
            report,
            {
                "status": ReportStatus.REJECTED.value,
                "monitorId": actor.userId,
                "monitorName": actor.name,
                "monitorMessage": monitor_message,
                "rejectedAt": utc_now(),
                "pickerId": None,
                "pickerName": None,
                "rejectedProofUrl": report.cleanupPhotoUrl,
                "cleanupPhotoUrl": None,
                "pickerLocation": None,
                "proofSubmittedAt": None,
            },
            expected={"status": ReportStatus.PENDING_REVIEW.value, "pickerId": report.pickerId},
        )
        logger.info(f"↩️ Report {short_id(report_id)} rejected by {actor.userId}; picker {report.pickerId} released")
        return updated

    # ---------------------------
    # Settlement
    # ---------------------------
    async def approve_report(self, actor: Optional[Profile], report_id: str) -> Settlement:
        # Fail fast outside the transaction; the body re-checks against transactional reads
        PermissionChecker.authorize(APPROVE, actor, await self.get_report(report_id))

        async def settle(tx: Transaction) -> Settlement:
            snap = await tx.get(REPORTS, report_id)
            if not snap.exists:
                raise ReportNotFound(f"Report {report_id} not found")
            report = Report.from_document(report_id, snap.data)
            PermissionChecker.authorize(APPROVE, actor, report)
            if report.reporterRewardIssued or report.pickerRewardIssued:
                raise TransitionDenied("Rewards for this report have already been issued.")
            if not report.pickerId:
                raise TransitionDenied("Report has no assigned picker to reward.")

            rewards = report.reward_breakdown()
            reporter = await tx.get(PROFILES, report.reporterId)
            picker = await tx.get(PROFILES, report.pickerId)
            if not reporter.exists:
                raise DocumentNotFound(f"Reporter profile {report.reporterId} not found")
            if not picker.exists:
                raise DocumentNotFound(f"Picker profile {report.pickerId} not found")

            report_fields = {
                "status": ReportStatus.COMPLETED.value,
                "monitorId": actor.userId,
                "monitorName": actor.name,
                "completedAt": utc_now(),
                "reporterRewardIssued": True,
                "pickerRewardIssued": True,
                "monitorMessage": (
                    f"Thank you for cleaning. Rewards: Reporter +{rewards.reporter}, Picker +{rewards.picker}."
                ),
            }
            tx.update(REPORTS, report_id, report_fields)
            tx.update(
                PROFILES,
                report.reporterId,
                {"totalReporterPoints": int(reporter.get("totalReporterPoints") or 0) + rewards.reporter},
            )
            tx.update(
                PROFILES,
                report.pickerId,
                {"totalPickerPoints": int(picker.get("totalPickerPoints") or 0) + rewards.picker},
            )
            return Settlement(Report.from_document(report_id, {**snap.data, **report_fields}), rewards)

        settlement = await self.store.run_transaction(settle, max_attempts=self.max_attempts)
        logger.info(
            f"💰 Settlement committed for report {short_id(report_id)}: "
            f"reporter {settlement.report.reporterId} +{settlement.rewards.reporter}, "
            f"picker {settlement.report.pickerId} +{settlement.rewards.picker}"
        )
        return settlement
