from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

DEFAULT_BASE_REWARD = 10
PICKER_REWARD_MULTIPLIER = 3

TIMESTAMP_FIELDS = ("reportedAt", "claimedAt", "proofSubmittedAt", "completedAt", "rejectedAt")
_timestamp = TypeAdapter(Optional[datetime])


class ReportStatus(str, Enum):
    REPORTED = "Reported"
    CLAIMED = "Claimed"
    PENDING_REVIEW = "Pending Review"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class Location(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class Report(BaseModel):
    id: str
    reporterId: str
    reporterName: str = ""
    location: Optional[Location] = None
    originalImageUrl: Optional[str] = None
    aiClassification: str = ""
    priority: str = ""
    baseReward: int = DEFAULT_BASE_REWARD
    status: ReportStatus = ReportStatus.REPORTED
    pickerId: Optional[str] = None
    pickerName: Optional[str] = None
    pickerLocation: Optional[Location] = None
    cleanupPhotoUrl: Optional[str] = None
    rejectedProofUrl: Optional[str] = None
    reporterRewardIssued: bool = False
    pickerRewardIssued: bool = False
    monitorId: Optional[str] = None
    monitorName: Optional[str] = None
    monitorMessage: Optional[str] = None
    reportedAt: Optional[datetime] = None
    claimedAt: Optional[datetime] = None
    proofSubmittedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    rejectedAt: Optional[datetime] = None

    @classmethod
    def from_document(cls, report_id: str, data: Dict[str, Any]) -> "Report":
        payload = dict(data)
        payload.pop("_id", None)
        payload["id"] = report_id
        if payload.get("baseReward") is None:
            payload.pop("baseReward", None)
        # An unreadable timestamp is treated as missing so the report still lists (sorted as epoch 0)
        for name in TIMESTAMP_FIELDS:
            try:
                _timestamp.validate_python(payload.get(name))
            except ValidationError:
                payload.pop(name, None)
        return cls(**{k: v for k, v in payload.items() if k in cls.model_fields})

    def reward_breakdown(self) -> "RewardBreakdown":
        return RewardBreakdown.for_base(self.baseReward)


class RewardBreakdown(BaseModel):
    reporter: int
    picker: int

    @classmethod
    def for_base(cls, base_reward: Optional[int]) -> "RewardBreakdown":
        reporter = base_reward if base_reward and base_reward > 0 else DEFAULT_BASE_REWARD
        return cls(reporter=reporter, picker=reporter * PICKER_REWARD_MULTIPLIER)


class ReportView(BaseModel):
    """A report plus the actions the viewing user may take on it."""

    report: Report
    actions: List[str] = []


class RejectRequest(BaseModel):
    message: Optional[str] = Field(None, max_length=500)


class GuidanceRequest(BaseModel):
    classification: str
    priority: str = "Medium"
