from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    REPORTER = "reporter"
    PICKER = "picker"
    MONITOR = "monitor"


ROLE_LABELS = {
    Role.REPORTER: "Citizen Reporter",
    Role.PICKER: "Garbage Picker",
    Role.MONITOR: "Government Monitor",
}


class Profile(BaseModel):
    userId: str
    name: str
    role: Role
    totalReporterPoints: int = 0
    totalPickerPoints: int = 0
    dateJoined: Optional[datetime] = None
    publicUserId: Optional[str] = None

    @classmethod
    def from_document(cls, user_id: str, data: Dict[str, Any]) -> "Profile":
        return cls(
            userId=user_id,
            name=data.get("name", ""),
            role=data.get("role"),
            totalReporterPoints=int(data.get("totalReporterPoints") or 0),
            totalPickerPoints=int(data.get("totalPickerPoints") or 0),
            dateJoined=data.get("dateJoined"),
            publicUserId=data.get("publicUserId"),
        )


class ProfileState(str, Enum):
    """Where a signed-in user should be routed."""

    LOADING = "loading"
    MISSING = "missing"
    DENIED = "denied"
    READY = "ready"


class ProfileLookup(BaseModel):
    state: ProfileState
    profile: Optional[Profile] = None

    @property
    def view(self) -> str:
        if self.state == ProfileState.READY:
            return "dashboard"
        if self.state == ProfileState.LOADING:
            return "loading"
        return "setup"


class ProfileSetupRequest(BaseModel):
    name: str = Field(..., max_length=120)
    role: Role = Role.REPORTER

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()
