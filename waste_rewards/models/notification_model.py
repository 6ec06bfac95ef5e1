from enum import Enum

from pydantic import BaseModel


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


class Notification(BaseModel):
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
