from circadian.models.base import Base
from circadian.models.job import Job, JobStatus, SessionType
from circadian.models.notification import Notification, NotificationStatus
from circadian.models.output import OutputRecord
from circadian.models.user import Message, User

__all__ = [
    "Base",
    "User",
    "Message",
    "Job",
    "JobStatus",
    "SessionType",
    "OutputRecord",
    "Notification",
    "NotificationStatus",
]
