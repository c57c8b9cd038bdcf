from circadian.schemas.job import JobSummary
from circadian.schemas.notification import NotificationResponseRequest, NotificationSummary
from circadian.schemas.pipeline import SearchResult, TopicSelection

__all__ = [
    "JobSummary",
    "NotificationResponseRequest",
    "NotificationSummary",
    "SearchResult",
    "TopicSelection",
]
