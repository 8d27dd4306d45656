from tagtracker.db.models.jobs import JobStatus
from tagtracker.db.models.tags import Tag, TagHistory, TagRequest

__all__ = [
    "JobStatus",
    "Tag",
    "TagHistory",
    "TagRequest",
]
