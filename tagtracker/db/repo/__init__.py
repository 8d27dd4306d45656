from tagtracker.db.repo.jobs_repo import JobsRepo
from tagtracker.db.repo.tags_repo import TagsRepo

__all__ = ["JobsRepo", "TagsRepo"]
