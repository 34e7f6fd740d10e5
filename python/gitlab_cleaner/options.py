"""Explicit option structures injected into the cleaner."""

from dataclasses import dataclass
from typing import Optional

from gitlab_cleaner.retention import (
    DEFAULT_DELETE_REGEX,
    DEFAULT_KEEP_MOST_RECENT,
    DEFAULT_KEEP_REGEX,
    DEFAULT_OLDER_THAN_DAYS,
    RetentionPolicy,
)

DEFAULT_CONCURRENCY = 20
DEFAULT_TAGS_PER_PAGE = 50
# GitLab caps per_page at 100 and silently returns 100 for larger values
MAX_TAGS_PER_PAGE = 100
DEFAULT_START_INDEX = 1
DEFAULT_END_INDEX = 10000
DEFAULT_TIMEOUT = 60


@dataclass
class CleanerOptions:
    """Connection and execution settings shared by every command"""

    gitlab_host: str
    gitlab_token: str
    concurrency: int = DEFAULT_CONCURRENCY
    dry_run: bool = True
    verbose: bool = False
    # Ask before long-running or destructive work; off for scripts and tests
    interactive: bool = True
    timeout: int = DEFAULT_TIMEOUT


@dataclass
class CleanupOptions:
    """Settings of one `clean` run"""

    keep_regex: str = DEFAULT_KEEP_REGEX
    delete_regex: str = DEFAULT_DELETE_REGEX
    older_than_days: int = DEFAULT_OLDER_THAN_DAYS
    keep_most_recent: int = DEFAULT_KEEP_MOST_RECENT
    tags_per_page: int = DEFAULT_TAGS_PER_PAGE
    output_tags: Optional[str] = None
    # Skip the confirmation prompt before real deletions
    force: bool = False

    def policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            keep_regex=self.keep_regex,
            delete_regex=self.delete_regex,
            older_than_days=self.older_than_days,
            keep_most_recent=self.keep_most_recent,
        )
