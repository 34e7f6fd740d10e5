#!/usr/bin/env python3
"""
Retention rules deciding which tags of a repository get deleted.

A tag is deleted only if ALL of the following hold:
- it is not one of the `keep_most_recent` newest tags,
- its name does NOT match the keep regex,
- its name DOES match the delete regex,
- it is older than `older_than_days` (unless dates are unavailable).

The defaults (keep '.*', delete '^$') never select anything.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Pattern, Tuple, TypeVar

import semver

from gitlab_cleaner.error_utils import create_config_error
from gitlab_cleaner.logging_utils import get_logger
from gitlab_cleaner.models import DetailedTag

logger = get_logger(__name__)

DEFAULT_KEEP_REGEX = ".*"
DEFAULT_DELETE_REGEX = "^$"
DEFAULT_OLDER_THAN_DAYS = 90
DEFAULT_KEEP_MOST_RECENT = 0

# First run of up to three dot-separated numbers, e.g. "foo-v1.2.3-rc" -> 1.2.3
_VERSION_RE = re.compile(r"(?:^|[^\d])(\d{1,16})(?:\.(\d{1,16}))?(?:\.(\d{1,16}))?(?:$|[^\d])")

TagT = TypeVar("TagT")


def compile_regex(field_name: str, pattern: str) -> Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise create_config_error(field_name, pattern, f"invalid regular expression: {e}")


@dataclass(frozen=True)
class RetentionPolicy:
    """Which tags to keep and which to delete"""

    keep_regex: str = DEFAULT_KEEP_REGEX
    delete_regex: str = DEFAULT_DELETE_REGEX
    older_than_days: int = DEFAULT_OLDER_THAN_DAYS
    keep_most_recent: int = DEFAULT_KEEP_MOST_RECENT

    def __post_init__(self):
        if self.older_than_days < 0:
            raise create_config_error("older_than_days", self.older_than_days, "must be zero or positive")
        if self.keep_most_recent < 0:
            raise create_config_error("keep_most_recent", self.keep_most_recent, "must be zero or positive")
        # Fail early on broken patterns
        compile_regex("keep_regex", self.keep_regex)
        compile_regex("delete_regex", self.delete_regex)

    @property
    def uses_default_regexes(self) -> bool:
        return self.keep_regex == DEFAULT_KEEP_REGEX or self.delete_regex == DEFAULT_DELETE_REGEX


@dataclass
class RetentionResult:
    """Outcome of applying a RetentionPolicy to a set of tags"""

    to_delete: List[DetailedTag] = field(default_factory=list)
    kept_most_recent: List[DetailedTag] = field(default_factory=list)
    kept_by_keep_regex: List[DetailedTag] = field(default_factory=list)
    not_matching_delete_regex: List[DetailedTag] = field(default_factory=list)
    kept_too_recent: List[DetailedTag] = field(default_factory=list)
    # Tags were ordered by semantic version instead of creation date
    degraded: bool = False

    @property
    def kept(self) -> List[DetailedTag]:
        return self.kept_most_recent + self.kept_by_keep_regex + self.not_matching_delete_regex + self.kept_too_recent


def coerce_version(name: str) -> Optional[semver.Version]:
    """Best-effort version found in a tag name.

    "v1.2.3" -> 1.2.3, "release-1.4" -> 1.4.0, "build-42" -> 42.0.0,
    "latest" -> None.
    """
    match = _VERSION_RE.search(name)
    if not match:
        return None
    major, minor, patch = match.groups()
    return semver.Version(int(major), int(minor or 0), int(patch or 0))


def sort_by_semver(tags: Iterable[TagT]) -> List[TagT]:
    """Sort tags newest version first.

    Tags with a coercible version come first, highest version first (ties by
    name). Tags without a version follow in alphabetical order.
    """
    versioned: List[Tuple[semver.Version, TagT]] = []
    unversioned: List[TagT] = []
    for tag in tags:
        version = coerce_version(tag.name)
        if version is None:
            unversioned.append(tag)
        else:
            versioned.append((version, tag))

    versioned.sort(key=lambda pair: pair[1].name)
    versioned.sort(key=lambda pair: pair[0], reverse=True)
    unversioned.sort(key=lambda t: t.name)
    return [tag for _, tag in versioned] + unversioned


def sort_by_creation_date(tags: Iterable[DetailedTag]) -> List[DetailedTag]:
    """Newest first; tags without a date sort last"""
    dated = [t for t in tags if t.created_at is not None]
    undated = [t for t in tags if t.created_at is None]
    return sorted(dated, key=lambda t: t.created_at, reverse=True) + undated


def filter_tags_regex(tags: Iterable[TagT], keep_regex: str, delete_regex: str) -> List[TagT]:
    """Tags NOT matching keep_regex AND matching delete_regex"""
    keep = compile_regex("keep_regex", keep_regex)
    delete = compile_regex("delete_regex", delete_regex)
    return [t for t in tags if not keep.search(t.name) and delete.search(t.name)]


def select_tags_for_deletion(tags: List[DetailedTag], policy: RetentionPolicy, now: datetime,
                             degraded: bool = False) -> RetentionResult:
    """Apply the retention policy and return the deletion set.

    Args:
        tags: Detailed tags of one repository
        policy: Retention rules
        now: Reference time for age computation (timezone aware)
        degraded: Creation dates are placeholders. Recency falls back to
            semantic-version ordering and the age rule is skipped.

    Returns:
        RetentionResult; to_delete is always a subset of tags
    """
    keep = compile_regex("keep_regex", policy.keep_regex)
    result = RetentionResult(degraded=degraded)

    ordered = sort_by_semver(tags) if degraded else sort_by_creation_date(tags)

    result.kept_most_recent = ordered[:policy.keep_most_recent]
    remaining = ordered[policy.keep_most_recent:]

    candidates = filter_tags_regex(remaining, policy.keep_regex, policy.delete_regex)
    candidate_names = {t.name for t in candidates}
    for tag in remaining:
        if tag.name in candidate_names:
            continue
        if keep.search(tag.name):
            result.kept_by_keep_regex.append(tag)
        else:
            result.not_matching_delete_regex.append(tag)

    if degraded:
        result.to_delete = candidates
        return result

    for tag in candidates:
        age = tag.age_days(now)
        if age is not None and age > policy.older_than_days:
            result.to_delete.append(tag)
        else:
            result.kept_too_recent.append(tag)

    logger.debug(
        f"Retention: {len(result.to_delete)} to delete, {len(result.kept_most_recent)} most recent, "
        f"{len(result.kept_by_keep_regex)} kept by regex, {len(result.kept_too_recent)} too recent"
    )
    return result
