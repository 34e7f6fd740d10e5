"""
Concurrent cleanup of GitLab container registry repositories.

Pipeline, one bounded worker pool per stage, each stage joined before the
next one starts:

    discovery -> tag listing -> tag details -> retention filter -> deletion

404 responses are expected along the way (IDs that don't exist, tags whose
manifest GitLab can't read) and never abort a stage.
"""

import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Union

from gitlab_cleaner.deletion_base import BaseCleaner
from gitlab_cleaner.error_utils import (
    create_config_error,
    create_gitlab_auth_error,
    create_no_repositories_error,
)
from gitlab_cleaner.gitlab_client import GitLabApiError, GitLabClient
from gitlab_cleaner.models import CondensedTag, DetailedTag, Repository
from gitlab_cleaner.options import (
    DEFAULT_END_INDEX,
    DEFAULT_START_INDEX,
    DEFAULT_TAGS_PER_PAGE,
    MAX_TAGS_PER_PAGE,
    CleanerOptions,
    CleanupOptions,
)
from gitlab_cleaner.report_utils import format_tag_table, load_json, save_json
from gitlab_cleaner.retention import RetentionPolicy, RetentionResult, select_tags_for_deletion
from gitlab_cleaner.worker_pool import chunk_evenly, run_all, run_settled

# Statuses meaning "no repository behind this ID" during discovery
_ABSENT_STATUSES = (403, 404)

OCI_DETAILS_ISSUE_URL = "https://gitlab.com/gitlab-org/gitlab/-/issues/388865#note_1552979298"


def _check_tags_per_page(tags_per_page: int) -> None:
    if tags_per_page < 1 or tags_per_page > MAX_TAGS_PER_PAGE:
        raise create_config_error(
            "tags_per_page", tags_per_page, f"must be between 1 and {MAX_TAGS_PER_PAGE}"
        )


@dataclass
class DeletionSummary:
    """What the deleter did (or would have done in dry-run)"""

    deleted: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def merge(self, other: "DeletionSummary") -> "DeletionSummary":
        self.deleted.extend(other.deleted)
        self.not_found.extend(other.not_found)
        self.failed.extend(other.failed)
        return self


@dataclass
class CleanupResult:
    repository: Repository
    retention: RetentionResult
    deletion: DeletionSummary
    total_tags: int = 0
    aborted: bool = False


class GitLabContainerRepositoryCleaner(BaseCleaner):
    """Lists container repositories and deletes their tags concurrently"""

    def __init__(self, options: CleanerOptions, client: Optional[GitLabClient] = None):
        """Initialize the cleaner.

        Args:
            options: Connection and execution settings
            client: Pre-built API client (built from options when omitted)
        """
        super().__init__(dry_run=options.dry_run, interactive=options.interactive)
        if options.concurrency < 1:
            raise create_config_error("concurrency", options.concurrency, "must be a positive integer")
        self.options = options
        self.concurrency = options.concurrency
        self.verbose = options.verbose
        # Set when the calling thread is interrupted; workers stop before their next request
        self.cancelled = threading.Event()
        self.client = client or GitLabClient(
            options.gitlab_host,
            options.gitlab_token,
            pool_size=options.concurrency,
            timeout=options.timeout,
        )

    def close(self) -> None:
        """Release the HTTP connection pool"""
        self.client.close()

    def _raise_if_unauthorized(self, error: BaseException) -> None:
        if isinstance(error, GitLabApiError) and error.status_code == 401:
            raise create_gitlab_auth_error(self.options.gitlab_host, error.status_code) from error

    # ------------------------------------------------------------------
    # Repository discovery
    # ------------------------------------------------------------------

    def get_repository(self, repository_id: int) -> Repository:
        """Show a single repository, including its tag count"""
        return Repository.from_api(self.client.show_repository(repository_id, tags_count=True))

    def get_container_repositories_concurrently(self, start_index: int = DEFAULT_START_INDEX,
                                                end_index: int = DEFAULT_END_INDEX,
                                                output_file: Optional[str] = None) -> List[Repository]:
        """Request every repository ID in [start_index, end_index] concurrently.

        A 404 or 403 means no repository (or no access) behind that ID and is
        skipped silently. Other errors are logged and the scan goes on.

        Raises:
            ActionableError: if the range is invalid or holds no repository at all
        """
        if not output_file:
            self.logger.warning(
                "You didn't specify an output path to write results. By default results will be shown on stdout."
            )
            self.logger.warning("Output may be long, it's possible your console buffer won't show everything.")
            self.logger.warning("This command may run for a long time and some results may be lost.")
            self.logger.warning("Use -o flag to specify a file such as -o /tmp/repositories.json")
            self.prompt_continue("Press CTRL+C to interrupt or ENTER to continue...")

        if start_index > end_index:
            raise create_config_error(
                "start_index", start_index, f"start index is greater than end index ({end_index})"
            )

        repository_ids = list(range(start_index, end_index + 1))
        total = len(repository_ids)
        self.logger.info(
            f"🔭 Requesting container repository IDs [{start_index}-{end_index}] "
            f"with concurrency {self.concurrency}"
        )

        def progress(done: int, count: int) -> None:
            if done % 100 == 0 or done == count:
                self.logger.info(f"   Checked {done}/{count} repository IDs")

        outcomes = run_settled(self.get_repository, repository_ids, self.concurrency, on_progress=progress,
                               cancel_event=self.cancelled)

        repositories = []
        for outcome in outcomes:
            if outcome.ok:
                repositories.append(outcome.result)
                continue
            error = outcome.error
            self._raise_if_unauthorized(error)
            if isinstance(error, GitLabApiError) and error.status_code in _ABSENT_STATUSES:
                continue
            self.logger.error(f"Unexpected error fetching repository ID {outcome.item}: {error}")

        if not repositories:
            raise create_no_repositories_error(start_index, end_index)

        self.logger.info(f"   Found {len(repositories)} repositories out of {total} IDs")
        return repositories

    def get_project_container_repositories(self, project: Union[int, str]) -> List[Repository]:
        """All repositories of a project, by numeric ID or full path"""
        self.logger.info(f"🔭 Listing container repositories of project {project}")
        repositories = [Repository.from_api(r) for r in self.client.list_project_repositories(project)]
        self.logger.info(f"   Found {len(repositories)} repositories")
        return repositories

    def get_group_container_repositories(self, group: Union[int, str]) -> List[Repository]:
        """All repositories of the projects in a group, by numeric ID or full path"""
        self.logger.info(f"🔭 Listing container repositories of group {group}")
        repositories = [Repository.from_api(r) for r in self.client.list_group_repositories(group)]
        self.logger.info(f"   Found {len(repositories)} repositories")
        return repositories

    # ------------------------------------------------------------------
    # Tag listing
    # ------------------------------------------------------------------

    def get_repository_tags_concurrently(self, repository: Repository,
                                         tags_per_page: int = DEFAULT_TAGS_PER_PAGE) -> List[CondensedTag]:
        """Fetch every page of the repository's tag list, one page per task.

        Page count comes from the repository's tag count. Without one, pages
        are walked sequentially following the API's next-page header.
        """
        _check_tags_per_page(tags_per_page)

        if repository.tags_count is None:
            self.logger.warning(
                f"   Repository {repository.id} has no tag count, listing tags page by page"
            )
            raw_tags = self.client.list_all_tags(repository.project_id, repository.id, tags_per_page)
            tags = [CondensedTag.from_api(t) for t in raw_tags]
            self.logger.info(f"   Found {len(tags)} tags")
            return tags

        tag_count = repository.tags_count
        page_total = math.ceil(tag_count / tags_per_page)
        pages = list(range(1, page_total + 1))
        self.logger.info(f"🔭 Listing {tag_count} tags ({page_total} pages, {tags_per_page} tags per page)")

        def fetch_page(page: int) -> List[CondensedTag]:
            raw = self.client.list_tags(repository.project_id, repository.id, page=page, per_page=tags_per_page)
            return [CondensedTag.from_api(t) for t in raw]

        tags: List[CondensedTag] = []
        for page_tags in run_all(fetch_page, pages, self.concurrency, cancel_event=self.cancelled):
            tags.extend(page_tags)

        self.logger.info(f"   Found {len(tags)} tags")
        return tags

    # ------------------------------------------------------------------
    # Tag details
    # ------------------------------------------------------------------

    def _get_tag_details(self, repository: Repository, tag_chunk: List[CondensedTag]) -> List[DetailedTag]:
        """Fetch details for one chunk, one tag after the other"""
        result = []
        for tag in tag_chunk:
            if self.cancelled.is_set():
                break
            try:
                result.append(DetailedTag.from_api(
                    self.client.show_tag(repository.project_id, repository.id, tag.name)
                ))
            except GitLabApiError as e:
                self._raise_if_unauthorized(e)
                if e.is_not_found:
                    self.logger.warning(f"Tag {tag.name} not found via GitLab API")
                else:
                    self.logger.error(
                        f"Non-404 error fetching tag {tag.name} in repository {repository.id}: {e}"
                    )
        return result

    def get_tag_details_concurrently(self, repository: Repository, tags: List[CondensedTag]) -> List[DetailedTag]:
        """Fetch creation date, digest and size for each tag.

        Tags are split into `concurrency` contiguous chunks fetched in
        parallel. Tags GitLab can't resolve are dropped.
        """
        self.logger.info(f"🔭 Fetching tag details for {len(tags)} tags")

        chunks = chunk_evenly(tags, self.concurrency)
        details: List[DetailedTag] = []
        for chunk_details in run_all(lambda chunk: self._get_tag_details(repository, chunk), chunks,
                                     self.concurrency, cancel_event=self.cancelled):
            details.extend(chunk_details)

        if len(details) != len(tags):
            self.logger.warning(f"⚠️  Fetched tag details for {len(details)} tags, expected {len(tags)}")

        return details

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def filter_tags_for_deletion(self, repository: Repository, tags: List[CondensedTag],
                                 policy: RetentionPolicy, now: Optional[datetime] = None) -> RetentionResult:
        """Fetch tag details and apply the retention policy.

        When no detail at all can be fetched (GitLab fails on some OCI
        manifests), falls back to placeholder dates: recency is approximated
        by semantic-version ordering and the age rule is skipped.
        """
        now = now or datetime.now(timezone.utc)

        detailed_tags = self.get_tag_details_concurrently(repository, tags)

        degraded = False
        if not detailed_tags and tags:
            degraded = True
            self.logger.warning("⚠️  GitLab API failed to fetch tag details (known issue with OCI manifests)")
            self.logger.warning(f"   {OCI_DETAILS_ISSUE_URL}")
            detailed_tags = [DetailedTag.placeholder_for(t, now) for t in tags]

            if policy.older_than_days > 0:
                self.logger.warning(
                    f"   Cannot apply --older-than-days={policy.older_than_days} without creation dates."
                )
                self.logger.warning("   Age-based filtering will be skipped.")
            if policy.keep_most_recent > 0:
                self.logger.warning(
                    f"   Attempting to keep {policy.keep_most_recent} most recent tags using semantic versioning..."
                )
            else:
                self.logger.warning("   Proceeding with regex-only filtering (all matching tags will be deleted).")

        result = select_tags_for_deletion(detailed_tags, policy, now, degraded=degraded)

        if self.verbose:
            self.logger.info("Tags to be deleted:\n" + format_tag_table(result.to_delete))
            self.logger.info("Tags kept as most recent:\n" + format_tag_table(result.kept_most_recent))

        self.logger.info(f"ℹ️  Kept {len(result.kept_most_recent)} most recent tags")
        self.logger.info(
            f"ℹ️  Kept {len(result.kept_by_keep_regex)} tags matching '{policy.keep_regex}' and "
            f"{len(result.not_matching_delete_regex)} tags not matching '{policy.delete_regex}'"
        )
        if not degraded:
            self.logger.info(
                f"ℹ️  Kept {len(result.kept_too_recent)} tags younger than {policy.older_than_days} days"
            )
        return result

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def _delete_tags(self, repository: Repository, tag_chunk: List[DetailedTag]) -> DeletionSummary:
        """Delete one chunk of tags, one after the other"""
        summary = DeletionSummary()
        for tag in tag_chunk:
            if self.cancelled.is_set():
                break
            if self.dry_run:
                self.logger.info(f"[DRY-RUN] Would delete tag {tag.name}")
                summary.deleted.append(tag.name)
                continue
            try:
                self.client.delete_tag(repository.project_id, repository.id, tag.name)
                self.logger.debug(f"Deleted tag {tag.name}")
                summary.deleted.append(tag.name)
            except GitLabApiError as e:
                self._raise_if_unauthorized(e)
                if e.is_not_found:
                    self.logger.warning(f"Tag {tag.name} already gone (404)")
                    summary.not_found.append(tag.name)
                else:
                    self.logger.error(f"✗ Failed to delete tag {tag.name}: {e}")
                    summary.failed.append(tag.name)
        return summary

    def delete_tags_concurrently(self, repository: Repository, tags: List[DetailedTag]) -> DeletionSummary:
        """Delete tags in `concurrency` parallel chunks. Dry-run only logs."""
        summary = DeletionSummary()
        chunks = chunk_evenly(tags, self.concurrency)
        for chunk_summary in run_all(lambda chunk: self._delete_tags(repository, chunk), chunks, self.concurrency,
                                     cancel_event=self.cancelled):
            summary.merge(chunk_summary)
        return summary

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def cleanup_container_repository_tags(self, repository_id: int, options: Optional[CleanupOptions] = None,
                                          now: Optional[datetime] = None) -> CleanupResult:
        """List, filter and delete the tags of one repository.

        Args:
            repository_id: Container repository ID
            options: Retention rules and output settings
            now: Reference time for tag age (defaults to current UTC time)

        Returns:
            CleanupResult with the retention decision and deletion summary
        """
        options = options or CleanupOptions()
        policy = options.policy()
        _check_tags_per_page(options.tags_per_page)

        repository = self.get_repository(repository_id)

        self.logger.info(
            f"🧹 Cleaning image tags for repository {repository.path} (ID: {repository.id}). "
            f"Keep tags matching '{policy.keep_regex}', delete tags matching '{policy.delete_regex}' "
            f"older than {policy.older_than_days} days. Keeping {policy.keep_most_recent} most recent tags. "
            f"(dry-run: {self.dry_run})"
        )

        if policy.uses_default_regexes:
            self.logger.warning(
                "🤔 Hey, looks like you kept default keep and/or delete regex. "
                "By default, these regex won't match anything for safety reasons."
            )
            self.logger.warning(
                "   You'll probably want to use -k and -d flags to specify regex against which tags must match to be deleted."
            )
            self.logger.warning(
                "   Example to keep release tags and delete everything else: -k 'v?[0-9]+[-.][0-9]+[-.][0-9]+.*' -d '.*'"
            )
            self.prompt_continue("Press ENTER to continue...")

        all_tags = self.get_repository_tags_concurrently(repository, options.tags_per_page)

        self.logger.info(f"👴 Checking tags against retention rules ({len(all_tags)} tags)")
        retention = self.filter_tags_for_deletion(repository, all_tags, policy, now=now)
        delete_tags = retention.to_delete
        self.logger.info(f"💀 Found {len(delete_tags)} tags to delete")

        results_file = None
        if options.output_tags:
            self.logger.info(f"📝 Writing tag list to {options.output_tags}")
            results_file = save_json(options.output_tags, {
                "repository": repository,
                "dry_run": self.dry_run,
                "degraded": retention.degraded,
                "tags": delete_tags,
            })

        if not self.dry_run and delete_tags:
            if not self.confirm_deletion(len(delete_tags), "tags", force=options.force):
                self.logger.info("Deletion cancelled by user")
                return CleanupResult(repository, retention, DeletionSummary(), total_tags=len(all_tags),
                                     aborted=True)

        if self.dry_run:
            self.logger.info(f"🔥 [DRY-RUN] Would delete {len(delete_tags)} tags")
        else:
            self.logger.info(f"🔥 Deleting {len(delete_tags)} tags...")

        deletion = self.delete_tags_concurrently(repository, delete_tags)

        summary = {
            "total": len(all_tags),
            "deleted": len(deletion.deleted),
            "not_found": len(deletion.not_found),
            "failed": len(deletion.failed),
            "kept": len(all_tags) - len(delete_tags),
        }
        sizes = [t.total_size for t in delete_tags if t.total_size is not None]
        if sizes:
            summary["space_freed_bytes"] = sum(sizes)
        if results_file:
            summary["results_file"] = results_file
        self.log_summary(summary)
        self.logger.info("🔄 Done!")

        return CleanupResult(repository, retention, deletion, total_tags=len(all_tags))

    def delete_tags_from_file(self, input_file: str, force: bool = False) -> DeletionSummary:
        """Delete a deletion set exported earlier with --output-tags.

        Skips listing and filtering; the file's repository and tags are used
        as they are.
        """
        data = load_json(input_file)
        if not isinstance(data, dict) or "repository" not in data or "tags" not in data:
            raise create_config_error("input_tags", input_file, "expected an export written by 'clean --output-tags'")

        repository = Repository.from_api(data["repository"])
        tags = [DetailedTag.from_api(t) for t in data["tags"]]
        self.logger.info(
            f"📂 Loaded {len(tags)} tags to delete for repository {repository.path} (ID: {repository.id}) "
            f"from {input_file}"
        )

        if not self.dry_run and tags:
            if not self.confirm_deletion(len(tags), "tags", force=force):
                self.logger.info("Deletion cancelled by user")
                return DeletionSummary()

        summary = self.delete_tags_concurrently(repository, tags)
        self.log_summary({
            "total": len(tags),
            "deleted": len(summary.deleted),
            "not_found": len(summary.not_found),
            "failed": len(summary.failed),
        })
        return summary
