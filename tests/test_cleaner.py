"""
Tests for the cleanup pipeline in gitlab_cleaner/cleaner.py

Every test runs against the in-memory FakeGitLabClient from conftest.py.
"""

import json
import logging
import time
from dataclasses import replace

import pytest

from conftest import NOW, FakeGitLabClient, make_repository, make_tag
from gitlab_cleaner.cleaner import GitLabContainerRepositoryCleaner
from gitlab_cleaner.error_utils import ActionableError, ErrorCategory
from gitlab_cleaner.models import CondensedTag, Repository
from gitlab_cleaner.options import CleanupOptions
from gitlab_cleaner.retention import RetentionPolicy


@pytest.fixture
def cleaner(cleaner_options, fake_client):
    return GitLabContainerRepositoryCleaner(cleaner_options, client=fake_client)


def delete_calls(client):
    return [c for c in client.calls if c[0] == "delete_tag"]


class TestRepositoryDiscovery:
    """Tests for scanning repository ID ranges"""

    def test_skips_missing_ids(self, cleaner_options):
        client = FakeGitLabClient(repositories={i: make_repository(i, tags_count=1) for i in (1, 3, 5)})
        cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=client)

        repositories = cleaner.get_container_repositories_concurrently(1, 6)

        assert sorted(r.id for r in repositories) == [1, 3, 5]
        requested = sorted(c[1] for c in client.calls if c[0] == "show_repository")
        assert requested == [1, 2, 3, 4, 5, 6]

    def test_forbidden_is_skipped_and_other_errors_are_logged(self, cleaner_options, caplog):
        client = FakeGitLabClient(
            repositories={i: make_repository(i) for i in (1, 2, 3)},
            errors={("show_repository", 2): 403, ("show_repository", 3): 500},
        )
        cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=client)

        with caplog.at_level(logging.ERROR):
            repositories = cleaner.get_container_repositories_concurrently(1, 3)

        assert [r.id for r in repositories] == [1]
        errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "repository ID 3" in errors[0]

    def test_empty_range_raises(self, cleaner_options):
        cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=FakeGitLabClient())

        with pytest.raises(ActionableError) as exc_info:
            cleaner.get_container_repositories_concurrently(1, 4)

        assert exc_info.value.category == ErrorCategory.RESOURCE
        assert "No repositories found in ID range [1-4]" in str(exc_info.value)

    def test_inverted_range_is_configuration_error(self, cleaner):
        with pytest.raises(ActionableError) as exc_info:
            cleaner.get_container_repositories_concurrently(10, 1)
        assert exc_info.value.category == ErrorCategory.CONFIGURATION

    def test_unauthorized_is_fatal(self, cleaner_options):
        client = FakeGitLabClient(
            repositories={1: make_repository(1)},
            errors={("show_repository", 1): 401},
        )
        cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=client)

        with pytest.raises(ActionableError) as exc_info:
            cleaner.get_container_repositories_concurrently(1, 1)
        assert exc_info.value.category == ErrorCategory.AUTHENTICATION

    def test_project_and_group_listing(self, cleaner_options):
        client = FakeGitLabClient(repositories={
            1: make_repository(1, tags_count=3, project_id=7),
            2: make_repository(2, tags_count=0, project_id=8),
        })
        cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=client)

        assert [r.id for r in cleaner.get_project_container_repositories(7)] == [1]
        group = cleaner.get_group_container_repositories("group")
        assert sorted(r.id for r in group) == [1, 2]
        assert all(r.tags_count is None for r in group)

    def test_rejects_non_positive_concurrency(self, cleaner_options):
        with pytest.raises(ActionableError):
            GitLabContainerRepositoryCleaner(replace(cleaner_options, concurrency=0), client=FakeGitLabClient())


class TestTagListing:
    """Tests for concurrent tag list pagination"""

    def test_fetches_every_page(self, cleaner, fake_client):
        repository = cleaner.get_repository(42)

        tags = cleaner.get_repository_tags_concurrently(repository, tags_per_page=2)

        assert sorted(t.name for t in tags) == ["t1", "t2", "t3", "t4", "t5"]
        pages = sorted(c[2] for c in fake_client.calls if c[0] == "list_tags")
        assert pages == [1, 2, 3]

    def test_no_tags(self, cleaner):
        repository = Repository(id=42, project_id=7, path="group/project", tags_count=0)
        assert cleaner.get_repository_tags_concurrently(repository) == []

    def test_missing_tag_count_walks_pages_sequentially(self, cleaner, fake_client):
        repository = Repository(id=42, project_id=7, path="group/project", tags_count=None)

        tags = cleaner.get_repository_tags_concurrently(repository, tags_per_page=2)

        assert len(tags) == 5
        assert [c[0] for c in fake_client.calls] == ["list_all_tags"]


class TestTagDetails:
    """Tests for the concurrent detail fetcher"""

    def test_fetches_details_for_all_tags(self, cleaner):
        repository = cleaner.get_repository(42)
        tags = [CondensedTag(name=f"t{i}") for i in range(1, 6)]

        details = cleaner.get_tag_details_concurrently(repository, tags)

        assert sorted(t.name for t in details) == ["t1", "t2", "t3", "t4", "t5"]
        assert all(t.created_at is not None and not t.placeholder for t in details)

    def test_failed_tags_are_dropped(self, cleaner_options, five_tags, caplog):
        client = FakeGitLabClient(
            repositories={42: make_repository(42, tags_count=5)},
            tags={42: five_tags},
            errors={("show_tag", "t2"): 404, ("show_tag", "t4"): 500},
        )
        cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=client)
        repository = cleaner.get_repository(42)

        with caplog.at_level(logging.WARNING):
            details = cleaner.get_tag_details_concurrently(repository, [CondensedTag(name=t["name"]) for t in five_tags])

        assert sorted(t.name for t in details) == ["t1", "t3", "t5"]
        messages = " ".join(r.getMessage() for r in caplog.records)
        assert "Tag t2 not found" in messages
        assert "expected 5" in messages


class TestDegradedFallback:
    """Tests for retention when GitLab returns no tag details at all"""

    @pytest.fixture
    def oci_client(self):
        tags = [make_tag(n, 400) for n in ("v1.0.0", "v1.1.0", "v2.0.0", "v2.1.0", "nightly")]
        return FakeGitLabClient(
            repositories={42: make_repository(42, tags_count=len(tags))},
            tags={42: tags},
            errors={("show_tag", t["name"]): 404 for t in tags},
        )

    def test_falls_back_to_semver_order(self, cleaner_options, oci_client, caplog):
        cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=oci_client)
        repository = cleaner.get_repository(42)
        tags = cleaner.get_repository_tags_concurrently(repository)
        policy = RetentionPolicy(keep_regex="^$", delete_regex=".*", older_than_days=30, keep_most_recent=2)

        with caplog.at_level(logging.WARNING):
            result = cleaner.filter_tags_for_deletion(repository, tags, policy, now=NOW)

        assert result.degraded is True
        assert [t.name for t in result.kept_most_recent] == ["v2.1.0", "v2.0.0"]
        assert sorted(t.name for t in result.to_delete) == ["nightly", "v1.0.0", "v1.1.0"]
        assert all(t.placeholder for t in result.to_delete)
        assert "Age-based filtering will be skipped" in caplog.text

    def test_cleanup_reports_degraded_result(self, cleaner_options, oci_client):
        cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=oci_client)
        options = CleanupOptions(keep_regex="^v2", delete_regex=".*", older_than_days=0)

        result = cleaner.cleanup_container_repository_tags(42, options, now=NOW)

        assert result.retention.degraded is True
        assert sorted(result.deletion.deleted) == ["nightly", "v1.0.0", "v1.1.0"]
        assert delete_calls(oci_client) == []


class TestCleanup:
    """Tests for the full clean workflow"""

    def test_dry_run_never_deletes(self, cleaner, fake_client):
        options = CleanupOptions(keep_regex="^$", delete_regex=".*", older_than_days=15)

        result = cleaner.cleanup_container_repository_tags(42, options, now=NOW)

        assert sorted(result.deletion.deleted) == ["t2", "t3", "t4", "t5"]
        assert result.total_tags == 5
        assert delete_calls(fake_client) == []
        assert fake_client.deleted == []

    def test_default_regexes_delete_nothing(self, cleaner, fake_client):
        result = cleaner.cleanup_container_repository_tags(42, CleanupOptions(older_than_days=0), now=NOW)

        assert result.retention.to_delete == []
        assert result.deletion.deleted == []

    def test_deletes_selected_tags(self, cleaner_options, fake_client):
        cleaner = GitLabContainerRepositoryCleaner(replace(cleaner_options, dry_run=False), client=fake_client)
        options = CleanupOptions(keep_regex="t5", delete_regex=".*", older_than_days=25, keep_most_recent=1)

        result = cleaner.cleanup_container_repository_tags(42, options, now=NOW)

        assert sorted(fake_client.deleted) == ["t3", "t4"]
        assert sorted(result.deletion.deleted) == ["t3", "t4"]
        assert [t.name for t in result.retention.kept_most_recent] == ["t1"]

    def test_not_found_and_failed_deletions_are_counted(self, cleaner_options, five_tags):
        client = FakeGitLabClient(
            repositories={42: make_repository(42, tags_count=5)},
            tags={42: five_tags},
            errors={("delete_tag", "t4"): 404, ("delete_tag", "t5"): 500},
        )
        cleaner = GitLabContainerRepositoryCleaner(replace(cleaner_options, dry_run=False), client=client)
        options = CleanupOptions(keep_regex="^$", delete_regex=".*", older_than_days=0)

        result = cleaner.cleanup_container_repository_tags(42, options, now=NOW)

        assert sorted(result.deletion.deleted) == ["t1", "t2", "t3"]
        assert result.deletion.not_found == ["t4"]
        assert result.deletion.failed == ["t5"]

    def test_declined_confirmation_aborts(self, cleaner_options, fake_client, mocker):
        cleaner = GitLabContainerRepositoryCleaner(
            replace(cleaner_options, dry_run=False, interactive=True), client=fake_client
        )
        mocker.patch.object(cleaner, "is_interactive", return_value=True)
        mocker.patch("builtins.input", return_value="no")
        options = CleanupOptions(keep_regex="^$", delete_regex=".*", older_than_days=0)

        result = cleaner.cleanup_container_repository_tags(42, options, now=NOW)

        assert result.aborted is True
        assert fake_client.deleted == []

    def test_force_skips_confirmation(self, cleaner_options, fake_client, mocker):
        cleaner = GitLabContainerRepositoryCleaner(
            replace(cleaner_options, dry_run=False, interactive=True), client=fake_client
        )
        mocker.patch.object(cleaner, "is_interactive", return_value=True)
        prompt = mocker.patch("builtins.input")
        options = CleanupOptions(keep_regex="^$", delete_regex=".*", older_than_days=0, force=True)

        cleaner.cleanup_container_repository_tags(42, options, now=NOW)

        prompt.assert_not_called()
        assert len(fake_client.deleted) == 5

    def test_exported_deletion_set_can_be_replayed(self, cleaner_options, fake_client, tmp_path):
        export = tmp_path / "to-delete.json"
        dry_cleaner = GitLabContainerRepositoryCleaner(cleaner_options, client=fake_client)
        options = CleanupOptions(keep_regex="^$", delete_regex=".*", older_than_days=45, output_tags=str(export))

        dry_cleaner.cleanup_container_repository_tags(42, options, now=NOW)

        data = json.loads(export.read_text())
        assert data["repository"]["id"] == 42
        assert sorted(t["name"] for t in data["tags"]) == ["t4", "t5"]
        assert fake_client.deleted == []

        cleaner = GitLabContainerRepositoryCleaner(replace(cleaner_options, dry_run=False), client=fake_client)
        summary = cleaner.delete_tags_from_file(str(export))

        assert sorted(summary.deleted) == ["t4", "t5"]
        assert sorted(fake_client.deleted) == ["t4", "t5"]

    def test_invalid_replay_file(self, cleaner, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps(["t1"]))

        with pytest.raises(ActionableError):
            cleaner.delete_tags_from_file(str(bad))


class InterruptingClient(FakeGitLabClient):
    """Raises KeyboardInterrupt from the first delete, like Ctrl-C landing mid-request"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.interrupted = False

    def delete_tag(self, project_id, repository_id, tag_name):
        time.sleep(0.01)
        with self._lock:
            first = not self.interrupted
            self.interrupted = True
        if first:
            raise KeyboardInterrupt
        super().delete_tag(project_id, repository_id, tag_name)


class TestInterruptedDeletion:
    """Ctrl-C during deletion stops every chunk at its next tag"""

    @pytest.fixture
    def many_tags(self):
        return [make_tag(f"t{i:03d}", 100) for i in range(200)]

    def test_interrupt_stops_deleting(self, cleaner_options, many_tags):
        client = InterruptingClient(repositories={42: make_repository(42, tags_count=200)}, tags={42: many_tags})
        cleaner = GitLabContainerRepositoryCleaner(replace(cleaner_options, dry_run=False, concurrency=4),
                                                   client=client)
        tags = cleaner.get_tag_details_concurrently(cleaner.get_repository(42),
                                                    [CondensedTag(name=t["name"]) for t in many_tags])

        with pytest.raises(KeyboardInterrupt):
            cleaner.delete_tags_concurrently(cleaner.get_repository(42), tags)

        time.sleep(0.2)
        assert cleaner.cancelled.is_set()
        assert len(client.deleted) < 50

    def test_cancelled_cleaner_fetches_no_details(self, cleaner, fake_client, five_tags):
        cleaner.cancelled.set()

        details = cleaner.get_tag_details_concurrently(
            cleaner.get_repository(42), [CondensedTag(name=t["name"]) for t in five_tags]
        )

        assert details == []
        assert [c for c in fake_client.calls if c[0] == "show_tag"] == []


class TestListAllPrompt:
    """Scanning without an output file warns and waits for ENTER"""

    def test_prompts_without_output_file(self, cleaner_options, fake_client, mocker, caplog):
        cleaner = GitLabContainerRepositoryCleaner(replace(cleaner_options, interactive=True), client=fake_client)
        stdin = mocker.patch("gitlab_cleaner.deletion_base.sys.stdin")
        stdin.isatty.return_value = True
        prompt = mocker.patch("builtins.input", return_value="")

        with caplog.at_level(logging.WARNING):
            repositories = cleaner.get_container_repositories_concurrently(42, 42)

        prompt.assert_called_once_with("Press CTRL+C to interrupt or ENTER to continue...")
        assert [r.id for r in repositories] == [42]
        assert "Use -o flag to specify a file" in caplog.text

    def test_interrupt_at_prompt_requests_nothing(self, cleaner_options, fake_client, mocker):
        cleaner = GitLabContainerRepositoryCleaner(replace(cleaner_options, interactive=True), client=fake_client)
        mocker.patch.object(cleaner, "is_interactive", return_value=True)
        mocker.patch("builtins.input", side_effect=KeyboardInterrupt)

        with pytest.raises(KeyboardInterrupt):
            cleaner.get_container_repositories_concurrently(1, 100)

        assert fake_client.calls == []

    def test_no_prompt_with_output_file(self, cleaner_options, fake_client, mocker, caplog):
        cleaner = GitLabContainerRepositoryCleaner(replace(cleaner_options, interactive=True), client=fake_client)
        mocker.patch.object(cleaner, "is_interactive", return_value=True)
        prompt = mocker.patch("builtins.input")

        with caplog.at_level(logging.WARNING):
            cleaner.get_container_repositories_concurrently(42, 42, output_file="repositories.json")

        prompt.assert_not_called()
        assert "Use -o flag" not in caplog.text

    def test_non_interactive_continues(self, cleaner, caplog):
        with caplog.at_level(logging.INFO):
            repositories = cleaner.get_container_repositories_concurrently(42, 42)

        assert [r.id for r in repositories] == [42]
        assert "Non-interactive environment detected" in caplog.text


class TestTagsPerPageBound:
    """GitLab caps per_page at 100, so larger pages are refused up front"""

    @pytest.mark.parametrize("tags_per_page", [0, 101, 200])
    def test_listing_rejects_out_of_range(self, cleaner, fake_client, tags_per_page):
        with pytest.raises(ActionableError) as exc_info:
            cleaner.get_repository_tags_concurrently(cleaner.get_repository(42), tags_per_page=tags_per_page)

        assert exc_info.value.category == ErrorCategory.CONFIGURATION
        assert [c for c in fake_client.calls if c[0] == "list_tags"] == []

    def test_cleanup_rejects_before_any_request(self, cleaner, fake_client):
        with pytest.raises(ActionableError):
            cleaner.cleanup_container_repository_tags(42, CleanupOptions(tags_per_page=101), now=NOW)

        assert fake_client.calls == []

    def test_upper_bound_is_accepted(self, cleaner):
        tags = cleaner.get_repository_tags_concurrently(cleaner.get_repository(42), tags_per_page=100)
        assert len(tags) == 5


class TestClose:

    def test_close_releases_client(self, cleaner, fake_client):
        cleaner.close()
        assert fake_client.closed is True
