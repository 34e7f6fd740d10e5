"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides an in-memory GitLab client so no test touches the network.
"""
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

from gitlab_cleaner.gitlab_client import GitLabApiError  # noqa: E402
from gitlab_cleaner.options import CleanerOptions  # noqa: E402

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> str:
    return (NOW - timedelta(days=days)).isoformat()


class FakeGitLabClient:
    """Stand-in for GitLabClient backed by dictionaries.

    repositories: {repository_id: repository payload}
    tags: {repository_id: [tag detail payloads]}
    errors: {(operation, key): status code} where key is a repository ID
        for "show_repository" and a tag name for "show_tag" / "delete_tag"
    """

    def __init__(self, repositories=None, tags=None, errors=None):
        self.repositories = repositories or {}
        self.tags = tags or {}
        self.errors = errors or {}
        self.deleted = []
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def _maybe_fail(self, operation, key, url=""):
        status = self.errors.get((operation, key))
        if status:
            raise GitLabApiError(status, "GET", url or f"/{operation}/{key}")

    def show_repository(self, repository_id, tags_count=True):
        self._record("show_repository", repository_id)
        self._maybe_fail("show_repository", repository_id)
        if repository_id not in self.repositories:
            raise GitLabApiError(404, "GET", f"/registry/repositories/{repository_id}", "404 Not found")
        return dict(self.repositories[repository_id])

    def list_project_repositories(self, project, tags_count=True):
        self._record("list_project_repositories", project)
        return [dict(r) for r in self.repositories.values() if str(r["project_id"]) == str(project)]

    def list_group_repositories(self, group):
        self._record("list_group_repositories", group)
        return [{k: v for k, v in r.items() if k != "tags_count"} for r in self.repositories.values()]

    def list_tags(self, project_id, repository_id, page, per_page):
        self._record("list_tags", repository_id, page, per_page)
        tags = self.tags.get(repository_id, [])
        start = (page - 1) * per_page
        return [{"name": t["name"], "path": t.get("path", ""), "location": t.get("location", "")}
                for t in tags[start:start + per_page]]

    def list_all_tags(self, project_id, repository_id, per_page):
        self._record("list_all_tags", repository_id, per_page)
        return [{"name": t["name"]} for t in self.tags.get(repository_id, [])]

    def show_tag(self, project_id, repository_id, tag_name):
        self._record("show_tag", repository_id, tag_name)
        self._maybe_fail("show_tag", tag_name)
        for tag in self.tags.get(repository_id, []):
            if tag["name"] == tag_name:
                return dict(tag)
        raise GitLabApiError(404, "GET", f"/tags/{tag_name}", "404 Tag Not Found")

    def delete_tag(self, project_id, repository_id, tag_name):
        self._record("delete_tag", repository_id, tag_name)
        self._maybe_fail("delete_tag", tag_name)
        with self._lock:
            self.deleted.append(tag_name)

    def close(self):
        self.closed = True


def make_tag(name, age_days, total_size=1024):
    return {
        "name": name,
        "path": f"group/project:{name}",
        "location": f"registry.example.com/group/project:{name}",
        "created_at": days_ago(age_days),
        "digest": f"sha256:{name}",
        "revision": f"rev-{name}",
        "total_size": total_size,
    }


def make_repository(repository_id, tags_count=None, project_id=7):
    repository = {
        "id": repository_id,
        "project_id": project_id,
        "path": f"group/project/image-{repository_id}",
        "name": f"image-{repository_id}",
        "location": f"registry.example.com/group/project/image-{repository_id}",
    }
    if tags_count is not None:
        repository["tags_count"] = tags_count
    return repository


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def five_tags():
    """Tags t1..t5 created 10, 20, 30, 60 and 90 days ago"""
    return [
        make_tag("t1", 10),
        make_tag("t2", 20),
        make_tag("t3", 30),
        make_tag("t4", 60),
        make_tag("t5", 90),
    ]


@pytest.fixture
def fake_client(five_tags):
    return FakeGitLabClient(
        repositories={42: make_repository(42, tags_count=len(five_tags))},
        tags={42: five_tags},
    )


@pytest.fixture
def cleaner_options():
    return CleanerOptions(
        gitlab_host="https://gitlab.example.com",
        gitlab_token="glpat-test",
        concurrency=3,
        dry_run=True,
        interactive=False,
    )
