"""
GitLab container registry API client.

Thin wrapper around the GitLab REST API v4 container registry endpoints.
Every call maps to exactly one HTTP request (except the "all pages" listing
helpers); there are no retries. Non-2xx responses raise GitLabApiError so
callers can decide which statuses are expected.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Union
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

from gitlab_cleaner.error_utils import create_gitlab_connection_error

API_PREFIX = "/api/v4"
DEFAULT_TIMEOUT = 60


class GitLabApiError(Exception):
    """Raised when the GitLab API answers with a non-success status"""

    def __init__(self, status_code: int, method: str, url: str, message: str = ""):
        self.status_code = status_code
        self.method = method
        self.url = url
        self.message = message
        super().__init__(f"{method} {url} failed with HTTP {status_code}: {message}".rstrip(": "))

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403


def _encode_id(project_or_group: Union[int, str]) -> str:
    """Projects and groups accept a numeric ID or a URL-encoded full path"""
    return quote(str(project_or_group), safe="")


class GitLabClient:
    """Client for the GitLab container registry API"""

    def __init__(self, host: str, token: str, pool_size: int = 20, timeout: int = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        """Initialize GitLabClient.

        Args:
            host: GitLab instance URL, e.g. "https://gitlab.com"
            token: Personal, project or group access token with api scope
            pool_size: HTTP connection pool size, match it to the worker count
            timeout: Per-request timeout in seconds
            session: Optional pre-built requests session (mainly for tests)
        """
        self.host = host.rstrip("/")
        self.base_url = f"{self.host}{API_PREFIX}"
        self.timeout = timeout

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        session.headers.update({"PRIVATE-TOKEN": token, "Accept": "application/json"})
        self.session = session

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, params=params, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise create_gitlab_connection_error(self.host, e) from e
        except requests.exceptions.Timeout as e:
            raise create_gitlab_connection_error(self.host, e) from e

        if not response.ok:
            raise GitLabApiError(response.status_code, method, url, response.text.rstrip()[:200])

        logging.debug(f"{method} {url} -> {response.status_code}")
        return response

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params).json()

    def _iter_pages(self, path: str, params: Optional[Dict[str, Any]] = None, per_page: int = 100) -> Iterator[List[Dict]]:
        """Walk an offset-paginated list endpoint following the X-Next-Page header"""
        query = dict(params or {})
        query["per_page"] = per_page
        page: Optional[str] = "1"
        while page:
            query["page"] = page
            response = self._request("GET", path, params=query)
            yield response.json()
            page = response.headers.get("X-Next-Page") or None

    # Repositories
    def show_repository(self, repository_id: int, tags_count: bool = True) -> Dict[str, Any]:
        """GET /registry/repositories/:id"""
        params = {"tags_count": "true"} if tags_count else None
        return self._get_json(f"/registry/repositories/{int(repository_id)}", params=params)

    def list_project_repositories(self, project: Union[int, str], tags_count: bool = True) -> List[Dict[str, Any]]:
        """All container repositories of a project"""
        params = {"tags_count": "true"} if tags_count else None
        result = []
        for page in self._iter_pages(f"/projects/{_encode_id(project)}/registry/repositories", params=params):
            result.extend(page)
        return result

    def list_group_repositories(self, group: Union[int, str]) -> List[Dict[str, Any]]:
        """All container repositories of the projects in a group (no tag counts)"""
        result = []
        for page in self._iter_pages(f"/groups/{_encode_id(group)}/registry/repositories"):
            result.extend(page)
        return result

    # Tags
    def _tags_path(self, project_id: int, repository_id: int) -> str:
        return f"/projects/{_encode_id(project_id)}/registry/repositories/{int(repository_id)}/tags"

    def list_tags(self, project_id: int, repository_id: int, page: int, per_page: int) -> List[Dict[str, Any]]:
        """One page of condensed tags"""
        return self._get_json(self._tags_path(project_id, repository_id), params={"page": page, "per_page": per_page})

    def list_all_tags(self, project_id: int, repository_id: int, per_page: int) -> List[Dict[str, Any]]:
        """All condensed tags, walking pages one after the other"""
        result = []
        for page in self._iter_pages(self._tags_path(project_id, repository_id), per_page=per_page):
            result.extend(page)
        return result

    def show_tag(self, project_id: int, repository_id: int, tag_name: str) -> Dict[str, Any]:
        """Tag details: created_at, digest, revision and total_size"""
        return self._get_json(f"{self._tags_path(project_id, repository_id)}/{quote(tag_name, safe='')}")

    def delete_tag(self, project_id: int, repository_id: int, tag_name: str) -> None:
        """Delete a single tag"""
        self._request("DELETE", f"{self._tags_path(project_id, repository_id)}/{quote(tag_name, safe='')}")

    def close(self) -> None:
        self.session.close()
