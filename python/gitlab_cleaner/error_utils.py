"""
Error message utilities for providing actionable guidance to users.

This module provides functions to create helpful error messages with
suggested fixes and troubleshooting steps.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


def create_gitlab_connection_error(gitlab_host: str, error: Exception) -> ActionableError:
    """Create actionable error for GitLab API connection failures"""
    error_str = str(error).lower()

    suggestions = [
        f"Verify the GitLab host is correct: {gitlab_host}",
        "Check network connectivity to the GitLab instance",
        "Verify proxy and firewall rules allow access to the GitLab API",
    ]

    if "timeout" in error_str or "timed out" in error_str:
        suggestions.insert(1, "Lower --concurrency, the instance may be under heavy load")

    if "name resolution" in error_str or "dns" in error_str:
        suggestions.insert(1, "Verify DNS resolution for the GitLab hostname")

    return ActionableError(
        message=f"Failed to connect to GitLab API at {gitlab_host}",
        category=ErrorCategory.CONNECTION,
        suggestions=suggestions,
        details={
            "gitlab_host": gitlab_host,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_gitlab_auth_error(gitlab_host: str, status_code: int) -> ActionableError:
    """Create actionable error for GitLab authentication failures"""
    suggestions = [
        "Verify GITLAB_TOKEN environment variable is set correctly",
        "Check the token has not expired or been revoked",
        "Make sure the token has the 'api' scope",
        "See https://docs.gitlab.com/ee/user/profile/personal_access_tokens.html",
    ]

    return ActionableError(
        message=f"GitLab rejected the API token at {gitlab_host} (HTTP {status_code})",
        category=ErrorCategory.AUTHENTICATION,
        suggestions=suggestions,
        details={
            "gitlab_host": gitlab_host,
            "status_code": status_code,
        }
    )


def create_config_error(field: str, value: Any, reason: str) -> ActionableError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml or on the command line",
        "Verify the value matches the expected format",
    ]

    if field.lower() in ("gitlab_host", "gitlab.host"):
        suggestions.insert(0, 'Example: export GITLAB_HOST="https://gitlab.com"')
    elif field.lower() in ("gitlab_token", "gitlab.token"):
        suggestions.insert(0, "Create a personal access token with the 'api' scope and export GITLAB_TOKEN")
    elif "index" in field.lower():
        suggestions.insert(0, "Start index must be lower than or equal to end index")
    elif "regex" in field.lower():
        suggestions.insert(0, "Regexes use Python 're' syntax, quote them to protect them from the shell")

    return ActionableError(
        message=f"Configuration error: Invalid value for '{field}'",
        category=ErrorCategory.CONFIGURATION,
        suggestions=suggestions,
        details={
            "field": field,
            "value": value,
            "reason": reason
        }
    )


def create_no_repositories_error(start_index: int, end_index: int) -> ActionableError:
    """Create actionable error when an ID range holds no container repository"""
    return ActionableError(
        message=f"No repositories found in ID range [{start_index}-{end_index}]",
        category=ErrorCategory.RESOURCE,
        suggestions=[
            "Maybe try again with a different ID range (-s / -e)",
            "Check the token can read the container registry of the projects in range",
            "Use 'list project' or 'list group' when you know where the repositories live",
        ],
        details={
            "start_index": start_index,
            "end_index": end_index,
        }
    )
