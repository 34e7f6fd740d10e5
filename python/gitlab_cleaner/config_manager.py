#!/usr/bin/env python3
"""
Configuration Manager for GitLab Container Registry Cleaner

This module handles loading and managing configuration from config.yaml
and environment variables, and turns it into the explicit option
structures the cleaner is built from.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import yaml

from gitlab_cleaner.options import (
    DEFAULT_CONCURRENCY,
    DEFAULT_END_INDEX,
    DEFAULT_START_INDEX,
    DEFAULT_TAGS_PER_PAGE,
    DEFAULT_TIMEOUT,
    MAX_TAGS_PER_PAGE,
    CleanerOptions,
    CleanupOptions,
)
from gitlab_cleaner.retention import (
    DEFAULT_DELETE_REGEX,
    DEFAULT_KEEP_MOST_RECENT,
    DEFAULT_KEEP_REGEX,
    DEFAULT_OLDER_THAN_DAYS,
)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


class ConfigManager:
    """Manages configuration for the GitLab registry cleaner"""

    def __init__(self, config_file: str = None, environ: Optional[Dict[str, str]] = None):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            environ: Environment mapping to read overrides from (defaults to os.environ)
        """
        self.environ = os.environ if environ is None else environ
        if config_file is None:
            config_file = self.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "gitlab": {"host": "", "token": "", "timeout": DEFAULT_TIMEOUT},
            "cleaner": {
                "concurrency": DEFAULT_CONCURRENCY,
                "tags_per_page": DEFAULT_TAGS_PER_PAGE,
                "start_index": DEFAULT_START_INDEX,
                "end_index": DEFAULT_END_INDEX,
            },
            "retention": {
                "keep_regex": DEFAULT_KEEP_REGEX,
                "delete_regex": DEFAULT_DELETE_REGEX,
                "older_than_days": DEFAULT_OLDER_THAN_DAYS,
                "keep_most_recent": DEFAULT_KEEP_MOST_RECENT,
            },
            "security": {"dry_run_by_default": True, "require_confirmation": True},
        }

        if not os.path.exists(self.config_file):
            logging.debug(f"Config file {self.config_file} not found, using defaults")
            return default_config

        try:
            with open(self.config_file, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigValidationError(f"Error loading config file {self.config_file}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigValidationError(f"Config file {self.config_file} must contain a mapping")
        return self._merge_config(default_config, user_config)

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _get_int(self, section: str, key: str) -> int:
        value = self.config.get(section, {}).get(key)
        try:
            return int(value)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"{section}.{key} must be an integer, got: {value} (type: {type(value).__name__})"
            )

    # GitLab configuration
    def get_gitlab_host(self) -> str:
        """Get GitLab host from environment or config"""
        return (self.environ.get("GITLAB_HOST") or self.config["gitlab"]["host"] or "").strip()

    def get_gitlab_token(self) -> str:
        """Get GitLab API token from environment or config"""
        return (self.environ.get("GITLAB_TOKEN") or self.config["gitlab"]["token"] or "").strip()

    def get_timeout(self) -> int:
        return self._get_int("gitlab", "timeout")

    # Cleaner configuration
    def get_concurrency(self) -> int:
        """Get worker count per pipeline stage, with type coercion"""
        env_value = self.environ.get("CLEANER_CONCURRENCY")
        if env_value:
            try:
                return int(env_value)
            except ValueError:
                raise ConfigValidationError(f"CLEANER_CONCURRENCY must be an integer, got: {env_value}")
        return self._get_int("cleaner", "concurrency")

    def get_tags_per_page(self) -> int:
        return self._get_int("cleaner", "tags_per_page")

    def get_start_index(self) -> int:
        return self._get_int("cleaner", "start_index")

    def get_end_index(self) -> int:
        return self._get_int("cleaner", "end_index")

    # Retention configuration
    def get_keep_regex(self) -> str:
        return str(self.config["retention"]["keep_regex"])

    def get_delete_regex(self) -> str:
        return str(self.config["retention"]["delete_regex"])

    def get_older_than_days(self) -> int:
        return self._get_int("retention", "older_than_days")

    def get_keep_most_recent(self) -> int:
        return self._get_int("retention", "keep_most_recent")

    # Security configuration
    def is_dry_run_by_default(self) -> bool:
        """Get dry run default from config"""
        return bool(self.config["security"]["dry_run_by_default"])

    def requires_confirmation(self) -> bool:
        """Get confirmation requirement from config"""
        return bool(self.config["security"]["require_confirmation"])

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        host = self.get_gitlab_host()
        if host and not self._is_valid_host(host):
            errors.append(f"GitLab host '{host}' must be an http(s) URL, e.g. https://gitlab.com")

        concurrency = self.get_concurrency()
        if concurrency < 1:
            errors.append(f"cleaner.concurrency must be a positive integer, got: {concurrency}")
        elif concurrency > 100:
            warnings.append(f"concurrency is very high ({concurrency}), GitLab may throttle requests")

        tags_per_page = self.get_tags_per_page()
        if tags_per_page < 1 or tags_per_page > MAX_TAGS_PER_PAGE:
            errors.append(f"cleaner.tags_per_page must be between 1 and {MAX_TAGS_PER_PAGE}, got: {tags_per_page}")

        start_index = self.get_start_index()
        end_index = self.get_end_index()
        if start_index > end_index:
            errors.append(f"cleaner.start_index ({start_index}) must be <= cleaner.end_index ({end_index})")

        for key in ("older_than_days", "keep_most_recent"):
            value = self._get_int("retention", key)
            if value < 0:
                errors.append(f"retention.{key} must be zero or positive, got: {value}")

        for key in ("keep_regex", "delete_regex"):
            pattern = str(self.config["retention"][key])
            try:
                re.compile(pattern)
            except re.error as e:
                errors.append(f"retention.{key} '{pattern}' is not a valid regex: {e}")

        if self.get_timeout() < 1:
            errors.append(f"gitlab.timeout must be a positive integer (seconds), got: {self.get_timeout()}")

        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_host(self, host: str) -> bool:
        pattern = r"^https?://[a-zA-Z0-9]([a-zA-Z0-9\-\.]*[a-zA-Z0-9])?(:[0-9]{1,5})?(/.*)?$"
        return bool(re.match(pattern, host))

    def cleaner_options(self, **overrides) -> CleanerOptions:
        """Build CleanerOptions from config, CLI values win when not None"""
        values = {
            "gitlab_host": self.get_gitlab_host(),
            "gitlab_token": self.get_gitlab_token(),
            "concurrency": self.get_concurrency(),
            "dry_run": self.is_dry_run_by_default(),
            "interactive": self.requires_confirmation(),
            "timeout": self.get_timeout(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return CleanerOptions(**values)

    def cleanup_options(self, **overrides) -> CleanupOptions:
        """Build CleanupOptions from config, CLI values win when not None"""
        values = {
            "keep_regex": self.get_keep_regex(),
            "delete_regex": self.get_delete_regex(),
            "older_than_days": self.get_older_than_days(),
            "keep_most_recent": self.get_keep_most_recent(),
            "tags_per_page": self.get_tags_per_page(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return CleanupOptions(**values)

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        print(f"  Config File: {self.config_file}")
        print(f"  GitLab Host: {self.get_gitlab_host() or 'Not set'}")
        token = self.get_gitlab_token()
        print(f"  GitLab Token: {'*' * len(token) if token else 'Not set'}")
        print(f"  Concurrency: {self.get_concurrency()}")
        print(f"  Tags Per Page: {self.get_tags_per_page()}")
        print(f"  ID Range: [{self.get_start_index()}-{self.get_end_index()}]")
        print(f"  Keep Regex: {self.get_keep_regex()}")
        print(f"  Delete Regex: {self.get_delete_regex()}")
        print(f"  Older Than Days: {self.get_older_than_days()}")
        print(f"  Keep Most Recent: {self.get_keep_most_recent()}")
        print(f"  Dry Run Default: {self.is_dry_run_by_default()}")
        print(f"  Require Confirmation: {self.requires_confirmation()}")
