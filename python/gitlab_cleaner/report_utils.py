"""
Utility functions for report output: JSON exports and console tables.

This module provides functions to:
- Save and load JSON exports (repository lists, deletion sets)
- Format repositories and tags as tables for stdout
- Format byte sizes for summaries
"""
import dataclasses
import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, List

from tabulate import tabulate

from gitlab_cleaner.logging_utils import get_logger

logger = get_logger(__name__)


# ============================================================================
# Formatting Utilities
# ============================================================================

def sizeof_fmt(num: float, suffix: str = "B") -> str:
    """Format bytes into human-readable size.

    Args:
        num: Number of bytes
        suffix: Suffix to append (default: "B")

    Returns:
        Formatted string like "1.5GiB", "500MiB", etc.
    """
    for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
        if abs(num) < 1024.0:
            return f"{num:3.1f}{unit}{suffix}"
        num /= 1024.0
    return f"{num:.1f}Yi{suffix}"


def format_repository_table(repositories: Iterable) -> str:
    """Repositories as a plain-text table sorted by ID"""
    rows = [
        [r.id, r.project_id, r.path, r.tags_count if r.tags_count is not None else "?"]
        for r in sorted(repositories, key=lambda r: r.id)
    ]
    return tabulate(rows, headers=["ID", "Project ID", "Path", "Tags"], tablefmt="simple")


def format_tag_table(tags: Iterable) -> str:
    """Detailed tags as a plain-text table (name, created, size)"""
    rows = []
    for tag in tags:
        created = tag.created_at.isoformat() if tag.created_at else "?"
        if tag.placeholder:
            created = "unknown"
        size = sizeof_fmt(tag.total_size) if tag.total_size is not None else "?"
        rows.append([tag.name, created, size])
    return tabulate(rows, headers=["Tag", "Created", "Size"], tablefmt="simple")


# ============================================================================
# JSON Import / Export
# ============================================================================

def _to_serializable(data: Any) -> Any:
    """Recursively convert values json.dump can't handle.

    Converts:
    - dataclasses (with a to_dict method when available) to dicts
    - datetime/date objects to ISO format strings
    - set/frozenset to sorted lists
    """
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        if hasattr(data, "to_dict"):
            return _to_serializable(data.to_dict())
        return _to_serializable(dataclasses.asdict(data))
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, (set, frozenset)):
        try:
            return [_to_serializable(item) for item in sorted(data)]
        except TypeError:
            return [_to_serializable(item) for item in data]
    if isinstance(data, dict):
        return {k: _to_serializable(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_to_serializable(item) for item in data]
    return data


def save_json(path: str, data: Any) -> str:
    """
    Write JSON data to a file with indentation.

    Args:
        path: Path to save the JSON file
        data: Data to save

    Returns:
        Path to the saved file
    """
    p = Path(path)
    if p.parent and not p.parent.exists():
        p.parent.mkdir(parents=True, exist_ok=True)

    with open(p, 'w') as f:
        json.dump(_to_serializable(data), f, indent=2)
    logger.info(f"Saved JSON to {p}")
    return str(p)


def load_json(path: str) -> Any:
    """Read a JSON export written by save_json"""
    with open(path, 'r') as f:
        return json.load(f)


def load_json_list(path: str, key: str) -> List[Any]:
    """Read a JSON export that is either a bare list or a dict holding a list under key"""
    data = load_json(path)
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a list in {path}, got {type(data).__name__}")
    return data
