"""
Base class for registry cleaners to standardize prompts and summaries.

This module provides common functionality including:
- Standardized confirmation prompts
- "Press ENTER to continue" pauses that stay quiet in non-interactive runs
- Logging consistency for deletion summaries
"""

import sys
from typing import Any, Dict

from gitlab_cleaner.logging_utils import get_logger
from gitlab_cleaner.report_utils import sizeof_fmt


class BaseCleaner:
    """Base class for cleaners with common functionality"""

    def __init__(self, dry_run: bool = True, interactive: bool = True):
        """Initialize base cleaner

        Args:
            dry_run: Only perform read operations
            interactive: Allow prompting the user on stdin
        """
        self.dry_run = dry_run
        self.interactive = interactive
        self.logger = get_logger(self.__class__.__name__)

    def is_interactive(self) -> bool:
        """Prompts are only shown when enabled and stdin is a terminal"""
        return self.interactive and sys.stdin.isatty()

    def prompt_continue(self, message: str = "Press ENTER to continue...") -> None:
        """Pause until the user presses ENTER; CTRL+C is the way out"""
        if not self.is_interactive():
            self.logger.info("Non-interactive environment detected. Continuing without prompt.")
            return
        input(message)

    def confirm_deletion(self, count: int, item_type: str, force: bool = False) -> bool:
        """Standardized confirmation prompt for deletions

        Args:
            count: Number of items to be deleted
            item_type: Type of items (e.g., "tags")
            force: If True, skip confirmation and return True

        Returns:
            True if user confirmed, False otherwise
        """
        if force:
            self.logger.warning("⚠️  Force mode enabled - skipping confirmation prompt")
            return True

        if not self.is_interactive():
            self.logger.info("Non-interactive environment detected. Proceeding without confirmation.")
            return True

        print("\n" + "=" * 60)
        print("⚠️  WARNING: You are about to DELETE tags from the container registry!")
        print("=" * 60)
        print(f"This will delete {count} {item_type}.")
        print("This action cannot be undone.")
        print("Make sure you have reviewed the analysis output above.")
        print("=" * 60)

        while True:
            response = input("Are you sure you want to proceed with deletion? (yes/no): ").lower().strip()
            if response in ["yes", "y"]:
                return True
            elif response in ["no", "n"]:
                return False
            else:
                print("Please enter 'yes' or 'no'.")

    def log_summary(self, summary: Dict[str, Any]) -> None:
        """Log a standardized deletion summary

        Args:
            summary: Dictionary with summary information
        """
        mode = "DRY RUN: " if self.dry_run else ""
        self.logger.info(f"📊 {mode}Deletion Summary:")

        if "total" in summary:
            self.logger.info(f"   Total tags: {summary['total']}")
        if "deleted" in summary:
            self.logger.info(f"   {'Would delete' if self.dry_run else 'Successfully deleted'}: {summary['deleted']}")
        if "not_found" in summary:
            self.logger.info(f"   Already gone (404): {summary['not_found']}")
        if "failed" in summary:
            self.logger.info(f"   Failed deletions: {summary['failed']}")
        if "kept" in summary:
            self.logger.info(f"   Kept: {summary['kept']}")
        if "space_freed_bytes" in summary:
            self.logger.info(
                f"   {'Would free' if self.dry_run else 'Freed'}: {sizeof_fmt(summary['space_freed_bytes'])}"
            )
        if "results_file" in summary:
            self.logger.info(f"   Results saved to: {summary['results_file']}")
