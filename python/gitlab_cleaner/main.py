import argparse
import os
import sys
from typing import List, Optional

from gitlab_cleaner.cleaner import GitLabContainerRepositoryCleaner
from gitlab_cleaner.config_manager import ConfigManager, ConfigValidationError
from gitlab_cleaner.error_utils import ActionableError
from gitlab_cleaner.logging_utils import get_logger, log_exception, setup_logging, verbosity_to_level
from gitlab_cleaner.report_utils import format_repository_table, load_json_list, save_json

logger = get_logger(__name__)

EXIT_MISSING_HOST = 1
EXIT_MISSING_TOKEN = 2

EPILOG = """
Configuration:
  GITLAB_HOST and GITLAB_TOKEN must be set (environment or config.yaml).
  Other defaults can be set in config.yaml (or the file named by CONFIG_FILE):
  - CLEANER_CONCURRENCY: Parallel requests per stage (default: 20)

Examples:
  # Find repositories by scanning IDs 1 to 5000
  gitlab-registry-cleaner list all -e 5000 -o repositories.json

  # Repositories of a project or group
  gitlab-registry-cleaner list project my-group/my-project
  gitlab-registry-cleaner list group my-group

  # Dry-run (default): keep release tags, delete everything else older than 30 days
  gitlab-registry-cleaner clean 42 -k 'v?[0-9]+[-.][0-9]+[-.][0-9]+.*' -d '.*' -a 30 -m 5

  # Actually delete, export the deletion set first
  gitlab-registry-cleaner clean 42 -k '^release-' -d '.*' --no-dry-run -o to-delete.json

  # Delete a previously exported deletion set
  gitlab-registry-cleaner clean --input-tags to-delete.json --no-dry-run

Safety Notes:
  - clean runs in dry-run mode by default
  - Default keep/delete regexes ('.*' / '^$') never select anything
  - Use -y to skip the confirmation prompt when using --no-dry-run
"""


def check_environment(config: ConfigManager) -> None:
    """Exit before any network call when GitLab credentials are missing"""
    if not config.get_gitlab_host():
        logger.error("GITLAB_HOST environment variable is not set")
        logger.error('Example: export GITLAB_HOST="https://gitlab.com"')
        sys.exit(EXIT_MISSING_HOST)
    if not config.get_gitlab_token():
        logger.error("GITLAB_TOKEN environment variable is not set")
        logger.error("Create a personal access token with the 'api' scope and export it as GITLAB_TOKEN")
        sys.exit(EXIT_MISSING_TOKEN)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitlab-registry-cleaner",
        description="List GitLab container registry repositories and clean up their tags",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Verbose output (DEBUG logging)")
    parser.add_argument("--config-file", help="Path to YAML configuration file (default: config.yaml)")
    parser.add_argument("--show-config", action="store_true", help="Show current configuration and exit")

    commands = parser.add_subparsers(dest="command")

    # list
    list_parser = commands.add_parser("list", help="List container repositories")
    list_commands = list_parser.add_subparsers(dest="list_command")

    list_all = list_commands.add_parser("all", help="Scan a range of repository IDs")
    list_all.add_argument("-s", "--start-index", type=int, help="First repository ID to scan (default: 1)")
    list_all.add_argument("-e", "--end-index", type=int, help="Last repository ID to scan (default: 10000)")
    list_all.add_argument("-c", "--concurrency", type=int, help="Parallel requests (default: 20)")
    list_all.add_argument("-o", "--output", help="Write the repository list to a JSON file")

    list_project = list_commands.add_parser("project", help="Repositories of a project")
    list_project.add_argument("project", help="Project ID or full path, e.g. my-group/my-project")
    list_project.add_argument("-o", "--output", help="Write the repository list to a JSON file")

    list_group = list_commands.add_parser("group", help="Repositories of the projects in a group")
    list_group.add_argument("group", help="Group ID or full path")
    list_group.add_argument("-o", "--output", help="Write the repository list to a JSON file")

    # clean
    clean = commands.add_parser("clean", help="Delete tags of container repositories")
    clean.add_argument("repository_ids", nargs="*", type=int, metavar="repository-id",
                       help="Container repository IDs")
    clean.add_argument("-k", "--keep-regex", help="Tags matching this regex are kept (default: '.*')")
    clean.add_argument("-d", "--delete-regex", help="Only tags matching this regex are deleted (default: '^$')")
    clean.add_argument("-a", "--older-than-days", type=int, help="Only delete tags older than N days (default: 90)")
    clean.add_argument("-m", "--keep-most-recent", type=int, help="Always keep the N most recent tags (default: 0)")
    clean.add_argument("-p", "--tags-per-page", type=int, help="Tags per list page, 1 to 100 (default: 50)")
    clean.add_argument("-c", "--concurrency", type=int, help="Parallel requests (default: 20)")
    clean.add_argument("--no-dry-run", action="store_true", help="Actually delete tags (default is dry-run)")
    clean.add_argument("-o", "--output-tags", help="Write the tags selected for deletion to a JSON file")
    clean.add_argument("--repositories-file", help="Clean every repository of a 'list -o' export")
    clean.add_argument("--input-tags", help="Delete the tags of a 'clean -o' export, skipping filtering")
    clean.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt")

    return parser


def output_path_for(path: Optional[str], repository_id: int, multiple: bool) -> Optional[str]:
    """One export file per repository when cleaning several at once"""
    if not path or not multiple:
        return path
    root, ext = os.path.splitext(path)
    return f"{root}-{repository_id}{ext or '.json'}"


def run_list(args, config: ConfigManager) -> int:
    overrides = {"concurrency": getattr(args, "concurrency", None), "verbose": bool(args.verbose)}
    cleaner = GitLabContainerRepositoryCleaner(config.cleaner_options(**overrides))

    try:
        if args.list_command == "all":
            start_index = args.start_index if args.start_index is not None else config.get_start_index()
            end_index = args.end_index if args.end_index is not None else config.get_end_index()
            repositories = cleaner.get_container_repositories_concurrently(
                start_index, end_index, output_file=args.output
            )
        elif args.list_command == "project":
            repositories = cleaner.get_project_container_repositories(args.project)
        else:
            repositories = cleaner.get_group_container_repositories(args.group)
    finally:
        cleaner.close()

    print(format_repository_table(repositories))
    if args.output:
        save_json(args.output, {"repositories": sorted(repositories, key=lambda r: r.id)})
    return 0


def run_clean(args, config: ConfigManager) -> int:
    cleaner_overrides = {"concurrency": args.concurrency, "verbose": bool(args.verbose)}
    if args.no_dry_run:
        cleaner_overrides["dry_run"] = False
    cleaner = GitLabContainerRepositoryCleaner(config.cleaner_options(**cleaner_overrides))
    try:
        return _clean_repositories(cleaner, args, config)
    finally:
        cleaner.close()


def _clean_repositories(cleaner: GitLabContainerRepositoryCleaner, args, config: ConfigManager) -> int:
    if args.input_tags:
        summary = cleaner.delete_tags_from_file(args.input_tags, force=args.yes)
        return 1 if summary.failed else 0

    repository_ids: List[int] = list(args.repository_ids)
    if args.repositories_file:
        for entry in load_json_list(args.repositories_file, "repositories"):
            repository_ids.append(int(entry["id"]) if isinstance(entry, dict) else int(entry))

    if not repository_ids:
        logger.error("No repository IDs given. Pass IDs, --repositories-file or --input-tags")
        return 1

    multiple = len(repository_ids) > 1
    failed = 0
    for repository_id in repository_ids:
        options = config.cleanup_options(
            keep_regex=args.keep_regex,
            delete_regex=args.delete_regex,
            older_than_days=args.older_than_days,
            keep_most_recent=args.keep_most_recent,
            tags_per_page=args.tags_per_page,
            output_tags=output_path_for(args.output_tags, repository_id, multiple),
            force=args.yes,
        )
        result = cleaner.cleanup_container_repository_tags(repository_id, options)
        if result.aborted:
            return 1
        failed += len(result.deletion.failed)

    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbosity_to_level(args.verbose), force=True)

    try:
        config = ConfigManager(args.config_file)
    except ConfigValidationError as e:
        logger.error(str(e))
        sys.exit(1)

    if args.show_config:
        config.print_config()
        sys.exit(0)

    if not args.command or (args.command == "list" and not args.list_command):
        parser.print_help()
        sys.exit(1)

    check_environment(config)

    try:
        config.validate_config()
        if args.command == "list":
            exit_code = run_list(args, config)
        else:
            exit_code = run_clean(args, config)
    except (ActionableError, ConfigValidationError) as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        log_exception(logger, f"Unexpected error: {e}", exc_info=e)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
