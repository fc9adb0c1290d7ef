#!/usr/bin/env python3
"""mirrorsync CLI - mirror branches and tags between Git repositories."""
from __future__ import annotations

import argparse
import sys
from typing import Any, Dict

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"mirrorsync requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Config file (default: discovered .mirrorsync/config.toml)")
    parser.add_argument("--project-path", help="Directory to start config discovery from")


def _sync_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """CLI arguments as a nested config dict (only those given)."""
    sections: Dict[str, Dict[str, Any]] = {"sync": {}, "git": {}, "logging": {}}
    for name in ("source_repo", "destination_repo", "source_branch", "destination_branch", "sync_tags"):
        value = getattr(args, name, None)
        if value is not None:
            sections["sync"][name] = value
    if getattr(args, "sync_all_branches", None):
        sections["sync"]["sync_all_branches"] = True
    if getattr(args, "no_fallback", None):
        sections["sync"]["use_main_as_fallback"] = False
    if getattr(args, "work_dir", None):
        sections["git"]["work_dir"] = args.work_dir
    if getattr(args, "log_level", None):
        sections["logging"]["level"] = args.log_level
    return {key: value for key, value in sections.items() if value}


def _load(args: argparse.Namespace, overrides: Dict[str, Any] | None = None):
    from pathlib import Path
    from .config_loader import load_config

    return load_config(
        project_path=Path(args.project_path) if args.project_path else None,
        config_path=Path(args.config) if args.config else None,
        overrides=overrides,
    )


def _configure_logging(config) -> None:
    from .observability import configure_logging

    configure_logging(
        config.logging.level,
        log_dir=config.logging.dir or None,
        max_bytes=config.logging.max_bytes,
        backup_count=config.logging.backup_count,
        disable_file=config.logging.disable_file,
    )


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="mirrorsync",
        description="Mirror branches and tags between Git repositories (Gerrit aware)",
    )
    ap.add_argument("--version", action="store_true", help="Print version and exit")

    sub = ap.add_subparsers(dest="cmd")

    p_sync = sub.add_parser("sync", help="Mirror the source repository into the destination")
    _add_config_args(p_sync)
    p_sync.add_argument("--source-repo", help="Source repository URL")
    p_sync.add_argument("--destination-repo", help="Destination repository URL")
    p_sync.add_argument("--source-branch", help="Source branch (default: main)")
    p_sync.add_argument("--destination-branch", help="Destination branch (default: main)")
    p_sync.add_argument("--sync-all-branches", action="store_true", default=None, help="Mirror every source branch")
    p_sync.add_argument("--sync-tags", help='"true" for all tags, or a pattern selecting tags')
    p_sync.add_argument("--no-fallback", action="store_true", help="Do not fall back to main/master")
    p_sync.add_argument("--work-dir", help="Clone into this directory instead of a temporary one")
    p_sync.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level")
    p_sync.add_argument("--json", dest="as_json", action="store_true", help="Print the run summary as JSON")

    p_validate = sub.add_parser("validate-auth", help="Check repository URLs against supplied credentials")
    _add_config_args(p_validate)
    p_validate.add_argument("--source-repo", help="Source repository URL")
    p_validate.add_argument("--destination-repo", help="Destination repository URL")

    p_detect = sub.add_parser("detect-kind", help="Print whether a URL is a Gerrit or standard repository")
    p_detect.add_argument("url", help="Repository URL")

    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")

    p_config_init = config_sub.add_parser("init", help="Write a commented config template")
    p_config_init.add_argument("--project", action="store_true", help="Create project config (.mirrorsync/) instead of user config")
    p_config_init.add_argument("--path", help="Write the template to this file")
    p_config_init.add_argument("--force", action="store_true", help="Overwrite an existing file")

    p_config_show = config_sub.add_parser("show", help="Show resolved configuration (secrets masked)")
    _add_config_args(p_config_show)
    p_config_show.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")
    p_config_show.add_argument("--sources", action="store_true", help="Show config file locations")

    args = ap.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        sys.exit(0)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    if args.cmd == "detect-kind":
        from .push import RepositoryKind

        print(RepositoryKind.detect(args.url).value)
        sys.exit(0)

    if args.cmd == "sync":
        import json as json_module
        from .errors import MirrorError
        from .mirror import MirrorSync

        try:
            config = _load(args, _sync_overrides(args))
            _configure_logging(config)
            result = MirrorSync(config).run()
        except MirrorError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        if args.as_json:
            print(
                json_module.dumps(
                    {
                        "destination_kind": result.destination_kind.value,
                        "verdicts": {pair: verdict.value for pair, verdict in result.verdicts.items()},
                        "pushed": [str(pair) for pair in result.pushed],
                        "up_to_date": [str(pair) for pair in result.up_to_date],
                        "forced_retries": result.forced_retries,
                        "deleted_branches": result.deleted_branches,
                        "failed_deletions": result.failed_deletions,
                        "tags": result.tags,
                    },
                    indent=2,
                )
            )
        else:
            print(f"Sync complete: {result.summary()}")
        sys.exit(0)

    if args.cmd == "validate-auth":
        from .auth_validation import format_validation_report, validate_authentication
        from .credentials import load_credentials
        from .errors import MirrorError

        overrides = _sync_overrides(args)
        try:
            config = _load(args, overrides)
        except MirrorError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        validation = validate_authentication(config.sync, config.auth, load_credentials())
        report = format_validation_report(validation)
        if report:
            print(report, file=sys.stderr if not validation.is_valid else sys.stdout)
        if not validation.is_valid:
            sys.exit(1)
        print("Authentication configuration OK")
        sys.exit(0)

    if args.cmd == "config":
        from pathlib import Path
        import json as json_module

        if not args.config_cmd:
            print("Usage: mirrorsync config {init|show}")
            sys.exit(0)

        if args.config_cmd == "init":
            from .config_loader import (
                CONFIG_FILENAME,
                PROJECT_CONFIG_DIR,
                ConfigError,
                _get_user_config_dir,
                write_config_template,
            )

            if args.path:
                target_path = Path(args.path)
            elif args.project:
                target_path = Path.cwd() / PROJECT_CONFIG_DIR / CONFIG_FILENAME
            else:
                target_path = _get_user_config_dir() / CONFIG_FILENAME

            try:
                write_config_template(target_path, force=args.force)
            except ConfigError as e:
                print(f"Error: {e}", file=sys.stderr)
                print("Use --force to overwrite.", file=sys.stderr)
                sys.exit(1)
            print(f"Created config: {target_path}")
            sys.exit(0)

        if args.config_cmd == "show":
            from .config_loader import ConfigError, config_to_display_dict, get_config_paths

            if args.sources:
                project_path = Path(args.project_path) if args.project_path else None
                print("Config sources (in priority order):")
                print()
                for name, path in get_config_paths(project_path).items():
                    if path and path.exists():
                        print(f"  + {name}: {path}")
                    elif path:
                        print(f"  - {name}: {path} (not found)")
                    else:
                        print(f"  - {name}: (not applicable)")
                print()
                print("INPUT_* and MIRRORSYNC_* environment variables override all file configs.")
                sys.exit(0)

            try:
                config = _load(args)
            except ConfigError as e:
                print(f"Config error: {e}", file=sys.stderr)
                sys.exit(1)

            data = config_to_display_dict(config)
            if args.as_json:
                print(json_module.dumps(data, indent=2))
            else:
                import tomlkit

                doc = tomlkit.document()
                doc.add(tomlkit.comment(" mirrorsync configuration (resolved)"))
                doc.add(tomlkit.nl())
                for section, values in data.items():
                    if isinstance(values, dict):
                        table = tomlkit.table()
                        for key, val in values.items():
                            table.add(key, val)
                        doc.add(section, table)
                    else:
                        doc.add(section, values)
                print(tomlkit.dumps(doc))
            sys.exit(0)

    ap.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
