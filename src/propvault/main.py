from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from .config import load_settings
from .errors import HookError, VaultError
from .runtime import PropertyVault

logger = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="propvault", description="Audited store for .properties files"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL (default: PROPVAULT_DATABASE_URL or sqlite).",
    )
    parser.add_argument("--env-file", default=None, help="Extra .env file to load.")
    sub = parser.add_subparsers(dest="command", required=True)

    load_p = sub.add_parser("load", help="Replace the store from an environment folder")
    load_p.add_argument("folder", help="Folder with one sub-folder per environment")

    list_p = sub.add_parser("list", help="List properties")
    list_p.add_argument("--env", default=None, help="Only this environment")
    list_p.add_argument("--search", default=None, help="Substring of key/value/desc")

    history_p = sub.add_parser("history", help="Show the audit log, newest first")
    history_p.add_argument("--limit", type=int, default=50)
    history_p.add_argument("--search", default=None)

    restore_p = sub.add_parser("restore", help="Undo one audit entry")
    restore_p.add_argument("audit_id")

    export_p = sub.add_parser("export", help="Write a combined Parquet snapshot")
    export_p.add_argument("file")

    import_p = sub.add_parser("import", help="Replace the dataset from a snapshot")
    import_p.add_argument("file")

    render_p = sub.add_parser("render", help="Write .properties files per environment")
    render_p.add_argument("out_dir")
    render_p.add_argument("--env", default=None)

    sub.add_parser("stats", help="Audit log statistics")
    return parser


def _render(vault: PropertyVault, out_dir: Path, environment: str | None) -> int:
    written = 0
    for env, files in vault.render_files(environment).items():
        target = out_dir / env
        target.mkdir(parents=True, exist_ok=True)
        for filename, text in files.items():
            (target / filename).write_text(text, encoding="utf-8")
            written += 1
    return written


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    settings = load_settings(args.env_file)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    vault = PropertyVault.open(
        args.database_url or settings.database_url, user_id=settings.user
    )

    try:
        if args.command == "load":
            loaded = vault.load_folder(args.folder)
            print(f"loaded {len(loaded)} properties")
            return 0 if loaded else 1

        if args.command == "list":
            for prop in vault.properties(environment=args.env, search=args.search):
                print(f"{prop.environment}\t{prop.component}\t{prop.key}={prop.value}")
            return 0

        if args.command == "history":
            for entry in vault.audit_log(limit=args.limit, search=args.search):
                print(
                    f"{entry.id}\t{entry.timestamp.isoformat()}\t{entry.action}\t"
                    f"{entry.environment}.{entry.property_key}\t{entry.change_details}"
                )
            return 0

        if args.command == "restore":
            outcome = vault.restore(args.audit_id)
            print(
                f"restored {outcome.source.id}: {len(outcome.plan.upserts)} upserted, "
                f"{len(outcome.plan.deletes)} deleted"
            )
            return 0

        if args.command == "export":
            Path(args.file).write_bytes(vault.export_snapshot())
            print(f"wrote {args.file}")
            return 0

        if args.command == "import":
            imported = vault.import_snapshot(Path(args.file).read_bytes())
            print(f"imported {len(imported)} properties")
            return 0

        if args.command == "render":
            written = _render(vault, Path(args.out_dir), args.env)
            print(f"wrote {written} files to {args.out_dir}")
            return 0

        if args.command == "stats":
            stats = vault.audit_stats()
            print(f"total: {stats.total}")
            for action, count in stats.by_action.items():
                print(f"  {action}: {count}")
            return 0

        raise SystemExit(f"Unsupported command: {args.command}")
    except HookError as exc:
        print(f"warning: changes were committed but {exc}", file=sys.stderr)
        return 1
    except (VaultError, SQLAlchemyError, OSError) as exc:
        logger.debug("command %s failed", args.command, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
