import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import MapperConfig
from .core import PhotoMapperApp
from .exceptions import ConfigError, PhotoMapperError
from .models import SyncStatus
from .reporting import ReportGenerator

def setup_logging(log_file: Optional[Path], verbose: bool):
    """Sets up logging to the console and, optionally, a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)

def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Photo Mapper: location-indexed photo catalog")

    p.add_argument("--config", type=Path, default=None, help="TOML config file")
    p.add_argument("--db", type=Path, default=None, help="SQLite catalog path (overrides config)")
    p.add_argument("--collection-dir", action="append", default=[], metavar="ID=PATH",
                   help="Register a collection folder (repeatable, overrides config)")
    p.add_argument("--progress", action="store_true", help="Show progress bars during sync")
    p.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("sync", help="Sync a collection into the catalog")
    s.add_argument("collection")
    s.add_argument("--full", action="store_true", help="List the whole collection instead of changes since the last sync")
    s.add_argument("--force", action="store_true", help="Rewrite unchanged records too (implies --full)")

    a = sub.add_parser("auto", help="Bounded incremental sync for schedulers")
    a.add_argument("collection")
    a.add_argument("--max-items", type=int, default=None)
    a.add_argument("--max-seconds", type=float, default=None)

    c = sub.add_parser("cleanup", help="Remove records whose source file is gone")
    c.add_argument("collection")

    q = sub.add_parser("query", help="Query the catalog")
    q.add_argument("kind", choices=["all", "bbox", "viewport", "radius"])
    q.add_argument("--north", type=float)
    q.add_argument("--south", type=float)
    q.add_argument("--east", type=float)
    q.add_argument("--west", type=float)
    q.add_argument("--lat", type=float)
    q.add_argument("--lng", type=float)
    q.add_argument("--radius", type=float, dest="radius_meters", help="Radius in meters")
    q.add_argument("--limit", type=int)
    q.add_argument("--csv", type=Path, default=None, help="Write results to CSV instead of stdout")

    sub.add_parser("stats", help="Show catalog statistics")

    h = sub.add_parser("history", help="Show recent sync log entries")
    h.add_argument("--collection", default=None)
    h.add_argument("--limit", type=int, default=20)
    h.add_argument("--csv", type=Path, default=None)

    return p.parse_args(argv)

def build_config(args) -> MapperConfig:
    cfg = MapperConfig.from_toml(args.config) if args.config else MapperConfig()
    if args.db:
        cfg.db_path = args.db
    for spec in args.collection_dir:
        cid, sep, folder = spec.partition("=")
        if not sep or not cid or not folder:
            raise ConfigError(f"--collection-dir expects ID=PATH, got {spec!r}")
        cfg.collections[cid] = Path(folder).expanduser()
    if args.progress:
        cfg.show_progress = True
    return cfg

def query_params_from_args(args) -> Dict[str, Any]:
    params: Dict[str, Any] = {"kind": args.kind}
    for name, key in (("north", "north"), ("south", "south"), ("east", "east"), ("west", "west"),
                      ("lat", "lat"), ("lng", "lng"), ("radius_meters", "radiusMeters"), ("limit", "limit")):
        value = getattr(args, name)
        if value is not None:
            params[key] = value
    return params

def _print_json(payload: Any):
    print(json.dumps(payload, indent=2))

def run_command(app: PhotoMapperApp, args) -> int:
    """Executes one subcommand. Returns the process exit status."""
    if args.command == "sync":
        if args.full or args.force:
            result = app.run_full_sync(args.collection, force_reprocess=args.force)
        else:
            result = app.run_incremental_sync(args.collection)
        _print_json(result.to_dict())
        return 1 if result.status == SyncStatus.FAILED.value else 0

    if args.command == "auto":
        max_items = args.max_items if args.max_items is not None else app.cfg.automated_max_items
        max_ms = int(args.max_seconds * 1000) if args.max_seconds is not None else app.cfg.automated_max_duration_ms
        result = app.run_bounded_incremental_sync(args.collection, max_items, max_ms)
        _print_json(result.to_dict())
        return 1 if result.status == SyncStatus.FAILED.value else 0

    if args.command == "cleanup":
        _print_json(app.run_cleanup(args.collection))
        return 0

    if args.command == "query":
        response = app.query(query_params_from_args(args))
        if args.csv:
            ReportGenerator().write_photos_csv(response["photos"], args.csv)
        else:
            _print_json(response)
        return 0

    if args.command == "stats":
        _print_json(app.get_stats())
        return 0

    if args.command == "history":
        entries = app.get_sync_history(args.limit, args.collection)
        if args.csv:
            ReportGenerator().write_history_csv(entries, args.csv)
        else:
            _print_json(entries)
        return 0

    raise ValueError(f"Unknown command: {args.command}")

def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    setup_logging(args.log_file, args.verbose)

    try:
        cfg = build_config(args)
        with PhotoMapperApp(cfg) as app:
            status = run_command(app, args)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except PhotoMapperError as e:
        logging.error(str(e))
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error.")
        sys.exit(1)

    sys.exit(status)

if __name__ == "__main__":
    main()
