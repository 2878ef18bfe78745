# leafnote/app.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
import argparse
import json
import sys
import traceback
from typing import List, Optional

from leafnote.core.config import StorageConfig, default_config, load_config
from leafnote.core.errors import StoreError
from leafnote.core.io_worker import IOWorker
from leafnote.core.log import Log
from leafnote.core.storage.factory import DESCRIPTIONS, BackendSelector, available_backends, create_backend
from leafnote.core.storage.transfer import (
    CONFLICT_STRATEGIES, copy_store, export_items, export_settings, import_items, import_settings, storage_info,
)
from leafnote.core.tree_utils import load_tree

def on_exception(exc_type, exc_value, exc_traceback):
    """Log unhandled exceptions before reporting them on stderr."""
    if issubclass(exc_type, KeyboardInterrupt):
        # Allow Ctrl+C to work normally
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    tb_text = ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))
    error_message = f"!ERROR! Unhandled Exception:\n{tb_text}"
    Log.debug(error_message, 0)
    print(error_message, file=sys.stderr)

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="leafnote", description="Inspect and maintain a leafnote store")
    parser.add_argument("--config", help="JSON storage configuration file")
    parser.add_argument("--backend", choices=available_backends(), help="Backend kind (overrides --config)")
    parser.add_argument("--path", help="Database file, document file or store directory")
    parser.add_argument("--url", help="Base URL of a remote store")
    parser.add_argument("--timeout", type=float, help="Remote/database timeout in seconds")
    parser.add_argument("--seed", action="store_true", help="Seed default records into an empty store")
    parser.add_argument("--git-history", action="store_true", help="Keep git history (hybrid backend)")
    parser.add_argument(
        "--verbosity",
        type=int, default=0,
        help="Set verbosity level (0=quiet, 1=normal, 2=verbose, 3+=debug)"
    )
    parser.add_argument("--log-file", help="Write the log to this file on exit")
    parser.add_argument(
        "--stdexp",
        action="store_true",
        help="Use standard exception handling to stdout / stderr."
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("backends", help="List available backends")
    sub.add_parser("info", help="Show backend kind and record counts")
    sub.add_parser("migrate", help="Create or upgrade the store schema")

    p = sub.add_parser("tree", help="Print the items below a container")
    p.add_argument("id", nargs="?", default=None, help="Container id (default: root level)")
    p.add_argument("--lenient", action="store_true", help="Skip cycles instead of failing")

    p = sub.add_parser("settings", help="Read or write settings")
    ssub = p.add_subparsers(dest="settings_command", required=True)
    g = ssub.add_parser("get")
    g.add_argument("key")
    g.add_argument("default", nargs="?", default=None, help="JSON default value")
    s = ssub.add_parser("set")
    s.add_argument("key")
    s.add_argument("value", help="JSON value")
    ssub.add_parser("list")

    p = sub.add_parser("export-settings", help="Write all settings to a JSON file")
    p.add_argument("file")
    p = sub.add_parser("import-settings", help="Load settings from an export file")
    p.add_argument("file")

    p = sub.add_parser("export-items", help="Write the item tree as folders of markdown notes")
    p.add_argument("dir")
    p.add_argument("--include-deleted", action="store_true")
    p = sub.add_parser("import-items", help="Read a folder written by export-items")
    p.add_argument("dir")
    p.add_argument("--conflict", choices=CONFLICT_STRATEGIES, default="skip",
                   help="What to do with notes whose id already exists")

    p = sub.add_parser("copy", help="Copy the whole store into another backend")
    p.add_argument("--to-backend", required=True, choices=available_backends())
    p.add_argument("--to-path")
    p.add_argument("--to-url")

    p = sub.add_parser("history", help="List git history of a hybrid store")
    p.add_argument("--checkpoint", metavar="MESSAGE", help="Commit current changes first")
    p.add_argument("--limit", type=int, default=20)
    return parser

def config_from_args(args) -> StorageConfig:
    config = load_config(args.config) if args.config else default_config()
    if args.backend:
        config.backend = args.backend
    if args.path:
        config.path = args.path
    if args.url:
        config.url = args.url
    if args.timeout:
        config.timeout = args.timeout
    if args.seed:
        config.seed_defaults = True
    if args.git_history:
        config.git_history = True
    return config

def _parse_json(text: Optional[str]):
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        # Bare words are taken as strings: `settings set theme dark`.
        return text

def _print_json(value) -> None:
    print(json.dumps(value, indent=2, sort_keys=True))

def run(args, selector: BackendSelector) -> int:
    if args.command == "backends":
        for kind in DESCRIPTIONS:
            print(f"{kind.value:22} {DESCRIPTIONS[kind]}")
        return 0

    backend = selector.switch(config_from_args(args))

    if args.command == "info":
        _print_json(storage_info(backend))
    elif args.command == "migrate":
        degraded = sorted(getattr(backend, "degraded", ()))
        print(f"{backend.kind}: schema ready" + (f" (degraded: {', '.join(degraded)})" if degraded else ""))
    elif args.command == "tree":
        tree = load_tree(backend)
        for view in tree.all_descendants(args.id, strict=not args.lenient):
            print(f"{'  ' * view.depth}[{view.type}] {view.title} ({view.id}, {view.word_count} words)")
    elif args.command == "settings":
        if args.settings_command == "get":
            _print_json(backend.get_setting(args.key, _parse_json(args.default)))
        elif args.settings_command == "set":
            backend.set_setting(args.key, _parse_json(args.value))
        else:
            _print_json(backend.get_all_settings())
    elif args.command == "export-settings":
        doc = export_settings(backend, args.file)
        print(f"Exported {len(doc['settings'])} settings to {args.file}")
    elif args.command == "import-settings":
        keys = import_settings(backend, args.file)
        print(f"Imported {len(keys)} settings from {args.file}")
    elif args.command == "export-items":
        result = export_items(backend, args.dir, include_deleted=args.include_deleted)
        for err in result.errors:
            print(f"error: {err}", file=sys.stderr)
        print(f"Exported {result.exported_count} items to {result.path}")
        return 0 if result.success else 1
    elif args.command == "import-items":
        result = import_items(backend, args.dir, conflict=args.conflict)
        for err in result.errors:
            print(f"error: {err}", file=sys.stderr)
        print(f"Imported {result.imported_count} items from {args.dir} ({result.skipped_count} skipped)")
        return 0 if result.success else 1
    elif args.command == "copy":
        target_config = StorageConfig(backend=args.to_backend, path=args.to_path, url=args.to_url)
        target = create_backend(target_config)
        target.ensure_schema()
        try:
            _print_json(copy_store(backend, target))
        finally:
            target.close()
    elif args.command == "history":
        history = getattr(backend, "history", None)
        if history is None:
            print("History is not enabled for this store (use a hybrid store with --git-history)", file=sys.stderr)
            return 1
        if args.checkpoint:
            history.checkpoint(args.checkpoint)
        for commit in history.history(args.limit):
            print(f"{commit.hash[:8]} {commit.date} {commit.message} ({commit.changed_entries} entries)")
    return 0

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Install the exception handler
    if not args.stdexp:
        sys.excepthook = on_exception

    Log.set_verbosity(args.verbosity)
    if args.verbosity > 0:
        Log.set_stream(sys.stderr)

    worker = IOWorker()
    selector = BackendSelector(worker)
    try:
        return run(args, selector)
    except (StoreError, ValueError) as e:
        Log.debug(f"{args.command} failed: {e}", 0)
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        selector.close()
        worker.shutdown()
        Log.set_stream(None)
        if args.log_file:
            Log.write_to_file(args.log_file)
