#!/usr/bin/env python3
"""
A tiny CLI over the Box path-addressed filesystem.

Usage examples:
  boxfs auth test
  boxfs ls docs --deep
  boxfs put ./report.pdf docs/2024/report.pdf --strategy rename
  boxfs cat docs/2024/report.pdf > report.pdf
  boxfs mv docs/2024/report.pdf archive/report-2024.pdf
  boxfs share archive/report-2024.pdf --access company

Notes:
- Settings come from BOX_* environment variables or the project .env file.
- --app-config reads the JSON downloaded from the Box Developer Console instead.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from config.settings import settings as default_settings, settings_from_app_config
from core.errors import FilesystemOperationFailed, InvalidConfiguration
from infra.storage.box import BoxFilesystem, box_filesystem_from_settings

logger = logging.getLogger("boxfs")


def cmd_auth_test(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    if fs.client.auth.test_connection(api_url=fs.client.api_url):
        print("Box JWT authentication OK")
        return 0
    print("Box JWT authentication failed", file=sys.stderr)
    return 2


def cmd_ls(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    for entry in fs.list_contents(args.path, deep=args.deep):
        marker = "/" if entry.node.is_folder else ""
        size = "" if entry.node.size is None else entry.node.size
        print(f"{entry.node.id}\t{size}\t{entry.path}{marker}")
    return 0


def cmd_cat(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    for chunk in fs.read_stream(args.path):
        sys.stdout.buffer.write(chunk)
    sys.stdout.buffer.flush()
    return 0


def cmd_put(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    with Path(args.local).open("rb") as fh:
        node = fs.write_stream(args.remote, fh, collision_strategy=args.strategy)
    print(f"{node.id}\t{node.name}")
    return 0


def cmd_mkdir(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    print(fs.create_directory(args.path))
    return 0


def cmd_rm(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    if args.recursive:
        fs.delete_directory(args.path)
    else:
        fs.delete(args.path)
    return 0


def cmd_mv(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    if fs.directory_exists(args.source):
        node = fs.move_directory(args.source, args.destination)
    else:
        node = fs.move(args.source, args.destination)
    print(f"{node.id}\t{node.name}")
    return 0


def cmd_cp(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    node = fs.copy(args.source, args.destination, collision_strategy=args.strategy)
    print(f"{node.id}\t{node.name}")
    return 0


def cmd_stat(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    node = fs.metadata(args.path)
    print(f"id:        {node.id}")
    print(f"kind:      {node.kind.value}")
    print(f"name:      {node.name}")
    print(f"size:      {node.size}")
    print(f"mime_type: {node.mime_type}")
    print(f"modified:  {node.modified_at.isoformat() if node.modified_at else None}")
    return 0


def cmd_share(fs: BoxFilesystem, args: argparse.Namespace) -> int:
    print(fs.share_link(args.path, access=args.access, password=args.password))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="boxfs")
    parser.add_argument("--app-config", dest="app_config", default=None, help="Box app JSON config file")
    parser.add_argument("--log-level", dest="log_level", default=None)
    sub = parser.add_subparsers(dest="cmd")

    p_auth = sub.add_parser("auth")
    sub_auth = p_auth.add_subparsers(dest="auth_cmd")
    p_auth_test = sub_auth.add_parser("test")
    p_auth_test.set_defaults(func=cmd_auth_test)

    p_ls = sub.add_parser("ls")
    p_ls.add_argument("path", nargs="?", default="")
    p_ls.add_argument("--deep", action="store_true")
    p_ls.set_defaults(func=cmd_ls)

    p_cat = sub.add_parser("cat")
    p_cat.add_argument("path")
    p_cat.set_defaults(func=cmd_cat)

    p_put = sub.add_parser("put")
    p_put.add_argument("local")
    p_put.add_argument("remote")
    p_put.add_argument("--strategy", choices=["rename", "overwrite", "skip"], default=None)
    p_put.set_defaults(func=cmd_put)

    p_mkdir = sub.add_parser("mkdir")
    p_mkdir.add_argument("path")
    p_mkdir.set_defaults(func=cmd_mkdir)

    p_rm = sub.add_parser("rm")
    p_rm.add_argument("path")
    p_rm.add_argument("-r", "--recursive", action="store_true")
    p_rm.set_defaults(func=cmd_rm)

    p_mv = sub.add_parser("mv")
    p_mv.add_argument("source")
    p_mv.add_argument("destination")
    p_mv.set_defaults(func=cmd_mv)

    p_cp = sub.add_parser("cp")
    p_cp.add_argument("source")
    p_cp.add_argument("destination")
    p_cp.add_argument("--strategy", choices=["rename", "overwrite", "skip"], default=None)
    p_cp.set_defaults(func=cmd_cp)

    p_stat = sub.add_parser("stat")
    p_stat.add_argument("path")
    p_stat.set_defaults(func=cmd_stat)

    p_share = sub.add_parser("share")
    p_share.add_argument("path")
    p_share.add_argument("--access", choices=["open", "company", "collaborators"], default="open")
    p_share.add_argument("--password", default=None)
    p_share.set_defaults(func=cmd_share)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = settings_from_app_config(args.app_config) if args.app_config else default_settings
        logging.basicConfig(level=args.log_level or settings.LOG_LEVEL)
        fs = box_filesystem_from_settings(settings)
    except (InvalidConfiguration, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 3

    try:
        return args.func(fs, args)
    except FilesystemOperationFailed as e:
        print(f"{e.reason}: {e}", file=sys.stderr)
        return 2
    finally:
        fs.close()


if __name__ == "__main__":
    raise SystemExit(main())
