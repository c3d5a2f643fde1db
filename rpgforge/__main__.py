# rpgforge/__main__.py
"""
Command line entry point.

Usage:
    rpgforge packs    [--root DIR ...]                         List discovered packs
    rpgforge resolve  [--root DIR ...] PACK [PACK ...]         Resolve and merge a ruleset
    rpgforge create   [--root DIR ...] PACK ... [--seed FILE]  Create a character
    rpgforge dispatch [--root DIR ...] PACK ... --character FILE --action JSON

PACK is a pack id, an alias from `packs.aliases`, or "id@range".
Pack roots default to config `packs.roots`.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

import json5

from rpgforge import __version__
from rpgforge.content.pack_catalog import PackCatalog
from rpgforge.core.errors import RpgForgeError
from rpgforge.core.jsonutils import prettyJsonDumps, serializeError
from rpgforge.core.logging import configureLogging
from rpgforge.runtime.actions import dispatchWithResult
from rpgforge.runtime.character import createCharacter
from rpgforge.runtime.migrations import migrateCharacter

logger = logging.getLogger(__name__)



def _readJson5(value: str) -> Any:
    """Inline JSON5 text, or "@path" to read it from a file."""
    if value.startswith("@"):
        return json5.loads(Path(value[1:]).read_text(encoding="utf-8"))
    return json5.loads(value)



def _catalog(args) -> PackCatalog:
    return PackCatalog.fromRoots(args.root or None)



def cmd_packs(args) -> int:
    catalog = _catalog(args)
    for pack in catalog.all():
        print(f"{pack.manifest.id}@{pack.manifest.version}\t{pack.manifest.kind}\t{pack.sourceRef}")
    return 0



def cmd_resolve(args) -> int:
    ruleset = _catalog(args).activate(args.packs)
    if args.full:
        print(prettyJsonDumps(ruleset))
        return 0
    print(prettyJsonDumps({
        "id": ruleset.id,
        "packOrder": ruleset.packOrder,
        "actions": sorted(ruleset.actions),
        "formulas": sorted(ruleset.formulas),
        "conflicts": [conflict.toDict() for conflict in ruleset.conflicts],
    }))
    return 0



def cmd_create(args) -> int:
    ruleset = _catalog(args).activate(args.packs)
    seed = _readJson5(args.seed) if args.seed else {}
    print(prettyJsonDumps(createCharacter(ruleset, seed).toDict()))
    return 0



def cmd_dispatch(args) -> int:
    ruleset = _catalog(args).activate(args.packs)
    current = migrateCharacter(_readJson5(args.character))
    result = dispatchWithResult(ruleset, current, _readJson5(args.action))
    if result.value is not None:
        logger.info("Action value: %s", result.value)
    print(prettyJsonDumps(result.document.toDict()))
    return 0



def buildParser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rpgforge", description="Content pack resolver and character runtime")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--dev", action="store_true", help="Verbose console logging")
    parser.add_argument("--log-file", dest="logFile", help="Also write JSON logs to this file")

    roots = argparse.ArgumentParser(add_help=False)
    roots.add_argument("--root", action="append", help="Pack root directory (repeatable)")

    sub = parser.add_subparsers(dest="command", required=True)

    packs = sub.add_parser("packs", parents=[roots], help="List discovered packs")
    packs.set_defaults(func=cmd_packs)

    resolve = sub.add_parser("resolve", parents=[roots], help="Resolve and merge a ruleset")
    resolve.add_argument("packs", nargs="+")
    resolve.add_argument("--full", action="store_true", help="Print the whole merged ruleset")
    resolve.set_defaults(func=cmd_resolve)

    create = sub.add_parser("create", parents=[roots], help="Create a character")
    create.add_argument("packs", nargs="+")
    create.add_argument("--seed", help="Creation seed as JSON5, or @file")
    create.set_defaults(func=cmd_create)

    dispatch = sub.add_parser("dispatch", parents=[roots], help="Dispatch one action on a character")
    dispatch.add_argument("packs", nargs="+")
    dispatch.add_argument("--character", required=True, help="Character document as JSON5, or @file")
    dispatch.add_argument("--action", required=True, help='Action envelope, e.g. {"id": "longRest"}')
    dispatch.set_defaults(func=cmd_dispatch)

    return parser



def main(argv: list[str] | None = None) -> int:
    args = buildParser().parse_args(argv)
    configureLogging(devMode=True if args.dev else None, logFile=args.logFile)
    try:
        return args.func(args)
    except (RpgForgeError, ValueError, OSError) as err:
        print(prettyJsonDumps({"error": serializeError(err)}), file=sys.stderr)
        return 1



if __name__ == "__main__":
    sys.exit(main())
