#!/usr/bin/env python3
"""Command-line tools for persistent local names of decompiled assemblies."""

from __future__ import annotations

import argparse
import json
import logging
from collections import Counter
from pathlib import Path
from typing import List, Optional, Sequence

from dspdecomp import (
    DecompilerSettings,
    ModuleMetadata,
    UnsupportedSignatureError,
    build_method_identities,
    load_name_store,
)
from dspdecomp.name_store import FRAGMENT_SUFFIX
from dspdecomp.pipeline import identities_by_file
from dspdecomp.sequence_points import MissingSourceLineError, reconcile_file
from dspdecomp.settings import LANGUAGE_VERSIONS, SETTINGS_FILE_NAME


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug messages",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    identities = subparsers.add_parser(
        "identities", help="print the stable identity of every method"
    )
    identities.add_argument("metadata", type=Path, help="Metadata dump (JSON)")
    identities.add_argument(
        "--json",
        action="store_true",
        help="Emit a JSON object instead of tab separated lines",
    )
    identities.add_argument(
        "--by-file",
        action="store_true",
        help="Group identities by the source file their type is emitted into",
    )

    names = subparsers.add_parser("names", help="summarise a name map directory")
    names.add_argument("directory", type=Path, help="The <project>-localnamemap directory")
    names.add_argument(
        "--suffix",
        default=FRAGMENT_SUFFIX,
        help=f"Fragment file suffix (default: {FRAGMENT_SUFFIX})",
    )

    reconcile = subparsers.add_parser(
        "reconcile", help="replace sequence point comments with source text"
    )
    reconcile.add_argument("listing", type=Path, help="Disassembly listing")
    reconcile.add_argument("source", type=Path, help="Source file the listing refers to")
    reconcile.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the result here instead of rewriting the listing in place",
    )

    settings = subparsers.add_parser(
        "settings", help="create or update a decompiler settings file"
    )
    settings.add_argument(
        "path",
        type=Path,
        nargs="?",
        default=Path(SETTINGS_FILE_NAME),
        help=f"Settings file (default: {SETTINGS_FILE_NAME})",
    )
    settings.add_argument(
        "--language-version",
        choices=LANGUAGE_VERSIONS,
        default=None,
        help="C# language version to decompile to",
    )
    return parser.parse_args(argv)


def validate_inputs(*paths: Path) -> None:
    for path in paths:
        if not path.exists():
            raise SystemExit(f"missing input file: {path}")


def command_identities(args: argparse.Namespace) -> int:
    validate_inputs(args.metadata)
    metadata = ModuleMetadata.load(args.metadata)
    try:
        identities = build_method_identities(metadata)
    except UnsupportedSignatureError as exc:
        raise SystemExit(f"unsupported signature: {exc}")

    if args.by_file:
        grouped = identities_by_file(metadata, DecompilerSettings(), identities)
        if args.json:
            payload = {
                source_file: [str(identity) for identity in methods]
                for source_file, methods in grouped.items()
            }
            print(json.dumps(payload, indent=2, ensure_ascii=False))
        else:
            for source_file, methods in grouped.items():
                print(source_file)
                for identity in methods:
                    print(f"  {identity}")
        return 0

    if args.json:
        payload = {f"0x{handle:08X}": str(identity) for handle, identity in identities.items()}
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        for handle, identity in identities.items():
            print(f"0x{handle:08X}\t{identity}")
    return 0


def command_names(args: argparse.Namespace) -> int:
    if not args.directory.is_dir():
        raise SystemExit(f"missing name map directory: {args.directory}")
    skipped: List[Path] = []
    records = load_name_store(args.directory, args.suffix, skipped=skipped)

    methods = Counter(record.fragment for record in records)
    locals_ = Counter()
    for record in records:
        locals_[record.fragment] += len(record.locals)
    for fragment in sorted(methods):
        print(f"{fragment}: methods={methods[fragment]} locals={locals_[fragment]}")
    print(f"fragments: {len(methods)} methods: {len(records)} skipped: {len(skipped)}")
    return 1 if skipped else 0


def command_reconcile(args: argparse.Namespace) -> int:
    validate_inputs(args.listing, args.source)
    try:
        target = reconcile_file(args.listing, args.source, args.output)
    except MissingSourceLineError as exc:
        raise SystemExit(f"cannot reconcile {args.listing}: {exc}")
    print(f"listing written to {target}")
    return 0


def command_settings(args: argparse.Namespace) -> int:
    settings = DecompilerSettings.resolve(args.path, language_version=args.language_version)
    for name, value in settings.to_json().items():
        print(f"{name}={str(value).lower()}")
    print(f"language_version={settings.language_version}")
    return 0


COMMANDS = {
    "identities": command_identities,
    "names": command_names,
    "reconcile": command_reconcile,
    "settings": command_settings,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    raise SystemExit(main())
