"""
Command-line interface for the content provenance tools.

Provides subcommands for running the dataset pipeline, tagging content,
validating sidecars, and producing training splits and exports.
"""

import argparse
import json
import signal
import sys
from pathlib import Path
from typing import Optional

from .config.settings import build_config
from .errors import ProvenanceError
from .logging_config import VERBOSITY_LEVELS, configure_logging
from .metadata.integrity import IntegrityStatus, verify_file
from .metadata.record import Origin
from .pipeline.dataset_pipeline import DatasetPipeline
from .pipeline.export import (
    DEFAULT_SEED,
    EXPORT_FORMATS,
    export_dataset,
    generate_splits,
    load_dataset_entries,
    write_splits,
)
from .pipeline.extractor import MetadataExtractor
from .tagging import tag_directory, tag_file


def cmd_run(args: argparse.Namespace) -> int:
    """Run the dataset pipeline."""
    try:
        config = build_config(
            config_file=args.config,
            env_file=args.env_file,
            overrides={
                "content_root": args.content_root,
                "output_root": args.output_root,
                "log_level": args.log_level,
                "strict_mode": args.strict,
                "max_file_size": args.max_file_size,
                "allowed_origins": args.allowed_origins,
                "exclude_patterns": args.exclude,
                "extensions": args.extensions,
                "workers": args.workers,
            },
        )
        configure_logging(config.log_level, args.log_file)

        pipeline = DatasetPipeline(config)
        previous = signal.signal(signal.SIGINT, lambda signum, frame: pipeline.cancel())
        try:
            result = pipeline.run()
        finally:
            signal.signal(signal.SIGINT, previous)

    except ProvenanceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    summary = result.report["summary"]
    print(
        f"Processed {summary['totalFiles']} file(s): {summary['processedFiles']} accepted, "
        f"{summary['skippedFiles']} skipped, {summary['errorFiles']} errors"
    )
    if result.manifest_path:
        print(f"Manifest: {result.manifest_path}")
    if result.cancelled:
        print("(run cancelled before all items were processed)")
    return result.exit_code


def cmd_tag(args: argparse.Namespace) -> int:
    """Tag a file or every item in a directory."""
    optional = {
        "license": args.license,
        "creation_tool": args.toolchain,
        "model_identifier": args.model,
        "description": args.description,
        "keywords": args.keywords,
    }
    optional = {k: v for k, v in optional.items() if v is not None}

    try:
        target = Path(args.path)
        if target.is_dir():
            summary = tag_directory(target, args.origin, args.author, overwrite=args.overwrite, **optional)
            print(f"Tagged {summary.tagged}, skipped {summary.skipped}, failed {summary.failed}")
            return 1 if summary.failed else 0

        record = tag_file(target, args.origin, args.author, **optional)
        print(f"Tagged {target} (origin: {record.origin.value}, hash: {record.content_hash[:12]}...)")
        return 0

    except ProvenanceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate the metadata of one or more items."""
    extractor = MetadataExtractor()
    invalid = 0

    for path_str in args.paths:
        item = Path(path_str)
        try:
            extracted = extractor.extract(item)
        except ProvenanceError as e:
            print(f"ERROR    {item}: {e}")
            invalid += 1
            continue

        if extracted is None:
            print(f"MISSING  {item}: no metadata found")
            invalid += 1
            continue

        result = extracted.validate()
        if not result.is_valid:
            print(f"INVALID  {item}: {result} - {result.message}")
            invalid += 1
            continue

        record = extracted.to_record()
        line = f"VALID    {item} (origin: {record.origin.value}, author: {record.author}, source: {extracted.source})"
        if args.verify:
            check = verify_file(record, item)
            if check.status is not IntegrityStatus.VALID:
                print(f"TAMPERED {item}: {check.status.value} {check.detail}".rstrip())
                invalid += 1
                continue
        print(line)

    total = len(args.paths)
    print(f"\n{total - invalid}/{total} valid")
    if args.strict and invalid:
        print("Validation failed in strict mode", file=sys.stderr)
        return 1
    return 0


def cmd_split(args: argparse.Namespace) -> int:
    """Generate training splits from a curated dataset."""
    try:
        entries = load_dataset_entries(args.dataset)
        splits = generate_splits(
            entries,
            {"train": args.train, "validation": args.validation, "test": args.test},
            seed=args.seed,
        )
        counts = write_splits(splits, args.output)
    except ProvenanceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(counts, indent=2))
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export a curated dataset to csv, json or jsonl."""
    try:
        entries = load_dataset_entries(args.dataset)
        path = export_dataset(entries, args.output, args.format)
    except ProvenanceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Exported {len(entries)} entries to {path}")
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="content-provenance",
        description="Content provenance tagging, validation and dataset curation"
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(VERBOSITY_LEVELS),
        help="Log verbosity (default: info, or LOG_LEVEL)"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    origins = [o.value for o in Origin]

    # run command
    run_parser = subparsers.add_parser("run", help="Run the dataset pipeline")
    run_parser.add_argument("--config", help="YAML configuration file")
    run_parser.add_argument("--env-file", help="Environment file (default: .env)")
    run_parser.add_argument("--content-root", "-i", help="Content root (DATASET_PATH)")
    run_parser.add_argument("--output-root", "-o", help="Output root (OUTPUT_PATH)")
    run_parser.add_argument("--strict", action="store_true", default=None,
                            help="Treat integrity mismatches as errors and exit non-zero on errors")
    run_parser.add_argument("--max-file-size", type=int, help="Maximum item size in bytes")
    run_parser.add_argument("--allowed-origins", help="Comma-separated origins to accept")
    run_parser.add_argument("--exclude", help="Comma-separated name substrings to exclude")
    run_parser.add_argument("--extensions", help="Comma-separated content extensions")
    run_parser.add_argument("--workers", type=int, help="Worker threads for item processing")
    run_parser.set_defaults(func=cmd_run)

    # tag command
    tag_parser = subparsers.add_parser("tag", help="Write provenance sidecars")
    tag_parser.add_argument("path", help="File or directory to tag")
    tag_parser.add_argument("--origin", required=True, choices=origins)
    tag_parser.add_argument("--author", required=True)
    tag_parser.add_argument("--license")
    tag_parser.add_argument("--toolchain", help="Creation tool")
    tag_parser.add_argument("--model", help="Model identifier")
    tag_parser.add_argument("--description")
    tag_parser.add_argument("--keywords", help="Comma-separated keywords")
    tag_parser.add_argument("--overwrite", action="store_true", help="Re-tag items that already have a sidecar")
    tag_parser.set_defaults(func=cmd_tag)

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate item metadata")
    validate_parser.add_argument("paths", nargs="+", help="Content items")
    validate_parser.add_argument("--verify", action="store_true", help="Also verify content integrity")
    validate_parser.add_argument("--strict", action="store_true", help="Exit non-zero if any item is invalid")
    validate_parser.set_defaults(func=cmd_validate)

    # split command
    split_parser = subparsers.add_parser("split", help="Generate training splits from a curated dataset")
    split_parser.add_argument("dataset", help="Curated dataset directory")
    split_parser.add_argument("--output", "-o", required=True, help="Output directory for splits")
    split_parser.add_argument("--train", type=float, default=0.8)
    split_parser.add_argument("--validation", type=float, default=0.1)
    split_parser.add_argument("--test", type=float, default=0.1)
    split_parser.add_argument("--seed", type=int, default=DEFAULT_SEED)
    split_parser.set_defaults(func=cmd_split)

    # export command
    export_parser = subparsers.add_parser("export", help="Export a curated dataset")
    export_parser.add_argument("dataset", help="Curated dataset directory")
    export_parser.add_argument("--output", "-o", required=True, help="Output file")
    export_parser.add_argument("--format", choices=list(EXPORT_FORMATS), default="csv")
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args(argv)

    if args.command != "run":
        configure_logging(args.log_level or "info", args.log_file)

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
