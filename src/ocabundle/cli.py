"""ocabundle CLI: pack, verify, inspect and generate bundle archives."""

import argparse
import json
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path
from typing import Optional


def _configure_logging(quiet: bool, verbose: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main():
    """Main CLI entry point for ocabundle commands."""
    try:
        ocabundle_version = get_version("ocabundle")
    except PackageNotFoundError:
        ocabundle_version = "dev"

    parser = argparse.ArgumentParser(
        prog="ocabundle",
        description="ocabundle: self-addressing capture bases and overlay bundles"
    )
    parser.add_argument("--version", action="version", version=f"ocabundle {ocabundle_version}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )
    parent_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log pack/load details to stderr."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # pack command
    pack_parser = subparsers.add_parser(
        "pack",
        help="Pack a bundle JSON file into an archive",
        parents=[parent_parser]
    )
    pack_parser.add_argument(
        "bundle_json",
        type=Path,
        help="Path to bundle JSON ({capture_base, overlays: [[name, overlay], ...]})"
    )
    pack_parser.add_argument(
        "--out",
        type=Path,
        required=True,
        help="Output archive path"
    )
    pack_parser.add_argument(
        "--deflate",
        action="store_true",
        help="Compress archive entries (stored by default)"
    )

    # verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify every SAID in an archive",
        parents=[parent_parser]
    )
    verify_parser.add_argument(
        "archive_path",
        type=Path,
        help="Path to bundle archive"
    )
    verify_parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory for verify_bundle.json report"
    )

    # inspect command
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Print the verified bundle as JSON",
        parents=[parent_parser]
    )
    inspect_parser.add_argument(
        "archive_path",
        type=Path,
        help="Path to bundle archive"
    )

    # from-style command
    style_parser = subparsers.add_parser(
        "from-style",
        help="Generate an archive from a schema-creator style description",
        parents=[parent_parser]
    )
    style_source = style_parser.add_mutually_exclusive_group(required=True)
    style_source.add_argument(
        "--url",
        default=None,
        help="URL of the style description"
    )
    style_source.add_argument(
        "--file",
        type=Path,
        default=None,
        help="Path to a style description JSON file"
    )
    style_parser.add_argument(
        "--out",
        type=Path,
        required=True,
        help="Output archive path"
    )
    style_parser.add_argument(
        "--language",
        default=None,
        help="Label language (defaults to 'en')"
    )
    style_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="HTTP timeout in seconds for --url"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _configure_logging(args.quiet, args.verbose)

    def _write_validation_result(result, output_dir: Optional[Path], filename: str) -> None:
        from ocabundle.kernel.said import canonical_dumps

        status = "OK" if result.ok else "FAILED"
        if not args.quiet:
            print(f"[{status}] Verification complete")
        if output_dir is not None:
            output_dir.mkdir(parents=True, exist_ok=True)
            report_out = output_dir / filename
            report_out.write_text(canonical_dumps(result.model_dump()) + "\n", encoding="utf-8")
            if not args.quiet:
                print(f"  Report: {report_out}")
        if not args.quiet:
            print(f"  Status: {status}")
            if result.root:
                print(f"  Root: {result.root}")
                print(f"  Overlays: {result.overlay_count}")
            print(f"  Errors: {len(result.errors)}")
            for issue in result.errors:
                print(f"    [{issue.code}] {issue.message}")
            print(f"  Warnings: {len(result.warnings)}")
            for issue in result.warnings:
                print(f"    [{issue.code}] {issue.message}")
        if not result.ok:
            sys.exit(1)

    from ocabundle.config import BundleConfig
    from ocabundle.kernel.errors import BundleError

    if args.command == "pack":
        try:
            from .api import load_bundle_json, write_bundle

            bundle = load_bundle_json(args.bundle_json.resolve())
            config = BundleConfig(compression="deflated" if args.deflate else "stored")
            out = write_bundle(bundle, args.out.resolve(), config)
            if not args.quiet:
                print("[OK] Pack complete")
                print(f"  Root: {bundle.capture_base.digest}")
                print(f"  Overlays: {len(bundle.overlays)}")
                print(f"  Archive: {out}")
        except (BundleError, FileNotFoundError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "verify":
        try:
            from .api import verify_bundle

            output_dir = Path(args.output_dir).resolve() if args.output_dir else None
            result = verify_bundle(args.archive_path.resolve())
            _write_validation_result(result, output_dir, "verify_bundle.json")
        except OSError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "inspect":
        try:
            from .api import load_bundle

            bundle = load_bundle(args.archive_path.resolve())
            print(json.dumps(bundle.to_json_dict(), indent=2, ensure_ascii=False))
        except (BundleError, FileNotFoundError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "from-style":
        try:
            from .api import bundle_from_style, fetch_bundle_from_style, write_bundle

            overrides = {}
            if args.language:
                overrides["default_language"] = args.language
            if args.timeout is not None:
                overrides["fetch_timeout_seconds"] = args.timeout
            config = BundleConfig(**overrides)

            if args.url:
                bundle = fetch_bundle_from_style(args.url, config=config)
            else:
                bundle = bundle_from_style(args.file.resolve(), config=config)
            out = write_bundle(bundle, args.out.resolve(), config)
            if not args.quiet:
                print("[OK] Bundle generated")
                print(f"  Root: {bundle.capture_base.digest}")
                print(f"  Archive: {out}")
        except (BundleError, FileNotFoundError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
