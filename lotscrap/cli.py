from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .config import PROFILE_FILENAME, ConfigError, resolve_scan_limits
from .models import LotParseResult, LotResult, ReportInputs, ScanLimits, SourceLog
from .pipeline import records_payload, run_report, source_labels
from . import scanner

DEFAULT_PATTERN = "*.log"
DEFAULT_METADATA_PATH = Path("lot_logs.json")
DEFAULT_OUTPUT_PATH = Path("Lot_Report.xlsx")

WINDOW_OPTIONS = {
    "header_window": "--header-window",
    "scrap_window": "--scrap-window",
    "lot_id_window": "--lot-id-window",
    "part_id_window": "--part-id-window",
    "value_window": "--value-window",
    "equipment_window": "--equipment-window",
}


def _warn_path_type_mismatch(path: Path, *, expect_file: bool, description: str) -> None:
    if not path.exists():
        return
    if expect_file and path.is_dir():
        print(f"Warning: {description} should be a file, but a directory was provided: {path}")
    if not expect_file and path.is_file():
        print(f"Warning: {description} should be a directory, but a file was provided: {path}")


def _prepare_output_path(path: Path) -> Path:
    path = path.expanduser()
    if path.exists() and path.is_dir():
        print(f"Warning: Output path {path} is a directory; writing {DEFAULT_OUTPUT_PATH.name} inside it.")
        path = path / DEFAULT_OUTPUT_PATH.name
    if path.suffix:
        if path.suffix.lower() != ".xlsx":
            print(f"Warning: Output workbook should use '.xlsx'; replacing extension for {path}.")
            path = path.with_suffix(".xlsx")
    else:
        path = path.with_suffix(".xlsx")
    return path.resolve()


def _add_limit_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--profile",
        type=Path,
        help=f"TOML profile with a [limits] table (default: ./{PROFILE_FILENAME} when present).",
    )
    defaults = ScanLimits()
    for name, flag in WINDOW_OPTIONS.items():
        parser.add_argument(
            flag,
            dest=name,
            type=int,
            help=f"Override the {name.replace('_', ' ')} (default: {getattr(defaults, name)} lines).",
        )
    parser.add_argument(
        "--encoding",
        default="utf-8",
        help="Text encoding of the log files (default: utf-8; undecodable bytes are replaced).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lotscrap",
        description="Extract lot, yield and scrap records from equipment event logs.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every recognised event while parsing.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Discover log files in a directory and write metadata JSON.")
    scan_parser.add_argument("directory", nargs="?", type=Path, default=Path.cwd())
    scan_parser.add_argument(
        "--metadata",
        type=Path,
        default=DEFAULT_METADATA_PATH,
        help=f"Destination metadata JSON path (default: {DEFAULT_METADATA_PATH}).",
    )
    scan_parser.add_argument(
        "--recursive",
        action="store_true",
        help="Search directories recursively for log files.",
    )
    scan_parser.add_argument(
        "--pattern",
        default=DEFAULT_PATTERN,
        help=f"Glob pattern selecting log files (default: {DEFAULT_PATTERN}).",
    )

    parse_parser = subparsers.add_parser("parse", help="Print the lot records found in one or more logs.")
    parse_parser.add_argument("logs", nargs="+", type=Path, help="Log files to parse.")
    parse_parser.add_argument(
        "--json",
        action="store_true",
        help="Emit records as JSON instead of a table.",
    )
    _add_limit_arguments(parse_parser)

    run_parser = subparsers.add_parser("run", help="Parse logs and write the Excel lot report.")
    run_parser.add_argument("logs", nargs="*", type=Path, help="Log files to process.")
    run_parser.add_argument(
        "--metadata",
        type=Path,
        help="Optional metadata JSON listing log files to process.",
    )
    run_parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_PATH,
        help=f"Output Excel workbook path (default: {DEFAULT_OUTPUT_PATH}).",
    )
    run_parser.add_argument("--csv", type=Path, help="Also write the lot table as CSV.")
    run_parser.add_argument("--json", type=Path, help="Also write the lot records as JSON.")
    run_parser.add_argument(
        "--no-charts",
        action="store_true",
        help="Skip yield and Pareto chart rendering.",
    )
    _add_limit_arguments(run_parser)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "scan":
        sources = _scan_directory(args.directory, pattern=args.pattern, recursive=args.recursive)
        _write_metadata(args.metadata, sources)
        print(f"Recorded {len(sources)} log file(s) to {args.metadata}")
        return 0

    if args.command == "parse":
        limits = _resolve_limits(args, parser)
        sources = [_source_for(path) for path in args.logs]
        parsed: list[LotParseResult] = [
            scanner.parse_log_file(source.path, limits, encoding=args.encoding, label=label)
            for source, label in zip(sources, source_labels(sources))
        ]
        if args.json:
            print(json.dumps(records_payload(parsed), indent=2))
        else:
            for result in parsed:
                _print_lot_table(result.file_name, result.lots)
        return 0

    if args.command == "run":
        paths: list[Path] = []
        if args.metadata:
            paths.extend(_read_metadata(args.metadata))
        paths.extend(args.logs or [])
        if not paths:
            discovered = _scan_directory(Path.cwd(), pattern=DEFAULT_PATTERN, recursive=False)
            if not discovered:
                parser.error("No log inputs supplied and no log files found in the current directory.")
            print(f"Auto-discovered {len(discovered)} log file(s) under {Path.cwd()}.")
            paths.extend(discovered)

        unique_paths = list(dict.fromkeys(Path(path).expanduser().resolve() for path in paths))
        sources = [_source_for(path) for path in unique_paths]
        config = ReportInputs(
            sources=sources,
            output=_prepare_output_path(args.output),
            csv_output=args.csv,
            json_output=args.json,
            generate_charts=not args.no_charts,
            limits=_resolve_limits(args, parser),
            encoding=args.encoding,
        )
        result = run_report(config)
        for warning in result.get("warnings") or []:
            print(f"Warning: {warning}")
        print(
            f"Workbook written to {result['output']} ({result['lot_rows']} lots; "
            f"{result['scrap_rows']} scrap rows; {result['pending_lots']} lots without track-out)"
        )
        if result.get("csv"):
            print(f"CSV written to {result['csv']}")
        if result.get("json"):
            print(f"JSON written to {result['json']}")
        elapsed = result.get("elapsed_seconds")
        if isinstance(elapsed, (int, float)):
            print(f"Total elapsed time: {elapsed:.2f}s")
        return 0

    parser.error(f"Unsupported command: {args.command}")
    return 1


def _resolve_limits(args: argparse.Namespace, parser: argparse.ArgumentParser) -> ScanLimits:
    profile_path: Optional[Path] = args.profile
    if profile_path is not None:
        profile_path = profile_path.expanduser().resolve()
        if profile_path.is_dir():
            _warn_path_type_mismatch(profile_path, expect_file=True, description="Scan profile")
            profile_path = profile_path / PROFILE_FILENAME
        if not profile_path.exists():
            print(f"Warning: scan profile {profile_path} not found; using defaults.")
    else:
        profile_path = Path.cwd() / PROFILE_FILENAME
    overrides = {name: getattr(args, name, None) for name in WINDOW_OPTIONS}
    try:
        return resolve_scan_limits(profile_path=profile_path, overrides=overrides)
    except ConfigError as exc:
        parser.error(str(exc))


def _source_for(path: Path) -> SourceLog:
    source = SourceLog(path)
    if source.path.is_dir():
        _warn_path_type_mismatch(source.path, expect_file=True, description="Log path")
        raise SystemExit(f"Log path must be a file: {source.path}")
    if not source.path.exists():
        raise SystemExit(f"Log file not found: {source.path}")
    return source


def _print_lot_table(file_name: str, lots: Sequence[LotResult]) -> None:
    print(f"{file_name}: {len(lots)} lot(s)")
    if not lots:
        return
    print(
        f"{'LOT':16} {'PART':16} {'EQPID':12} {'IN':>6} {'FAIL':>5} {'YIELD%':>7}  SCRAP"
    )
    for lot in lots:
        scrap = ", ".join(f"{item.code}:{item.serial}" for item in lot.fail_list)
        print(
            f"{lot.lot_no:16} {lot.part_no:16} {lot.eqpid:12} {lot.in_qty:>6} "
            f"{lot.fail_count:>5} {lot.yield_pct:>7.2f}  {scrap}"
        )


def _scan_directory(directory: Path, *, pattern: str, recursive: bool) -> list[Path]:
    directory = directory.expanduser().resolve()
    if directory.exists() and directory.is_file():
        _warn_path_type_mismatch(directory, expect_file=False, description="Scan directory")
    if not directory.exists() or not directory.is_dir():
        raise SystemExit(f"Directory not found: {directory}")
    candidates = directory.rglob(pattern) if recursive else directory.glob(pattern)
    return sorted(path.resolve() for path in candidates if path.is_file())


def _write_metadata(path: Path, sources: Iterable[Path]) -> None:
    if path.exists() and path.is_dir():
        print(f"Warning: Metadata path {path} is a directory; writing {DEFAULT_METADATA_PATH.name} inside it.")
        path = path / DEFAULT_METADATA_PATH.name
    payload = [{"path": str(Path(src).expanduser().resolve())} for src in sources]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _read_metadata(path: Path) -> list[Path]:
    path = path.expanduser().resolve()
    if path.exists() and path.is_dir():
        _warn_path_type_mismatch(path, expect_file=True, description="Metadata path")
        raise SystemExit(f"Metadata path is a directory, expected a file: {path}")
    if not path.exists():
        raise SystemExit(f"Metadata file not found: {path}")
    data = json.loads(path.read_text(encoding="utf-8"))
    return [Path(entry["path"]).expanduser().resolve() for entry in data]


if __name__ == "__main__":
    raise SystemExit(main())
