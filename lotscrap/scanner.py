"""Single-pass interpreter turning an equipment log into finalized lot records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from . import extract
from .markers import (
    BRACKET_VALUE_RE,
    DATA_MARKER,
    EQUIPMENT_VID_MARKER,
    GET_LOT_DATA_MARKER,
    LOT_IN_MARKER,
    LOT_VID_MARKER,
    PART_ID_FIELD,
    SYNTHETIC_LOT_PREFIX,
)
from .models import LotParseResult, LotResult, ScanLimits, ScrapItem

logger = logging.getLogger(__name__)


@dataclass
class ScanState:
    """Mutable state of one parse run."""

    pending: dict[str, LotResult] = field(default_factory=dict)
    results: list[LotResult] = field(default_factory=list)
    finalized: set[str] = field(default_factory=set)

    def finalize(self, lot: LotResult) -> None:
        self.results.append(lot)
        self.finalized.add(lot.lot_no)

    def latest_result(self, lot_no: str) -> Optional[LotResult]:
        for lot in reversed(self.results):
            if lot.lot_no == lot_no:
                return lot
        return None


Predicate = Callable[[str], bool]
Handler = Callable[[Sequence[str], int, ScanState, ScanLimits], None]


def is_lot_in(line: str) -> bool:
    return LOT_IN_MARKER in line and GET_LOT_DATA_MARKER in line


def is_scrap_header(line: str) -> bool:
    return extract.is_scrap_info_field(line)


def is_equipment_id(line: str) -> bool:
    return EQUIPMENT_VID_MARKER in line and DATA_MARKER in line


def bracket_value(line: str) -> Optional[str]:
    """Return the trimmed ``DATA[...]`` payload of *line*, or None when absent."""
    match = BRACKET_VALUE_RE.search(line)
    return match.group(1).strip() if match else None


def handle_lot_in(lines: Sequence[str], index: int, state: ScanState, limits: ScanLimits) -> None:
    lot = extract.parse_header(lines, index, LotResult(), limits)
    if lot.lot_no:
        if state.pending.pop(lot.lot_no, None) is not None:
            logger.debug("Line %d: lot-in replaces pending lot %s", index, lot.lot_no)
    else:
        lot.lot_no = f"{SYNTHETIC_LOT_PREFIX}{index}"
    state.pending[lot.lot_no] = lot
    logger.debug("Line %d: lot-in %s (qty=%d)", index, lot.lot_no, lot.in_qty)


def handle_scrap(lines: Sequence[str], index: int, state: ScanState, limits: ScanLimits) -> None:
    lot_no = extract.locate_lot_id(lines, index, limits)
    if not lot_no:
        logger.debug("Line %d: scrap block without lot id skipped", index)
        return
    if lot_no in state.finalized:
        logger.debug("Line %d: duplicate scrap block for lot %s skipped", index, lot_no)
        return

    lot = state.pending.pop(lot_no, None)
    if lot is None:
        lot = LotResult(lot_no=lot_no)
        part_no = extract.find_value_in_block(lines, index, limits.part_id_window, PART_ID_FIELD, limits)
        if part_no:
            lot.part_no = part_no

    extract.parse_scrap_block(lines, index, lot, limits)
    apply_scrap_invariants(lot)

    if lot.is_synthesized:
        logger.debug("Line %d: synthesized lot %s not reported", index, lot.lot_no)
        return
    state.finalize(lot)
    logger.debug(
        "Line %d: finalized lot %s (fail=%d, yield=%.2f)",
        index,
        lot.lot_no,
        lot.fail_count,
        lot.yield_pct,
    )


def handle_equipment_id(lines: Sequence[str], index: int, state: ScanState, limits: ScanLimits) -> None:
    eqp_id = bracket_value(lines[index]) or ""
    lot_no = ""
    stop = min(index + limits.equipment_window, len(lines))
    for position in range(index + 1, stop):
        line = lines[position]
        if LOT_VID_MARKER in line and DATA_MARKER in line:
            value = bracket_value(line)
            if value is not None:
                lot_no = value
                break

    if not eqp_id or not lot_no:
        return
    target = state.latest_result(lot_no)
    if target is None:
        target = state.pending.get(lot_no)
    if target is None:
        logger.debug("Line %d: equipment %s for unknown lot %s dropped", index, eqp_id, lot_no)
        return
    target.eqpid = eqp_id


def apply_scrap_invariants(lot: LotResult) -> LotResult:
    """Normalise failure bookkeeping and compute the yield of a closed lot."""
    if not lot.fail_list and lot.fail_count == 0:
        lot.fail_list.append(ScrapItem.no_fail())
    if len(lot.fail_list) > lot.fail_count:
        lot.fail_count = len(lot.fail_list)
    lot.yield_pct = compute_yield(lot.in_qty, lot.fail_count)
    return lot


def compute_yield(in_qty: int, fail_count: int) -> float:
    if in_qty > 0:
        return (in_qty - fail_count) / in_qty * 100
    return 0.0


# First matching trigger wins; at most one event per line.
TRIGGERS: tuple[tuple[str, Predicate, Handler], ...] = (
    ("lot_in", is_lot_in, handle_lot_in),
    ("scrap", is_scrap_header, handle_scrap),
    ("equipment_id", is_equipment_id, handle_equipment_id),
)


def classify(line: str) -> Optional[str]:
    """Name of the trigger *line* fires, or None."""
    for name, predicate, _ in TRIGGERS:
        if predicate(line):
            return name
    return None


def scan(lines: Sequence[str], limits: Optional[ScanLimits] = None) -> ScanState:
    """Run the interpreter over *lines* and return the final state."""
    limits = limits or ScanLimits()
    state = ScanState()
    for index, line in enumerate(lines):
        for _, predicate, handler in TRIGGERS:
            if predicate(line):
                handler(lines, index, state, limits)
                break
    return state


def parse_lines(lines: Sequence[str], limits: Optional[ScanLimits] = None) -> list[LotResult]:
    """Finalized lot records of *lines* in the order their scrap blocks appear."""
    return scan(lines, limits).results


def read_log_lines(path: Path, *, encoding: str = "utf-8") -> list[str]:
    with Path(path).open("r", encoding=encoding, errors="replace", newline=None) as handle:
        return [line.rstrip("\n") for line in handle]


def parse_log_file(
    path: Path,
    limits: Optional[ScanLimits] = None,
    *,
    encoding: str = "utf-8",
    label: Optional[str] = None,
) -> LotParseResult:
    """Scan the log at *path*; *label* names it in reports (default: file name)."""
    lines = read_log_lines(path, encoding=encoding)
    state = scan(lines, limits)
    name = label or Path(path).name
    logger.info(
        "Parsed %s: %d lines, %d lots finalized, %d left pending",
        name,
        len(lines),
        len(state.results),
        len(state.pending),
    )
    return LotParseResult(
        file_name=name,
        lots=list(state.results),
        line_count=len(lines),
        pending_count=len(state.pending),
    )


def parse_log(
    path: Path,
    limits: Optional[ScanLimits] = None,
    *,
    encoding: str = "utf-8",
) -> list[LotResult]:
    """Read the log at *path* and return its finalized lot records."""
    return parse_log_file(path, limits, encoding=encoding).lots
