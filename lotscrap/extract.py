"""Bounded forward-scan extractors over the lines of an equipment log.

Every helper here looks ahead from an anchor line by a fixed number of lines
(see :class:`~lotscrap.models.ScanLimits`) and never past the end of the log,
so malformed input can only leave fields empty.
"""

from __future__ import annotations

from typing import Optional, Sequence

from .markers import (
    A_VALUE_RE,
    CONTINUATION_PREFIX,
    HEADER_FIELDS,
    INBOUND_MARKER,
    LOT_FIELD,
    LOT_IN_MARKER,
    LOT_INFO_KEYWORD,
    MAIN_SCREEN_MARKER,
    NUMBERED_SCRAP_INFO_RE,
    RECEIVE_OK_MARKER,
    SCRAP_CODE_KEYWORD,
    SCRAP_COUNT_FIELD,
    SCRAP_DETAIL_RE,
    SCRAP_INFO_FIELD,
    STRUCTURAL_KEYWORDS,
    UNSIGNED_INT_RE,
)
from .models import LotResult, ScanLimits, ScrapItem

DEFAULT_LIMITS = ScanLimits()


def extract_a_value(line: str) -> str:
    """Return the token following a standalone ``A`` marker, or ``""``."""
    _, colon, remainder = line.partition(":")
    if colon:
        line = remainder
    match = A_VALUE_RE.search(line)
    return match.group(1).strip() if match else ""


def next_a_value(lines: Sequence[str], index: int, limits: ScanLimits = DEFAULT_LIMITS) -> str:
    """Find the value carried by the lines after the field line at *index*."""
    stop = min(index + limits.value_window, len(lines))
    for position in range(index + 1, stop):
        line = lines[position].strip()
        if not line or line.startswith(CONTINUATION_PREFIX):
            continue
        if any(keyword in line for keyword in STRUCTURAL_KEYWORDS):
            continue
        value = extract_a_value(line)
        if value:
            return value
    return ""


def parse_int(text: str) -> Optional[int]:
    text = text.strip()
    if not UNSIGNED_INT_RE.fullmatch(text):
        return None
    return int(text)


def is_scrap_info_field(line: str) -> bool:
    return SCRAP_INFO_FIELD in line and NUMBERED_SCRAP_INFO_RE.search(line) is None


def is_lot_field(line: str) -> bool:
    return LOT_FIELD in line and LOT_INFO_KEYWORD not in line


def find_value_in_block(
    lines: Sequence[str],
    start: int,
    window: int,
    keyword: str,
    limits: ScanLimits = DEFAULT_LIMITS,
) -> str:
    """Value of the first line within *window* lines of *start* containing *keyword*."""
    stop = min(start + window, len(lines))
    for position in range(start, stop):
        if keyword in lines[position]:
            return next_a_value(lines, position, limits)
    return ""


def locate_lot_id(lines: Sequence[str], start: int, limits: ScanLimits = DEFAULT_LIMITS) -> str:
    """Find the lot number a scrap block at *start* refers to."""
    stop = min(start + limits.lot_id_window, len(lines))
    for position in range(start, stop):
        line = lines[position]
        if is_lot_field(line) or is_scrap_info_field(line):
            value = next_a_value(lines, position, limits)
            if value:
                return value
    return ""


def parse_header(
    lines: Sequence[str],
    start: int,
    lot: LotResult,
    limits: ScanLimits = DEFAULT_LIMITS,
) -> LotResult:
    """Populate identity and quantity fields from a lot-in block."""
    stop = min(start + limits.header_window, len(lines))
    for position in range(start, stop):
        line = lines[position].strip()
        if RECEIVE_OK_MARKER in line:
            break
        if position > start and (
            INBOUND_MARKER in line or MAIN_SCREEN_MARKER in line or LOT_IN_MARKER in line
        ):
            break
        _apply_header_field(lines, position, line, lot, limits)
    return lot


def _apply_header_field(
    lines: Sequence[str],
    position: int,
    line: str,
    lot: LotResult,
    limits: ScanLimits,
) -> None:
    for markers, attribute, kind, only_if_empty in HEADER_FIELDS:
        if not any(marker in line for marker in markers):
            continue
        if only_if_empty and getattr(lot, attribute):
            continue
        value = next_a_value(lines, position, limits)
        if kind == "int":
            number = parse_int(value)
            if number is not None:
                setattr(lot, attribute, number)
        else:
            setattr(lot, attribute, value)
        return


def parse_scrap_block(
    lines: Sequence[str],
    start: int,
    lot: LotResult,
    limits: ScanLimits = DEFAULT_LIMITS,
) -> LotResult:
    """Populate the failure count and scrap list from a scrap block."""
    stop = min(start + limits.scrap_window, len(lines))
    for position in range(start, stop):
        line = lines[position].strip()
        past_start = position > start
        if past_start and LOT_IN_MARKER in line:
            break
        if RECEIVE_OK_MARKER in line:
            break
        if past_start and (INBOUND_MARKER in line or is_lot_field(line)):
            break

        if SCRAP_COUNT_FIELD in line:
            count = parse_int(next_a_value(lines, position, limits))
            if count is not None:
                lot.fail_count = count
                if not lot.fail_list and count > 0:
                    lot.fail_list.extend(ScrapItem.placeholder() for _ in range(count))

        if SCRAP_CODE_KEYWORD in line:
            matches = list(SCRAP_DETAIL_RE.finditer(line))
            if matches and lot.has_placeholders():
                lot.fail_list.clear()
            for match in matches:
                lot.fail_list.append(ScrapItem(code=match.group("code"), serial=match.group("serial")))
    return lot
