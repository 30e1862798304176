"""Marker substrings and patterns recognised in equipment event logs."""

from __future__ import annotations

import re

# Event triggers
LOT_IN_MARKER = "Dialog_LotIn"
GET_LOT_DATA_MARKER = "GetLotData"
SCRAP_INFO_FIELD = "A SCRAP_INFO"
EQUIPMENT_VID_MARKER = "VID[2001]"
LOT_VID_MARKER = "VID[2004]"
DATA_MARKER = "DATA["

# Message boundaries
RECEIVE_OK_MARKER = "Recive S14F3 successfully"
INBOUND_MARKER = "->>Received"
MAIN_SCREEN_MARKER = "[MAIN]"

# Item fields
PART_ID_FIELD = "A PARTID"
LOT_INFO_FIELD = "A LOTINFO"
LOT_INFO_KEYWORD = "LOTINFO"
LOT_FIELD = "A LOT"
QTY_FIELD = "A QTY"
ALT_QTY_FIELD = "A OQTY"
FAB_SITE_FIELD = "A FABSITE"
TIER_FIELD = "A TIER"
OPTION_FIELD = "A OPTCODE"
VENDOR_FIELD = "A PCBVENDOR"
ASSY_LINE_FIELD = "A ASSYLINE"
SCRAP_COUNT_FIELD = "A SCRAP_CNT"
SCRAP_CODE_KEYWORD = "SCRAP_CODE="

# Lines mentioning these are structure, never values
STRUCTURAL_KEYWORDS: tuple[str, ...] = ("SCRAP_INFO", "SCRAP_CNT", "SCRAP_LIST")
CONTINUATION_PREFIX = "L "

NUMBERED_SCRAP_INFO_RE = re.compile(r"SCRAP_INFO\d+")
A_VALUE_RE = re.compile(r"\bA\s+([^\s\)]+)")
SCRAP_DETAIL_RE = re.compile(r"SCRAP_CODE=(?P<code>\d+)\s+SERIAL=(?P<serial>[A-Za-z0-9]+)")
BRACKET_VALUE_RE = re.compile(r"DATA\[(.*?)\]")
UNSIGNED_INT_RE = re.compile(r"\+?[0-9]+")

# Sentinels
SYNTHETIC_LOT_PREFIX = "UNKNOWN_"
PLACEHOLDER_CODE = "N/A"
PLACEHOLDER_SERIAL = "Check Log"
NO_FAIL_CODE = "No Fail"
NO_FAIL_SERIAL = "-"
SENTINEL_CODES: frozenset[str] = frozenset({PLACEHOLDER_CODE, NO_FAIL_CODE})

# (markers, LotResult attribute, value kind, only while the attribute is empty)
HEADER_FIELDS: tuple[tuple[tuple[str, ...], str, str, bool], ...] = (
    ((PART_ID_FIELD,), "part_no", "text", False),
    ((LOT_INFO_FIELD,), "lot_no", "text", True),
    ((QTY_FIELD, ALT_QTY_FIELD), "in_qty", "int", False),
    ((FAB_SITE_FIELD,), "fab_site", "text", False),
    ((TIER_FIELD,), "tier", "text", False),
    ((OPTION_FIELD,), "option", "text", False),
    ((VENDOR_FIELD,), "vendor", "text", False),
    ((ASSY_LINE_FIELD,), "smt_line", "text", False),
)
