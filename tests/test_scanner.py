from __future__ import annotations

import sys
from pathlib import Path
from typing import Sequence

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from lotscrap import scanner  # noqa: E402
from lotscrap.models import LotResult, ScanLimits, ScrapItem  # noqa: E402


def lot_in_block(
    lot: str | None = "L100",
    *,
    part: str = "PN-001",
    qty: str = "50",
    fab: str = "FAB1",
    tier: str = "T1",
    option: str = "OPT7",
    vendor: str = "VEN",
    line: str = "SMT3",
) -> list[str]:
    block = [
        "[MAIN] Dialog_LotIn GetLotData request",
        "L 16",
        "A PARTID",
        f"A {part}",
    ]
    if lot is not None:
        block += ["A LOTINFO", f"A {lot}"]
    block += [
        "A QTY",
        f"A {qty}",
        "A FABSITE",
        f"A {fab}",
        "A TIER",
        f"A {tier}",
        "A OPTCODE",
        f"A {option}",
        "A PCBVENDOR",
        f"A {vendor}",
        "A ASSYLINE",
        f"A {line}",
        "Recive S14F3 successfully",
    ]
    return block


def scrap_block(
    lot: str = "L100",
    *,
    count: str | None = "2",
    details: Sequence[tuple[str, str]] = (("10", "AB1"), ("20", "AB2")),
    part: str | None = None,
) -> list[str]:
    block = [
        "->>Received S14F3 W",
        "L 4",
        "A SCRAP_INFO",
        f"A {lot}",
    ]
    if part is not None:
        block += ["A PARTID", f"A {part}"]
    if count is not None:
        block += ["A SCRAP_CNT", f"A {count}"]
    block.append("A SCRAP_LIST")
    block += [f"A SCRAP_CODE={code} SERIAL={serial}" for code, serial in details]
    block.append("Recive S14F3 successfully")
    return block


def equipment_block(eqp: str = "TH-H303", lot: str = "L100") -> list[str]:
    return [
        f"DEBUG VID[2001] DATA[{eqp}] (EQP)",
        "DEBUG VID[2003] DATA[RUN]",
        f"DEBUG VID[2004] DATA[{lot}]",
    ]


def test_end_to_end_lot_in_then_scrap() -> None:
    lines = lot_in_block("L100", qty="50") + scrap_block("L100", count="2")

    results = scanner.parse_lines(lines)

    assert len(results) == 1
    lot = results[0]
    assert lot.lot_no == "L100"
    assert lot.part_no == "PN-001"
    assert (lot.fab_site, lot.tier, lot.option, lot.vendor, lot.smt_line) == ("FAB1", "T1", "OPT7", "VEN", "SMT3")
    assert lot.in_qty == 50
    assert lot.fail_count == 2
    assert lot.fail_list == [ScrapItem("10", "AB1"), ScrapItem("20", "AB2")]
    assert lot.yield_pct == pytest.approx(96.0)


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("[MAIN] Dialog_LotIn GetLotData A SCRAP_INFO", "lot_in"),
        ("Dialog_LotIn without data request", None),
        ("A SCRAP_INFO VID[2001] DATA[E1]", "scrap"),
        ("A SCRAP_INFO3", None),
        ("DEBUG VID[2001] DATA[E1]", "equipment_id"),
        ("DEBUG VID[2001] no payload", None),
        ("plain text", None),
    ],
)
def test_classify_applies_trigger_priority(line: str, expected: str | None) -> None:
    assert scanner.classify(line) == expected


def test_duplicate_lot_in_keeps_latest_pending_record() -> None:
    lines = lot_in_block("L100", qty="50") + lot_in_block("L100", qty="75")

    state = scanner.scan(lines)

    assert list(state.pending) == ["L100"]
    assert state.pending["L100"].in_qty == 75
    assert state.results == []


def test_duplicate_scrap_block_keeps_first_result() -> None:
    lines = (
        lot_in_block("L100")
        + scrap_block("L100", count="1", details=[("10", "AB1")])
        + scrap_block("L100", count="3", details=[("30", "ZZ1"), ("31", "ZZ2"), ("32", "ZZ3")])
    )

    results = scanner.parse_lines(lines)

    assert [lot.lot_no for lot in results] == ["L100"]
    assert results[0].fail_count == 1
    assert results[0].fail_list == [ScrapItem("10", "AB1")]


def test_lot_in_without_lot_number_is_never_reported() -> None:
    lines = lot_in_block(None)
    state = scanner.scan(lines)
    assert list(state.pending) == ["UNKNOWN_0"]

    lines += equipment_block("EQ-9", "UNKNOWN_0")
    lines += scrap_block("UNKNOWN_0", count="0", details=())
    state = scanner.scan(lines)

    assert state.results == []
    assert state.pending == {}


def test_no_fail_sentinel_and_count_floor() -> None:
    lines = lot_in_block("L200", qty="50") + scrap_block("L200", count="0", details=())

    lot = scanner.parse_lines(lines)[0]

    assert lot.fail_list == [ScrapItem("No Fail", "-")]
    assert lot.fail_count >= len(lot.fail_list)
    assert lot.yield_pct == pytest.approx((50 - lot.fail_count) / 50 * 100)


def test_missing_scrap_count_without_details_gets_sentinel() -> None:
    lines = lot_in_block("L201") + scrap_block("L201", count=None, details=())

    lot = scanner.parse_lines(lines)[0]

    assert lot.fail_list == [ScrapItem.no_fail()]


def test_detail_lines_outnumbering_count_raise_fail_count() -> None:
    lines = lot_in_block("L300", qty="10") + scrap_block(
        "L300",
        count="1",
        details=[("10", "S1"), ("11", "S2"), ("12", "S3")],
    )

    lot = scanner.parse_lines(lines)[0]

    assert lot.fail_count == 3
    assert [item.serial for item in lot.fail_list] == ["S1", "S2", "S3"]
    assert lot.yield_pct == pytest.approx(70.0)


def test_placeholders_kept_when_no_detail_lines() -> None:
    lines = lot_in_block("L301", qty="20") + scrap_block("L301", count="2", details=())

    lot = scanner.parse_lines(lines)[0]

    assert lot.fail_list == [ScrapItem.placeholder(), ScrapItem.placeholder()]
    assert lot.fail_count == 2
    assert lot.yield_pct == pytest.approx(90.0)


def test_scrap_without_pending_lot_recovers_part_number() -> None:
    lines = scrap_block("L400", count="1", details=[("77", "QQ1")], part="PN-400")

    lot = scanner.parse_lines(lines)[0]

    assert lot.lot_no == "L400"
    assert lot.part_no == "PN-400"
    assert lot.in_qty == 0
    assert lot.yield_pct == 0.0


def _scrap_with_part_after(noise_lines: int) -> list[str]:
    return ["A SCRAP_INFO", "A L400"] + ["noise"] * noise_lines + ["A PARTID", "A PN-400"]


def test_part_recovery_bounded_by_part_id_window() -> None:
    inside = scanner.parse_lines(_scrap_with_part_after(17))[0]
    outside = scanner.parse_lines(_scrap_with_part_after(18))[0]
    widened = scanner.parse_lines(_scrap_with_part_after(18), ScanLimits(part_id_window=21))[0]

    assert inside.part_no == "PN-400"
    assert outside.part_no == ""
    assert widened.part_no == "PN-400"


def test_scrap_block_without_lot_id_is_dropped() -> None:
    lines = ["A SCRAP_INFO", "", "L 0", "Recive S14F3 successfully"]

    assert scanner.parse_lines(lines) == []


def test_equipment_id_attaches_to_pending_lot_before_finalize() -> None:
    lines = lot_in_block("L500") + equipment_block("EQ-1", "L500") + scrap_block("L500")

    lot = scanner.parse_lines(lines)[0]

    assert lot.eqpid == "EQ-1"


def test_equipment_id_prefers_finalized_result_over_pending() -> None:
    lines = (
        lot_in_block("L600", qty="40")
        + scrap_block("L600")
        + lot_in_block("L600", qty="80")
        + equipment_block("EQ-2", "L600")
    )

    state = scanner.scan(lines)

    assert state.results[0].eqpid == "EQ-2"
    assert state.pending["L600"].eqpid == ""
    assert state.pending["L600"].in_qty == 80


def test_latest_result_returns_most_recent_duplicate() -> None:
    state = scanner.ScanState()
    first = LotResult(lot_no="L700")
    second = LotResult(lot_no="L700")
    state.results.extend([first, second])
    lines = equipment_block("EQ-3", "L700")

    scanner.handle_equipment_id(lines, 0, state, ScanLimits())

    assert second.eqpid == "EQ-3"
    assert first.eqpid == ""


def test_unmatched_equipment_id_is_dropped() -> None:
    lines = equipment_block("EQ-4", "NOPE") + lot_in_block("L800") + scrap_block("L800")

    lot = scanner.parse_lines(lines)[0]

    assert lot.eqpid == ""


def test_equipment_lot_lookup_takes_first_match_within_window() -> None:
    lines = [
        "VID[2001] DATA[ EQ-5 ]",
        "VID[2004] DATA[L900]",
        "VID[2004] DATA[L901]",
    ]
    state = scanner.ScanState()
    state.pending["L900"] = LotResult(lot_no="L900")
    state.pending["L901"] = LotResult(lot_no="L901")

    scanner.handle_equipment_id(lines, 0, state, ScanLimits())

    assert state.pending["L900"].eqpid == "EQ-5"
    assert state.pending["L901"].eqpid == ""


def test_equipment_lot_line_beyond_window_is_ignored() -> None:
    lines = ["VID[2001] DATA[EQ-6]"] + ["noise"] * 9 + ["VID[2004] DATA[L950]"]
    state = scanner.ScanState()
    state.pending["L950"] = LotResult(lot_no="L950")

    scanner.handle_equipment_id(lines, 0, state, ScanLimits())

    assert state.pending["L950"].eqpid == ""


def test_results_follow_scrap_event_order() -> None:
    lines = (
        lot_in_block("LA")
        + lot_in_block("LB")
        + scrap_block("LB", count="0", details=())
        + scrap_block("LA", count="0", details=())
    )

    assert [lot.lot_no for lot in scanner.parse_lines(lines)] == ["LB", "LA"]


def test_yield_formula_holds_for_every_lot() -> None:
    lines = (
        lot_in_block("Y1", qty="200")
        + scrap_block("Y1", count="3", details=())
        + lot_in_block("Y2", qty="0")
        + scrap_block("Y2", count="1", details=[("5", "X1")])
        + lot_in_block("Y3", qty="7")
        + scrap_block("Y3", count="2", details=[("5", "X2"), ("6", "X3")])
    )

    results = scanner.parse_lines(lines)

    assert len(results) == 3
    for lot in results:
        assert lot.fail_count >= len(lot.fail_list)
        if lot.in_qty == 0:
            assert lot.yield_pct == 0
        else:
            assert lot.yield_pct == (lot.in_qty - lot.fail_count) / lot.in_qty * 100


def test_parse_lines_runs_are_isolated() -> None:
    lines = lot_in_block("L100") + scrap_block("L100")

    first = scanner.parse_lines(lines)
    second = scanner.parse_lines(lines)

    assert first == second
    assert first[0] is not second[0]


def test_parse_log_reads_crlf_file(tmp_path: Path) -> None:
    log_path = tmp_path / "equipment.log"
    text = "\r\n".join(lot_in_block("L100") + scrap_block("L100")) + "\r\n"
    log_path.write_bytes(text.encode("utf-8"))

    results = scanner.parse_log(log_path)

    assert [lot.lot_no for lot in results] == ["L100"]
    assert results[0].fail_list[1] == ScrapItem("20", "AB2")


def test_parse_log_replaces_undecodable_bytes(tmp_path: Path) -> None:
    log_path = tmp_path / "mixed.log"
    body = "\n".join(lot_in_block("L100") + scrap_block("L100")).encode("utf-8")
    log_path.write_bytes(b"\xff\xfe garbage\n" + body)

    assert [lot.lot_no for lot in scanner.parse_log(log_path)] == ["L100"]


def test_parse_log_file_reports_counts_and_label(tmp_path: Path) -> None:
    log_path = tmp_path / "equipment.log"
    lines = lot_in_block("L100") + scrap_block("L100") + lot_in_block("L101")
    log_path.write_text("\n".join(lines), encoding="utf-8")

    result = scanner.parse_log_file(log_path, label="line/equipment.log")
    default = scanner.parse_log_file(log_path)

    assert result.file_name == "line/equipment.log"
    assert default.file_name == "equipment.log"
    assert [lot.lot_no for lot in result.lots] == ["L100"]
    assert result.line_count == len(lines)
    assert result.pending_count == 1


def test_parse_log_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        scanner.parse_log(tmp_path / "absent.log")
