from __future__ import annotations

import math
import numbers
import time
from io import BytesIO
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.drawing.image import Image as XLImage
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from .markers import SENTINEL_CODES
from .stats import DETAIL_COLUMNS, LOT_COLUMNS, PARETO_COLUMNS

LOTS_SHEET = "Lots"
DETAIL_SHEET = "Scrap Detail"
YIELD_SHEET = "Yield Pareto"

LOT_HEADERS = [
    "File",
    "Lot No",
    "Part No",
    "Fab Site",
    "Tier",
    "Option",
    "Vendor",
    "SMT Line",
    "EQP ID",
    "In Qty",
    "Fail Count",
    "Yield %",
]
DETAIL_HEADERS = ["File", "Lot No", "Part No", "Scrap Code", "Serial"]

DEFAULT_ROW_HEIGHT_PX = 18
IMAGE_WIDTH = 640
IMAGE_HEIGHT = 360
ROW_STRIDE = max(int(IMAGE_HEIGHT / DEFAULT_ROW_HEIGHT_PX) + 4, 32)
CHART_COLUMN = 7
TABLE_STYLE = "TableStyleMedium9"
SECTION_TABLE_STYLE = "TableStyleMedium2"


def build_workbook(
    *,
    lots: pd.DataFrame,
    detail: pd.DataFrame,
    yield_summary: pd.DataFrame,
    pareto_summary: pd.DataFrame,
    output_path: Path,
    include_charts: bool = True,
    timing_collector: Optional[dict[str, float]] = None,
) -> Workbook:
    workbook = Workbook()
    workbook.remove(workbook.active)

    _write_frame_sheet(
        workbook,
        LOTS_SHEET,
        lots,
        LOT_COLUMNS,
        LOT_HEADERS,
        table_name="LotTable",
        widths=[24, 18, 18, 10, 8, 10, 14, 12, 14, 10, 10, 10],
        number_formats={"in_qty": "0", "fail_count": "0", "yield_pct": "0.00"},
    )
    _write_frame_sheet(
        workbook,
        DETAIL_SHEET,
        detail,
        DETAIL_COLUMNS,
        DETAIL_HEADERS,
        table_name="ScrapDetailTable",
        widths=[24, 18, 18, 12, 18],
    )
    charts_start = time.perf_counter()
    _write_yield_pareto_sheet(
        workbook,
        yield_summary,
        pareto_summary,
        lots=lots,
        detail=detail,
        include_charts=include_charts,
    )
    if timing_collector is not None:
        timing_collector["charts.total"] = timing_collector.get("charts.total", 0.0) + (
            time.perf_counter() - charts_start
        )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    save_start = time.perf_counter()
    workbook.save(output_path)
    if timing_collector is not None:
        timing_collector["workbook.save"] = timing_collector.get("workbook.save", 0.0) + (
            time.perf_counter() - save_start
        )
    return workbook


def _write_frame_sheet(
    workbook: Workbook,
    sheet_name: str,
    frame: pd.DataFrame,
    columns: list[str],
    headers: list[str],
    *,
    table_name: str,
    widths: list[int],
    number_formats: Optional[dict[str, str]] = None,
) -> None:
    ws = workbook.create_sheet(sheet_name)
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for _, row in frame.iterrows():
        ws.append([_cell_value(row.get(column)) for column in columns])

    last_row = ws.max_row
    if number_formats and last_row > 1:
        column_index = {name: idx for idx, name in enumerate(columns, start=1)}
        for name, number_format in number_formats.items():
            idx = column_index[name]
            for row_idx in range(2, last_row + 1):
                _set_number_format(ws.cell(row=row_idx, column=idx), number_format)

    if last_row > 1:
        table = Table(displayName=table_name, ref=f"A1:{get_column_letter(len(headers))}{last_row}")
        table.tableStyleInfo = TableStyleInfo(name=TABLE_STYLE, showRowStripes=True, showColumnStripes=False)
        ws.add_table(table)
    ws.freeze_panes = "A2"

    for idx, width in enumerate(widths[: len(headers)], start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width


def _write_yield_pareto_sheet(
    workbook: Workbook,
    yield_summary: pd.DataFrame,
    pareto_summary: pd.DataFrame,
    *,
    lots: pd.DataFrame,
    detail: pd.DataFrame,
    include_charts: bool,
) -> None:
    ws = workbook.create_sheet(YIELD_SHEET)
    if yield_summary is None or yield_summary.empty:
        ws.cell(row=1, column=1, value="No lot data available.")
        return

    row_cursor = _write_yield_summary_table(ws, yield_summary)
    for index, (_, yield_row) in enumerate(yield_summary.iterrows(), start=1):
        row_cursor = _write_file_section(
            ws,
            yield_row,
            pareto_summary,
            index,
            row_cursor,
            lots=lots,
            detail=detail,
            include_charts=include_charts,
        )


def _write_yield_summary_table(ws, yield_summary: pd.DataFrame) -> int:
    headers = ["File", "Lots", "Units In", "Units Fail", "Yield %"]
    for col, header in enumerate(headers, start=1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = Font(bold=True)

    current_row = 1
    for _, row in yield_summary.iterrows():
        current_row += 1
        ws.cell(row=current_row, column=1, value=str(row.get("file", "")))
        ws.cell(row=current_row, column=2, value=int(row.get("lots", 0)))
        ws.cell(row=current_row, column=3, value=int(row.get("units_in", 0)))
        ws.cell(row=current_row, column=4, value=int(row.get("units_fail", 0)))
        ws.cell(row=current_row, column=5, value=_finite_or_none(row.get("yield_percent")))

    table = Table(displayName="YieldSummaryTable", ref=f"A1:{get_column_letter(len(headers))}{current_row}")
    table.tableStyleInfo = TableStyleInfo(name=TABLE_STYLE, showRowStripes=True, showColumnStripes=False)
    ws.add_table(table)

    for r in range(2, current_row + 1):
        for column in (2, 3, 4):
            _set_number_format(ws.cell(row=r, column=column), "0")
        _set_number_format(ws.cell(row=r, column=5), "0.00")

    for column, minimum in zip("ABCDE", [32, 10, 12, 12, 12]):
        _ensure_width(ws, column, minimum)
    return current_row + 2


def _write_file_section(
    ws,
    yield_row: pd.Series,
    pareto_summary: pd.DataFrame,
    section_index: int,
    start_row: int,
    *,
    lots: pd.DataFrame,
    detail: pd.DataFrame,
    include_charts: bool,
) -> int:
    file_name = str(yield_row.get("file", ""))
    header_cell = ws.cell(row=start_row, column=1, value=f"File: {file_name}")
    header_cell.font = Font(bold=True)
    table_header_row = start_row + 1

    headers = ["Scrap Code", "Units", "Share %", "Cumulative %"]
    for col, header in enumerate(headers, start=1):
        cell = ws.cell(row=table_header_row, column=col, value=header)
        cell.font = Font(bold=True)

    if pareto_summary is None or pareto_summary.empty:
        subset = pd.DataFrame(columns=PARETO_COLUMNS)
    else:
        subset = pareto_summary[pareto_summary["file"] == file_name]

    row_cursor = table_header_row
    if subset.empty:
        row_cursor += 1
        ws.cell(row=row_cursor, column=1, value="No scrapped units")
        ws.cell(row=row_cursor, column=2, value=0)
    else:
        for _, pareto_row in subset.iterrows():
            row_cursor += 1
            ws.cell(row=row_cursor, column=1, value=str(pareto_row.get("scrap_code", "")))
            ws.cell(row=row_cursor, column=2, value=int(pareto_row.get("units", 0)))
            ws.cell(row=row_cursor, column=3, value=_finite_or_none(pareto_row.get("share_percent")))
            ws.cell(row=row_cursor, column=4, value=_finite_or_none(pareto_row.get("cumulative_percent")))

    table = Table(
        displayName=f"ParetoTable{section_index}",
        ref=f"A{table_header_row}:{get_column_letter(len(headers))}{row_cursor}",
    )
    table.tableStyleInfo = TableStyleInfo(name=SECTION_TABLE_STYLE, showRowStripes=True, showColumnStripes=False)
    ws.add_table(table)
    for r in range(table_header_row + 1, row_cursor + 1):
        _set_number_format(ws.cell(row=r, column=2), "0")
        _set_number_format(ws.cell(row=r, column=3), "0.00")
        _set_number_format(ws.cell(row=r, column=4), "0.00")

    if not include_charts:
        return row_cursor + 2

    from .mpl_charts import render_lot_yield_chart, render_scrap_breakdown_chart

    file_lots = lots[lots["file"] == file_name]
    file_detail = detail[detail["file"] == file_name]
    real_scrap = file_detail[~file_detail["scrap_code"].isin(SENTINEL_CODES)]
    yield_png = render_lot_yield_chart(file_lots, scrapped_lots=set(real_scrap["lot_no"]), title=f"{file_name} Lot Yield")
    _place_image_at(ws, yield_png, start_row, CHART_COLUMN)
    breakdown_png = render_scrap_breakdown_chart(file_detail, title=f"{file_name} Scrap by Lot")
    _place_image_at(ws, breakdown_png, start_row, CHART_COLUMN + 11)
    return max(row_cursor + 2, start_row + ROW_STRIDE)


def _place_image_at(sheet, image_bytes: bytes, anchor_row: int, anchor_column: int) -> str:
    img = XLImage(BytesIO(image_bytes))
    img.width = IMAGE_WIDTH
    img.height = IMAGE_HEIGHT
    target_cell = f"{get_column_letter(anchor_column)}{anchor_row}"
    sheet.add_image(img, target_cell)
    return target_cell


def _ensure_width(ws, column: str, minimum: float) -> None:
    dim = ws.column_dimensions[column]
    existing = dim.width or 0
    if existing < minimum:
        dim.width = minimum


def _set_number_format(cell, number_format: str) -> None:
    value = cell.value
    if isinstance(value, bool) or value is None:
        return
    if not isinstance(value, numbers.Real):
        return
    if math.isnan(float(value)):
        return
    cell.number_format = number_format


def _finite_or_none(value: Any) -> Optional[float]:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def _cell_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if hasattr(value, "item"):
        return value.item()
    return value
