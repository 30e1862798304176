from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from .markers import SENTINEL_CODES
from .models import LotParseResult

LOT_COLUMNS = [
    "file",
    "lot_no",
    "part_no",
    "fab_site",
    "tier",
    "option",
    "vendor",
    "smt_line",
    "eqpid",
    "in_qty",
    "fail_count",
    "yield_pct",
]

DETAIL_COLUMNS = [
    "file",
    "lot_no",
    "part_no",
    "scrap_code",
    "serial",
]

YIELD_SUMMARY_COLUMNS = [
    "file",
    "lots",
    "units_in",
    "units_fail",
    "yield_percent",
]

PARETO_COLUMNS = [
    "file",
    "scrap_code",
    "units",
    "share_percent",
    "cumulative_percent",
]


def results_to_frame(parsed: Sequence[LotParseResult]) -> pd.DataFrame:
    """One row per finalized lot, tagged with the log it came from."""
    rows = []
    for source in parsed:
        for lot in source.lots:
            row = {column: getattr(lot, column) for column in LOT_COLUMNS if column != "file"}
            row["file"] = source.file_name
            rows.append(row)
    if not rows:
        return pd.DataFrame(columns=LOT_COLUMNS)
    frame = pd.DataFrame(rows, columns=LOT_COLUMNS)
    frame["in_qty"] = frame["in_qty"].astype(int)
    frame["fail_count"] = frame["fail_count"].astype(int)
    frame["yield_pct"] = frame["yield_pct"].astype(float)
    return frame


def scrap_detail_frame(parsed: Sequence[LotParseResult]) -> pd.DataFrame:
    """One row per scrap list entry, sentinels included."""
    rows = [
        {
            "file": source.file_name,
            "lot_no": lot.lot_no,
            "part_no": lot.part_no,
            "scrap_code": item.code,
            "serial": item.serial,
        }
        for source in parsed
        for lot in source.lots
        for item in lot.fail_list
    ]
    if not rows:
        return pd.DataFrame(columns=DETAIL_COLUMNS)
    return pd.DataFrame(rows, columns=DETAIL_COLUMNS)


def compute_yield_summary(lots: pd.DataFrame) -> pd.DataFrame:
    """Aggregate unit counts and yield per source log.

    ``units_fail`` sums each lot's ``fail_count``, so a lot reported as
    ``No Fail`` contributes one unit here while :func:`compute_scrap_pareto`
    leaves it out. For a log with clean lots the Pareto unit total is lower
    than ``units_fail`` by the number of those lots. Placeholder units are
    likewise counted here but carry no code to rank.
    """
    if lots.empty:
        return pd.DataFrame(columns=YIELD_SUMMARY_COLUMNS)

    grouped = lots.groupby("file", sort=False).agg(
        lots=("lot_no", "count"),
        units_in=("in_qty", "sum"),
        units_fail=("fail_count", "sum"),
    )
    grouped["lots"] = grouped["lots"].astype(int)
    grouped["units_in"] = grouped["units_in"].astype(int)
    grouped["units_fail"] = grouped["units_fail"].astype(int)
    with np.errstate(divide="ignore", invalid="ignore"):
        grouped["yield_percent"] = np.where(
            grouped["units_in"] > 0,
            (grouped["units_in"] - grouped["units_fail"]) / grouped["units_in"] * 100,
            np.nan,
        )
    grouped.reset_index(inplace=True)
    result = grouped[YIELD_SUMMARY_COLUMNS]
    result = result.sort_values(by="file", ignore_index=True)
    return result


def compute_scrap_pareto(detail: pd.DataFrame) -> pd.DataFrame:
    """Rank scrap codes by scrapped units within each log.

    Placeholder and no-fail sentinel rows carry no defect code and are left
    out, so a log whose lots only have sentinels contributes no rows.
    """
    if detail.empty:
        return pd.DataFrame(columns=PARETO_COLUMNS)
    real = detail[~detail["scrap_code"].isin(SENTINEL_CODES)]
    if real.empty:
        return pd.DataFrame(columns=PARETO_COLUMNS)

    grouped = real.groupby(["file", "scrap_code"], sort=False).size().rename("units").reset_index()
    totals = grouped.groupby("file")["units"].transform("sum")
    grouped["share_percent"] = grouped["units"] / totals * 100
    grouped.sort_values(
        by=["file", "units", "scrap_code"],
        ascending=[True, False, True],
        inplace=True,
    )
    grouped["cumulative_percent"] = grouped.groupby("file")["share_percent"].cumsum()
    grouped["units"] = grouped["units"].astype(int)
    return grouped[PARETO_COLUMNS].reset_index(drop=True)
