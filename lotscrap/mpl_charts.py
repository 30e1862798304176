"""Per-log lot charts embedded in the Yield Pareto sheet.

Both renderers take the slice of the lot or scrap-detail frame belonging to a
single log and return PNG bytes for openpyxl.
"""

from __future__ import annotations

from io import BytesIO
from typing import Collection

import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt  # type: ignore  # noqa: E402
import numpy as np
import pandas as pd
from matplotlib.ticker import MaxNLocator

from .markers import SENTINEL_CODES

FIGSIZE = (8, 4)
DPI = 65
CLEAN_LOT_COLOR = "#4c9a2a"
SCRAPPED_LOT_COLOR = "#c0392b"
NO_QTY_COLOR = "#bbbbbb"
OVERALL_LINE_COLOR = "#34495e"


def render_lot_yield_chart(
    lots: pd.DataFrame,
    *,
    scrapped_lots: Collection[str] = (),
    title: str = "",
) -> bytes:
    """One bar per lot showing its yield, annotated with ``failed/in`` units.

    Lots listed in *scrapped_lots* are drawn red, the rest green. Lots
    without an input quantity have no meaningful yield and are drawn as
    grey placeholders at zero. The dashed line marks the unit-weighted yield
    of the whole log.
    """
    fig, ax = plt.subplots(figsize=FIGSIZE)
    ax.set_title(title, fontsize=11)
    if lots.empty:
        ax.axis("off")
        ax.text(0.5, 0.5, "No lots", ha="center", va="center", fontsize=12)
        return _to_png(fig)

    in_qty = lots["in_qty"].to_numpy(dtype=float)
    fail_count = lots["fail_count"].to_numpy(dtype=float)
    has_qty = in_qty > 0
    yields = np.where(has_qty, lots["yield_pct"].to_numpy(dtype=float), 0.0)
    colors = [
        NO_QTY_COLOR if not qty else (SCRAPPED_LOT_COLOR if scrapped else CLEAN_LOT_COLOR)
        for qty, scrapped in zip(has_qty, lots["lot_no"].isin(list(scrapped_lots)))
    ]

    positions = np.arange(len(lots))
    ax.bar(positions, yields, color=colors, width=0.6)
    ax.set_xticks(positions)
    ax.set_xticklabels(lots["lot_no"].astype(str).tolist(), rotation=45, ha="right", fontsize=8)
    ax.set_ylabel("Yield %", fontsize=9)
    ax.set_ylim(min(0.0, float(yields.min()) - 5.0), 110)
    ax.grid(axis="y", linestyle=":", linewidth=0.6, alpha=0.7)

    for x, value, fails, qty in zip(positions, yields, fail_count, in_qty):
        note = f"{int(fails)}/{int(qty)}" if qty > 0 else "no qty"
        ax.annotate(note, (x, max(value, 0.0)), xytext=(0, 3), textcoords="offset points", ha="center", fontsize=7)

    total_in = in_qty[has_qty].sum()
    if total_in > 0:
        overall = (total_in - fail_count[has_qty].sum()) / total_in * 100
        ax.axhline(overall, color=OVERALL_LINE_COLOR, linestyle="--", linewidth=1.0)
        ax.text(len(lots) - 0.5, overall, f"log {overall:.1f}%", ha="right", va="bottom", fontsize=8)

    fig.tight_layout()
    return _to_png(fig)


def render_scrap_breakdown_chart(detail: pd.DataFrame, *, title: str = "") -> bytes:
    """Stacked bars of scrapped units per lot, one segment per scrap code."""
    fig, ax = plt.subplots(figsize=FIGSIZE)
    ax.set_title(title, fontsize=11)
    real = detail[~detail["scrap_code"].isin(SENTINEL_CODES)] if not detail.empty else detail
    if real.empty:
        ax.axis("off")
        ax.text(0.5, 0.5, "No scrapped units", ha="center", va="center", fontsize=12)
        return _to_png(fig)

    matrix = pd.crosstab(real["lot_no"], real["scrap_code"]).reindex(pd.unique(real["lot_no"]))
    # Largest codes at the bottom of each stack
    matrix = matrix[matrix.sum().sort_values(ascending=False).index]
    positions = np.arange(len(matrix.index))
    bottom = np.zeros(len(matrix.index))
    cmap = plt.get_cmap("tab10")
    for idx, code in enumerate(matrix.columns):
        counts = matrix[code].to_numpy(dtype=float)
        ax.bar(positions, counts, bottom=bottom, width=0.6, color=cmap(idx % 10), label=f"code {code}")
        bottom += counts

    ax.set_xticks(positions)
    ax.set_xticklabels([str(lot) for lot in matrix.index], rotation=45, ha="right", fontsize=8)
    ax.set_ylabel("Scrapped units", fontsize=9)
    ax.set_ylim(0, max(bottom.max() * 1.2, 1.0))
    ax.yaxis.set_major_locator(MaxNLocator(integer=True))
    ax.legend(fontsize=7, loc="upper right", ncol=2)
    fig.tight_layout()
    return _to_png(fig)


def _to_png(fig) -> bytes:
    buffer = BytesIO()
    try:
        fig.savefig(buffer, format="png", dpi=DPI, bbox_inches="tight")
    finally:
        plt.close(fig)
    return buffer.getvalue()
