from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Sequence

import pandas as pd

from . import scanner, stats, workbook_builder
from .models import LotParseResult, ReportInputs, SourceLog

logger = logging.getLogger(__name__)

StageHandler = Callable[["PipelineContext"], "PipelineContext"]


@dataclass(frozen=True)
class PipelineContext:
    """Immutable snapshot of data flowing between report stages."""

    config: ReportInputs
    parsed: tuple[LotParseResult, ...] = ()
    lots: pd.DataFrame | None = None
    detail: pd.DataFrame | None = None
    yield_summary: pd.DataFrame | None = None
    pareto_summary: pd.DataFrame | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)
    stage_details: dict[str, dict[str, float]] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    def with_updates(self, **changes: Any) -> "PipelineContext":
        """Return a new context with the supplied field updates."""
        if "warnings" in changes and not isinstance(changes["warnings"], tuple):
            changes["warnings"] = tuple(changes["warnings"])
        return replace(self, **changes)


class Pipeline:
    """Runs the report stages in order over the configured logs."""

    def __init__(self, config: ReportInputs) -> None:
        self._config = config
        self._stage_handlers: list[tuple[str, str, StageHandler]] = [
            ("parse", "Parsing equipment logs", self._stage_parse),
            ("summaries", "Computing yield and scrap Pareto", self._stage_summaries),
            ("workbook", "Building Excel workbook", self._stage_workbook),
            ("exports", "Writing side exports", self._stage_exports),
        ]

    def run(self) -> dict[str, Any]:
        """Execute the configured stages and return summary information."""
        context = PipelineContext(config=self._config)
        for stage_name, message, handler in self._stage_handlers:
            if stage_name == "exports" and not (self._config.csv_output or self._config.json_output):
                continue
            context = self._run_stage(stage_name, message, handler, context)
        return self._build_result(context)

    def _run_stage(
        self,
        stage_name: str,
        message: str,
        handler: StageHandler,
        context: PipelineContext,
    ) -> PipelineContext:
        logger.info("%s...", message)
        start = time.perf_counter()
        updated = handler(context)
        elapsed = time.perf_counter() - start
        timings = dict(context.stage_timings)
        timings[stage_name] = elapsed
        logger.info("Stage '%s' finished in %.2fs", stage_name, elapsed)
        return updated.with_updates(stage_timings=timings)

    def _stage_parse(self, context: PipelineContext) -> PipelineContext:
        config = context.config
        parsed = [
            scanner.parse_log_file(source.path, config.limits, encoding=config.encoding, label=label)
            for source, label in zip(config.sources, source_labels(config.sources))
        ]
        warnings = list(context.warnings)
        for result in parsed:
            if not result.lots:
                warnings.append(f"No finalized lots found in {result.file_name}.")
        return context.with_updates(parsed=tuple(parsed), warnings=warnings)

    def _stage_summaries(self, context: PipelineContext) -> PipelineContext:
        lots = stats.results_to_frame(context.parsed)
        detail = stats.scrap_detail_frame(context.parsed)
        return context.with_updates(
            lots=lots,
            detail=detail,
            yield_summary=stats.compute_yield_summary(lots),
            pareto_summary=stats.compute_scrap_pareto(detail),
        )

    def _stage_workbook(self, context: PipelineContext) -> PipelineContext:
        config = context.config
        timings: dict[str, float] = {}
        warnings = list(context.warnings)
        build_kwargs = dict(
            lots=context.lots,
            detail=context.detail,
            yield_summary=context.yield_summary,
            pareto_summary=context.pareto_summary,
            output_path=config.output,
            timing_collector=timings,
        )
        try:
            workbook_builder.build_workbook(include_charts=config.generate_charts, **build_kwargs)
        except ModuleNotFoundError as exc:
            if not config.generate_charts:
                raise
            logger.warning("Skipping chart rendering: %s", exc)
            warnings.append(f"Charts skipped; missing dependency '{exc.name}'.")
            workbook_builder.build_workbook(include_charts=False, **build_kwargs)
        details = dict(context.stage_details)
        details["workbook"] = timings
        return context.with_updates(stage_details=details, warnings=warnings)

    def _stage_exports(self, context: PipelineContext) -> PipelineContext:
        config = context.config
        if config.csv_output is not None:
            config.csv_output.parent.mkdir(parents=True, exist_ok=True)
            context.lots.to_csv(config.csv_output, index=False)
        if config.json_output is not None:
            config.json_output.parent.mkdir(parents=True, exist_ok=True)
            config.json_output.write_text(
                json.dumps(records_payload(context.parsed), indent=2),
                encoding="utf-8",
            )
        return context

    def _build_result(self, context: PipelineContext) -> dict[str, Any]:
        lots = context.lots if context.lots is not None else pd.DataFrame()
        detail = context.detail if context.detail is not None else pd.DataFrame()
        return {
            "output": str(self._config.output),
            "csv": str(self._config.csv_output) if self._config.csv_output else "",
            "json": str(self._config.json_output) if self._config.json_output else "",
            "sources": len(context.parsed),
            "lot_rows": int(len(lots)),
            "scrap_rows": int(len(detail)),
            "pending_lots": sum(result.pending_count for result in context.parsed),
            "stage_timings": dict(context.stage_timings),
            "stage_details": dict(context.stage_details),
            "elapsed_seconds": sum(context.stage_timings.values()),
            "warnings": list(context.warnings),
        }


def source_labels(sources: Sequence[SourceLog]) -> list[str]:
    """Report label for each source, unique across the run.

    A log is labelled by its file name. Logs sharing a name are labelled by
    their path relative to the deepest directory they have in common, and a
    log listed twice gets a ``(n)`` suffix.
    """
    groups: dict[str, list[int]] = {}
    for index, source in enumerate(sources):
        groups.setdefault(source.file_name, []).append(index)

    labels = [source.file_name for source in sources]
    for indices in groups.values():
        if len(indices) < 2:
            continue
        paths = [sources[index].path for index in indices]
        root = Path(os.path.commonpath([str(path) for path in paths]))
        for index, path in zip(indices, paths):
            labels[index] = path.as_posix() if path == root else path.relative_to(root).as_posix()

    seen: dict[str, int] = {}
    for index, label in enumerate(labels):
        seen[label] = seen.get(label, 0) + 1
        if seen[label] > 1:
            labels[index] = f"{label} ({seen[label]})"
    return labels


def records_payload(parsed: tuple[LotParseResult, ...] | list[LotParseResult]) -> list[dict[str, Any]]:
    payload: list[dict[str, Any]] = []
    for result in parsed:
        for lot in result.lots:
            entry = {"file": result.file_name}
            entry.update(lot.to_dict())
            payload.append(entry)
    return payload


def run_report(config: ReportInputs) -> dict[str, Any]:
    """Execute the end-to-end report pipeline."""
    return Pipeline(config).run()
