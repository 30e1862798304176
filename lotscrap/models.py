from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from .markers import (
    NO_FAIL_CODE,
    NO_FAIL_SERIAL,
    PLACEHOLDER_CODE,
    PLACEHOLDER_SERIAL,
    SYNTHETIC_LOT_PREFIX,
)


@dataclass(frozen=True)
class SourceLog:
    """Container describing an input equipment log."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path).expanduser().resolve())

    @property
    def file_name(self) -> str:
        return self.path.name


@dataclass
class ScrapItem:
    """One scrapped unit, or a placeholder standing in for one."""

    code: str
    serial: str

    @classmethod
    def placeholder(cls) -> "ScrapItem":
        return cls(code=PLACEHOLDER_CODE, serial=PLACEHOLDER_SERIAL)

    @classmethod
    def no_fail(cls) -> "ScrapItem":
        return cls(code=NO_FAIL_CODE, serial=NO_FAIL_SERIAL)

    @property
    def is_placeholder(self) -> bool:
        return self.code == PLACEHOLDER_CODE


@dataclass
class LotResult:
    """Outcome of one production lot recovered from the log."""

    part_no: str = ""
    lot_no: str = ""
    fab_site: str = ""
    tier: str = ""
    option: str = ""
    vendor: str = ""
    smt_line: str = ""
    eqpid: str = ""
    in_qty: int = 0
    fail_count: int = 0
    yield_pct: float = 0.0
    fail_list: list[ScrapItem] = field(default_factory=list)

    @property
    def is_synthesized(self) -> bool:
        return self.lot_no.startswith(SYNTHETIC_LOT_PREFIX)

    def has_placeholders(self) -> bool:
        return any(item.is_placeholder for item in self.fail_list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ScanLimits:
    """Lookahead windows bounding every forward scan of the interpreter.

    ``value_window`` and ``equipment_window`` are end offsets relative to the
    anchor line, which itself is never inspected, so the default of 10 covers
    the 9 following lines. The remaining windows include their start line.
    """

    header_window: int = 200
    scrap_window: int = 60
    lot_id_window: int = 25
    part_id_window: int = 20
    value_window: int = 10
    equipment_window: int = 10

    def __post_init__(self) -> None:
        for item in fields(self):
            raw = getattr(self, item.name)
            try:
                value = int(raw)
            except (TypeError, ValueError):
                value = item.default
            if value <= 0:
                value = item.default
            object.__setattr__(self, item.name, value)

    @classmethod
    def names(cls) -> tuple[str, ...]:
        return tuple(item.name for item in fields(cls))

    def with_overrides(self, **overrides: Optional[int]) -> "ScanLimits":
        values = {name: getattr(self, name) for name in self.names()}
        for name, value in overrides.items():
            if name not in values:
                raise KeyError(name)
            if value is not None:
                values[name] = value
        return ScanLimits(**values)


@dataclass
class LotParseResult:
    """Records recovered from a single source log."""

    file_name: str
    lots: list[LotResult]
    line_count: int = 0
    pending_count: int = 0


@dataclass
class ReportInputs:
    """Aggregated configuration for a report run."""

    sources: list[SourceLog]
    output: Path
    csv_output: Path | None = None
    json_output: Path | None = None
    generate_charts: bool = True
    limits: ScanLimits = field(default_factory=ScanLimits)
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        self.output = Path(self.output).expanduser().resolve()
        if self.csv_output is not None:
            self.csv_output = Path(self.csv_output).expanduser().resolve()
        if self.json_output is not None:
            self.json_output = Path(self.json_output).expanduser().resolve()
        self.generate_charts = bool(self.generate_charts)
        encoding = (self.encoding or "").strip()
        self.encoding = encoding or "utf-8"
