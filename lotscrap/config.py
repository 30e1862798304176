from __future__ import annotations

import os
import warnings
from pathlib import Path
from typing import Any, Mapping, Optional

try:  # pragma: no cover - stdlib name in 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for <3.11
    try:
        import tomli as tomllib  # type: ignore[assignment]
    except ImportError:
        tomllib = None  # type: ignore[assignment]
        warnings.warn(
            "TOML support requires Python 3.11+ or the 'tomli' package. Scan profiles may not load.",
            RuntimeWarning,
        )

from .models import ScanLimits

PROFILE_FILENAME = "lotscrap.toml"
ENV_PREFIX = "LOTSCRAP_"


class ConfigError(Exception):
    """Raised when a scan profile or override cannot be applied."""


def load_scan_profile(path: Path, base: Optional[ScanLimits] = None) -> ScanLimits:
    """Apply the ``[limits]`` table of the TOML profile at *path* to *base*."""
    base = base or ScanLimits()
    path = path.expanduser()
    if not path.exists():
        return base
    if tomllib is None:
        raise ConfigError(
            f"TOML support unavailable for profile at {path}; Python 3.11+ or tomli required."
        )
    try:
        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # pragma: no cover - user supplied data
        raise ConfigError(f"Failed to parse scan profile {path}: {exc}") from exc

    section = payload.get("limits", {})
    if not isinstance(section, dict):
        raise ConfigError(f"Profile {path}: 'limits' must be a table.")
    return _apply_overrides(base, section, origin=str(path))


def limits_from_env(base: ScanLimits, environ: Optional[Mapping[str, str]] = None) -> ScanLimits:
    """Apply ``LOTSCRAP_<WINDOW>`` integer overrides from the environment."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name in ScanLimits.names():
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or not raw.strip():
            continue
        overrides[name] = raw.strip()
    return _apply_overrides(base, overrides, origin="environment")


def resolve_scan_limits(
    *,
    profile_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Optional[int]]] = None,
) -> ScanLimits:
    """Merge defaults, profile, environment and explicit overrides, in that order."""
    limits = ScanLimits()
    if profile_path is not None:
        limits = load_scan_profile(profile_path, limits)
    limits = limits_from_env(limits, environ)
    if overrides:
        explicit = {name: value for name, value in overrides.items() if value is not None}
        limits = _apply_overrides(limits, explicit, origin="command line")
    return limits


def _apply_overrides(base: ScanLimits, values: Mapping[str, Any], *, origin: str) -> ScanLimits:
    known = set(ScanLimits.names())
    parsed: dict[str, int] = {}
    for key, raw in values.items():
        if key not in known:
            raise ConfigError(
                f"Unknown scan window '{key}' in {origin}. Expected one of: {', '.join(sorted(known))}."
            )
        if isinstance(raw, bool):
            raise ConfigError(f"Scan window '{key}' in {origin} must be an integer, got {raw!r}.")
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ConfigError(f"Scan window '{key}' in {origin} must be an integer, got {raw!r}.") from None
        if value <= 0:
            raise ConfigError(f"Scan window '{key}' in {origin} must be positive, got {value}.")
        parsed[key] = value
    return base.with_overrides(**parsed)
