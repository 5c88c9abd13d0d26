"""Runtime configuration for online processing."""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, MutableMapping

import yaml

from ..core.ringbuffer import DEFAULT_MARKER_CAPACITY
from ..core.stream import DEFAULT_BUFFER_SECONDS


@dataclass(slots=True)
class OnlineConfig:
    """
    Tuning knobs for stream buffers, pipelines and background prediction.

    The defaults assume a few hundred Hz of EEG and predictions at ~10 Hz.
    """

    buffer_seconds: float = DEFAULT_BUFFER_SECONDS
    marker_capacity: int = DEFAULT_MARKER_CAPACITY

    update_freq: float = 10.0
    start_delay: float = 1.0
    output_format: str = "distribution"
    # returned while no prediction is possible; any value, e.g. None
    empty_result_value: Any = math.nan

    # Pipeline output ring; 0 means "as large as the largest bound stream"
    output_capacity: int = 0

    overrun_warn_after: int = 5

    def sanitized(self) -> OnlineConfig:
        """Return a copy with derived limits applied."""
        return OnlineConfig(
            buffer_seconds=max(0.1, float(self.buffer_seconds)),
            marker_capacity=max(1, int(self.marker_capacity)),
            update_freq=max(0.01, float(self.update_freq)),
            start_delay=max(0.0, float(self.start_delay)),
            output_format=str(self.output_format),
            empty_result_value=self.empty_result_value,
            output_capacity=max(0, int(self.output_capacity)),
            overrun_warn_after=max(1, int(self.overrun_warn_after)),
        )

    @property
    def period(self) -> float:
        return 1.0 / self.update_freq


def _recognized_fields() -> set[str]:
    """Return the dataclass field names accepted by :class:`OnlineConfig`."""
    return {f.name for f in fields(OnlineConfig)}


def _normalize_mapping(data: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Flatten a top-level ``online`` block into the surrounding mapping."""
    if "online" in data and isinstance(data["online"], Mapping):
        merged: MutableMapping[str, Any] = {}
        for key, value in data.items():
            if key == "online":
                merged.update(value)
            else:
                merged[key] = value
        return merged
    return dict(data)


def config_from_mapping(data: Mapping[str, Any] | None) -> OnlineConfig:
    """Build :class:`OnlineConfig` from ``data`` (ignoring unknown keys)."""
    if not data:
        return OnlineConfig()
    normalized = _normalize_mapping(data)
    known = _recognized_fields()
    payload = {key: normalized[key] for key in normalized.keys() & known}
    return OnlineConfig(**payload).sanitized()


def load_config(path: str | Path | None) -> OnlineConfig:
    """
    Load configuration from ``path``.

    Missing files fall back to default :class:`OnlineConfig`.
    """
    if path is None:
        return OnlineConfig()
    cfg_path = Path(path)
    if not cfg_path.exists():
        return OnlineConfig()
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Expected mapping in {cfg_path}, got {type(raw).__name__}")
    return config_from_mapping(raw)


__all__ = ["OnlineConfig", "config_from_mapping", "load_config"]
