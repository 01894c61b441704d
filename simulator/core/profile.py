"""Ramp profile parsing.

A profile is an ordered list of stages, each holding a target concurrency
for a duration. Stages are written either inline (``"10:30s,0:10s"``) or as
a JSON file in the k6 ``stages`` shape::

    [{"target": 10, "duration": "30s"}, {"target": 0, "duration": "10s"}]
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from app.exceptions import ValidationError

from simulator.core.models import Stage


_DURATION_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration_to_seconds(raw: str) -> float:
    """Parse duration strings like '500ms', '10s', '5m', '1h' into seconds."""
    match = _DURATION_RE.match(raw.strip())
    if not match:
        raise ValidationError(
            "INVALID_DURATION",
            "duration must match <number><unit> where unit is ms|s|m|h",
            details={"provided": raw},
        )
    return float(match.group("value")) * _UNIT_SECONDS[match.group("unit")]


def parse_stage(raw: str) -> Stage:
    """Parse ``"<target>:<duration>"``."""
    target_raw, sep, duration_raw = raw.strip().partition(":")
    if not sep or not target_raw.strip().isdigit():
        raise ValidationError(
            "INVALID_STAGE",
            "stage must look like <target>:<duration>, e.g. 10:30s",
            details={"provided": raw},
        )
    return Stage(target=int(target_raw), duration_seconds=parse_duration_to_seconds(duration_raw))


def parse_stages(raw: str) -> tuple[Stage, ...]:
    stages = tuple(parse_stage(part) for part in raw.split(",") if part.strip())
    if not stages:
        raise ValidationError("EMPTY_PROFILE", "at least one stage is required")
    return stages


def stages_from_payload(payload: Any) -> tuple[Stage, ...]:
    if not isinstance(payload, list) or not payload:
        raise ValidationError("EMPTY_PROFILE", "stages must be a non-empty list")

    stages: list[Stage] = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict) or "target" not in entry or "duration" not in entry:
            raise ValidationError(
                "INVALID_STAGE",
                "each stage needs 'target' and 'duration'",
                details={"index": index},
            )
        duration = entry["duration"]
        if isinstance(duration, (int, float)):
            seconds = float(duration)
        else:
            seconds = parse_duration_to_seconds(str(duration))
        target = entry["target"]
        if isinstance(target, bool) or not isinstance(target, (int, str)) or not str(target).strip().isdigit():
            raise ValidationError(
                "INVALID_STAGE",
                "stage target must be a non-negative integer",
                details={"index": index, "target": target},
            )
        stages.append(Stage(target=int(target), duration_seconds=seconds))
    return tuple(stages)


def load_stages_file(path: str | Path) -> tuple[Stage, ...]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValidationError(
            "INVALID_PROFILE_FILE",
            "could not read stages file",
            details={"path": str(path), "error": str(exc)},
        ) from exc

    # Accept a whole k6 options object as well as a bare list.
    if isinstance(payload, dict):
        payload = payload.get("stages")
    return stages_from_payload(payload)
