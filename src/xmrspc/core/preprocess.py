"""Normalisation of raw submetric data points into an analysable series.

The engine assumes a clean series: parseable timestamps, finite values,
chronological order and one observation per timestamp. Raw points coming in
over HTTP are brought into that shape here.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

import structlog

from xmrspc.utils.statistics import Observation, parse_timestamp

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NormalizedSeries:
    """Result of normalising raw points.

    Attributes:
        observations: Valid observations, sorted and de-duplicated
        dropped: Rows removed for an unparsable timestamp or non-finite value
        duplicates: Rows removed because another row had the same timestamp
    """
    observations: tuple[Observation, ...]
    dropped: int = 0
    duplicates: int = 0


def _to_float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _prefer(existing: Observation, candidate: Observation) -> bool:
    """True when ``candidate`` should replace ``existing`` for a timestamp."""
    if candidate.confidence is None:
        return False
    if existing.confidence is None:
        return True
    return candidate.confidence > existing.confidence


def normalize_observations(raw: Iterable[Mapping[str, Any]]) -> NormalizedSeries:
    """Validate, sort and de-duplicate raw data points.

    Rows with an unparsable timestamp or a value that is not a finite number
    are dropped. Rows are sorted by parsed timestamp (stable, so input order
    breaks ties). Among rows sharing a timestamp the one with the highest
    confidence is kept; a row with a confidence beats one without, and
    otherwise the first row wins.

    Args:
        raw: Mappings with ``timestamp``, ``value`` and optional ``confidence``

    Returns:
        NormalizedSeries
    """
    parsed: list[tuple[datetime, Observation]] = []
    dropped = 0

    for row in raw:
        value = _to_float(row.get("value"))
        timestamp = row.get("timestamp")
        if value is None or not isinstance(timestamp, str):
            dropped += 1
            continue
        try:
            moment = parse_timestamp(timestamp)
        except ValueError:
            dropped += 1
            continue

        confidence = row.get("confidence")
        parsed.append((
            moment,
            Observation(
                timestamp=timestamp,
                value=value,
                confidence=_to_float(confidence) if confidence is not None else None,
            ),
        ))

    parsed.sort(key=lambda item: item[0])

    kept: dict[datetime, Observation] = {}
    for moment, obs in parsed:
        existing = kept.get(moment)
        if existing is None or _prefer(existing, obs):
            kept[moment] = obs

    observations = tuple(kept.values())
    duplicates = len(parsed) - len(observations)
    if dropped or duplicates:
        logger.debug(
            "observations_normalized",
            kept=len(observations),
            dropped=dropped,
            duplicates=duplicates,
        )
    return NormalizedSeries(observations=observations, dropped=dropped, duplicates=duplicates)
