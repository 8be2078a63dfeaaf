"""Display helpers for score and measurement values."""

from __future__ import annotations

import math
from typing import Optional, Union

Number = Union[int, float]


def format_score(score: Optional[Number]) -> str:
    """Render a 0-1 score as a percentage with three significant figures."""
    if score is None or (isinstance(score, float) and math.isnan(score)):
        return "N/A"
    percentage = score * 100 if score <= 1 else float(score)
    if percentage == 0:
        return "0"
    if percentage == 100:
        return "100"
    return f"{float(f'{percentage:.3g}'):g}"


def format_time_value(value: Number, unit: str) -> str:
    unit = unit.lower()
    if unit in ("hour", "hours"):
        hours = int(value)
        minutes = round((value - hours) * 60)
        return f"{hours}h" if minutes == 0 else f"{hours}h {minutes}m"
    if unit in ("minute", "minutes", "mins"):
        if value >= 60:
            hours = int(value // 60)
            minutes = round(value % 60)
            return f"{hours}h" if minutes == 0 else f"{hours}h {minutes}m"
        return f"{round(value)}m"
    if unit in ("count", "steps"):
        return f"{round(value):,}"
    if unit == "kcal":
        return f"{round(value)} kcal"
    if unit in ("index", "%"):
        return format_score(value)
    return f"{value:g} {unit}"


def format_archetype(name: str, value: Optional[str] = None) -> str:
    """``night_owl`` becomes ``Night Owl``; falls back to the archetype name."""
    label = value or name
    return label.replace("_", " ").title()


__all__ = ["format_archetype", "format_score", "format_time_value"]
