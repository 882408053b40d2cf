"""Fader level <-> decibel conversions."""

from __future__ import annotations

import math

DB_FLOOR = -60.0
DB_CEILING = 10.0
VU_CEILING = 0.0


def clamp_db(db: float, *, floor: float = DB_FLOOR, ceiling: float = DB_CEILING) -> float:
    return max(floor, min(ceiling, db))


def level_to_db(level: float) -> float:
    """Convert a 0..1 slider level to dB (-60..0) on a logarithmic curve."""
    if level <= 0:
        return DB_FLOOR
    if level >= 1:
        return 0.0
    return max(DB_FLOOR, 20 * math.log10(level))


def db_to_level(db: float) -> float:
    """Convert dB to a 0..1 slider level."""
    if db <= DB_FLOOR:
        return 0.0
    if db >= 0:
        return 1.0
    return 10 ** (db / 20)
