#backend/fleetwatch/processors/classifier.py
"""
Telemetry classifier.

Turns a single PositionSample into a severity tier and the list of reasons
that produced it. Pure and total: missing or non-numeric readings simply
skip the rules that need them.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .samples import PositionSample, as_number

REASON_SEPARATOR = " | "

# Thresholds (km/h, m/s², degrees)
OVERSPEED_CRITICAL_KMH = 120.0
OVERSPEED_WARNING_KMH = 90.0
IDLE_KMH = 1.0
HARSH_ACCEL_X = 3.0
HARSH_ACCEL_Y = 3.0
SHOCK_CRITICAL_Z = 5.0
SHOCK_WARNING_Z = 3.0
CRASH_ACCEL_Z = 8.0
TILT_CRITICAL_DEG = 20.0
TILT_WARNING_DEG = 10.0


class Severity(Enum):
    """Alert tier, ordered info < warning < critical."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {Severity.INFO: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}[self]

    def raise_to(self, other: "Severity") -> "Severity":
        """Return the higher of the two tiers. Never lowers."""
        return other if other.rank > self.rank else self


@dataclass(frozen=True)
class ClassificationResult:
    severity: Severity
    reasons: List[str] = field(default_factory=list)

    @property
    def description(self) -> str:
        return REASON_SEPARATOR.join(self.reasons)


def _plain(value: float) -> str:
    # 95.0 -> "95", 12.5 -> "12.5"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _speed_fallback(speed: Optional[float]) -> str:
    if speed is None:
        return "Speed: unknown"
    return f"Speed: {_plain(speed)} km/h"


def classify(sample: PositionSample) -> ClassificationResult:
    severity = Severity.INFO
    reasons: List[str] = []

    speed = as_number(sample.speed)
    accel_x = as_number(sample.accel_x)
    accel_y = as_number(sample.accel_y)
    accel_z = as_number(sample.accel_z)
    roll = as_number(sample.roll)
    pitch = as_number(sample.pitch)

    # Speed
    if speed is not None:
        if speed > OVERSPEED_CRITICAL_KMH:
            severity = severity.raise_to(Severity.CRITICAL)
            reasons.append(f"Overspeeding: {_plain(speed)} km/h")
        elif speed > OVERSPEED_WARNING_KMH:
            severity = severity.raise_to(Severity.WARNING)
            reasons.append(f"High speed: {_plain(speed)} km/h")
        elif speed < IDLE_KMH:
            # informational only, severity untouched
            reasons.append("Vehicle stopped or idling")

    # Acceleration
    if accel_x is not None and abs(accel_x) > HARSH_ACCEL_X:
        severity = severity.raise_to(Severity.CRITICAL)
        reasons.append(f"Harsh accel/brake: accel_x={accel_x:.2f} m/s²")

    if accel_y is not None and abs(accel_y) > HARSH_ACCEL_Y:
        severity = severity.raise_to(Severity.WARNING)
        reasons.append(f"Sharp turn/swerve: accel_y={accel_y:.2f} m/s²")

    if accel_z is not None:
        if abs(accel_z) > SHOCK_CRITICAL_Z:
            severity = severity.raise_to(Severity.CRITICAL)
            reasons.append(f"Possible bump/crash: accel_z={accel_z:.2f} m/s²")
        elif abs(accel_z) > SHOCK_WARNING_Z:
            severity = severity.raise_to(Severity.WARNING)
            reasons.append(f"Bump detected: accel_z={accel_z:.2f} m/s²")

    # Attitude
    if roll is not None:
        if abs(roll) > TILT_CRITICAL_DEG:
            severity = severity.raise_to(Severity.CRITICAL)
            reasons.append(f"Extreme roll: {_plain(roll)}°")
        elif abs(roll) > TILT_WARNING_DEG:
            severity = severity.raise_to(Severity.WARNING)
            reasons.append(f"Moderate roll: {_plain(roll)}°")

    if pitch is not None:
        if abs(pitch) > TILT_CRITICAL_DEG:
            severity = severity.raise_to(Severity.CRITICAL)
            reasons.append(f"Extreme pitch: {_plain(pitch)}°")
        elif abs(pitch) > TILT_WARNING_DEG:
            severity = severity.raise_to(Severity.WARNING)
            reasons.append(f"Moderate pitch: {_plain(pitch)}°")

    # Crash / rollover: strong vertical shock while heavily tilted
    tilted = (roll is not None and abs(roll) > TILT_CRITICAL_DEG) or \
             (pitch is not None and abs(pitch) > TILT_CRITICAL_DEG)
    if accel_z is not None and abs(accel_z) > CRASH_ACCEL_Z and tilted:
        severity = severity.raise_to(Severity.CRITICAL)
        reasons.append("Possible crash or rollover!")

    if not reasons:
        reasons.append(_speed_fallback(speed))

    return ClassificationResult(severity=severity, reasons=reasons)
