"""
Unit tests for the telemetry classifier.

Covers the rule table, severity ordering, reason order and the handling of
missing or malformed readings.
"""

from datetime import datetime, timezone

import pytest

from fleetwatch.processors.classifier import Severity, classify
from fleetwatch.processors.samples import PositionSample


def make_sample(**fields) -> PositionSample:
    base = dict(
        id=1,
        device_id="dev-1",
        latitude=36.8,
        longitude=10.18,
        created_at=datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc),
    )
    base.update(fields)
    return PositionSample(**base)


# =============================================================================
# Reference examples
# =============================================================================

class TestReferenceExamples:

    def test_severe_overspeed(self):
        result = classify(make_sample(speed=150))
        assert result.severity is Severity.CRITICAL
        assert "Overspeeding: 150 km/h" in result.description

    def test_vertical_shock_with_roll_is_crash(self):
        result = classify(make_sample(accel_z=9, roll=25))
        assert result.severity is Severity.CRITICAL
        assert "Possible bump/crash: accel_z=9.00 m/s²" in result.reasons
        assert "Possible crash or rollover!" in result.reasons

    def test_high_speed_and_swerve(self):
        result = classify(make_sample(speed=95, accel_y=3.5))
        assert result.severity is Severity.WARNING
        assert result.description == "High speed: 95 km/h | Sharp turn/swerve: accel_y=3.50 m/s²"

    def test_idle_only(self):
        result = classify(make_sample(speed=0.5))
        assert result.severity is Severity.INFO
        assert result.description == "Vehicle stopped or idling"

    def test_overspeed_and_harsh_accel_in_table_order(self):
        result = classify(make_sample(speed=200, accel_x=4))
        assert result.severity is Severity.CRITICAL
        assert result.reasons == [
            "Overspeeding: 200 km/h",
            "Harsh accel/brake: accel_x=4.00 m/s²",
        ]


# =============================================================================
# Thresholds
# =============================================================================

class TestThresholds:

    @pytest.mark.parametrize("speed,severity,reason", [
        (120.5, Severity.CRITICAL, "Overspeeding: 120.5 km/h"),
        (120, Severity.WARNING, "High speed: 120 km/h"),
        (90.1, Severity.WARNING, "High speed: 90.1 km/h"),
        (90, Severity.INFO, "Speed: 90 km/h"),
        (1, Severity.INFO, "Speed: 1 km/h"),
        (0, Severity.INFO, "Vehicle stopped or idling"),
    ])
    def test_speed_bands(self, speed, severity, reason):
        result = classify(make_sample(speed=speed))
        assert result.severity is severity
        assert result.reasons == [reason]

    def test_float_speed_renders_without_trailing_zero(self):
        assert classify(make_sample(speed=150.0)).reasons == ["Overspeeding: 150 km/h"]

    def test_negative_axes_use_magnitude(self):
        result = classify(make_sample(speed=50, accel_x=-3.2))
        assert result.severity is Severity.CRITICAL
        assert result.reasons == ["Harsh accel/brake: accel_x=-3.20 m/s²"]

    def test_vertical_shock_bands(self):
        assert classify(make_sample(accel_z=5)).reasons == ["Bump detected: accel_z=5.00 m/s²"]
        assert classify(make_sample(accel_z=5)).severity is Severity.WARNING
        assert classify(make_sample(accel_z=3)).reasons == ["Speed: unknown"]
        assert classify(make_sample(accel_z=-6)).severity is Severity.CRITICAL

    def test_roll_and_pitch_bands(self):
        assert classify(make_sample(roll=15)).reasons == ["Moderate roll: 15°"]
        assert classify(make_sample(roll=10)).reasons == ["Speed: unknown"]
        assert classify(make_sample(pitch=-21)).reasons == ["Extreme pitch: -21°"]
        assert classify(make_sample(pitch=12.5)).reasons == ["Moderate pitch: 12.5°"]

    @pytest.mark.parametrize("fields,severity,reasons", [
        ({"accel_x": 3}, Severity.INFO, ["Speed: unknown"]),
        ({"accel_x": -3.0}, Severity.INFO, ["Speed: unknown"]),
        ({"accel_x": 3.01}, Severity.CRITICAL, ["Harsh accel/brake: accel_x=3.01 m/s²"]),
        ({"accel_y": 3}, Severity.INFO, ["Speed: unknown"]),
        ({"accel_y": -3.0}, Severity.INFO, ["Speed: unknown"]),
        ({"accel_y": -3.01}, Severity.WARNING, ["Sharp turn/swerve: accel_y=-3.01 m/s²"]),
        ({"roll": 20}, Severity.WARNING, ["Moderate roll: 20°"]),
        ({"roll": -20.0}, Severity.WARNING, ["Moderate roll: -20°"]),
        ({"pitch": 20}, Severity.WARNING, ["Moderate pitch: 20°"]),
        ({"pitch": -20}, Severity.WARNING, ["Moderate pitch: -20°"]),
    ])
    def test_strict_boundaries(self, fields, severity, reasons):
        result = classify(make_sample(**fields))
        assert result.severity is severity
        assert result.reasons == reasons

    @pytest.mark.parametrize("fields,reasons", [
        ({"accel_z": 8, "roll": 25},
         ["Possible bump/crash: accel_z=8.00 m/s²", "Extreme roll: 25°"]),
        ({"accel_z": -8, "pitch": -25},
         ["Possible bump/crash: accel_z=-8.00 m/s²", "Extreme pitch: -25°"]),
        ({"accel_z": 9, "roll": 20},
         ["Possible bump/crash: accel_z=9.00 m/s²", "Moderate roll: 20°"]),
        ({"accel_z": -9, "pitch": 20},
         ["Possible bump/crash: accel_z=-9.00 m/s²", "Moderate pitch: 20°"]),
    ])
    def test_crash_boundaries_do_not_fire(self, fields, reasons):
        result = classify(make_sample(**fields))
        assert result.severity is Severity.CRITICAL
        assert result.reasons == reasons

    def test_crash_needs_strong_shock(self):
        result = classify(make_sample(accel_z=7, pitch=30))
        assert "Possible crash or rollover!" not in result.reasons
        assert result.severity is Severity.CRITICAL

    def test_crash_with_pitch(self):
        result = classify(make_sample(accel_z=-8.5, pitch=-22))
        assert result.reasons[-1] == "Possible crash or rollover!"


# =============================================================================
# Properties
# =============================================================================

class TestProperties:

    def test_no_readings_falls_back_to_unknown_speed(self):
        result = classify(make_sample())
        assert result.severity is Severity.INFO
        assert result.description == "Speed: unknown"

    def test_quiet_sample_reports_speed(self):
        result = classify(make_sample(speed=42, accel_x=0.2, accel_y=-0.1, accel_z=0.5, roll=2, pitch=-1))
        assert result.severity is Severity.INFO
        assert result.description == "Speed: 42 km/h"

    def test_lateral_warning_never_downgrades_critical(self):
        result = classify(make_sample(speed=150, accel_y=4))
        assert result.severity is Severity.CRITICAL

    def test_idle_does_not_lower_critical(self):
        result = classify(make_sample(speed=0, roll=30))
        assert result.severity is Severity.CRITICAL
        assert result.reasons == ["Vehicle stopped or idling", "Extreme roll: 30°"]

    def test_full_table_order(self):
        result = classify(make_sample(speed=130, accel_x=4, accel_y=-4, accel_z=9, roll=-25, pitch=22))
        assert result.reasons == [
            "Overspeeding: 130 km/h",
            "Harsh accel/brake: accel_x=4.00 m/s²",
            "Sharp turn/swerve: accel_y=-4.00 m/s²",
            "Possible bump/crash: accel_z=9.00 m/s²",
            "Extreme roll: -25°",
            "Extreme pitch: 22°",
            "Possible crash or rollover!",
        ]
        assert result.description.count(" | ") == 6

    def test_idempotent(self):
        sample = make_sample(speed=95, accel_z=4, roll=12)
        assert classify(sample) == classify(sample)

    @pytest.mark.parametrize("bad", ["150", True, None, float("nan"), float("inf"), [1], {"v": 1}])
    def test_non_numeric_speed_is_not_evaluated(self, bad):
        result = classify(make_sample(speed=bad))
        assert result.severity is Severity.INFO
        assert result.reasons == ["Speed: unknown"]

    def test_non_numeric_axis_skips_only_its_rule(self):
        result = classify(make_sample(speed=95, accel_x="hard", roll=25))
        assert result.severity is Severity.CRITICAL
        assert result.reasons == ["High speed: 95 km/h", "Extreme roll: 25°"]


class TestSeverity:

    def test_ordering(self):
        assert Severity.INFO.rank < Severity.WARNING.rank < Severity.CRITICAL.rank

    def test_raise_to_never_lowers(self):
        assert Severity.CRITICAL.raise_to(Severity.WARNING) is Severity.CRITICAL
        assert Severity.WARNING.raise_to(Severity.INFO) is Severity.WARNING
        assert Severity.WARNING.raise_to(Severity.CRITICAL) is Severity.CRITICAL
