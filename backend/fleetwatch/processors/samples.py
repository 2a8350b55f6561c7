#backend/fleetwatch/processors/samples.py
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Iterable, List

logger = logging.getLogger(__name__)

MOTION_FIELDS = ("speed", "accel_x", "accel_y", "accel_z", "pitch", "roll")


def as_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None when it is not a real number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Accepts datetime, epoch seconds or an ISO-8601 string.
    Naive values are taken as UTC. Returns None when the value can't be read.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    epoch = as_number(value)
    if epoch is not None:
        try:
            return datetime.fromtimestamp(epoch, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    return None


@dataclass(frozen=True)
class PositionSample:
    """One sensor reading from a telemetry device."""
    id: Any
    device_id: str
    latitude: float
    longitude: float
    created_at: Optional[datetime]
    speed: Optional[float] = None
    accel_x: Optional[float] = None
    accel_y: Optional[float] = None
    accel_z: Optional[float] = None
    pitch: Optional[float] = None
    roll: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], sample_id: Any = None) -> "PositionSample":
        """
        Build a sample from a feed payload (JSON dict).
        Raises ValueError when device_id, latitude or longitude is missing.
        """
        device_id = payload.get("device_id")
        latitude = as_number(payload.get("latitude", payload.get("lat")))
        longitude = as_number(payload.get("longitude", payload.get("lon")))

        if device_id is None or device_id == "":
            raise ValueError("Position payload has no device_id")
        if latitude is None or longitude is None:
            raise ValueError(f"Position payload from {device_id} has no valid latitude/longitude")

        motion = {name: as_number(payload.get(name)) for name in MOTION_FIELDS}
        return cls(
            id=payload.get("id", sample_id),
            device_id=str(device_id),
            latitude=latitude,
            longitude=longitude,
            created_at=parse_timestamp(payload.get("created_at")),
            **motion,
        )

    @classmethod
    def from_row(cls, row) -> "PositionSample":
        """Build a sample from a VehiclePosition row."""
        motion = {name: as_number(getattr(row, name, None)) for name in MOTION_FIELDS}
        return cls(
            id=row.id,
            device_id=row.device_id,
            latitude=row.latitude,
            longitude=row.longitude,
            created_at=parse_timestamp(row.created_at),
            **motion,
        )


def within_window(
    samples: Iterable[PositionSample],
    now: Optional[datetime] = None,
    hours: float = 3.0,
) -> List[PositionSample]:
    """
    Keep the samples whose created_at falls in the trailing window,
    newest first. Samples without a readable timestamp are left out.
    """
    now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=hours)

    kept = []
    for sample in samples:
        if sample.created_at is None:
            logger.debug(f"Skipping sample {sample.id} from {sample.device_id}: unreadable created_at")
            continue
        if cutoff <= sample.created_at <= now:
            kept.append(sample)

    kept.sort(key=lambda s: s.created_at, reverse=True)
    return kept
