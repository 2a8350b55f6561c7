#backend/fleetwatch/processors/alerts.py
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .classifier import ClassificationResult, classify
from .samples import PositionSample


@dataclass(frozen=True)
class Alert:
    """Alert derived from one position sample (same id as the sample)."""
    id: Any
    vehicle_id: Any
    type: str
    description: str
    timestamp: Optional[datetime]
    device_id: str
    latitude: float
    longitude: float
    speed: Optional[float] = None
    accel_x: Optional[float] = None
    accel_y: Optional[float] = None
    accel_z: Optional[float] = None
    pitch: Optional[float] = None
    roll: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return data


def build_alert(
    sample: PositionSample,
    vehicle_id: Any,
    result: Optional[ClassificationResult] = None,
) -> Alert:
    if result is None:
        result = classify(sample)
    return Alert(
        id=sample.id,
        vehicle_id=vehicle_id,
        type=result.severity.value,
        description=result.description,
        timestamp=sample.created_at,
        device_id=sample.device_id,
        latitude=sample.latitude,
        longitude=sample.longitude,
        speed=sample.speed,
        accel_x=sample.accel_x,
        accel_y=sample.accel_y,
        accel_z=sample.accel_z,
        pitch=sample.pitch,
        roll=sample.roll,
    )


def latest_per_vehicle(alerts: Iterable[Alert]) -> List[Alert]:
    """
    Keep only the newest alert of each vehicle.
    Equal timestamps go to the larger sample id; alerts without an id lose
    the tie. Alerts without a timestamp never win over timestamped ones.
    Result is newest first.
    """
    latest: Dict[Any, Alert] = {}
    for alert in alerts:
        current = latest.get(alert.vehicle_id)
        if current is None or _recency_key(alert) > _recency_key(current):
            latest[alert.vehicle_id] = alert
    return sorted(latest.values(), key=_recency_key, reverse=True)


def _recency_key(alert: Alert):
    has_time = alert.timestamp is not None
    ts = alert.timestamp.timestamp() if has_time else 0.0
    # live-feed alerts may carry no id
    return (has_time, ts, alert.id is not None, alert.id if alert.id is not None else 0)
