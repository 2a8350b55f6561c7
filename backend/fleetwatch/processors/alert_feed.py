#backend/fleetwatch/processors/alert_feed.py
import logging
from typing import Any, Callable, List, Optional

from .alerts import Alert, build_alert
from .classifier import ClassificationResult, classify
from .samples import PositionSample

logger = logging.getLogger(__name__)

VehicleResolver = Callable[[str], Optional[Any]]
AlertListener = Callable[[Alert], None]


class AlertFeed:
    """
    Push-side entry point for newly observed samples.

    Each sample is classified on its own, in the order on_sample is called.
    Listeners get the built Alert; keeping lists of alerts is their job.
    Samples whose device resolves to no vehicle are classified but not
    delivered.
    """

    def __init__(self, resolve_vehicle: VehicleResolver):
        self.resolve_vehicle = resolve_vehicle
        self._listeners: List[AlertListener] = []

    def subscribe(self, listener: AlertListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_sample(self, sample: PositionSample) -> ClassificationResult:
        result = classify(sample)

        vehicle_id = self.resolve_vehicle(sample.device_id)
        if vehicle_id is None:
            logger.debug(f"No vehicle for device {sample.device_id}, alert not delivered")
            return result

        alert = build_alert(sample, vehicle_id, result)
        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception as e:
                logger.error(f"❌ Alert listener failed for sample {sample.id}: {e}", exc_info=True)

        return result
