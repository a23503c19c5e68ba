"""Transport adapter seam.

The server only records the intended transport per job; delivery over MQTT or
BLE is the adapter's business. ``SimulatedTransport`` stands in for a real
adapter and reports per-device outcomes.
"""
import logging
import random
from typing import Protocol

from ota_fleet.models import Device, Firmware, TransportType

logger = logging.getLogger(__name__)


class TransportAdapter(Protocol):
    def deliver(self, device: Device, firmware: Firmware, transport_type: TransportType) -> bool:
        """Push ``firmware`` to ``device``; return True once the device acknowledged it."""
        ...


class SimulatedTransport:
    def __init__(self, failure_rate: float = 0.0, rng: random.Random | None = None) -> None:
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be within [0, 1]")
        self.failure_rate = failure_rate
        self._rng = rng or random.Random()

    def deliver(self, device: Device, firmware: Firmware, transport_type: TransportType) -> bool:
        ok = self._rng.random() >= self.failure_rate
        logger.debug(
            "simulated %s delivery of %s v%s to %s: %s",
            transport_type.value, firmware.name, firmware.version, device.device_identifier,
            "ok" if ok else "failed",
        )
        return ok
