"""
Frequency-weighted random device selection.
"""
import logging
import random
from typing import Dict, Optional, Sequence

from ..models import FREQUENCY_WEIGHTS, Device

logger = logging.getLogger(__name__)


def device_weight(device: Device) -> float:
    """Selection weight for one device: its frequency tier, or 0 when disabled."""
    if not device.enabled:
        return 0.0
    return FREQUENCY_WEIGHTS.get(device.frequency, 0.0)


def calculate_device_weights(devices: Sequence[Device]) -> Dict[str, float]:
    """Map device id -> selection weight. Pure; used for inspection and tests."""
    return {device.id: device_weight(device) for device in devices}


def select_random_device(
    devices: Sequence[Device], rng: Optional[random.Random] = None
) -> Optional[Device]:
    """
    Pick one enabled device, weighted by frequency tier.

    Walks the list in order subtracting each weight from a uniform draw in
    [0, total) and returns the device where the remainder drops to <= 0.

    Args:
        devices: Candidate devices (disabled ones are never picked).
        rng: Optional random source, for deterministic tests.

    Returns:
        The selected device, or None if no device is enabled.
    """
    rng = rng or random
    enabled = [device for device in devices if device.enabled]
    if not enabled:
        return None

    weights = [device_weight(device) for device in enabled]
    total = sum(weights)
    if total <= 0:
        logger.warning("All enabled devices have zero weight, falling back to uniform selection")
        return rng.choice(enabled)

    remaining = rng.random() * total
    for device, weight in zip(enabled, weights):
        remaining -= weight
        if remaining <= 0:
            return device

    # Float rounding can leave a tiny positive remainder
    return next(device for device, weight in reversed(list(zip(enabled, weights))) if weight > 0)
