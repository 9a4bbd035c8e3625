"""Kubernetes resource quantities to numbers"""

import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from kubernetes.utils import parse_quantity

logger = logging.getLogger(__name__)

Quantity = Union[str, int, float, None]


def _to_decimal(quantity: Quantity) -> Optional[Decimal]:
    if quantity is None:
        return None
    text = str(quantity).strip()
    if not text:
        return None
    try:
        return parse_quantity(text)
    except (ValueError, InvalidOperation) as e:
        logger.warning(f"Ignoring invalid quantity '{text}': {e}")
        return None


def parse_cpu(quantity: Quantity) -> float:
    """
    CPU quantity in fractional cores ("250m" -> 0.25, "2" -> 2.0).

    Values are rounded up to whole millicores, so "1500000n" is 0.002.
    Empty or invalid input is 0.
    """
    value = _to_decimal(quantity)
    if value is None or value <= 0:
        return 0.0
    millicores = math.ceil(value * 1000)
    return millicores / 1000.0


def parse_memory(quantity: Quantity) -> int:
    """Memory quantity in bytes ("128Mi", "1G", "1e3"), rounded up; invalid input is 0"""
    value = _to_decimal(quantity)
    if value is None or value <= 0:
        return 0
    return int(math.ceil(value))
