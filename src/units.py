"""
Linear and areal unit handling.

Distances are carried internally in radians of arc on a sphere of radius
``EARTH_RADIUS`` meters, and areas in square meters. The factor tables below
convert those base quantities into every supported unit name.
"""

import math
from typing import Dict

from .exceptions import UnitError

# Mean earth radius in meters
EARTH_RADIUS = 6371008.8

# Units per radian of arc
LENGTH_FACTORS: Dict[str, float] = {
    'centimeters': EARTH_RADIUS * 100,
    'centimetres': EARTH_RADIUS * 100,
    'degrees': 360 / (2 * math.pi),
    'feet': EARTH_RADIUS * 3.28084,
    'inches': EARTH_RADIUS * 39.370,
    'kilometers': EARTH_RADIUS / 1000,
    'kilometres': EARTH_RADIUS / 1000,
    'meters': EARTH_RADIUS,
    'metres': EARTH_RADIUS,
    'miles': EARTH_RADIUS / 1609.344,
    'millimeters': EARTH_RADIUS * 1000,
    'millimetres': EARTH_RADIUS * 1000,
    'nauticalmiles': EARTH_RADIUS / 1852,
    'radians': 1.0,
    'yards': EARTH_RADIUS * 1.0936,
}

# Squared units per square meter
AREA_FACTORS: Dict[str, float] = {
    'acres': 0.000247105,
    'centimeters': 10000.0,
    'centimetres': 10000.0,
    'feet': 10.763910417,
    'hectares': 0.0001,
    'inches': 1550.003100006,
    'kilometers': 0.000001,
    'kilometres': 0.000001,
    'meters': 1.0,
    'metres': 1.0,
    'miles': 3.86e-7,
    'millimeters': 1000000.0,
    'millimetres': 1000000.0,
    'nauticalmiles': 2.9155334959812285e-7,
    'yards': 1.195990046,
}

AREAL_SUFFIX = '²'


def _length_factor(units: str) -> float:
    try:
        return LENGTH_FACTORS[units]
    except (KeyError, TypeError):
        raise UnitError(
            f"Unknown length unit '{units}'. "
            f"Supported: {', '.join(sorted(LENGTH_FACTORS))}"
        ) from None


def _area_factor(units: str) -> float:
    try:
        return AREA_FACTORS[units]
    except (KeyError, TypeError):
        raise UnitError(
            f"Unknown area unit '{units}'. "
            f"Supported: {', '.join(sorted(AREA_FACTORS))}"
        ) from None


def radians_to_length(radians: float, units: str = 'kilometers') -> float:
    """
    Convert an arc length in radians into a distance in ``units``.

    Raises:
        UnitError: If ``units`` is not a known length unit.
    """
    return radians * _length_factor(units)


def length_to_radians(distance: float, units: str = 'kilometers') -> float:
    """Inverse of :func:`radians_to_length`."""
    return distance / _length_factor(units)


def convert_length(
    length: float,
    original_unit: str = 'kilometers',
    final_unit: str = 'kilometers'
) -> float:
    """
    Convert a distance from one length unit to another.

    Args:
        length: Non-negative distance expressed in ``original_unit``.
        original_unit: Unit the distance is currently expressed in.
        final_unit: Unit to convert to.

    Returns:
        float: The distance in ``final_unit``.

    Raises:
        ValueError: If ``length`` is negative.
        UnitError: If either unit is unknown.
    """
    if length < 0:
        raise ValueError("length must be a positive number")
    return radians_to_length(length_to_radians(length, original_unit), final_unit)


def convert_area(
    area: float,
    original_unit: str = 'meters',
    final_unit: str = 'kilometers'
) -> float:
    """
    Convert an area from one squared unit to another.

    Unit names are the linear names ('kilometers' means square kilometers),
    plus the purely areal 'acres' and 'hectares'.

    Args:
        area: Non-negative area expressed in ``original_unit`` squared.
        original_unit: Unit the area is currently expressed in.
        final_unit: Unit to convert to.

    Returns:
        float: The area in ``final_unit`` squared.

    Raises:
        ValueError: If ``area`` is negative.
        UnitError: If either unit has no areal form (e.g. 'degrees').

    Example:
        >>> convert_area(1_000_000, 'meters', 'kilometers')
        1.0
    """
    if area < 0:
        raise ValueError("area must be a positive number")
    start_factor = _area_factor(original_unit)
    final_factor = _area_factor(final_unit)
    return (area / start_factor) * final_factor


def areal_unit_name(units: str) -> str:
    """Name of the squared form of a linear unit, e.g. 'kilometers²'."""
    return units + AREAL_SUFFIX
