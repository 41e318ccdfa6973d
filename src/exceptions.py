"""
Exception types raised by the nearest neighbor analysis toolkit.

Every error derives from ``ValueError`` so callers that already guard
analysis calls with ``except ValueError`` keep working.
"""


class NearestNeighborAnalysisError(ValueError):
    """Base class for all analysis errors."""


class InvalidInputError(NearestNeighborAnalysisError):
    """
    The dataset or study area is not something the analysis can read.

    Raised before any computation starts, e.g. when the dataset is ``None``,
    is not a GeoJSON FeatureCollection, or contains a feature without geometry.
    """


class DegenerateInputError(NearestNeighborAnalysisError):
    """
    The input is well-formed but the statistic is undefined for it.

    Raised for datasets with fewer than two features (no "other" feature to
    measure against) and for study areas with zero or non-finite area.
    """


class UnitError(NearestNeighborAnalysisError):
    """An unknown linear or areal unit name was requested."""
