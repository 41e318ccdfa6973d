"""
Nearest Neighbor Analysis - Clark-Evans clustering statistics for GeoJSON features.

This package computes the nearest neighbor index and z-score of a set of
features within a study area, indicating whether they are clustered, randomly
distributed, or dispersed.

Main Classes:
    NearestNeighborAnalyzer: Step-wise access to the analysis
    AnalysisOptions: Per-call options (study area, units, properties, ...)
    AnalysisResult: Statistics of a completed run

Convenience Functions:
    analyze: Run the analysis and return the annotated study area

Example:
    >>> from nearest_neighbor_analysis import NearestNeighborAnalyzer, analyze
    >>>
    >>> # Using the convenience function
    >>> study_area = analyze(points, {'units': 'kilometers'})
    >>> study_area['properties']['nearestNeighborAnalysis']['nearestNeighborIndex']
    >>>
    >>> # Using the class
    >>> analyzer = NearestNeighborAnalyzer(points, study_area=city_limits)
    >>> summary_df, report = analyzer.generate_report()
"""

from .analyzer import (
    AnalysisOptions,
    AnalysisResult,
    NearestNeighborAnalyzer,
    RESULT_KEY,
    analyze,
)
from .exceptions import (
    DegenerateInputError,
    InvalidInputError,
    NearestNeighborAnalysisError,
    UnitError,
)

__version__ = "0.1.0"
__author__ = "Jordan Pierce"
__all__ = [
    "AnalysisOptions",
    "AnalysisResult",
    "NearestNeighborAnalyzer",
    "RESULT_KEY",
    "analyze",
    "DegenerateInputError",
    "InvalidInputError",
    "NearestNeighborAnalysisError",
    "UnitError",
]
