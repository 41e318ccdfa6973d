"""
NearestNeighborAnalyzer: Clark-Evans nearest neighbor analysis for GeoJSON features.

This module provides the NearestNeighborAnalyzer class and the module-level
analyze() function. Given a FeatureCollection and an optional study area, the
analysis infers whether the features are clustered, randomly distributed or
dispersed within that area.

The computation runs in five stages:
    - Centroid reduction: every feature becomes a single point
    - Nearest neighbor search: distance from each point to its closest other point
    - Population density: points per squared unit of the study area
    - Expected mean distance under complete spatial randomness (Poisson)
    - Nearest neighbor index and z-score

Reference:
    Philip J. Clark and Francis C. Evans, "Distance to Nearest Neighbor as a
    Measure of Spatial Relationships in Populations," Ecology 35, no. 4
    (1954): 445-453, doi:10.2307/1931034.

Author: Jordan Pierce
Date: January 2026
"""

import copy
import dataclasses
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from tqdm import tqdm

import numpy as np
import pandas as pd

from scipy.spatial import cKDTree
from scipy.stats import norm

from shapely.geometry import Polygon, MultiPolygon

from . import geometry
from .exceptions import DegenerateInputError, InvalidInputError
from .units import areal_unit_name, convert_area

logger = logging.getLogger(__name__)

DEFAULT_UNITS = 'kilometers'

# Property key the result is stored under in the study area's properties
RESULT_KEY = 'nearestNeighborAnalysis'

# Standard error constant of the mean nearest neighbor distance (Clark & Evans, 1954)
CLARK_EVANS_VARIANCE = 0.26136

# Two-sided 95% critical value
SIGNIFICANCE_Z = 1.96

SEARCH_METHODS = ('kdtree', 'brute')

# camelCase option names accepted for compatibility with GeoJSON tooling
_OPTION_ALIASES = {
    'studyArea': 'study_area',
    'showProgress': 'show_progress',
}


# =============================================================================
# CONFIGURATION & RESULTS
# =============================================================================


@dataclass(frozen=True)
class AnalysisOptions:
    """
    Options for a single nearest neighbor analysis run.

    Frozen: an analyzer caches distances in the units it was built with, so
    use dataclasses.replace() to derive different options.

    Attributes:
        study_area: Polygon Feature bounding the analysis. Defaults to the
                    bounding box of the dataset.
        units: Linear unit for distances; its square is used for areas.
        properties: Mapping that becomes the returned study area's properties.
        geodesic: True for [lon, lat] degree coordinates (great-circle
                  distances), False for projected coordinates in meters.
        method: Nearest neighbor search strategy, 'kdtree' or 'brute'.
        inplace: Annotate the given study area and properties directly instead
                 of deep copies.
        show_progress: Display a tqdm progress bar during the brute search.
    """

    study_area: Optional[Dict[str, Any]] = None
    units: str = DEFAULT_UNITS
    properties: Optional[Dict[str, Any]] = None
    geodesic: bool = True
    method: str = 'kdtree'
    inplace: bool = False
    show_progress: bool = False

    def __post_init__(self):
        if self.method not in SEARCH_METHODS:
            raise ValueError(
                f"Invalid method '{self.method}'. Use one of: {', '.join(SEARCH_METHODS)}."
            )
        if self.properties is not None and not isinstance(self.properties, dict):
            raise InvalidInputError("properties must be a mapping")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'AnalysisOptions':
        """
        Create options from a mapping.

        Accepts snake_case field names as well as the camelCase names used by
        GeoJSON tooling (``studyArea``). Unknown keys are ignored and ``None``
        values fall back to the defaults.
        """
        names = {f.name for f in dataclasses.fields(cls)}
        kwargs = {}
        for key, value in d.items():
            key = _OPTION_ALIASES.get(key, key)
            if key in names and value is not None:
                kwargs[key] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class AnalysisResult:
    """
    Outcome of a nearest neighbor analysis.

    ``to_dict()`` produces the exact mapping stored under the
    ``nearestNeighborAnalysis`` property; ``population_density``,
    ``variance``, ``p_value`` and ``pattern`` are extras for Python callers.
    """

    units: str
    areal_units: str
    observed_mean_distance: float
    expected_mean_distance: float
    nearest_neighbor_index: float
    number_of_points: int
    z_score: float
    population_density: float
    variance: float

    @property
    def p_value(self) -> float:
        """Two-sided p-value of the z-score under the standard normal."""
        return float(2 * norm.sf(abs(self.z_score)))

    @property
    def pattern(self) -> str:
        """'clustered', 'random' or 'dispersed' at the 95% level."""
        if self.z_score < -SIGNIFICANCE_Z:
            return 'clustered'
        if self.z_score > SIGNIFICANCE_Z:
            return 'dispersed'
        return 'random'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'units': self.units,
            'arealUnits': self.areal_units,
            'observedMeanDistance': self.observed_mean_distance,
            'expectedMeanDistance': self.expected_mean_distance,
            'nearestNeighborIndex': self.nearest_neighbor_index,
            'numberOfPoints': self.number_of_points,
            'zScore': self.z_score,
        }


def _resolve_options(
    options: Union[AnalysisOptions, Dict[str, Any], None],
    overrides: Dict[str, Any]
) -> AnalysisOptions:
    if options is None:
        resolved = AnalysisOptions()
    elif isinstance(options, AnalysisOptions):
        resolved = options
    elif isinstance(options, dict):
        resolved = AnalysisOptions.from_dict(options)
    else:
        raise TypeError(
            f"options must be AnalysisOptions, a mapping or None, got {type(options).__name__}"
        )

    if overrides:
        overrides = {_OPTION_ALIASES.get(k, k): v for k, v in overrides.items()}
        resolved = dataclasses.replace(resolved, **overrides)
    return resolved


@contextmanager
def _step(name: str) -> Iterator[None]:
    """Record which stage of the analysis an error escaped from."""
    try:
        yield
    except Exception as e:
        logger.error(f"Nearest neighbor analysis failed while {name}: {e}")
        # Exception notes need Python 3.11+
        if hasattr(e, "add_note"):
            e.add_note(f"nearest neighbor analysis failed while {name}")
        raise


# =============================================================================
# CLASS DEFINITION
# =============================================================================


class NearestNeighborAnalyzer:
    """
    Nearest neighbor analysis of a GeoJSON FeatureCollection.

    The analyzer reduces every feature to its centroid, measures the distance
    from each centroid to its nearest other centroid, and compares the mean of
    those distances with the mean expected for the same number of points
    scattered at random over the study area.

    Intermediate results (centroids, nearest neighbor distances) are cached,
    so the calculate_* methods can be called in any order without repeating
    work.

    Attributes:
        dataset (dict): The input FeatureCollection.
        options (AnalysisOptions): Resolved options for this run.

    Example:
        >>> analyzer = NearestNeighborAnalyzer(points, units='miles')
        >>> result = analyzer.calculate_statistics()
        >>> print(f"R = {result.nearest_neighbor_index:.3f} ({result.pattern})")
        >>> study_area = analyzer.run()
    """

    def __init__(
        self,
        dataset: Dict[str, Any],
        options: Union[AnalysisOptions, Dict[str, Any], None] = None,
        **kwargs
    ):
        """
        Initialize the analyzer and validate its inputs.

        Args:
            dataset: GeoJSON FeatureCollection to study (points work best, but
                     any geometry type is reduced to its centroid).
            options: AnalysisOptions, a plain mapping of options, or None.
            **kwargs: Individual AnalysisOptions fields overriding ``options``.

        Raises:
            InvalidInputError: If the dataset is missing or not a
                               FeatureCollection, or the study area is not a
                               Polygon Feature.
            ValueError: If the search method is unknown.
        """
        if dataset is None:
            raise InvalidInputError("dataset is required")
        if not isinstance(dataset, dict) or dataset.get('type') != 'FeatureCollection':
            raise InvalidInputError("dataset must be a GeoJSON FeatureCollection")
        if not isinstance(dataset.get('features'), list):
            raise InvalidInputError("FeatureCollection 'features' must be a list")

        self.dataset = dataset
        self.options = _resolve_options(options, kwargs)

        if self.options.study_area is not None:
            self._validate_study_area(self.options.study_area)

        # Cache for derived data
        self._centroid_features: Optional[List[Dict[str, Any]]] = None
        self._centroids: Optional[np.ndarray] = None
        self._nearest: Optional[Tuple[np.ndarray, np.ndarray]] = None
        self._study_area: Optional[Dict[str, Any]] = None

        logger.info("NearestNeighborAnalyzer initialized")
        logger.info(f"  Features:    {len(dataset['features'])}")
        logger.info(f"  Study area:  {'provided' if self.options.study_area else 'bounding box'}")
        logger.info(f"  Units:       {self.options.units}")
        logger.info(f"  Coordinates: {'geodesic' if self.options.geodesic else 'planar (meters)'}")
        logger.info(f"  Method:      {self.options.method}")

    @staticmethod
    def _validate_study_area(study_area: Any) -> None:
        if not isinstance(study_area, dict) or study_area.get('type') != 'Feature':
            raise InvalidInputError("study_area must be a GeoJSON Polygon Feature")
        geom = geometry.to_shape(study_area)
        if not isinstance(geom, (Polygon, MultiPolygon)):
            raise InvalidInputError(
                f"study_area must be a Polygon or MultiPolygon, got {geom.geom_type}"
            )

    # =========================================================================
    # INPUT PREPARATION
    # =========================================================================

    def _load_centroids(self) -> np.ndarray:
        """
        Reduce every feature to its centroid and cache the result.

        Returns:
            np.ndarray: ``(n, 2)`` array of centroid coordinates in input order.

        Raises:
            InvalidInputError: If a feature has no readable geometry.
        """
        if self._centroids is not None:
            return self._centroids

        features = []
        for feature, index in geometry.feature_each(self.dataset):
            try:
                features.append(geometry.centroid(feature))
            except InvalidInputError as e:
                raise InvalidInputError(f"Feature {index}: {e}") from e

        self._centroid_features = features
        self._centroids = np.array(
            [geometry.get_coord(f) for f in features], dtype=float
        ).reshape(-1, 2)

        logger.info(f"Reduced {len(features)} features to centroids")
        return self._centroids

    @property
    def centroids(self) -> np.ndarray:
        """``(n, 2)`` array of feature centroids."""
        return self._load_centroids()

    @property
    def number_of_points(self) -> int:
        return len(self._load_centroids())

    @property
    def study_area(self) -> Dict[str, Any]:
        """
        The study area Feature: the one supplied in the options, or the
        bounding-box polygon of the dataset.
        """
        if self._study_area is None:
            if self.options.study_area is not None:
                self._study_area = self.options.study_area
            else:
                self._study_area = geometry.bbox_polygon(geometry.bbox(self.dataset))
        return self._study_area

    def _require_points(self) -> int:
        n = self.number_of_points
        if n < 2:
            logger.warning(f"Need at least 2 features for nearest neighbor analysis, got {n}")
            raise DegenerateInputError(
                f"Nearest neighbor analysis needs at least 2 features, got {n}"
            )
        return n

    # =========================================================================
    # NEAREST NEIGHBOR SEARCH
    # =========================================================================

    def calculate_nearest_neighbor_distances(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Distance from every centroid to its nearest OTHER centroid.

        A point is never compared with itself; two distinct features sharing
        a location have a nearest distance of zero. When several neighbors are
        equally close, the one with the lowest input index is reported.

        Formula:
            NND_i = min(distance(c_i, c_j)) for all j ≠ i

        Returns:
            Tuple[np.ndarray, np.ndarray]:
                - Nearest neighbor distance of each feature, in ``units``
                - Input index of each feature's nearest neighbor

        Raises:
            DegenerateInputError: If there are fewer than 2 features.
            UnitError: If ``units`` is unknown.
        """
        if self._nearest is not None:
            return self._nearest

        n = self._require_points()
        logger.info(f"Searching nearest neighbors (method={self.options.method}, n={n})...")

        with _step("searching nearest neighbors"):
            if self.options.method == 'brute':
                self._nearest = self._brute_nearest()
            else:
                self._nearest = self._kdtree_nearest()

        return self._nearest

    def _brute_nearest(self) -> Tuple[np.ndarray, np.ndarray]:
        # Per-feature scan over the collection of all other features
        features = self._centroid_features
        n = len(features)
        distances = np.empty(n, dtype=float)
        neighbors = np.empty(n, dtype=int)

        for i in tqdm(
            range(n),
            desc="Searching nearest neighbors",
            unit="feature",
            disable=not self.options.show_progress
        ):
            others = geometry.feature_collection(features[:i] + features[i + 1:])
            match = geometry.nearest_point(
                features[i],
                others,
                units=self.options.units,
                geodesic=self.options.geodesic
            )
            j = match['properties']['featureIndex']
            neighbors[i] = j if j < i else j + 1
            distances[i] = match['properties']['distanceToPoint']

        return distances, neighbors

    def _kdtree_nearest(self) -> Tuple[np.ndarray, np.ndarray]:
        coords = self.centroids
        n = len(coords)
        if self.options.geodesic:
            points = geometry.unit_sphere_vectors(coords)
        else:
            points = coords

        tree = cKDTree(points)

        # k=2: the first hit is the point itself (or a coincident duplicate)
        chord, idx = tree.query(points, k=2)
        radii = chord[:, 1] * (1 + 1e-9) + 1e-12

        # Collect every candidate at the nearest distance so ties resolve to
        # the lowest index
        candidates = tree.query_ball_point(points, r=radii, return_sorted=True)

        distances = np.empty(n, dtype=float)
        neighbors = np.empty(n, dtype=int)

        for i in range(n):
            others = [j for j in candidates[i] if j != i]
            if not others:
                others = [int(idx[i, 1]) if idx[i, 1] != i else int(idx[i, 0])]

            dists = geometry.pairwise_distances(
                coords[i],
                coords[others],
                units=self.options.units,
                geodesic=self.options.geodesic
            )
            best = int(np.argmin(dists))
            neighbors[i] = others[best]
            distances[i] = dists[best]

        return distances, neighbors

    # =========================================================================
    # CLARK-EVANS STATISTICS
    # =========================================================================

    def calculate_population_density(self) -> float:
        """
        Number of points per squared unit of the study area.

        Formula:
            density = n / Area(study_area)   [area in units²]

        Raises:
            DegenerateInputError: If there are fewer than 2 features or the
                                  study area has no positive, finite area.
            UnitError: If ``units`` has no areal form.
        """
        n = self._require_points()

        with _step("measuring the study area"):
            area_m2 = geometry.area(self.study_area, geodesic=self.options.geodesic)
            area_units = convert_area(area_m2, 'meters', self.options.units)

        if not np.isfinite(area_units) or area_units <= 0:
            logger.warning("Study area has zero area")
            raise DegenerateInputError(
                f"Study area must have a positive area, got {area_units} "
                f"{areal_unit_name(self.options.units)}"
            )

        return n / area_units

    def calculate_statistics(self) -> AnalysisResult:
        """
        Calculate the Nearest Neighbor Index and z-score.

        The index (R) compares the observed mean nearest neighbor distance with
        the mean expected if the same number of points were scattered at
        random (a homogeneous Poisson process) over the study area.

        Formula:
            r̄_observed = Σ NND_i / n
            r̄_expected = 1 / (2 × sqrt(density))
            SE         = 0.26136 / sqrt(n × density)
            R          = r̄_observed / r̄_expected
            z          = (r̄_observed - r̄_expected) / SE

        Interpretation:
            - R ≈ 1.0: Random distribution
            - R → 0.0: Clustered (all points at the same location)
            - R > 1.0: Dispersed; the maximum, a hexagonal lattice, is ~2.15
            - |z| > 1.96: Significant at p < 0.05

        Returns:
            AnalysisResult: All statistics of the run.

        Raises:
            DegenerateInputError: If there are fewer than 2 features or the
                                  study area has no positive area.
            UnitError: If ``units`` is unknown.

        Note:
            The result is very sensitive to the study area. When none is given,
            the bounding box of the data is used, which tends to make the data
            look more dispersed than it would inside a wider area of interest.
        """
        units = self.options.units
        distances, _ = self.calculate_nearest_neighbor_distances()
        n = len(distances)

        observed_mean_distance = float(np.mean(distances))
        population_density = self.calculate_population_density()

        expected_mean_distance = float(1 / (2 * np.sqrt(population_density)))
        variance = float(CLARK_EVANS_VARIANCE / np.sqrt(n * population_density))

        result = AnalysisResult(
            units=units,
            areal_units=areal_unit_name(units),
            observed_mean_distance=observed_mean_distance,
            expected_mean_distance=expected_mean_distance,
            nearest_neighbor_index=observed_mean_distance / expected_mean_distance,
            number_of_points=n,
            z_score=(observed_mean_distance - expected_mean_distance) / variance,
            population_density=float(population_density),
            variance=variance,
        )

        logger.info(f"  → Observed mean distance: {result.observed_mean_distance:.4f} {units}")
        logger.info(f"  → Expected mean distance: {result.expected_mean_distance:.4f} {units}")
        logger.info(f"  → Nearest neighbor index: {result.nearest_neighbor_index:.4f}")
        logger.info(f"  → Z-score: {result.z_score:.2f} ({result.pattern.upper()})")

        return result

    # =========================================================================
    # OUTPUT
    # =========================================================================

    def nearest_neighbor_table(self) -> pd.DataFrame:
        """
        Per-feature nearest neighbor details.

        Returns:
            pd.DataFrame: One row per feature with columns ``feature_index``,
            ``x``, ``y`` (centroid), ``neighbor_index`` and ``distance``
            (in ``units``).
        """
        distances, neighbors = self.calculate_nearest_neighbor_distances()
        coords = self.centroids
        return pd.DataFrame({
            'feature_index': np.arange(len(coords)),
            'x': coords[:, 0],
            'y': coords[:, 1],
            'neighbor_index': neighbors,
            'distance': distances,
        })

    def generate_report(self) -> Tuple[pd.DataFrame, Dict[str, Any]]:
        """
        Summarize the analysis as a DataFrame and a JSON-ready dictionary.

        Returns:
            Tuple[pd.DataFrame, Dict[str, Any]]:
                - DataFrame with one row per key measure
                - Dictionary with metadata, the result mapping and the
                  interpretation (pattern, p-value)
        """
        result = self.calculate_statistics()

        report: Dict[str, Any] = {
            'metadata': {
                'number_of_features': len(self.dataset['features']),
                'study_area': 'provided' if self.options.study_area is not None else 'bounding_box',
                'units': self.options.units,
                'geodesic': self.options.geodesic,
                'method': self.options.method,
            },
            'metrics': {RESULT_KEY: result.to_dict()},
            'population_density': result.population_density,
            'variance': result.variance,
            'p_value': result.p_value,
            'pattern': result.pattern,
        }

        summary_rows = [
            {'metric': RESULT_KEY, 'key_measure': name, 'value': float(value)}
            for name, value in (
                ('observed_mean_distance', result.observed_mean_distance),
                ('expected_mean_distance', result.expected_mean_distance),
                ('nearest_neighbor_index', result.nearest_neighbor_index),
                ('z_score', result.z_score),
                ('p_value', result.p_value),
                ('population_density', result.population_density),
                ('number_of_points', result.number_of_points),
            )
        ]

        return pd.DataFrame(summary_rows), report

    def run(self) -> Dict[str, Any]:
        """
        Run the analysis and annotate the study area with the result.

        Returns:
            dict: The study area Feature whose properties are ``options.properties``
            (or a new mapping) with the result stored under
            ``nearestNeighborAnalysis``. Unless ``inplace`` is set, the study
            area and properties are deep copies of the inputs.
        """
        result = self.calculate_statistics()

        study_area = self.study_area
        properties = self.options.properties
        if properties is None:
            properties = {}

        if not self.options.inplace:
            study_area = copy.deepcopy(study_area)
            properties = copy.deepcopy(properties)

        properties[RESULT_KEY] = result.to_dict()
        study_area['properties'] = properties
        return study_area


# =============================================================================
# MODULE-LEVEL CONVENIENCE FUNCTION
# =============================================================================

def analyze(
    dataset: Dict[str, Any],
    options: Union[AnalysisOptions, Dict[str, Any], None] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Run a nearest neighbor analysis in a single call.

    This is a shortcut for creating a NearestNeighborAnalyzer and calling run().

    Args:
        dataset: GeoJSON FeatureCollection (preferably of points) to study.
        options: AnalysisOptions or a mapping with any of ``studyArea`` /
                 ``study_area``, ``units``, ``properties``, ``geodesic``,
                 ``method``, ``inplace``.
        **kwargs: Individual AnalysisOptions fields overriding ``options``.

    Returns:
        dict: Polygon Feature of the study area with the analysis attached
        under ``properties['nearestNeighborAnalysis']``.

    Example:
        >>> from nearest_neighbor_analysis import analyze
        >>> study_area = analyze(points, {'units': 'miles'})
        >>> study_area['properties']['nearestNeighborAnalysis']['zScore']
    """
    return NearestNeighborAnalyzer(dataset, options, **kwargs).run()
