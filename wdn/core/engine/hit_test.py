from __future__ import annotations

from typing import Collection, Optional, Sequence, Tuple

from wdn.core.geometry.polyline import Projection, distance, project_onto_polyline
from wdn.core.models.feature import Feature, is_transient
from wdn.core.models.network import FeatureStore


def find_node_at(
    store: FeatureStore,
    coordinate: Sequence[float],
    tolerance: float,
    *,
    exclude: Collection[str] = (),
) -> Optional[Feature]:
    """Closest node within tolerance of coordinate (transients never match)."""
    best: Optional[Feature] = None
    best_d = float("inf")
    for f in store:
        if is_transient(f) or not f.is_node or f.id in exclude or f.geometry is None:
            continue
        d = distance(f.coordinate, coordinate)
        if d <= tolerance and d < best_d:
            best, best_d = f, d
    return best


def find_pipe_at(
    store: FeatureStore,
    coordinate: Sequence[float],
    tolerance: float,
    *,
    exclude: Collection[str] = (),
) -> Optional[Tuple[Feature, Projection]]:
    """Closest pipe within tolerance of coordinate, with the projection onto it."""
    best: Optional[Tuple[Feature, Projection]] = None
    for f in store:
        if is_transient(f) or not f.is_pipe or f.id in exclude or f.geometry is None:
            continue
        proj = project_onto_polyline(f.coordinates, coordinate)
        if proj is None or proj.distance > tolerance:
            continue
        if best is None or proj.distance < best[1].distance:
            best = (f, proj)
    return best


def find_feature_at(
    store: FeatureStore,
    coordinate: Sequence[float],
    tolerance: float,
) -> Optional[Feature]:
    """Selection hit-test: nodes first, then pump/valve symbols, then pipes."""
    node = find_node_at(store, coordinate, tolerance)
    if node is not None:
        return node

    for f in store:
        if f.is_point_link and f.geometry is not None and distance(f.coordinate, coordinate) <= tolerance:
            return f

    hit = find_pipe_at(store, coordinate, tolerance)
    return hit[0] if hit is not None else None
