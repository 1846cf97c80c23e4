# wdn/core/geometry/polyline.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from wdn.core.models.feature import Coordinate


@dataclass(frozen=True)
class Projection:
    point: Coordinate       # closest point on the polyline
    segment_index: int      # segment i spans vertices i -> i+1
    distance: float         # distance from the query point [m]
    t: float                # position along the segment (0..1)


@dataclass(frozen=True)
class PolylineSplit:
    first: Tuple[Coordinate, ...]    # start ... split point
    second: Tuple[Coordinate, ...]   # split point ... end
    point: Coordinate
    on_vertex: bool                  # split happened at an existing interior vertex


def _as_array(coords: Sequence[Sequence[float]]) -> np.ndarray:
    arr = np.asarray(coords, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"Expected a (n, 2) coordinate array, got shape {arr.shape}.")
    return arr


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    return math.hypot(float(a[0]) - float(b[0]), float(a[1]) - float(b[1]))


def coords_equal(a: Sequence[float], b: Sequence[float], tol: float = 1e-6) -> bool:
    return abs(float(a[0]) - float(b[0])) < tol and abs(float(a[1]) - float(b[1])) < tol


def is_finite_coordinate(c) -> bool:
    try:
        return len(c) == 2 and math.isfinite(float(c[0])) and math.isfinite(float(c[1]))
    except (TypeError, ValueError):
        return False


def midpoint(a: Sequence[float], b: Sequence[float]) -> Coordinate:
    return (float(a[0]) + float(b[0])) / 2.0, (float(a[1]) + float(b[1])) / 2.0


def polyline_length(coords: Sequence[Sequence[float]]) -> float:
    """Sum of segment lengths (0 for fewer than 2 vertices)."""
    if len(coords) < 2:
        return 0.0
    arr = _as_array(coords)
    d = np.diff(arr, axis=0)
    return float(np.hypot(d[:, 0], d[:, 1]).sum())


def project_onto_polyline(coords: Sequence[Sequence[float]], p: Sequence[float]) -> Optional[Projection]:
    """
    Globally closest point of the polyline to p, across all segments.
    Ties resolve to the first segment. Returns None if the polyline is degenerate.
    """
    if len(coords) < 2:
        return None
    arr = _as_array(coords)
    q = np.asarray(p, dtype=float)

    a = arr[:-1]
    ab = arr[1:] - a
    ab2 = (ab ** 2).sum(axis=1)

    # t = clamp( (p - a).(b - a) / |b - a|^2 ), zero-length segments project onto a
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.where(ab2 > 0, ((q - a) * ab).sum(axis=1) / ab2, 0.0)
    t = np.clip(t, 0.0, 1.0)

    proj = a + t[:, None] * ab
    d = np.hypot(proj[:, 0] - q[0], proj[:, 1] - q[1])
    if not np.all(np.isfinite(d)):
        return None

    i = int(np.argmin(d))
    return Projection(
        point=(float(proj[i, 0]), float(proj[i, 1])),
        segment_index=i,
        distance=float(d[i]),
        t=float(t[i]),
    )


def split_polyline(
    coords: Sequence[Coordinate],
    projection: Projection,
    *,
    vertex_tolerance: float,
) -> Optional[PolylineSplit]:
    """
    Split a polyline at a projected point.

    - within vertex_tolerance of an interior vertex: split at that vertex
    - otherwise: insert the point between the bracketing vertices
    Returns None if either half would have < 2 vertices or zero length
    (split point on a pipe end).
    """
    coords = tuple((float(c[0]), float(c[1])) for c in coords)
    n = len(coords)
    if n < 2:
        return None

    point = projection.point
    if distance(point, coords[0]) < vertex_tolerance or distance(point, coords[-1]) < vertex_tolerance:
        return None

    if n > 2:
        i = min(range(1, n - 1), key=lambda k: distance(coords[k], point))
        if distance(coords[i], point) < vertex_tolerance:
            return PolylineSplit(first=coords[:i + 1], second=coords[i:], point=coords[i], on_vertex=True)

    seg = projection.segment_index
    first = coords[:seg + 1] + (point,)
    second = (point,) + coords[seg + 1:]
    if len(first) < 2 or len(second) < 2:
        return None
    return PolylineSplit(first=first, second=second, point=point, on_vertex=False)


def segment_angle(coords: Sequence[Sequence[float]], segment_index: int) -> float:
    """Direction (radians) of segment i, i -> i+1."""
    p1 = coords[segment_index]
    p2 = coords[segment_index + 1]
    return math.atan2(float(p2[1]) - float(p1[1]), float(p2[0]) - float(p1[0]))


def offset_point(p: Sequence[float], angle: float, dist: float) -> Coordinate:
    return float(p[0]) + math.cos(angle) * dist, float(p[1]) + math.sin(angle) * dist


def dedupe_consecutive(coords: Sequence[Coordinate], min_distance: float) -> List[Coordinate]:
    """Drop vertices closer than min_distance to their predecessor."""
    out: List[Coordinate] = []
    for c in coords:
        if out and distance(c, out[-1]) <= min_distance:
            continue
        out.append((float(c[0]), float(c[1])))
    return out


def segment_intersection(
    p1: Sequence[float],
    p2: Sequence[float],
    p3: Sequence[float],
    p4: Sequence[float],
    *,
    eps: float = 1e-10,
) -> Optional[Coordinate]:
    """Intersection of segments p1-p2 and p3-p4 (None if parallel or disjoint)."""
    x1, y1 = float(p1[0]), float(p1[1])
    x2, y2 = float(p2[0]), float(p2[1])
    x3, y3 = float(p3[0]), float(p3[1])
    x4, y4 = float(p4[0]), float(p4[1])

    denom = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)
    if abs(denom) < eps:
        return None

    t = ((x1 - x3) * (y3 - y4) - (y1 - y3) * (x3 - x4)) / denom
    u = -((x1 - x2) * (y1 - y3) - (y1 - y2) * (x1 - x3)) / denom

    if 0.0 <= t <= 1.0 and 0.0 <= u <= 1.0:
        return x1 + t * (x2 - x1), y1 + t * (y2 - y1)
    return None


def bbox(coords: Sequence[Sequence[float]]) -> Tuple[float, float, float, float]:
    arr = _as_array(coords)
    mn = arr.min(axis=0)
    mx = arr.max(axis=0)
    return float(mn[0]), float(mn[1]), float(mx[0]), float(mx[1])


def bboxes_overlap(a: Tuple[float, float, float, float], b: Tuple[float, float, float, float], tol: float = 0.0) -> bool:
    return not (a[2] + tol < b[0] or b[2] + tol < a[0] or a[3] + tol < b[1] or b[3] + tol < a[1])


def polyline_intersections(
    a: Sequence[Coordinate],
    b: Sequence[Coordinate],
    *,
    tol: float = 1e-6,
) -> List[Coordinate]:
    """
    Interior crossings between two polylines, checking every segment pair.
    Points equal to an end vertex of either polyline are excluded; duplicates
    (crossings through a shared interior vertex) are reported once.
    """
    if len(a) < 2 or len(b) < 2:
        return []
    if not bboxes_overlap(bbox(a), bbox(b), tol):
        return []

    ends = (a[0], a[-1], b[0], b[-1])
    out: List[Coordinate] = []
    for i in range(len(a) - 1):
        for j in range(len(b) - 1):
            x = segment_intersection(a[i], a[i + 1], b[j], b[j + 1])
            if x is None:
                continue
            if any(coords_equal(x, e, tol) for e in ends):
                continue
            if any(coords_equal(x, o, tol) for o in out):
                continue
            out.append(x)
    return out
