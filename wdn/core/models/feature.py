from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple

NodeType = Literal["junction", "tank", "reservoir"]
LinkType = Literal["pipe", "pump", "valve"]
PointLinkType = Literal["pump", "valve"]
FeatureType = Literal["junction", "tank", "reservoir", "pipe", "pump", "valve"]

# "network" features form the logical graph; every other kind is feedback only
# (drawing preview, vertex markers, pump/valve visual lines).
FeatureKind = Literal["network", "preview", "vertex_marker", "visual_link"]

GeometryType = Literal["Point", "LineString"]

Coordinate = Tuple[float, float]

NODE_TYPES: Tuple[str, ...] = ("junction", "tank", "reservoir")
LINK_TYPES: Tuple[str, ...] = ("pipe", "pump", "valve")
POINT_LINK_TYPES: Tuple[str, ...] = ("pump", "valve")
TRANSIENT_KINDS: Tuple[str, ...] = ("preview", "vertex_marker", "visual_link")


@dataclass(frozen=True, slots=True)
class Geometry:
    """
    Planar geometry of a feature.

    Notes:
    - Point: exactly one coordinate
    - LineString: ordered vertex list (>= 2 coordinates)
    - coordinates are world units [m]
    """
    type: GeometryType
    coordinates: Tuple[Coordinate, ...]

    @staticmethod
    def point(xy) -> "Geometry":
        return Geometry("Point", (as_coordinate(xy),))

    @staticmethod
    def line(coords) -> "Geometry":
        return Geometry("LineString", tuple(as_coordinate(c) for c in coords))

    @property
    def first(self) -> Coordinate:
        return self.coordinates[0]

    @property
    def last(self) -> Coordinate:
        return self.coordinates[-1]


@dataclass(frozen=True, slots=True)
class Feature:
    """
    Canonical network feature (node, link or transient pseudo-feature).

    Notes:
    - nodes carry connected_links (ids of links touching them)
    - links carry start_node_id/end_node_id
    - visual links point back to their pump/valve via parent_link_id
    - records are immutable; the store replaces them on every write
    """
    id: str
    type: Optional[FeatureType]
    geometry: Optional[Geometry]

    kind: FeatureKind = "network"
    properties: Dict[str, Any] = field(default_factory=dict)

    connected_links: Tuple[str, ...] = ()
    start_node_id: Optional[str] = None
    end_node_id: Optional[str] = None

    parent_link_id: Optional[str] = None

    @property
    def is_node(self) -> bool:
        return self.kind == "network" and self.type in NODE_TYPES

    @property
    def is_link(self) -> bool:
        return self.kind == "network" and self.type in LINK_TYPES

    @property
    def is_pipe(self) -> bool:
        return self.kind == "network" and self.type == "pipe"

    @property
    def is_point_link(self) -> bool:
        return self.kind == "network" and self.type in POINT_LINK_TYPES

    @property
    def coordinate(self) -> Coordinate:
        """Point coordinate (first vertex for lines)."""
        if self.geometry is None:
            raise ValueError(f"Feature(id={self.id}) has no geometry.")
        return self.geometry.first

    @property
    def coordinates(self) -> Tuple[Coordinate, ...]:
        if self.geometry is None:
            raise ValueError(f"Feature(id={self.id}) has no geometry.")
        return self.geometry.coordinates

    @property
    def endpoints(self) -> Tuple[Optional[str], Optional[str]]:
        return self.start_node_id, self.end_node_id

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)


def is_transient(feature: Feature) -> bool:
    """Shared filter: True for preview lines, vertex markers and visual links."""
    return feature.kind != "network"


def as_coordinate(xy) -> Coordinate:
    x, y = xy
    return float(x), float(y)
