# wdn/core/engine/splice.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from wdn.core.build.config import SpliceConfig
from wdn.core.geometry.polyline import (
    PolylineSplit,
    distance,
    midpoint,
    offset_point,
    project_onto_polyline,
    segment_angle,
    split_polyline,
)
from wdn.core.models.components import COMPONENT_TYPES, default_properties
from wdn.core.models.feature import (
    NODE_TYPES,
    POINT_LINK_TYPES,
    Coordinate,
    Feature,
    Geometry,
    as_coordinate,
)
from wdn.core.models.network import FeatureStore

logger = logging.getLogger(__name__)

# Pipe properties derived from geometry; never inherited by split halves.
_DERIVED_PIPE_KEYS = ("length", "label")


@dataclass(frozen=True)
class NodeSplice:
    """Result of inserting a node on a pipe."""
    node_id: str
    pipe_ids: Tuple[str, ...] = ()          # the two replacement pipes, () on fallback
    removed_pipe_id: Optional[str] = None

    @property
    def split(self) -> bool:
        return len(self.pipe_ids) == 2


@dataclass(frozen=True)
class LinkSplice:
    """Result of inserting (or placing) a pump/valve."""
    link_id: str
    start_junction_id: str
    end_junction_id: str
    visual_link_id: str
    pipe_ids: Tuple[str, ...] = ()
    removed_pipe_id: Optional[str] = None


def sync_pipe_endpoints(store: FeatureStore, node_id: str) -> List[str]:
    """
    Copy a node's coordinate onto the matching end of every connected pipe
    (whichever end references it) and recompute their lengths.
    Returns the ids of the pipes that were touched.
    """
    node = store.find_node(node_id)
    if node is None:
        return []
    xy = node.coordinate

    touched: List[str] = []
    for link in store.links_of(node_id):
        if not link.is_pipe or link.geometry is None:
            continue
        coords = list(link.coordinates)
        if link.start_node_id == node_id:
            coords[0] = xy
        if link.end_node_id == node_id:
            coords[-1] = xy
        store.set_geometry(link.id, Geometry.line(coords))
        touched.append(link.id)
    return touched


class SpliceEngine:
    """
    Node/link constructors and pipe-splitting algorithms.

    Every public operation computes its full plan before the first store
    write, then issues all writes; callers never see a half-rewired graph.
    """

    def __init__(self, store: FeatureStore, config: Optional[SpliceConfig] = None):
        self.store = store
        self.config = config or SpliceConfig()

    # ============================================================
    # Plain constructors
    # ============================================================

    def create_node(
        self,
        node_type: str,
        coordinate: Sequence[float],
        properties: Optional[Mapping[str, Any]] = None,
    ) -> Feature:
        if node_type not in NODE_TYPES:
            raise ValueError(f"Invalid node type: {node_type!r}. Allowed: {list(NODE_TYPES)}")

        node_id = self.store.generate_unique_id(node_type)
        props = default_properties(node_type)
        props["label"] = f"{COMPONENT_TYPES[node_type].name}-{node_id}"
        if properties:
            props.update(properties)

        node = Feature(
            id=node_id,
            type=node_type,  # type: ignore[arg-type]
            geometry=Geometry.point(coordinate),
            properties=props,
        )
        self.store.add_feature(node)
        logger.info(f"Created {node_type} {node_id} at {node.coordinate}")
        return node

    def create_pipe(
        self,
        coordinates: Sequence[Sequence[float]],
        start_node_id: str,
        end_node_id: str,
        properties: Optional[Mapping[str, Any]] = None,
    ) -> Feature:
        """
        Pipe between two existing nodes. First/last vertices are pinned to the
        node coordinates; adjacency is registered on both ends.
        """
        start = self.store.find_node(start_node_id)
        end = self.store.find_node(end_node_id)
        if start is None or end is None:
            raise ValueError(f"create_pipe references unknown node(s): {start_node_id!r}, {end_node_id!r}")
        if len(coordinates) < 2:
            raise ValueError(f"A pipe needs at least 2 vertices, got {len(coordinates)}")

        coords = [as_coordinate(c) for c in coordinates]
        coords[0] = start.coordinate
        coords[-1] = end.coordinate

        pipe_id = self.store.generate_unique_id("pipe")
        props = default_properties("pipe")
        if properties:
            props.update(properties)
        props["label"] = f"{COMPONENT_TYPES['pipe'].name}-{pipe_id}"

        self.store.add_feature(Feature(
            id=pipe_id,
            type="pipe",
            geometry=None,
            properties=props,
            start_node_id=start_node_id,
            end_node_id=end_node_id,
        ))
        pipe = self.store.set_geometry(pipe_id, Geometry.line(coords))

        self.store.update_node_connections(start_node_id, pipe_id, "add")
        self.store.update_node_connections(end_node_id, pipe_id, "add")
        logger.info(f"Created pipe {pipe_id} {start_node_id}->{end_node_id} (L={pipe.get('length'):.2f} m)")
        return pipe

    def create_point_link(
        self,
        link_type: str,
        start_junction_id: str,
        end_junction_id: str,
        properties: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Feature, Feature]:
        """
        Pump/valve between two junctions: symbol at their midpoint, a visual
        line between them, adjacency on both junctions.
        """
        if link_type not in POINT_LINK_TYPES:
            raise ValueError(f"Invalid link type: {link_type!r}. Allowed: {list(POINT_LINK_TYPES)}")
        sj = self.store.find_node(start_junction_id)
        ej = self.store.find_node(end_junction_id)
        if sj is None or ej is None:
            raise ValueError(f"create_point_link references unknown junction(s): {start_junction_id!r}, {end_junction_id!r}")

        link_id = self.store.generate_unique_id(link_type)
        props = default_properties(link_type)
        props["label"] = f"{COMPONENT_TYPES[link_type].name}-{link_id}"
        if properties:
            props.update(properties)

        link = self.store.add_feature(Feature(
            id=link_id,
            type=link_type,  # type: ignore[arg-type]
            geometry=Geometry.point(midpoint(sj.coordinate, ej.coordinate)),
            properties=props,
            start_node_id=start_junction_id,
            end_node_id=end_junction_id,
        ))

        visual = self.store.add_feature(Feature(
            id=self.store.generate_unique_id("visual_link"),
            type=None,
            geometry=Geometry.line([sj.coordinate, ej.coordinate]),
            kind="visual_link",
            properties={"link_type": link_type},
            parent_link_id=link_id,
        ))

        self.store.update_node_connections(start_junction_id, link_id, "add")
        self.store.update_node_connections(end_junction_id, link_id, "add")
        logger.info(f"Created {link_type} {link_id} between {start_junction_id} and {end_junction_id}")
        return link, visual

    def place_link(self, link_type: str, coordinate: Sequence[float], *, angle: float = 0.0) -> LinkSplice:
        """Standalone pump/valve centred on coordinate, with two new junctions."""
        half = self.config.half_link_length_m
        sj = self.create_node("junction", offset_point(coordinate, angle, -half))
        ej = self.create_node("junction", offset_point(coordinate, angle, half))
        link, visual = self.create_point_link(link_type, sj.id, ej.id)
        return LinkSplice(link_id=link.id, start_junction_id=sj.id, end_junction_id=ej.id, visual_link_id=visual.id)

    def extend_link_from(self, junction_id: str, angle: float, link_type: str) -> LinkSplice:
        """Pump/valve starting at an existing junction, ending one link length along angle."""
        start = self.store.find_node(junction_id)
        if start is None:
            raise ValueError(f"Unknown junction: {junction_id!r}")
        ej = self.create_node("junction", offset_point(start.coordinate, angle, self.config.link_length_m))
        link, visual = self.create_point_link(link_type, junction_id, ej.id)
        return LinkSplice(link_id=link.id, start_junction_id=junction_id, end_junction_id=ej.id, visual_link_id=visual.id)

    # ============================================================
    # Splicing
    # ============================================================

    def insert_node_on_pipe(
        self,
        pipe_id: str,
        coordinate: Sequence[float],
        node_type: str = "junction",
    ) -> NodeSplice:
        """
        Split a pipe at the point closest to coordinate and put a new node there.
        If the pipe cannot be segmented, a standalone node is created at
        coordinate instead (NodeSplice.split is False).
        """
        pipe = self._splittable_pipe(pipe_id)
        split = self.plan_split(pipe, coordinate) if pipe is not None else None

        if pipe is None or split is None:
            logger.warning(f"Cannot split pipe {pipe_id!r} at {tuple(coordinate)}; creating standalone {node_type}")
            node = self.create_node(node_type, coordinate)
            return NodeSplice(node_id=node.id)

        node = self.create_node(node_type, split.point)
        p1, p2 = self._replace_pipe(pipe, split.first, split.second, node.id, node.id)
        return NodeSplice(node_id=node.id, pipe_ids=(p1, p2), removed_pipe_id=pipe.id)

    def split_pipe_at_node(self, pipe_id: str, node_id: str) -> Optional[Tuple[str, str]]:
        """
        Split a pipe using an existing node (e.g. a node dropped onto it).
        The node is snapped onto the split point and its own pipes follow.
        Returns the two new pipe ids, or None if nothing was changed.
        """
        node = self.store.find_node(node_id)
        pipe = self._splittable_pipe(pipe_id)
        if node is None or pipe is None:
            return None
        if node_id in pipe.endpoints:
            return None

        split = self.plan_split(pipe, node.coordinate)
        if split is None:
            return None

        self.store.set_geometry(node_id, Geometry.point(split.point))
        sync_pipe_endpoints(self.store, node_id)
        return self._replace_pipe(pipe, split.first, split.second, node_id, node_id)

    def insert_link_on_pipe(
        self,
        pipe_id: str,
        coordinate: Sequence[float],
        link_type: str,
    ) -> Optional[LinkSplice]:
        """
        Put a pump/valve into a pipe: two new junctions half a link length each
        side of the projected point (along the local segment), the link between
        them, and the pipe replaced by two pipes ending at those junctions.
        Returns None when the pipe cannot host the link.
        """
        if link_type not in POINT_LINK_TYPES:
            raise ValueError(f"Invalid link type: {link_type!r}. Allowed: {list(POINT_LINK_TYPES)}")

        pipe = self._splittable_pipe(pipe_id)
        if pipe is None:
            return None
        coords = pipe.coordinates
        proj = project_onto_polyline(coords, coordinate)
        if proj is None:
            return None

        half = self.config.half_link_length_m
        margin = half + self.config.vertex_tolerance_m

        # a projection on an interior vertex belongs to both adjacent segments
        candidates = [proj.segment_index]
        if proj.t >= 1.0 and proj.segment_index + 1 < len(coords) - 1:
            candidates.append(proj.segment_index + 1)
        elif proj.t <= 0.0 and proj.segment_index > 0:
            candidates.append(proj.segment_index - 1)

        seg = next(
            (i for i in candidates if distance(coords[i], coords[i + 1]) >= 2.0 * margin),
            proj.segment_index,
        )
        a, b = coords[seg], coords[seg + 1]
        seg_len = distance(a, b)
        if seg_len < 2.0 * margin:
            logger.warning(
                f"Segment {seg} of pipe {pipe_id} is too short ({seg_len:.2f} m) for a "
                f"{self.config.link_length_m} m {link_type}"
            )
            return None

        # keep both junctions strictly inside the segment
        angle = segment_angle(coords, seg)
        along = min(max(distance(a, proj.point), margin), seg_len - margin)
        center = offset_point(a, angle, along)
        sj_xy = offset_point(center, angle, -half)
        ej_xy = offset_point(center, angle, half)

        first = tuple(coords[:seg + 1]) + (sj_xy,)
        second = (ej_xy,) + tuple(coords[seg + 1:])

        sj = self.create_node("junction", sj_xy)
        ej = self.create_node("junction", ej_xy)
        link, visual = self.create_point_link(link_type, sj.id, ej.id)
        p1, p2 = self._replace_pipe(pipe, first, second, sj.id, ej.id)

        return LinkSplice(
            link_id=link.id,
            start_junction_id=sj.id,
            end_junction_id=ej.id,
            visual_link_id=visual.id,
            pipe_ids=(p1, p2),
            removed_pipe_id=pipe.id,
        )

    # ============================================================
    # Internals
    # ============================================================

    def _splittable_pipe(self, pipe_id: str) -> Optional[Feature]:
        pipe = self.store.get(pipe_id)
        if pipe is None or not pipe.is_pipe or pipe.geometry is None or len(pipe.coordinates) < 2:
            return None
        # both ends must resolve, otherwise the halves cannot be wired
        if self.store.find_node(pipe.start_node_id) is None or self.store.find_node(pipe.end_node_id) is None:
            return None
        return pipe

    def plan_split(self, pipe: Feature, coordinate: Sequence[float]) -> Optional[PolylineSplit]:
        proj = project_onto_polyline(pipe.coordinates, coordinate)
        if proj is None:
            return None
        return split_polyline(pipe.coordinates, proj, vertex_tolerance=self.config.vertex_tolerance_m)

    def _replace_pipe(
        self,
        pipe: Feature,
        first: Sequence[Coordinate],
        second: Sequence[Coordinate],
        first_end_id: str,
        second_start_id: str,
    ) -> Tuple[str, str]:
        """
        Remove pipe and create [start -> first_end_id] + [second_start_id -> end],
        inheriting its non-geometric properties.
        """
        start_id, end_id = pipe.start_node_id, pipe.end_node_id
        inherited: Dict[str, Any] = {k: v for k, v in pipe.properties.items() if k not in _DERIVED_PIPE_KEYS}

        self.store.remove_feature(pipe.id)
        self.store.update_node_connections(start_id, pipe.id, "remove")
        self.store.update_node_connections(end_id, pipe.id, "remove")

        p1 = self.create_pipe(first, start_id, first_end_id, inherited)
        p2 = self.create_pipe(second, second_start_id, end_id, inherited)
        logger.info(f"Replaced pipe {pipe.id} with {p1.id} + {p2.id}")
        return p1.id, p2.id
