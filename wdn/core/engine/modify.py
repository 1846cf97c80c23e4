# wdn/core/engine/modify.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from wdn.core.build.config import ModifyConfig
from wdn.core.engine.hit_test import find_pipe_at
from wdn.core.engine.splice import SpliceEngine, sync_pipe_endpoints
from wdn.core.geometry.polyline import distance, midpoint, project_onto_polyline
from wdn.core.models.feature import Coordinate, Feature, Geometry, as_coordinate, is_transient
from wdn.core.models.network import FeatureStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModifyOutcome:
    accepted: bool
    message: str = ""
    moved_ids: Tuple[str, ...] = ()        # nodes and point links that moved
    pipe_ids: Tuple[str, ...] = ()         # pipes created by an automatic split
    removed_pipe_id: Optional[str] = None


class ModifyEngine:
    """
    Geometry edits on existing features: node drags, pump/valve drags and
    pipe reshaping. Adjacency is only touched by the automatic split on drop.
    """

    def __init__(
        self,
        store: FeatureStore,
        splice: SpliceEngine,
        config: Optional[ModifyConfig] = None,
    ):
        self.store = store
        self.splice = splice
        self.config = config or ModifyConfig()
        self._drag_origin: Dict[str, Coordinate] = {}

    # ============================================================
    # Drags
    # ============================================================

    def begin_drag(self, feature_id: str) -> bool:
        f = self.store.get(feature_id)
        if f is None or is_transient(f) or f.geometry is None:
            return False
        self._drag_origin[feature_id] = f.coordinate
        logger.debug(f"Drag start {feature_id} at {f.coordinate}")
        return True

    def end_node_drag(self, node_id: str, coordinate: Sequence[float]) -> ModifyOutcome:
        """
        Drop a node at coordinate.

        - connected pipe endpoints follow the node
        - a node anchoring a pump/valve moves its whole link system rigidly
        - dropping within drop_tolerance_m of an unrelated pipe splits it at the node
        """
        origin = self._drag_origin.pop(node_id, None)
        node = self.store.find_node(node_id)
        if node is None:
            return self._reject(f"Not a node: {node_id}")
        if origin is None:
            origin = node.coordinate

        target = as_coordinate(coordinate)
        junctions, links = self._link_system(node_id)

        # plan the split before moving so the node lands exactly on the pipe
        exclude = {lid for jid in junctions for lid in self.store.connected_links(jid)}
        hit = find_pipe_at(self.store, target, self.config.drop_tolerance_m, exclude=exclude)
        split_pipe: Optional[Feature] = None
        if hit is not None:
            split = self.splice.plan_split(hit[0], target)
            if split is not None:
                split_pipe = hit[0]
                target = split.point

        old = node.coordinate
        dx, dy = target[0] - old[0], target[1] - old[1]
        moved = self._translate_system(junctions, links, dx, dy)
        message = f"Moved {node_id} {distance(origin, target):.2f} m"

        if split_pipe is None:
            logger.info(f"Moved {node_id} from {origin} to {target}")
            return ModifyOutcome(True, message, moved_ids=tuple(moved))

        new_pipes = self.splice.split_pipe_at_node(split_pipe.id, node_id)
        if new_pipes is None:
            return ModifyOutcome(True, message, moved_ids=tuple(moved))

        logger.info(f"Dropped {node_id} on {split_pipe.id}: split into {new_pipes[0]} + {new_pipes[1]}")
        return ModifyOutcome(
            True,
            f"{node_id} inserted into {split_pipe.id}",
            moved_ids=tuple(moved),
            pipe_ids=new_pipes,
            removed_pipe_id=split_pipe.id,
        )

    def move_link(self, link_id: str, coordinate: Sequence[float]) -> ModifyOutcome:
        """Drag a pump/valve symbol; the link system translates as a whole."""
        origin = self._drag_origin.pop(link_id, None)
        link = self.store.get(link_id)
        if link is None or not link.is_point_link:
            return self._reject(f"Not a pump/valve: {link_id}")
        if self.store.find_node(link.start_node_id) is None:
            return self._reject(f"{link_id} has no resolvable junctions")

        target = as_coordinate(coordinate)
        old = link.coordinate
        junctions, links = self._link_system(link.start_node_id)
        moved = self._translate_system(junctions, links, target[0] - old[0], target[1] - old[1])
        travel = distance(origin if origin is not None else old, target)
        return ModifyOutcome(True, f"Moved {link_id} {travel:.2f} m", moved_ids=tuple(moved))

    # ============================================================
    # Pipe shape
    # ============================================================

    def reshape_pipe(self, pipe_id: str, coordinates: Sequence[Sequence[float]]) -> ModifyOutcome:
        """Replace a pipe's vertices; the end vertices stay pinned to its nodes."""
        pipe = self.store.get(pipe_id)
        if pipe is None or not pipe.is_pipe:
            return self._reject(f"Not a pipe: {pipe_id}")
        if len(coordinates) < 2:
            return self._reject("A pipe needs at least 2 vertices")

        coords = [as_coordinate(c) for c in coordinates]
        start = self.store.find_node(pipe.start_node_id)
        end = self.store.find_node(pipe.end_node_id)
        if start is not None:
            coords[0] = start.coordinate
        if end is not None:
            coords[-1] = end.coordinate

        self.store.set_geometry(pipe_id, Geometry.line(coords))
        return ModifyOutcome(True, f"Reshaped {pipe_id}")

    def add_vertex(self, pipe_id: str, coordinate: Sequence[float]) -> ModifyOutcome:
        pipe = self.store.get(pipe_id)
        if pipe is None or not pipe.is_pipe or pipe.geometry is None:
            return self._reject(f"Not a pipe: {pipe_id}")

        coords = list(pipe.coordinates)
        proj = project_onto_polyline(coords, coordinate)
        if proj is None:
            return self._reject(f"Could not find an insertion point on {pipe_id}")

        tol = self.splice.config.vertex_tolerance_m
        if any(distance(c, proj.point) < tol for c in coords):
            return self._reject("A vertex already exists there")

        coords.insert(proj.segment_index + 1, proj.point)
        self.store.set_geometry(pipe_id, Geometry.line(coords))
        return ModifyOutcome(True, f"Vertex added to {pipe_id}")

    def delete_vertex(self, pipe_id: str, index: int) -> ModifyOutcome:
        pipe = self.store.get(pipe_id)
        if pipe is None or not pipe.is_pipe or pipe.geometry is None:
            return self._reject(f"Not a pipe: {pipe_id}")

        coords = list(pipe.coordinates)
        if len(coords) <= 2:
            return self._reject("Cannot delete - pipe needs at least 2 vertices")
        if not 0 < index < len(coords) - 1:
            return self._reject("End vertices are attached to nodes and cannot be deleted")

        del coords[index]
        self.store.set_geometry(pipe_id, Geometry.line(coords))
        return ModifyOutcome(True, f"Vertex {index} removed from {pipe_id}")

    # ============================================================
    # Internals
    # ============================================================

    def _link_system(self, node_id: str) -> Tuple[List[str], List[str]]:
        """
        Junctions and pumps/valves rigidly tied to node_id: every node reachable
        through point links (a plain node yields just itself).
        """
        junctions: List[str] = [node_id]
        links: List[str] = []
        seen: Set[str] = {node_id}
        i = 0
        while i < len(junctions):
            for link in self.store.links_of(junctions[i]):
                if not link.is_point_link or link.id in links:
                    continue
                links.append(link.id)
                for nid in link.endpoints:
                    if nid is not None and nid not in seen and self.store.find_node(nid) is not None:
                        seen.add(nid)
                        junctions.append(nid)
            i += 1
        return junctions, links

    def _translate_system(self, junctions: List[str], links: List[str], dx: float, dy: float) -> List[str]:
        for jid in junctions:
            x, y = self.store[jid].coordinate
            self.store.set_geometry(jid, Geometry.point((x + dx, y + dy)))
        for jid in junctions:
            sync_pipe_endpoints(self.store, jid)

        for lid in links:
            link = self.store[lid]
            a = self.store.find_node(link.start_node_id)
            b = self.store.find_node(link.end_node_id)
            if a is None or b is None:
                continue
            self.store.set_geometry(lid, Geometry.point(midpoint(a.coordinate, b.coordinate)))
            visual = self.store.visual_link_for(lid)
            if visual is not None:
                self.store.set_geometry(visual.id, Geometry.line([a.coordinate, b.coordinate]))
        return junctions + links

    def _reject(self, message: str) -> ModifyOutcome:
        logger.warning(f"Modify rejected: {message}")
        return ModifyOutcome(False, message)
