# wdn/core/engine/drawing.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional, Sequence, Tuple

from wdn.core.build.config import DrawingConfig
from wdn.core.engine.hit_test import find_node_at, find_pipe_at
from wdn.core.engine.splice import SpliceEngine
from wdn.core.geometry.polyline import dedupe_consecutive, distance, polyline_length, segment_angle
from wdn.core.models.feature import NODE_TYPES, POINT_LINK_TYPES, Coordinate, Feature, Geometry, as_coordinate
from wdn.core.models.network import FeatureStore

logger = logging.getLogger(__name__)

DrawingState = Literal["idle", "awaiting_start", "drawing"]


@dataclass(frozen=True)
class DrawOutcome:
    accepted: bool
    message: str = ""
    pipe_ids: Tuple[str, ...] = ()
    node_ids: Tuple[str, ...] = ()
    link_ids: Tuple[str, ...] = ()


class DrawingEngine:
    """
    Click-driven pipe drawing.

    A chain starts on a node, collects intermediate vertices from clicks on
    empty space and materializes one pipe every time it reaches another node
    (click, double-click or a node/link added mid-chain). After each pipe the
    chain re-seeds from the node it just reached.

    Handlers never raise for bad gestures: they return a DrawOutcome with
    accepted=False and pass the message to `notify`.
    """

    def __init__(
        self,
        store: FeatureStore,
        splice: SpliceEngine,
        config: Optional[DrawingConfig] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.splice = splice
        self.config = config or DrawingConfig()
        self.notify = notify

        self._state: DrawingState = "idle"
        self._vertices: List[Coordinate] = []
        self._start_node_id: Optional[str] = None
        self._chain_pipe_ids: List[str] = []

        self._preview_id: Optional[str] = None
        self._marker_ids: List[str] = []

    # ------------------------------------------------------------
    # State
    # ------------------------------------------------------------

    @property
    def state(self) -> DrawingState:
        return self._state

    @property
    def vertices(self) -> Tuple[Coordinate, ...]:
        return tuple(self._vertices)

    @property
    def start_node_id(self) -> Optional[str]:
        return self._start_node_id

    def is_drawing(self) -> bool:
        return self._state != "idle"

    def start(self) -> DrawOutcome:
        self._reset_chain()
        self._chain_pipe_ids = []
        self._state = "awaiting_start"
        logger.debug("Drawing: idle -> awaiting_start")
        return self._ok("Click a node to start drawing | Double-click to finish")

    def stop(self) -> DrawOutcome:
        """Discard the chain in progress (already created pipes are kept)."""
        self._reset_chain()
        self._chain_pipe_ids = []
        self._state = "idle"
        logger.debug("Drawing: -> idle")
        return DrawOutcome(True, "Drawing stopped")

    def escape(self) -> DrawOutcome:
        return self.stop()

    # ------------------------------------------------------------
    # Gestures
    # ------------------------------------------------------------

    def click(self, coordinate: Sequence[float]) -> DrawOutcome:
        xy = as_coordinate(coordinate)
        if self._state == "idle":
            return self._reject("Drawing is not active")

        node = find_node_at(self.store, xy, self.config.snap_tolerance_m)

        if self._state == "awaiting_start":
            if node is None:
                return self._reject("Click on a node to start")
            self._seed(node)
            return self._ok(f"Drawing from {node.get('label', node.id)} | Click to add vertices | Double-click to finish")

        if len(self._vertices) >= self.config.max_vertices:
            return self._reject(f"Maximum {self.config.max_vertices} vertices reached. Double-click to finish.")

        if node is not None:
            if node.id == self._start_node_id:
                return self._reject("Cannot create pipe to the same node")
            d = distance(self._vertices[-1], node.coordinate)
            if d < self.config.min_pipe_length_m:
                return self._reject(
                    f"Distance too short ({d:.2f} m). Minimum {self.config.min_pipe_length_m} m."
                )
            return self._finish_at_node(node)

        d = distance(self._vertices[-1], xy)
        if d < self.config.min_vertex_distance_m:
            return self._reject(f"Vertex too close to the previous one ({d:.2f} m)")

        self._vertices.append(xy)
        self._add_marker(xy)
        self._refresh_preview(None)
        return DrawOutcome(True)

    def double_click(self, coordinate: Sequence[float]) -> DrawOutcome:
        xy = as_coordinate(coordinate)
        if self._state != "drawing":
            if self._state == "awaiting_start":
                self.stop()
            return self._reject("Need at least 2 points")

        node = find_node_at(self.store, xy, self.config.snap_tolerance_m)
        if node is not None and node.id != self._start_node_id:
            out = self._finish_at_node(node)
            if not out.accepted:
                self.stop()
                return out
            pipe_ids = tuple(self._chain_pipe_ids)
            self.stop()
            return self._ok("Pipe created!", pipe_ids=pipe_ids, node_ids=out.node_ids)

        # chain already closed on a node: the double-click just ends drawing
        if len(self._vertices) == 1 and self._chain_pipe_ids:
            pipe_ids = tuple(self._chain_pipe_ids)
            self.stop()
            return self._ok("Drawing finished", pipe_ids=pipe_ids)

        msg = "Need at least 2 points" if len(self._vertices) < 2 else "Pipe must connect two nodes"
        self.stop()
        return self._reject(msg)

    def pointer_move(self, coordinate: Sequence[float]) -> DrawOutcome:
        if self._state != "drawing" or not self._vertices:
            return DrawOutcome(False)
        self._refresh_preview(as_coordinate(coordinate))
        return DrawOutcome(True)

    def continue_from_node(self, node_id: str) -> DrawOutcome:
        """Start (or close onto) a node picked outside the click flow."""
        node = self.store.find_node(node_id)
        if node is None:
            return self._reject(f"Unknown node: {node_id}")
        if self._state == "idle":
            self.start()
        if self._state == "awaiting_start":
            self._seed(node)
            return self._ok(f"Drawing from {node.get('label', node.id)}")
        if node.id == self._start_node_id:
            return self._reject("Cannot create pipe to the same node")
        return self._finish_at_node(node)

    # ------------------------------------------------------------
    # Side actions
    # ------------------------------------------------------------

    def add_node_while_drawing(self, node_type: str, coordinate: Sequence[float]) -> DrawOutcome:
        """
        Place a node at coordinate and close the current pipe on it.
        A coordinate on an existing pipe splices the node into that pipe.
        Outside a chain the new node becomes the chain start.
        """
        if node_type not in NODE_TYPES:
            return self._reject(f"Cannot add {node_type} while drawing")
        if self._state == "idle":
            return self._reject("Drawing is not active")

        xy = as_coordinate(coordinate)
        existing = find_node_at(self.store, xy, self.config.snap_tolerance_m)
        if existing is not None:
            return self.continue_from_node(existing.id)

        hit = find_pipe_at(self.store, xy, self.splice.config.snap_tolerance_m)
        target = hit[1].point if hit is not None else xy
        if hit is not None:
            # the splice may snap onto a nearby vertex; check the chain against that point
            split = self.splice.plan_split(hit[0], target)
            if split is not None:
                target = split.point

        if self._state == "drawing":
            chain, msg = self._plan_chain(self._vertices + [target])
            if chain is None:
                return self._reject(msg)

        created: Tuple[str, ...] = ()
        if hit is not None:
            res = self.splice.insert_node_on_pipe(hit[0].id, target, node_type)
            node = self.store[res.node_id]
            created = res.pipe_ids
        else:
            node = self.splice.create_node(node_type, target)

        if self._state == "awaiting_start":
            self._seed(node)
            return self._ok(f"Drawing from {node.get('label', node.id)}", pipe_ids=created, node_ids=(node.id,))

        out = self._finish_at_node(node)
        return DrawOutcome(
            out.accepted,
            out.message,
            pipe_ids=created + out.pipe_ids,
            node_ids=(node.id,),
        )

    def add_link_while_drawing(self, link_type: str) -> DrawOutcome:
        """
        Close the current pipe at a new junction on the last vertex, put a
        pump/valve after it along the last segment direction and continue
        drawing from the link's far junction.
        """
        if link_type not in POINT_LINK_TYPES:
            return self._reject(f"Cannot add {link_type} while drawing")
        if self._state != "drawing":
            return self._reject("Cannot add link - not drawing")
        if len(self._vertices) < 2:
            return self._reject("Add at least one vertex before inserting a link")

        chain, msg = self._plan_chain(self._vertices)
        if chain is None:
            return self._reject(msg)

        last = chain[-1]
        angle = segment_angle(chain, len(chain) - 2)

        junction = self.splice.create_node("junction", last)
        pipe = self.splice.create_pipe(chain, self._start_node_id, junction.id)
        self._chain_pipe_ids.append(pipe.id)
        res = self.splice.extend_link_from(junction.id, angle, link_type)

        self._seed(self.store[res.end_junction_id])
        return self._ok(
            f"{link_type.capitalize()} {res.link_id} added | Continue from {res.end_junction_id}",
            pipe_ids=(pipe.id,),
            node_ids=(junction.id, res.end_junction_id),
            link_ids=(res.link_id,),
        )

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _plan_chain(self, coords: Sequence[Coordinate]) -> Tuple[Optional[List[Coordinate]], str]:
        chain = dedupe_consecutive(coords, self.config.duplicate_vertex_m)
        if len(chain) < 2:
            return None, "All coordinates are the same"
        total = polyline_length(chain)
        if total < self.config.min_pipe_length_m:
            return None, f"Pipe too short ({total:.2f} m). Minimum {self.config.min_pipe_length_m} m."
        return chain, ""

    def _finish_at_node(self, node: Feature) -> DrawOutcome:
        chain, msg = self._plan_chain(self._vertices + [node.coordinate])
        if chain is None:
            return self._reject(msg)

        pipe = self.splice.create_pipe(chain, self._start_node_id, node.id)
        self._chain_pipe_ids.append(pipe.id)
        self._seed(node)
        return self._ok(
            f"Pipe {pipe.id} created | Continue from {node.get('label', node.id)} | Double-click to finish",
            pipe_ids=(pipe.id,),
            node_ids=(node.id,),
        )

    def _seed(self, node: Feature) -> None:
        self._reset_chain()
        self._start_node_id = node.id
        self._vertices = [node.coordinate]
        self._add_marker(node.coordinate)
        if self._state != "drawing":
            logger.debug(f"Drawing: {self._state} -> drawing (start {node.id})")
        self._state = "drawing"

    def _reset_chain(self) -> None:
        for mid in self._marker_ids:
            self.store.remove_feature(mid)
        self._marker_ids = []
        if self._preview_id is not None:
            self.store.remove_feature(self._preview_id)
            self._preview_id = None
        self._vertices = []
        self._start_node_id = None

    def _add_marker(self, xy: Coordinate) -> None:
        marker = Feature(
            id=self.store.generate_unique_id("vertex_marker"),
            type=None,
            geometry=Geometry.point(xy),
            kind="vertex_marker",
        )
        self.store.add_feature(marker)
        self._marker_ids.append(marker.id)

    def _refresh_preview(self, cursor: Optional[Coordinate]) -> None:
        coords = list(self._vertices)
        if cursor is not None:
            coords.append(cursor)
        if len(coords) < 2:
            return
        geom = Geometry.line(coords)
        if self._preview_id is not None and self._preview_id in self.store:
            self.store.set_geometry(self._preview_id, geom)
            return
        preview = Feature(
            id=self.store.generate_unique_id("preview"),
            type=None,
            geometry=geom,
            kind="preview",
        )
        self.store.add_feature(preview)
        self._preview_id = preview.id

    def _ok(self, message: str, **kw) -> DrawOutcome:
        if message and self.notify is not None:
            self.notify(message)
        return DrawOutcome(True, message, **kw)

    def _reject(self, message: str) -> DrawOutcome:
        logger.warning(f"Drawing rejected: {message}")
        if self.notify is not None:
            self.notify(message)
        return DrawOutcome(False, message)
