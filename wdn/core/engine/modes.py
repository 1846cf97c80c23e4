# wdn/core/engine/modes.py
from __future__ import annotations

import logging
from typing import Callable, Literal, Optional, Sequence, Union

from wdn.core.build.analytics import ConnectivityStats, analyze_store
from wdn.core.build.config import EditorConfig
from wdn.core.build.validate import ValidationReport, validate_store
from wdn.core.engine.delete import DeleteEngine, DeleteOutcome
from wdn.core.engine.drawing import DrawingEngine, DrawOutcome
from wdn.core.engine.hit_test import find_feature_at
from wdn.core.engine.modify import ModifyEngine, ModifyOutcome
from wdn.core.engine.splice import LinkSplice, NodeSplice, SpliceEngine
from wdn.core.models.feature import NODE_TYPES, POINT_LINK_TYPES
from wdn.core.models.network import FeatureStore

logger = logging.getLogger(__name__)

EditMode = Literal["select", "draw", "modify"]
EDIT_MODES = ("select", "draw", "modify")

Outcome = Union[DrawOutcome, ModifyOutcome, None]


class EditorSession:
    """
    Owns the store, the engines and the single active edit mode.

    Gestures are routed to the engine of the current mode only; a gesture
    the current mode does not handle returns None and changes nothing.
    """

    def __init__(
        self,
        store: Optional[FeatureStore] = None,
        config: Optional[EditorConfig] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.config = config or EditorConfig()
        self.store = store if store is not None else FeatureStore(id_base=self.config.id_base)

        self.splice = SpliceEngine(self.store, self.config.splice)
        self.drawing = DrawingEngine(self.store, self.splice, self.config.drawing, notify)
        self.modify = ModifyEngine(self.store, self.splice, self.config.modify)
        self.deleter = DeleteEngine(self.store)

        self._mode: EditMode = "select"
        self.selected_id: Optional[str] = None

    # ------------------------------------------------------------
    # Mode
    # ------------------------------------------------------------

    @property
    def mode(self) -> EditMode:
        return self._mode

    def set_mode(self, mode: str) -> None:
        if mode not in EDIT_MODES:
            raise ValueError(f"Invalid edit mode: {mode!r}. Allowed: {list(EDIT_MODES)}")
        if mode == self._mode:
            return
        if self._mode == "draw":
            self.drawing.stop()
        logger.debug(f"Mode {self._mode} -> {mode}")
        self._mode = mode  # type: ignore[assignment]
        if mode == "draw":
            self.selected_id = None
            self.drawing.start()

    # ------------------------------------------------------------
    # Gestures
    # ------------------------------------------------------------

    def click(self, coordinate: Sequence[float]) -> Outcome:
        if self._mode == "draw":
            return self.drawing.click(coordinate)
        if self._mode == "select":
            hit = find_feature_at(self.store, coordinate, self.config.drawing.snap_tolerance_m)
            self.selected_id = hit.id if hit is not None else None
        return None

    def double_click(self, coordinate: Sequence[float]) -> Outcome:
        if self._mode != "draw":
            return None
        out = self.drawing.double_click(coordinate)
        # a finished chain leaves draw mode ready for the next one
        self.drawing.start()
        return out

    def pointer_move(self, coordinate: Sequence[float]) -> Outcome:
        if self._mode != "draw":
            return None
        return self.drawing.pointer_move(coordinate)

    def escape(self) -> Outcome:
        if self._mode == "draw":
            out = self.drawing.escape()
            self.set_mode("select")
            return out
        self.selected_id = None
        return None

    def drag_end(self, feature_id: str, coordinate: Sequence[float]) -> Outcome:
        if self._mode != "modify":
            return None
        f = self.store.get(feature_id)
        if f is not None and f.is_point_link:
            return self.modify.move_link(feature_id, coordinate)
        return self.modify.end_node_drag(feature_id, coordinate)

    def reshape(self, pipe_id: str, coordinates: Sequence[Sequence[float]]) -> Outcome:
        if self._mode != "modify":
            return None
        return self.modify.reshape_pipe(pipe_id, coordinates)

    # ------------------------------------------------------------
    # Context actions
    # ------------------------------------------------------------

    def add_while_drawing(self, feature_type: str, coordinate: Optional[Sequence[float]] = None) -> Outcome:
        if self._mode != "draw":
            return None
        if feature_type in POINT_LINK_TYPES:
            return self.drawing.add_link_while_drawing(feature_type)
        if coordinate is None:
            raise ValueError(f"Adding a {feature_type} while drawing needs a coordinate")
        return self.drawing.add_node_while_drawing(feature_type, coordinate)

    def insert_on_pipe(
        self,
        pipe_id: str,
        coordinate: Sequence[float],
        feature_type: str,
    ) -> Union[NodeSplice, LinkSplice, None]:
        """Context-menu splice; not available while drawing."""
        if self._mode == "draw":
            return None
        if feature_type in NODE_TYPES:
            return self.splice.insert_node_on_pipe(pipe_id, coordinate, feature_type)
        if feature_type in POINT_LINK_TYPES:
            return self.splice.insert_link_on_pipe(pipe_id, coordinate, feature_type)
        raise ValueError(f"Cannot insert {feature_type!r} on a pipe")

    def select(self, feature_id: Optional[str]) -> bool:
        if feature_id is not None and feature_id not in self.store:
            return False
        self.selected_id = feature_id
        return True

    def delete_selected(self) -> Optional[DeleteOutcome]:
        if self._mode == "draw" or self.selected_id is None:
            return None
        out = self.deleter.delete_feature(self.selected_id)
        self.selected_id = None
        return out

    # ------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------

    def validate(self) -> ValidationReport:
        return validate_store(self.store, config=self.config.validation)

    def analyze(self) -> ConnectivityStats:
        return analyze_store(self.store)
