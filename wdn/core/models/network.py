from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Any, Dict, Iterable, Iterator, List, Literal, Mapping, Optional, Tuple

from wdn.core.geometry.polyline import polyline_length
from wdn.core.models.components import COMPONENT_TYPES, TRANSIENT_PREFIXES, id_prefix
from wdn.core.models.feature import Feature, Geometry, is_transient

logger = logging.getLogger(__name__)

ConnectionAction = Literal["add", "remove"]

# Keys owned by the topology engine; property forms may not write them.
STRUCTURAL_KEYS = frozenset({
    "id",
    "type",
    "kind",
    "geometry",
    "connected_links",
    "start_node_id",
    "end_node_id",
    "parent_link_id",
})

_ID_PATTERN = re.compile(r"^([A-Za-z]+)-(\d+)$")


class FeatureStore:
    """
    Authoritative map id -> Feature (core model).

    Notes:
    - the store performs no implicit cascading; composite operations
      (splitting, deleting) issue every write themselves
    - adjacency is only changed through update_node_connections
    - features are immutable records; writes replace them
    """

    def __init__(self, features: Iterable[Feature] = (), *, id_base: int = 100):
        self._features: Dict[str, Feature] = {}
        self._id_base = int(id_base)
        self._counters: Dict[str, int] = {}
        for f in features:
            self.add_feature(f)
        self.sync_counters()

    # ------------------------------------------------------------
    # Container protocol
    # ------------------------------------------------------------

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._features

    def __getitem__(self, feature_id: str) -> Feature:
        return self._features[feature_id]

    def __iter__(self) -> Iterator[Feature]:
        return iter(list(self._features.values()))

    def __len__(self) -> int:
        return len(self._features)

    def get(self, feature_id: Optional[str]) -> Optional[Feature]:
        if feature_id is None:
            return None
        return self._features.get(feature_id)

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    def add_feature(self, feature: Feature) -> Feature:
        if not feature.id:
            raise ValueError(f"Feature has invalid id: {feature.id!r}")
        if feature.id in self._features:
            raise ValueError(f"Duplicate feature id: {feature.id!r}")
        self._features[feature.id] = feature
        return feature

    def remove_feature(self, feature_id: str) -> Optional[Feature]:
        return self._features.pop(feature_id, None)

    def update_feature(self, feature_id: str, properties: Mapping[str, Any]) -> Optional[Feature]:
        """Merge properties into the feature's property bag (geometry/adjacency untouched)."""
        bad = sorted(STRUCTURAL_KEYS.intersection(properties))
        if bad:
            raise ValueError(f"update_feature cannot write structural keys: {bad}")
        f = self._features.get(feature_id)
        if f is None:
            return None
        merged = dict(f.properties)
        merged.update(properties)
        new = replace(f, properties=merged)
        self._features[feature_id] = new
        return new

    def set_geometry(self, feature_id: str, geometry: Geometry) -> Feature:
        """Replace geometry; a pipe's length is recomputed from its vertices."""
        f = self._features[feature_id]
        if f.is_pipe:
            props = dict(f.properties)
            props["length"] = polyline_length(geometry.coordinates)
            new = replace(f, geometry=geometry, properties=props)
        else:
            new = replace(f, geometry=geometry)
        self._features[feature_id] = new
        return new

    def set_link_endpoints(self, link_id: str, start_node_id: Optional[str], end_node_id: Optional[str]) -> Feature:
        f = self._features[link_id]
        new = replace(f, start_node_id=start_node_id, end_node_id=end_node_id)
        self._features[link_id] = new
        return new

    def update_node_connections(self, node_id: str, link_id: str, action: ConnectionAction) -> bool:
        """
        Add/remove link_id from a node's adjacency list.
        Idempotent: adding a present id or removing an absent one is a no-op.
        Returns True only if the adjacency list changed.
        """
        node = self._features.get(node_id)
        if node is None or not node.is_node:
            return False

        links = node.connected_links
        if action == "add":
            if link_id in links:
                return False
            links = links + (link_id,)
        elif action == "remove":
            if link_id not in links:
                return False
            links = tuple(x for x in links if x != link_id)
        else:
            raise ValueError(f"Invalid connection action: {action!r}")

        self._features[node_id] = replace(node, connected_links=links)
        return True

    def clear(self) -> None:
        """Drop every feature. Id counters are kept so ids never repeat."""
        self._features.clear()

    # ------------------------------------------------------------
    # Ids
    # ------------------------------------------------------------

    def generate_unique_id(self, feature_type: str) -> str:
        """
        Next "<PREFIX>-<n>" id for a feature type (or transient kind).
        The per-type counter only grows; ids already present are skipped.
        """
        prefix = id_prefix(feature_type)
        counter = self._counters.get(feature_type, self._id_base)
        candidate = f"{prefix}-{counter}"
        while candidate in self._features:
            counter += 1
            candidate = f"{prefix}-{counter}"
        self._counters[feature_type] = counter + 1
        return candidate

    def sync_counters(self) -> None:
        """Move every counter past the highest numeric id present for its prefix."""
        by_prefix: Dict[str, str] = {spec.prefix: t for t, spec in COMPONENT_TYPES.items()}
        by_prefix.update({p: k for k, p in TRANSIENT_PREFIXES.items()})

        for fid in self._features:
            m = _ID_PATTERN.match(fid)
            if not m:
                continue
            key = by_prefix.get(m.group(1).upper())
            if key is None:
                continue
            n = int(m.group(2))
            if n >= self._counters.get(key, self._id_base):
                self._counters[key] = n + 1
        logger.debug(f"Synchronized id counters: {self._counters}")

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def network_features(self) -> List[Feature]:
        return [f for f in self._features.values() if not is_transient(f)]

    def transient_features(self) -> List[Feature]:
        return [f for f in self._features.values() if is_transient(f)]

    def nodes(self) -> List[Feature]:
        return [f for f in self._features.values() if f.is_node]

    def links(self) -> List[Feature]:
        return [f for f in self._features.values() if f.is_link]

    def pipes(self) -> List[Feature]:
        return [f for f in self._features.values() if f.is_pipe]

    def point_links(self) -> List[Feature]:
        return [f for f in self._features.values() if f.is_point_link]

    def features_by_type(self, feature_type: str) -> List[Feature]:
        return [f for f in self._features.values() if f.type == feature_type and not is_transient(f)]

    def find_node(self, node_id: Optional[str]) -> Optional[Feature]:
        f = self.get(node_id)
        return f if f is not None and f.is_node else None

    def connected_links(self, node_id: str) -> Tuple[str, ...]:
        node = self.find_node(node_id)
        return node.connected_links if node is not None else ()

    def links_of(self, node_id: str) -> List[Feature]:
        """Resolved link records touching a node (unresolvable ids skipped)."""
        out: List[Feature] = []
        for lid in self.connected_links(node_id):
            link = self._features.get(lid)
            if link is not None and link.is_link:
                out.append(link)
        return out

    def visual_link_for(self, link_id: str) -> Optional[Feature]:
        for f in self._features.values():
            if f.kind == "visual_link" and f.parent_link_id == link_id:
                return f
        return None

    def snapshot(self) -> Tuple[Feature, ...]:
        """Consistent immutable view of every feature (transients included)."""
        return tuple(self._features.values())
