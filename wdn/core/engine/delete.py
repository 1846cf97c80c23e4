# wdn/core/engine/delete.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from wdn.core.models.feature import Feature, is_transient
from wdn.core.models.network import FeatureStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeInfo:
    will_cascade: bool
    message: str = ""
    link_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DeleteOutcome:
    accepted: bool
    message: str = ""
    removed_ids: Tuple[str, ...] = ()


class DeleteEngine:
    """
    Topology-aware deletion.

    - node: every connected link goes too (detached from its other endpoint)
    - link: detached from both endpoints, which stay in place
    - pump/valve: its visual line is removed with it
    """

    def __init__(self, store: FeatureStore):
        self.store = store

    def cascade_info(self, feature_id: str) -> CascadeInfo:
        f = self.store.get(feature_id)
        if f is None or not f.is_node:
            return CascadeInfo(False)
        links = f.connected_links
        if not links:
            return CascadeInfo(False)
        return CascadeInfo(
            True,
            f"This node has {len(links)} connected link(s). All connected links will also be deleted.",
            link_ids=links,
        )

    def delete_feature(self, feature_id: str) -> DeleteOutcome:
        f = self.store.get(feature_id)
        if f is None:
            return DeleteOutcome(False, f"Unknown feature: {feature_id}")
        if is_transient(f):
            return DeleteOutcome(False, f"{feature_id} is not a network feature")

        removed: List[str] = []
        if f.is_node:
            for lid in f.connected_links:
                link = self.store.get(lid)
                if link is not None and link.is_link:
                    removed.extend(self._delete_link(link))
                    logger.info(f"Cascade deleted {link.type} {lid}")
        elif f.is_link:
            removed.extend(self._delete_link(f, keep_feature=True))

        self.store.remove_feature(feature_id)
        removed.insert(0, feature_id)
        logger.info(f"{f.type} {feature_id} deleted ({len(removed) - 1} dependent feature(s))")
        return DeleteOutcome(True, f"{f.type} ({feature_id}) deleted", removed_ids=tuple(removed))

    def delete_features(self, feature_ids: Iterable[str]) -> DeleteOutcome:
        """Delete several features; ids already removed by an earlier cascade are skipped."""
        removed: List[str] = []
        for fid in feature_ids:
            if fid in removed or fid not in self.store:
                continue
            out = self.delete_feature(fid)
            if out.accepted:
                removed.extend(out.removed_ids)
        return DeleteOutcome(bool(removed), f"Deleted {len(removed)} feature(s)", removed_ids=tuple(removed))

    def _delete_link(self, link: Feature, *, keep_feature: bool = False) -> List[str]:
        """Detach link from its endpoints and drop its visual line; returns removed ids."""
        removed: List[str] = []
        for nid in link.endpoints:
            if nid is not None:
                self.store.update_node_connections(nid, link.id, "remove")

        if link.is_point_link:
            visual: Optional[Feature] = self.store.visual_link_for(link.id)
            if visual is not None:
                self.store.remove_feature(visual.id)
                removed.append(visual.id)

        if not keep_feature:
            self.store.remove_feature(link.id)
            removed.insert(0, link.id)
        return removed
