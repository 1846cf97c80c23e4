from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from wdn.core.build.config import ValidationConfig
from wdn.core.geometry.polyline import coords_equal, is_finite_coordinate, polyline_intersections
from wdn.core.models.components import COMPONENT_TYPES
from wdn.core.models.feature import Coordinate, Feature, is_transient
from wdn.core.models.network import FeatureStore

logger = logging.getLogger(__name__)

IssueLevel = Literal["error", "warning"]


@dataclass(frozen=True)
class ValidationIssue:
    level: IssueLevel
    type: str               # "orphaned_nodes", "duplicate_ids", ...
    message: str
    feature_ids: Tuple[str, ...] = ()
    hint: Optional[str] = None

    @property
    def feature_id(self) -> str:
        """Affected ids, comma-joined."""
        return ", ".join(self.feature_ids)


@dataclass(frozen=True)
class ValidationReport:
    errors: Tuple[ValidationIssue, ...] = ()
    warnings: Tuple[ValidationIssue, ...] = ()

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    @property
    def issues(self) -> Tuple[ValidationIssue, ...]:
        return self.errors + self.warnings

    def by_type(self, issue_type: str) -> List[ValidationIssue]:
        return [i for i in self.issues if i.type == issue_type]

    def summary(self) -> str:
        lines: List[str] = ["✓ Network is valid" if self.is_valid else "✗ Network has errors", ""]
        for title, items in (("ERRORS:", self.errors), ("WARNINGS:", self.warnings)):
            if not items:
                continue
            lines.append(title)
            for k, it in enumerate(items, start=1):
                lines.append(f"{k}. {it.message}")
                if it.feature_ids:
                    lines.append(f"   Affected features: {it.feature_id}")
            lines.append("")
        return "\n".join(lines)


class NetworkValidationError(ValueError):
    """Raised when validation finds one or more errors."""
    def __init__(self, issues: Sequence[ValidationIssue]):
        self.issues = list(issues)
        lines = ["Network validation failed with errors:"]
        for it in self.issues:
            if it.level == "error":
                ids = f" [{it.feature_id}]" if it.feature_ids else ""
                lines.append(f"- {it.message}{ids}" + (f" | hint: {it.hint}" if it.hint else ""))
        super().__init__("\n".join(lines))


# ============================================================
# Graph traversal (shared with analytics)
# ============================================================

def find_components(nodes: Dict[str, Feature], links: Dict[str, Feature]) -> List[List[str]]:
    """
    Connected components by BFS over node.connected_links -> link -> other node.
    Every node belongs to exactly one component (an orphan is its own).
    """
    visited = set()
    components: List[List[str]] = []
    for start in nodes:
        if start in visited:
            continue
        comp: List[str] = []
        queue = deque([start])
        visited.add(start)
        while queue:
            cur = queue.popleft()
            comp.append(cur)
            for lid in nodes[cur].connected_links:
                link = links.get(lid)
                if link is None:
                    continue
                other = link.end_node_id if link.start_node_id == cur else link.start_node_id
                if other in nodes and other not in visited:
                    visited.add(other)
                    queue.append(other)
        components.append(comp)
    return components


def index_network(features: Iterable[Feature]) -> Tuple[List[Feature], Dict[str, Feature], Dict[str, Feature]]:
    """(network features, nodes by id, links by id); first occurrence wins on duplicate ids."""
    network = [f for f in features if not is_transient(f)]
    nodes: Dict[str, Feature] = {}
    links: Dict[str, Feature] = {}
    for f in network:
        if f.is_node:
            nodes.setdefault(f.id, f)
        elif f.is_link:
            links.setdefault(f.id, f)
    return network, nodes, links


# ============================================================
# Checks
# ============================================================

def _orphans(nodes: Dict[str, Feature]) -> List[str]:
    return [nid for nid, n in nodes.items() if not n.connected_links]


def _dangling_links(links: Dict[str, Feature], nodes: Dict[str, Feature]) -> List[str]:
    return [
        lid for lid, link in links.items()
        if link.start_node_id not in nodes or link.end_node_id not in nodes
    ]


def _adjacency_mismatches(links: Dict[str, Feature], nodes: Dict[str, Feature]) -> List[str]:
    out: List[str] = []
    for lid, link in links.items():
        for nid in link.endpoints:
            node = nodes.get(nid) if nid is not None else None
            if node is not None and lid not in node.connected_links and lid not in out:
                out.append(lid)
    for nid, node in nodes.items():
        for lid in node.connected_links:
            link = links.get(lid)
            if link is None or nid not in link.endpoints:
                if nid not in out:
                    out.append(nid)
                break
    return out


def _duplicate_ids(features: List[Feature]) -> List[str]:
    seen: Dict[str, int] = {}
    dups: List[str] = []
    for f in features:
        n = seen.get(f.id, 0)
        seen[f.id] = n + 1
        if n == 1:
            dups.append(f.id)
    return dups


def _geometry_ok(f: Feature) -> bool:
    g = f.geometry
    if g is None:
        return False
    if f.is_node or f.is_point_link:
        return g.type == "Point" and len(g.coordinates) == 1 and is_finite_coordinate(g.coordinates[0])
    if f.is_pipe:
        return (
            g.type == "LineString"
            and len(g.coordinates) >= 2
            and all(is_finite_coordinate(c) for c in g.coordinates)
        )
    return True


def _crossings(
    pipes: List[Feature],
    nodes: Dict[str, Feature],
    tol: float,
) -> List[Tuple[str, str, Coordinate]]:
    node_xy = [n.coordinate for n in nodes.values() if _geometry_ok(n)]
    out: List[Tuple[str, str, Coordinate]] = []
    for i in range(len(pipes)):
        p1 = pipes[i]
        e1 = {x for x in p1.endpoints if x is not None}
        for j in range(i + 1, len(pipes)):
            p2 = pipes[j]
            if e1.intersection(x for x in p2.endpoints if x is not None):
                continue
            for x in polyline_intersections(p1.coordinates, p2.coordinates, tol=tol):
                if not any(coords_equal(x, n, tol) for n in node_xy):
                    out.append((p1.id, p2.id, x))
    return out


def _is_missing(value) -> bool:
    if value is None:
        return True
    return isinstance(value, float) and math.isnan(value)


def _missing_properties(features: List[Feature]) -> List[str]:
    out: List[str] = []
    for f in features:
        spec = COMPONENT_TYPES.get(f.type) if f.type else None
        if spec is None:
            continue
        if any(_is_missing(f.properties.get(k)) for k in spec.required_properties):
            out.append(f.id)
    return out


def _unique(ids: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(ids))


# ============================================================
# Entry points
# ============================================================

def validate_network(
    features: Iterable[Feature],
    *,
    config: Optional[ValidationConfig] = None,
) -> ValidationReport:
    """
    Validate a snapshot of features (transients ignored, duplicate ids allowed).

    Every check runs independently; structural problems are reported, never
    repaired. Errors make the network not simulation-ready; warnings don't.
    """
    cfg = config or ValidationConfig()
    network, nodes, links = index_network(features)

    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    # --- Orphans ---
    orphans = _orphans(nodes)
    if orphans:
        warnings.append(ValidationIssue(
            "warning", "orphaned_nodes",
            f"{len(orphans)} orphaned node(s) found (no connected links)",
            tuple(orphans),
            "Connect the node with a pipe or delete it.",
        ))

    # --- Components ---
    components = find_components(nodes, links)
    if len(components) > 1:
        largest = max(components, key=len)
        detached = [nid for comp in components if comp is not largest for nid in comp]
        warnings.append(ValidationIssue(
            "warning", "disconnected_network",
            f"Network has {len(components)} disconnected components",
            tuple(detached),
            "Listed nodes are outside the largest component.",
        ))

    # --- Dangling links ---
    dangling = _dangling_links(links, nodes)
    if dangling:
        errors.append(ValidationIssue(
            "error", "missing_nodes",
            f"{len(dangling)} link(s) have missing node references",
            tuple(dangling),
            "Every link must start and end on an existing node.",
        ))

    # --- Adjacency ---
    mismatched = _adjacency_mismatches(links, nodes)
    if mismatched:
        errors.append(ValidationIssue(
            "error", "adjacency_mismatch",
            f"{len(mismatched)} feature(s) have inconsistent node/link references",
            tuple(mismatched),
            "A node's connected links and the links' end nodes must agree.",
        ))

    # --- Duplicate ids ---
    dups = _duplicate_ids(network)
    if dups:
        errors.append(ValidationIssue(
            "error", "duplicate_ids",
            f"{len(dups)} duplicate feature ID(s) found",
            tuple(dups),
        ))

    # --- Invalid geometry ---
    invalid = [f.id for f in network if not _geometry_ok(f)]
    if invalid:
        errors.append(ValidationIssue(
            "error", "invalid_geometry",
            f"{len(invalid)} feature(s) have invalid geometries",
            _unique(invalid),
            "Nodes and pumps/valves need one finite point; pipes need >= 2 finite vertices.",
        ))

    # --- Crossings ---
    pipes = [f for f in network if f.is_pipe and _geometry_ok(f)]
    crossings = _crossings(pipes, nodes, cfg.coincidence_tolerance)
    if crossings:
        warnings.append(ValidationIssue(
            "warning", "crossing_pipes",
            f"{len(crossings)} pipe crossing(s) without junction detected",
            _unique(pid for a, b, _ in crossings for pid in (a, b)),
            "Insert a junction at the crossing if the pipes are meant to connect.",
        ))

    # --- Required properties ---
    missing = _missing_properties(network)
    if missing:
        warnings.append(ValidationIssue(
            "warning", "missing_properties",
            f"{len(missing)} feature(s) missing required properties",
            _unique(missing),
        ))

    report = ValidationReport(errors=tuple(errors), warnings=tuple(warnings))
    logger.info(
        f"Validated {len(nodes)} nodes / {len(links)} links: "
        f"{len(report.errors)} error(s), {len(report.warnings)} warning(s)"
    )
    return report


def validate_store(store: FeatureStore, *, config: Optional[ValidationConfig] = None) -> ValidationReport:
    return validate_network(store.snapshot(), config=config)


def raise_on_errors(report: ValidationReport) -> None:
    if report.errors:
        raise NetworkValidationError(report.errors)
