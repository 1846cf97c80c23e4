from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable

from wdn.core.build.validate import find_components, index_network
from wdn.core.models.feature import Feature
from wdn.core.models.network import FeatureStore


@dataclass(frozen=True)
class ConnectivityStats:
    total_nodes: int
    total_pipes: int
    total_links: int            # pipes + pumps + valves
    connected_components: int
    largest_component: int      # node count
    network_density: float      # pipes / (n(n-1)/2)
    average_node_degree: float  # connected links per node

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def analyze_connectivity(features: Iterable[Feature]) -> ConnectivityStats:
    _, nodes, links = index_network(features)
    n = len(nodes)
    n_pipes = sum(1 for link in links.values() if link.is_pipe)

    components = find_components(nodes, links)
    largest = max((len(c) for c in components), default=0)

    density = 0.0
    if n >= 2:
        density = n_pipes / (n * (n - 1) / 2.0)

    degree = 0.0
    if n:
        degree = sum(len(node.connected_links) for node in nodes.values()) / n

    return ConnectivityStats(
        total_nodes=n,
        total_pipes=n_pipes,
        total_links=len(links),
        connected_components=len(components),
        largest_component=largest,
        network_density=density,
        average_node_degree=degree,
    )


def analyze_store(store: FeatureStore) -> ConnectivityStats:
    return analyze_connectivity(store.snapshot())
