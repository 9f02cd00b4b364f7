"""
Layout Engine - Ranked (layered) positions for flow nodes

Ranks come from the longest path in the graph's condensation, so cycles
collapse into a single rank instead of breaking the layout. Within a rank,
nodes are ordered by the average position of their predecessors.
"""

import copy
import logging
from typing import Dict, List

import networkx as nx

from flowforge.config import Config
from flowforge.flow_engine.models import Edge, Node, Position

logger = logging.getLogger(__name__)

DIRECTIONS = ('TB', 'BT', 'LR', 'RL')

# (target side, source side) per direction
HANDLE_SIDES = {
    'TB': ('top', 'bottom'),
    'BT': ('bottom', 'top'),
    'LR': ('left', 'right'),
    'RL': ('right', 'left'),
}


def _build_graph(nodes: List[Node], edges: List[Edge]) -> nx.DiGraph:
    graph = nx.DiGraph()
    for index, node in enumerate(nodes):
        graph.add_node(node.id, order=index)
    for edge in edges:
        if edge.source in graph and edge.target in graph and edge.source != edge.target:
            graph.add_edge(edge.source, edge.target)
    return graph


def compute_ranks(nodes: List[Node], edges: List[Edge]) -> Dict[str, int]:
    """Longest-path rank per node; isolated nodes get rank 0."""
    graph = _build_graph(nodes, edges)
    condensed = nx.condensation(graph)
    component_rank: Dict[int, int] = {}
    for component in nx.topological_sort(condensed):
        predecessors = list(condensed.predecessors(component))
        component_rank[component] = max((component_rank[p] + 1 for p in predecessors), default=0)

    mapping = condensed.graph['mapping']
    return {node_id: component_rank[mapping[node_id]] for node_id in graph.nodes}


def compute_layout(
    nodes: List[Node],
    edges: List[Edge],
    direction: str = Config.LAYOUT_DIRECTION,
    node_sep: float = Config.LAYOUT_NODE_SEP,
    rank_sep: float = Config.LAYOUT_RANK_SEP,
    default_width: float = Config.LAYOUT_NODE_WIDTH,
    default_height: float = Config.LAYOUT_NODE_HEIGHT,
) -> List[Node]:
    """
    Return copies of `nodes` with new positions and handle sides.

    Positions are top-left corners. Inputs are never modified.
    """
    direction = (direction or 'TB').upper()
    if direction not in DIRECTIONS:
        raise ValueError(f"Unsupported layout direction: {direction}")
    if not nodes:
        return []

    vertical = direction in ('TB', 'BT')
    ranks = compute_ranks(nodes, edges)
    graph = _build_graph(nodes, edges)
    by_id = {node.id: node for node in nodes}

    def size(node: Node):
        width = node.width or default_width
        height = node.height or default_height
        # (extent along the rank, extent across ranks)
        return (width, height) if vertical else (height, width)

    layers: Dict[int, List[str]] = {}
    for node in nodes:
        layers.setdefault(ranks[node.id], []).append(node.id)

    # Order within a rank by the barycenter of already placed predecessors
    slot: Dict[str, float] = {}
    for rank in sorted(layers):
        def barycenter(node_id: str):
            placed = [slot[p] for p in graph.predecessors(node_id) if p in slot]
            mean = sum(placed) / len(placed) if placed else float('inf')
            return (mean, graph.nodes[node_id]['order'])

        layers[rank].sort(key=barycenter)
        for index, node_id in enumerate(layers[rank]):
            slot[node_id] = index

    positions: Dict[str, tuple] = {}
    rank_offset = 0.0
    for rank in sorted(layers):
        layer = layers[rank]
        along = [size(by_id[node_id])[0] for node_id in layer]
        depth = max(size(by_id[node_id])[1] for node_id in layer)
        total = sum(along) + node_sep * (len(layer) - 1)
        cursor = -total / 2
        for node_id, extent in zip(layer, along):
            positions[node_id] = (cursor, rank_offset)
            cursor += extent + node_sep
        rank_offset += depth + rank_sep

    target_side, source_side = HANDLE_SIDES[direction]
    laid_out = []
    for node in nodes:
        across, down = positions[node.id]
        if direction in ('BT', 'RL'):
            down = -down - size(node)[1]

        positioned = copy.deepcopy(node)
        if vertical:
            positioned.position = Position(x=across, y=down)
        else:
            positioned.position = Position(x=down, y=across)
        positioned.target_position = target_side
        positioned.source_position = source_side
        laid_out.append(positioned)

    logger.debug(f"Layout computed for {len(nodes)} nodes in {len(layers)} ranks ({direction})")
    return laid_out
