"""
Preflight check for a flow graph: finds {{...}} references that a run could
not resolve, without executing any node.
"""
from typing import Any, Dict, List, Mapping, Optional, Set
import logging

from flowforge.flow_engine.loop_handler import LOOP_NODE_TYPE, LoopHandler
from flowforge.flow_engine.models import Node
from flowforge.flow_engine.variable_resolver import LOOP_NAMES, MISSING, TemplateResolver, iter_references

logger = logging.getLogger(__name__)


def _loop_variable_names(nodes: List[Node]) -> Set[str]:
    handler = LoopHandler()
    names: Set[str] = set(LOOP_NAMES)
    for node in nodes:
        if node.plugin_type != LOOP_NODE_TYPE and not (node.data.loop_config and node.data.loop_config.enabled):
            continue
        settings = handler.build_settings(node.data.inputs, node.data.loop_config)
        for variable in settings.variables:
            names.add(variable.name)
            names.add(f"{variable.name}Index")
        if settings.index_variable_name:
            names.add(settings.index_variable_name)
    return names


def find_unresolved_references(
    nodes: List[Node],
    env_values: Optional[Mapping[str, Any]] = None,
    input_values: Optional[Mapping[str, Any]] = None,
) -> Dict[str, List[str]]:
    """
    Report, per node, references that point at nothing a run would produce.

    A reference is considered resolvable when it names another node of the
    graph ("<nodeId>.<field>"), a loop variable, or a provided env/input value.

    Returns:
        {nodeId: [path, ...]} for nodes with at least one unresolved reference
    """
    resolver = TemplateResolver({}, input_values, env_values)
    node_ids = sorted((node.id for node in nodes), key=len, reverse=True)
    loop_names = _loop_variable_names(nodes)

    def resolvable(path: str) -> bool:
        if resolver.lookup(path) is not MISSING:
            return True
        if any(path == node_id or path.startswith(f"{node_id}.") for node_id in node_ids):
            return True
        segments = resolver.split_path(path)
        if not segments:
            return False
        return segments[0] in loop_names

    report: Dict[str, List[str]] = {}
    for node in nodes:
        unresolved = [path for _, path in iter_references(node.data.inputs) if not resolvable(path)]
        if unresolved:
            report[node.id] = unresolved

    if report:
        logger.info(f"Preflight found unresolved references in {len(report)} node(s)")
    return report
