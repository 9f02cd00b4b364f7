"""
Alias Registry - Human-readable names for node ids in templates

Users write {{HTTP_Request.data}} in the editor while the engine stores and
executes {{http-request-1712345678901.data}}. The registry is derived data,
rebuilt from the node list whenever nodes or labels change.
"""

import logging
import re
from typing import Dict, Iterable, Optional

from flowforge.flow_engine.models import Node
from flowforge.flow_engine.variable_resolver import TemplateResolver

logger = logging.getLogger(__name__)

NODE_ID_PATTERN = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*-\d{10,}(?:-\d+)?$')
UUID_PATTERN = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)
UNTRANSLATED_ROOTS = ('env',)


def sanitize_label(label: str, fallback: str) -> str:
    """Turn a node label into a template-safe alias."""
    alias = re.sub(r'[\s.]+', '_', (label or '').strip())
    alias = re.sub(r'[^\w-]', '', alias)
    if not alias:
        alias = re.sub(r'[^\w-]', '', fallback or '') or 'node'
    return alias


class AliasRegistry:
    """
    Bidirectional node id <-> alias map.

    Aliases come from node labels; duplicates get _2, _3, ... in node order.
    Only the first path segment is ever translated.
    """

    def __init__(self, nodes: Optional[Iterable[Node]] = None):
        self._alias_by_id: Dict[str, str] = {}
        self._id_by_alias: Dict[str, str] = {}
        if nodes is not None:
            self.rebuild_from_nodes(nodes)

    def rebuild_from_nodes(self, nodes: Iterable[Node]):
        nodes = list(nodes)
        node_ids = {node.id for node in nodes}
        alias_by_id: Dict[str, str] = {}
        id_by_alias: Dict[str, str] = {}

        def taken(alias: str, node_id: str) -> bool:
            # Another node's raw id is reserved so paths translate back unambiguously
            return alias in id_by_alias or (alias in node_ids and alias != node_id)

        for node in nodes:
            base = sanitize_label(node.data.label, node.plugin_type)
            alias = base
            suffix = 2
            while taken(alias, node.id):
                alias = f"{base}_{suffix}"
                suffix += 1
            alias_by_id[node.id] = alias
            id_by_alias[alias] = node.id

        self._alias_by_id = alias_by_id
        self._id_by_alias = id_by_alias
        logger.debug(f"Alias registry rebuilt with {len(alias_by_id)} nodes")

    def get_display_alias(self, node_id: str) -> str:
        return self._alias_by_id.get(node_id, node_id)

    def get_node_id(self, alias: str) -> Optional[str]:
        return self._id_by_alias.get(alias)

    def aliases(self) -> Dict[str, str]:
        return dict(self._alias_by_id)

    def is_node_id_format(self, segment: str) -> bool:
        if segment in self._alias_by_id:
            return True
        return bool(NODE_ID_PATTERN.match(segment) or UUID_PATTERN.match(segment))

    def node_id_to_alias_path(self, path: str) -> str:
        """
        "http-1712345678901.data.items" -> "HTTP_Request.data.items"

        Paths under _loop keep their loop sub-path; env and dot-free paths
        are returned unchanged.
        """
        head, rest = self._split_head(path)
        if head is None or head in UNTRANSLATED_ROOTS:
            return path
        alias = self._alias_by_id.get(head)
        if alias is None:
            return path
        return f"{alias}.{rest}"

    def alias_to_node_id_path(self, path: str) -> str:
        head, rest = self._split_head(path)
        if head is None or head in UNTRANSLATED_ROOTS:
            return path
        if head in self._alias_by_id:
            return path
        node_id = self._id_by_alias.get(head)
        if node_id is None:
            return path
        return f"{node_id}.{rest}"

    def to_display_template(self, text: str) -> str:
        """Rewrite every {{nodeId.path}} in text to {{Alias.path}}."""
        return self._rewrite(text, self.node_id_to_alias_path)

    def to_storage_template(self, text: str) -> str:
        """Rewrite every {{Alias.path}} in text to {{nodeId.path}}."""
        return self._rewrite(text, self.alias_to_node_id_path)

    @staticmethod
    def _split_head(path: str):
        path = path.strip()
        if '.' not in path:
            return None, path
        head, rest = path.split('.', 1)
        return head, rest

    @staticmethod
    def _rewrite(text: str, translate) -> str:
        if not isinstance(text, str):
            return text

        def replace(match):
            return '{{' + translate(match.group(1).strip()) + '}}'

        return TemplateResolver.VARIABLE_PATTERN.sub(replace, text)
