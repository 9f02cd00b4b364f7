"""
Template Resolver - Resolves {{path}} references in node inputs

Supports:
- {{nodeId.field}} - run variables, stored flat as "<nodeId>.<field>"
- {{context.x}}, {{input.x}}, {{env.X}} - explicit namespaces
- {{x}} - bare lookup: context first, then input, then env
- Nested paths: {{http-1712345678901.data.user.name}}
- Array access: {{node-1.items[0].name}} or {{node-1.items.0.name}}

A reference that cannot be resolved is left in the text untouched so the
user can see which binding is missing.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self):
        return '<missing>'

    def __bool__(self):
        return False


MISSING = _Missing()

NAMESPACES = ('context', 'input', 'env')
LOOP_NAMES = ('loop', 'loop_iteration', 'currentItem', 'currentIndex')


@dataclass
class TemplateReference:
    raw: str
    path: str
    type: str  # context | input | env | node | loop | variable
    resolved: bool

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'path': self.path, 'resolved': self.resolved}


@dataclass
class TemplateValidation:
    references: List[TemplateReference] = field(default_factory=list)

    @property
    def unresolved(self) -> List[TemplateReference]:
        return [ref for ref in self.references if not ref.resolved]

    @property
    def is_valid(self) -> bool:
        return not self.unresolved


class TemplateResolver:
    """
    Resolves {{...}} references against a merged lookup scope.

    Examples:
        {{env.BASE}}/x -> "http://api/x"
        {{http-1.data.items}} -> [{"value": 1}, ...] (resolve_structure keeps the type)
        {{http-1.data.items}} -> '[{"value": 1}, ...]' (resolve always returns text)
        {{missing.path}} -> "{{missing.path}}"
    """

    VARIABLE_PATTERN = re.compile(r'\{\{\s*([^{}]+?)\s*\}\}')
    INDEX_PATTERN = re.compile(r'\[\s*(\d+)\s*\]')

    def __init__(self, context: Optional[Mapping[str, Any]] = None,
                 input_values: Optional[Mapping[str, Any]] = None,
                 env_values: Optional[Mapping[str, Any]] = None):
        """
        Args:
            context: Run variables ("<nodeId>.<field>" keys plus bare variables)
            input_values: Per-invocation inputs
            env_values: Environment values exposed as {{env.NAME}}
        """
        self.context = context or {}
        self.input_values = input_values or {}
        self.env_values = env_values or {}
        self._scope = self._build_scope()

    def _build_scope(self) -> Dict[str, Any]:
        # Precedence for bare keys: context > input > env
        scope: Dict[str, Any] = {}
        scope.update(self.env_values)
        scope.update(self.input_values)
        scope.update(self.context)
        scope['context'] = self.context
        scope['input'] = self.input_values
        scope['env'] = self.env_values
        return scope

    def resolve(self, template: str) -> str:
        """
        Substitute every reference in a string.

        Resolved values are rendered as text (objects and arrays as JSON,
        None as an empty string). Unresolved references stay literal.
        """
        if not isinstance(template, str):
            return template

        def replace_var(match):
            value = self.lookup(match.group(1))
            if value is MISSING:
                logger.debug(f"Unresolved reference left in place: {match.group(0)}")
                return match.group(0)
            return self.stringify(value)

        return self.VARIABLE_PATTERN.sub(replace_var, template)

    def resolve_structure(self, value: Any) -> Any:
        """
        Resolve references in every string leaf of a nested structure.

        A string that is exactly one reference resolves to the referenced
        value itself, preserving its type.
        """
        if isinstance(value, str):
            match = self.VARIABLE_PATTERN.fullmatch(value.strip())
            if match:
                resolved = self.lookup(match.group(1))
                return value if resolved is MISSING else resolved
            return self.resolve(value)
        elif isinstance(value, dict):
            return {k: self.resolve_structure(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve_structure(item) for item in value]
        elif isinstance(value, tuple):
            return tuple(self.resolve_structure(item) for item in value)
        else:
            return value

    def validate(self, value: Any) -> TemplateValidation:
        """Report every reference in value and whether it currently resolves."""
        validation = TemplateValidation()
        for raw, path in iter_references(value):
            validation.references.append(TemplateReference(
                raw=raw,
                path=path,
                type=self.classify(path),
                resolved=self.lookup(path) is not MISSING,
            ))
        return validation

    def lookup(self, path: str) -> Any:
        """Return the value at a dotted path, or MISSING."""
        segments = self.split_path(path)
        if not segments:
            return MISSING

        value = self._walk(self._scope, segments)
        if value is MISSING and segments[0] == 'env' and len(segments) > 1:
            value = self._lookup_env_case_insensitive(segments[1:])
        return value

    def classify(self, path: str) -> str:
        segments = self.split_path(path)
        if not segments:
            return 'variable'
        head = segments[0]
        if head in NAMESPACES:
            return head
        if '_loop' in segments or head in LOOP_NAMES:
            return 'loop'
        if len(segments) > 1 and not isinstance(self._scope.get(head), Mapping):
            return 'node'
        return 'variable'

    @classmethod
    def split_path(cls, path: str) -> List[str]:
        normalized = cls.INDEX_PATTERN.sub(r'.\1', path.strip())
        segments = [segment.strip() for segment in normalized.split('.')]
        if any(not segment for segment in segments):
            return []
        return segments

    def _walk(self, current: Any, segments: List[str]) -> Any:
        if not segments:
            return current

        if isinstance(current, Mapping):
            # Keys may themselves contain dots ("node-1.data"); longest match first
            for end in range(len(segments), 0, -1):
                key = '.'.join(segments[:end])
                if key in current:
                    found = self._walk(current[key], segments[end:])
                    if found is not MISSING:
                        return found
            return MISSING

        if isinstance(current, (list, tuple)):
            head = segments[0]
            if head == 'length':
                return self._walk(len(current), segments[1:])
            if head.isdigit():
                index = int(head)
                if index < len(current):
                    return self._walk(current[index], segments[1:])
            logger.debug(f"Invalid array access: {head} in array of length {len(current)}")
            return MISSING

        return MISSING

    def _lookup_env_case_insensitive(self, segments: List[str]) -> Any:
        wanted = segments[0].lower()
        for key, value in self.env_values.items():
            if str(key).lower() == wanted:
                return self._walk(value, segments[1:])
        return MISSING

    @staticmethod
    def stringify(value: Any) -> str:
        if value is None:
            return ''
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return 'true' if value else 'false'
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, default=str)
        return str(value)

    def get_available_variables(self) -> List[str]:
        """Top-level keys a bare reference can start with."""
        return sorted(str(key) for key in self._scope.keys())


def iter_references(value: Any):
    """Yield (raw, path) for every {{...}} reference in a nested value."""
    if isinstance(value, str):
        for match in TemplateResolver.VARIABLE_PATTERN.finditer(value):
            yield match.group(0), match.group(1).strip()
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def resolve(template: str, context: Optional[Mapping[str, Any]] = None,
            input_values: Optional[Mapping[str, Any]] = None,
            env_values: Optional[Mapping[str, Any]] = None) -> str:
    return TemplateResolver(context, input_values, env_values).resolve(template)


def resolve_structure(value: Any, context: Optional[Mapping[str, Any]] = None,
                      input_values: Optional[Mapping[str, Any]] = None,
                      env_values: Optional[Mapping[str, Any]] = None) -> Any:
    return TemplateResolver(context, input_values, env_values).resolve_structure(value)


def validate(template: Any, context: Optional[Mapping[str, Any]] = None,
             input_values: Optional[Mapping[str, Any]] = None,
             env_values: Optional[Mapping[str, Any]] = None) -> TemplateValidation:
    return TemplateResolver(context, input_values, env_values).validate(template)
