"""
Base classes for node plugins

A plugin describes one node type: the inputs the editor renders, the outputs
later nodes can reference, and the async handler the engine calls.
"""
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Callable, Awaitable
from enum import Enum
import logging

from flowforge.flow_engine.errors import PluginRegistrationError
from flowforge.flow_engine.models import ExecutionContext

logger = logging.getLogger(__name__)


class InputType(str, Enum):
    """Types of node inputs"""
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    NUMBER = "number"
    CODE = "code"
    BOOLEAN = "boolean"
    JSON = "json"
    VARIABLE = "variable"
    LIST = "list"


class PluginCategory(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    TRANSFORMER = "transformer"
    LOOP = "loop"


@dataclass(frozen=True)
class ShowWhen:
    """Editor visibility rule: show the input when `field` has one of `values`"""
    field: str
    values: tuple

    def matches(self, inputs: Dict[str, Any]) -> bool:
        return inputs.get(self.field) in self.values


@dataclass(frozen=True)
class NodeInput:
    """
    Input definition for a node
    """
    name: str
    label: str
    type: InputType
    required: bool = False
    default: Any = None
    description: str = ""
    placeholder: str = ""

    # For SELECT
    options: Optional[tuple] = None  # ({"label": "...", "value": "..."}, ...)

    show_when: Optional[ShowWhen] = None

    def is_visible(self, inputs: Dict[str, Any]) -> bool:
        return self.show_when is None or self.show_when.matches(inputs)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'name': self.name,
            'label': self.label,
            'type': self.type.value,
            'required': self.required,
            'default': self.default,
            'description': self.description,
            'placeholder': self.placeholder,
        }
        if self.options is not None:
            result['options'] = list(self.options)
        if self.show_when is not None:
            result['showWhen'] = {'field': self.show_when.field, 'values': list(self.show_when.values)}
        return result


@dataclass(frozen=True)
class NodeOutput:
    name: str
    type: str = "any"
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'type': self.type, 'description': self.description}


# Type aliases
ExecuteHandler = Callable[[Dict[str, Any], ExecutionContext], Awaitable[Dict[str, Any]]]
DynamicInputsResolver = Callable[[Dict[str, Any]], List[NodeInput]]


@dataclass(frozen=True)
class NodePlugin:
    """
    Plugin descriptor - immutable once registered
    """
    type: str  # Unique node type (e.g., "http-request", "for-each-loop")
    name: str
    description: str
    execute: ExecuteHandler
    category: PluginCategory = PluginCategory.ACTION
    inputs: tuple = ()
    outputs: tuple = ()
    dynamic_inputs: Optional[DynamicInputsResolver] = None
    icon: Optional[str] = None

    def get_dynamic_inputs(self, current_inputs: Dict[str, Any]) -> List[NodeInput]:
        if self.dynamic_inputs is None:
            return []
        return list(self.dynamic_inputs(current_inputs or {}))

    def all_inputs(self, current_inputs: Dict[str, Any]) -> List[NodeInput]:
        return list(self.inputs) + self.get_dynamic_inputs(current_inputs)

    def apply_defaults(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Fill declared defaults for inputs the node does not set"""
        result = dict(inputs)
        for node_input in self.all_inputs(result):
            if node_input.default is not None and result.get(node_input.name) is None:
                result[node_input.name] = node_input.default
        return result

    def missing_required(self, inputs: Dict[str, Any]) -> List[str]:
        """Required inputs that are visible and empty"""
        missing = []
        for node_input in self.all_inputs(inputs):
            if not node_input.required or not node_input.is_visible(inputs):
                continue
            value = inputs.get(node_input.name)
            if value is None or (isinstance(value, str) and value.strip() == ''):
                missing.append(node_input.name)
        return missing

    def to_dict(self, current_inputs: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            'type': self.type,
            'name': self.name,
            'description': self.description,
            'category': self.category.value,
            'icon': self.icon,
            'inputs': [i.to_dict() for i in self.all_inputs(current_inputs or {})],
            'outputs': [o.to_dict() for o in self.outputs],
            'hasDynamicInputs': self.dynamic_inputs is not None,
        }


class NodePluginRegistry:
    """
    Catalog of node plugins keyed by type
    """

    def __init__(self):
        self._plugins: Dict[str, NodePlugin] = {}

    def register(self, plugin: NodePlugin, replace: bool = False):
        """Register a plugin; one descriptor per type"""
        if not plugin.type:
            raise PluginRegistrationError("Plugin type is required")
        if plugin.type in self._plugins and not replace:
            raise PluginRegistrationError(f"Plugin already registered: {plugin.type}")
        self._plugins[plugin.type] = plugin
        logger.debug(f"Registered plugin: {plugin.type}")

    def get_plugin(self, node_type: str) -> Optional[NodePlugin]:
        """Get a plugin by node type"""
        return self._plugins.get(node_type)

    def get_all(self) -> Dict[str, NodePlugin]:
        """Get all registered plugins"""
        return self._plugins.copy()

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)


# Helper functions for creating common inputs
def text_input(name: str, label: str, description: str = "", required: bool = False,
               default: Any = None, placeholder: str = "",
               show_when: Optional[ShowWhen] = None) -> NodeInput:
    """Create a text input"""
    return NodeInput(name=name, label=label, type=InputType.TEXT, required=required,
                     default=default, description=description, placeholder=placeholder,
                     show_when=show_when)


def textarea_input(name: str, label: str, description: str = "", required: bool = False,
                   default: Any = None, show_when: Optional[ShowWhen] = None) -> NodeInput:
    """Create a textarea input"""
    return NodeInput(name=name, label=label, type=InputType.TEXTAREA, required=required,
                     default=default, description=description, show_when=show_when)


def number_input(name: str, label: str, description: str = "", required: bool = False,
                 default: Any = None, show_when: Optional[ShowWhen] = None) -> NodeInput:
    """Create a number input"""
    return NodeInput(name=name, label=label, type=InputType.NUMBER, required=required,
                     default=default, description=description, show_when=show_when)


def select_input(name: str, label: str, options: List[Dict[str, str]], description: str = "",
                 required: bool = False, default: Any = None,
                 show_when: Optional[ShowWhen] = None) -> NodeInput:
    """Create a select input"""
    return NodeInput(name=name, label=label, type=InputType.SELECT, required=required,
                     default=default, description=description, options=tuple(options),
                     show_when=show_when)


def boolean_input(name: str, label: str, description: str = "", default: bool = False,
                  show_when: Optional[ShowWhen] = None) -> NodeInput:
    """Create a boolean input"""
    return NodeInput(name=name, label=label, type=InputType.BOOLEAN, required=False,
                     default=default, description=description, show_when=show_when)


def code_input(name: str, label: str, description: str = "", required: bool = False,
               default: Any = None) -> NodeInput:
    """Create a code input"""
    return NodeInput(name=name, label=label, type=InputType.CODE, required=required,
                     default=default, description=description)


def options_from(values: List[str]) -> List[Dict[str, str]]:
    return [{'label': value, 'value': value} for value in values]


def show_when(field_name: str, *values: Any) -> ShowWhen:
    return ShowWhen(field=field_name, values=tuple(values))
