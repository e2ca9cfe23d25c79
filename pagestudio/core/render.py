"""
Render Resolution
Flow: Document → Walk in order → Definition lookup → Responsive props → RenderNode tree

The core never paints. It hands the rendering collaborator, per node, the
definition's render contract and props already resolved for one breakpoint.
Nodes whose type is not registered become placeholders; their stored data is
left untouched.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .logging import get_logger
from .component_registry import ComponentRegistry
from .document import PageDocument
from .exceptions import MissingDefinitionError
from .responsive import BreakpointLike, resolve_props, to_breakpoint

logger = get_logger(__name__)


@dataclass
class PlaceholderInfo:
    """What the canvas shows instead of a component whose definition is gone."""
    original_type: str
    module_name: Optional[str] = None
    reason: str = ""

    @property
    def message(self) -> str:
        if self.module_name:
            return f"'{self.original_type}' needs the '{self.module_name}' module"
        return f"Unknown component '{self.original_type}'"


@dataclass
class RenderNode:
    """One node ready for the rendering collaborator."""
    id: str
    type: str
    props: Dict[str, Any]
    render: Optional[Callable[..., Any]] = None
    children: List["RenderNode"] = field(default_factory=list)
    hidden: bool = False
    locked: bool = False
    placeholder: Optional[PlaceholderInfo] = None

    @property
    def is_placeholder(self) -> bool:
        return self.placeholder is not None


def placeholder_render(info: PlaceholderInfo, props: Dict[str, Any], children: List[Any]) -> Dict[str, Any]:
    """Structural output for a placeholder; mirrors the core element contract."""
    return {
        "tag": "placeholder",
        "props": {
            "originalType": info.original_type,
            "moduleName": info.module_name,
            "message": info.message,
        },
        "children": list(children),
    }


class RenderResolver:
    """
    Resolves a document against one registry for one breakpoint.

    Process:
    1. resolve() → walk root children in order
    2. _resolve_node() → definition lookup, placeholder on miss
    3. render() → invoke render contracts bottom-up
    """

    def __init__(self, registry: ComponentRegistry):
        self.registry = registry
        self.logger = logger.bind(component="render_resolver", registry_id=registry.registry_id)

    def resolve(self, document: PageDocument, breakpoint: BreakpointLike) -> List[RenderNode]:
        """
        Build the RenderNode tree for ``breakpoint``.

        Hidden nodes are included and flagged so the canvas can dim them.
        """
        bp = to_breakpoint(breakpoint)
        return [self._resolve_node(document, node_id, bp) for node_id in document.root.children]

    def _resolve_node(self, document: PageDocument, node_id: str, breakpoint) -> RenderNode:
        node = document.require(node_id)
        children = [self._resolve_node(document, child_id, breakpoint) for child_id in node.children or []]
        # Resolved props are copies so a renderer cannot reach back into the document
        props = resolve_props(copy.deepcopy(node.props), breakpoint)

        definition = self.registry.get(node.type)
        if definition is None:
            return RenderNode(
                id=node.id,
                type=node.type,
                props=props,
                children=children,
                hidden=node.hidden,
                locked=node.locked,
                placeholder=self.placeholder_for(node.type),
            )

        return RenderNode(
            id=node.id,
            type=node.type,
            props=props,
            render=definition.render,
            children=children,
            hidden=node.hidden,
            locked=node.locked,
        )

    def placeholder_for(self, component_type: str) -> PlaceholderInfo:
        module_name = self.registry.module_name_for(component_type)
        error = MissingDefinitionError(component_type, module_name=module_name)
        return PlaceholderInfo(original_type=component_type, module_name=module_name, reason=error.message)

    def render(
        self,
        document: PageDocument,
        breakpoint: BreakpointLike,
        include_hidden: bool = False,
    ) -> List[Any]:
        """Invoke every render contract and return the top-level outputs."""
        return [
            output
            for output in (self._invoke(node, include_hidden) for node in self.resolve(document, breakpoint))
            if output is not None
        ]

    def _invoke(self, node: RenderNode, include_hidden: bool) -> Any:
        if node.hidden and not include_hidden:
            return None
        children = [c for c in (self._invoke(child, include_hidden) for child in node.children) if c is not None]
        if node.placeholder is not None:
            return placeholder_render(node.placeholder, node.props, children)
        return node.render(node.props, children)
