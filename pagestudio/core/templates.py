"""
Template Instantiation
Flow: Template nodes → Clone with fresh ids → Color tokens → Text tokens → Insertable fragment

Every step is pure: the template is never mutated and each instantiation
returns new node objects, so one template can be dropped into a page any
number of times.
"""

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field

from .document import ComponentNode
from .exceptions import ConflictError, NotFoundError
from .ids import new_component_id

logger = structlog.get_logger()

DEFAULT_SITE_COLORS: Dict[str, str] = {
    "primary": "#3b82f6",
    "secondary": "#64748b",
    "accent": "#f59e0b",
    "background": "#ffffff",
    "text": "#0f172a",
    "muted": "#f1f5f9",
    "border": "#e2e8f0",
}

TOKEN_PATTERN = re.compile(r"\$([A-Za-z][A-Za-z0-9_]*)")

NodeLike = Union[ComponentNode, Mapping[str, Any]]


def _as_node(node: NodeLike) -> ComponentNode:
    if isinstance(node, ComponentNode):
        return node.model_copy(deep=True)
    return ComponentNode.model_validate(copy.deepcopy(dict(node)))


# =============================================================================
# Step 1: clone
# =============================================================================


def clone_nodes(
    nodes: Sequence[NodeLike],
    id_factory: Callable[[], str] = new_component_id,
) -> Tuple[List[ComponentNode], Dict[str, str]]:
    """
    Copy a fragment, giving every node a fresh id.

    Two passes: first build the old→new id map, then rewrite ids, ``children``
    and ``parent_id`` through it. Nodes whose parent is not part of the
    fragment become roots of the clone (``parent_id`` None) and child ids
    outside the fragment are dropped. Flags are reset so
    the copy starts unlocked and visible.

    Returns:
        Tuple of (cloned nodes in source order, old→new id map)
    """
    sources = [_as_node(node) for node in nodes]
    id_map = {node.id: id_factory() for node in sources}

    cloned: List[ComponentNode] = []
    for node in sources:
        children = None
        if node.children is not None:
            children = [id_map[child_id] for child_id in node.children if child_id in id_map]
        cloned.append(
            ComponentNode(
                id=id_map[node.id],
                type=node.type,
                props=node.props,
                children=children,
                parent_id=id_map.get(node.parent_id) if node.parent_id else None,
            )
        )
    return cloned, id_map


# =============================================================================
# Steps 2 and 3: token substitution
# =============================================================================


def _walk_strings(value: Any, replace: Callable[[str], str]) -> Any:
    """Return a copy of ``value`` with ``replace`` applied to every string inside it."""
    if isinstance(value, str):
        return replace(value)
    if isinstance(value, list):
        return [_walk_strings(item, replace) for item in value]
    if isinstance(value, tuple):
        return tuple(_walk_strings(item, replace) for item in value)
    if isinstance(value, dict):
        return {key: _walk_strings(item, replace) for key, item in value.items()}
    return copy.deepcopy(value)


def _map_props(nodes: Sequence[NodeLike], replace: Callable[[str], str]) -> List[ComponentNode]:
    result = []
    for node in nodes:
        copied = _as_node(node)
        copied.props = _walk_strings(copied.props, replace)
        result.append(copied)
    return result


def substitute_color_tokens(
    nodes: Sequence[NodeLike],
    site_colors: Optional[Mapping[str, str]] = None,
    reserved: Sequence[str] = (),
) -> List[ComponentNode]:
    """
    Replace ``$name`` color tokens in every prop string.

    Tokens resolve against ``DEFAULT_SITE_COLORS`` overlaid with
    ``site_colors``. Unknown tokens and tokens listed in ``reserved`` (text
    tokens of the same template) stay as they are.
    """
    palette = {**DEFAULT_SITE_COLORS, **(site_colors or {})}
    skip = set(reserved)

    def replace(text: str) -> str:
        def lookup(match: "re.Match[str]") -> str:
            if match.group(0) in skip:
                return match.group(0)
            return palette.get(match.group(1), match.group(0))

        return TOKEN_PATTERN.sub(lookup, text)

    return _map_props(nodes, replace)


def _humanize_token(token: str) -> str:
    words = token.lstrip("$").replace("_", " ").strip()
    return words[:1].upper() + words[1:] if words else token


def substitute_text_tokens(
    nodes: Sequence[NodeLike],
    text_tokens: Optional[Mapping[str, str]] = None,
) -> List[ComponentNode]:
    """
    Replace template text tokens (exact keys such as ``"$headline"``) in every prop string.

    A token mapped to empty copy falls back to its humanized name so the
    inserted section never renders blank.
    """
    tokens = {key: (value if value else _humanize_token(key)) for key, value in (text_tokens or {}).items()}
    if not tokens:
        return _map_props(nodes, lambda text: text)

    # Longest first so "$headline_sub" is not eaten by "$headline"
    pattern = re.compile("|".join(re.escape(key) for key in sorted(tokens, key=len, reverse=True)))

    def replace(text: str) -> str:
        return pattern.sub(lambda match: tokens[match.group(0)], text)

    return _map_props(nodes, replace)


# =============================================================================
# Template model and instantiation
# =============================================================================


class TemplateDefinition(BaseModel):
    """A reusable fragment of page structure."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Template identifier")
    name: str = Field(..., description="Display name")
    category: str = Field(default="General", description="Palette grouping")
    description: str = Field(default="", description="Short description")
    nodes: List[ComponentNode] = Field(default_factory=list, description="Fragment nodes")
    text_tokens: Dict[str, str] = Field(
        default_factory=dict, alias="textTokens", description="Default copy for text tokens"
    )
    tags: List[str] = Field(default_factory=list)
    thumbnail: Optional[str] = None


@dataclass
class InstantiatedTemplate:
    """Result of :func:`instantiate`: an insertable fragment."""
    nodes: List[ComponentNode]
    root_ids: List[str]
    id_map: Dict[str, str] = field(default_factory=dict)


def instantiate(
    template: Union[TemplateDefinition, Sequence[NodeLike]],
    site_colors: Optional[Mapping[str, str]] = None,
    text_tokens: Optional[Mapping[str, str]] = None,
    id_factory: Callable[[], str] = new_component_id,
) -> InstantiatedTemplate:
    """
    Clone a template and substitute its color and text tokens.

    Args:
        template: TemplateDefinition or a raw node list
        site_colors: Theme palette overriding ``DEFAULT_SITE_COLORS``
        text_tokens: Copy overriding the template's own ``text_tokens``
        id_factory: Id minting function

    Returns:
        InstantiatedTemplate: New nodes, root ids in source order, id map
    """
    if isinstance(template, TemplateDefinition):
        source_nodes: Sequence[NodeLike] = template.nodes
        tokens = {**template.text_tokens, **(text_tokens or {})}
        template_id = template.id
    else:
        source_nodes = template
        tokens = dict(text_tokens or {})
        template_id = None

    cloned, id_map = clone_nodes(source_nodes, id_factory=id_factory)
    colored = substitute_color_tokens(cloned, site_colors, reserved=list(tokens))
    final = substitute_text_tokens(colored, tokens)

    root_ids = [node.id for node in final if node.parent_id is None]
    logger.info(
        "Template instantiated",
        template_id=template_id,
        node_count=len(final),
        root_count=len(root_ids),
    )
    return InstantiatedTemplate(nodes=final, root_ids=root_ids, id_map=id_map)


class TemplateLibrary:
    """
    In-memory template catalogue.

    Responsibilities:
    - Unique template ids
    - Category filtering
    - Case-insensitive search over name, description and tags
    """

    def __init__(self, templates: Optional[Sequence[TemplateDefinition]] = None):
        self._templates: Dict[str, TemplateDefinition] = {}
        self._added_at: Dict[str, int] = {}
        self._sequence = 0
        self.logger = logger.bind(component="template_library")
        for template in templates or []:
            self.add(template)

    def add(self, template: Union[TemplateDefinition, Mapping[str, Any]]) -> TemplateDefinition:
        """Add a template; raises ConflictError when the id is taken."""
        if not isinstance(template, TemplateDefinition):
            template = TemplateDefinition.model_validate(dict(template))
        if template.id in self._templates:
            raise ConflictError(
                f"Template with id '{template.id}' already exists",
                conflicting_resource=template.id,
            )
        self._templates[template.id] = template
        self._sequence += 1
        self._added_at[template.id] = self._sequence
        self.logger.info("Template added", template_id=template.id, category=template.category)
        return template

    def remove(self, template_id: str) -> None:
        if self._templates.pop(template_id, None) is None:
            raise NotFoundError(
                f"Template not found: {template_id}", resource_type="template", resource_id=template_id
            )
        self._added_at.pop(template_id, None)

    def get(self, template_id: str) -> TemplateDefinition:
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError(
                f"Template not found: {template_id}", resource_type="template", resource_id=template_id
            )
        return template

    def list(self, category: Optional[str] = None) -> List[TemplateDefinition]:
        """Templates, newest first, optionally restricted to one category."""
        items = [t for t in self._templates.values() if category is None or t.category == category]
        return sorted(items, key=lambda t: self._added_at[t.id], reverse=True)

    def search(self, query: str, category: Optional[str] = None) -> List[TemplateDefinition]:
        terms = query.lower().split()
        if not terms:
            return self.list(category)

        results = []
        for template in self.list(category):
            haystack = " ".join([template.name, template.description, *template.tags]).lower()
            if all(term in haystack for term in terms):
                results.append(template)
        return results

    def get_categories(self) -> List[str]:
        return sorted({template.category for template in self._templates.values()})

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._templates
