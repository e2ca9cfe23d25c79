"""
Core component palette registered under the ``"core"`` source.

Render contracts here only describe structure (tag, props, children). Visual
styling belongs to the rendering collaborator.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog

from .component_base import CORE_SOURCE, ComponentCategory
from .component_registry import ComponentRegistry, RegistrationReport

logger = structlog.get_logger()


def element_render(tag: str) -> Callable[..., Dict[str, Any]]:
    """Build a structural render contract for an HTML-like element."""

    def render(props: Dict[str, Any], children: Optional[Iterable[Any]] = None) -> Dict[str, Any]:
        return {"tag": tag, "props": dict(props), "children": list(children or [])}

    render.__name__ = f"render_{tag}"
    return render


_ALIGN_OPTIONS = [
    {"label": "Left", "value": "left"},
    {"label": "Center", "value": "center"},
    {"label": "Right", "value": "right"},
]

_SPACING_DEFAULT = {"top": 48, "right": 16, "bottom": 48, "left": 16}


layout_components: List[Dict[str, Any]] = [
    {
        "type": "Section",
        "label": "Section",
        "description": "Container section with background options",
        "category": ComponentCategory.LAYOUT,
        "icon": "layout",
        "acceptsChildren": True,
        "isContainer": True,
        "keywords": ["section", "container", "wrapper", "block"],
        "fields": {
            "backgroundColor": {"type": "color", "label": "Background", "defaultValue": "$background"},
            "padding": {"type": "spacing", "label": "Padding", "responsive": True, "defaultValue": _SPACING_DEFAULT},
            "minHeight": {"type": "number", "label": "Min height", "min": 0, "responsive": True},
        },
        "render": element_render("section"),
    },
    {
        "type": "Container",
        "label": "Container",
        "description": "Centered container with max width",
        "category": ComponentCategory.LAYOUT,
        "icon": "square",
        "acceptsChildren": True,
        "isContainer": True,
        "keywords": ["container", "wrapper", "center"],
        "fields": {
            "maxWidth": {
                "type": "select",
                "label": "Max width",
                "defaultValue": "xl",
                "options": [
                    {"label": "Small", "value": "sm"},
                    {"label": "Medium", "value": "md"},
                    {"label": "Large", "value": "lg"},
                    {"label": "Extra large", "value": "xl"},
                    {"label": "Full", "value": "full"},
                ],
            },
        },
        "render": element_render("div"),
    },
    {
        "type": "Columns",
        "label": "Columns",
        "description": "Multi-column layout grid",
        "category": ComponentCategory.LAYOUT,
        "icon": "columns",
        "acceptsChildren": True,
        "isContainer": True,
        "layoutDirection": "horizontal",
        "keywords": ["columns", "grid", "layout", "side by side"],
        "fields": {
            "columns": {
                "type": "number",
                "label": "Columns",
                "min": 1,
                "max": 4,
                "responsive": True,
                "defaultValue": {"mobile": 1, "tablet": 2},
            },
            "gap": {"type": "slider", "label": "Gap", "min": 0, "max": 96, "step": 4, "defaultValue": 24},
        },
        "render": element_render("div"),
    },
]

typography_components: List[Dict[str, Any]] = [
    {
        "type": "Heading",
        "label": "Heading",
        "description": "Section or page heading",
        "category": ComponentCategory.TYPOGRAPHY,
        "icon": "heading",
        "keywords": ["heading", "title", "h1", "h2"],
        "fields": {
            "text": {"type": "text", "label": "Text", "defaultValue": "Heading"},
            "level": {
                "type": "select",
                "label": "Level",
                "defaultValue": "h2",
                "options": [{"label": f"H{i}", "value": f"h{i}"} for i in range(1, 7)],
            },
            "align": {"type": "radio", "label": "Alignment", "responsive": True, "options": _ALIGN_OPTIONS},
            "color": {"type": "color", "label": "Color"},
        },
        "render": element_render("h2"),
    },
    {
        "type": "Text",
        "label": "Text",
        "description": "Paragraph of rich text",
        "category": ComponentCategory.TYPOGRAPHY,
        "icon": "type",
        "keywords": ["text", "paragraph", "copy", "body"],
        "fields": {
            "text": {"type": "richtext", "label": "Content", "defaultValue": "Write something here."},
            "align": {"type": "radio", "label": "Alignment", "responsive": True, "options": _ALIGN_OPTIONS},
            "color": {"type": "color", "label": "Color"},
        },
        "render": element_render("p"),
    },
]

button_components: List[Dict[str, Any]] = [
    {
        "type": "Button",
        "label": "Button",
        "description": "Call to action button",
        "category": ComponentCategory.BUTTONS,
        "icon": "mouse-pointer-click",
        "keywords": ["button", "cta", "link", "action"],
        "fields": {
            "label": {"type": "text", "label": "Label", "defaultValue": "Get started"},
            "href": {"type": "link", "label": "Link", "defaultValue": "#"},
            "variant": {
                "type": "select",
                "label": "Variant",
                "defaultValue": "primary",
                "options": [
                    {"label": "Primary", "value": "primary"},
                    {"label": "Secondary", "value": "secondary"},
                    {"label": "Outline", "value": "outline"},
                ],
            },
            "backgroundColor": {"type": "color", "label": "Background", "defaultValue": "$primary"},
        },
        "render": element_render("a"),
    },
]

media_components: List[Dict[str, Any]] = [
    {
        "type": "Image",
        "label": "Image",
        "description": "Responsive image",
        "category": ComponentCategory.MEDIA,
        "icon": "image",
        "keywords": ["image", "picture", "photo"],
        "fields": {
            "src": {"type": "image", "label": "Image"},
            "alt": {"type": "text", "label": "Alt text", "defaultValue": ""},
            "width": {"type": "number", "label": "Width (%)", "min": 0, "max": 100, "responsive": True, "defaultValue": 100},
        },
        "render": element_render("img"),
    },
    {
        "type": "Spacer",
        "label": "Spacer",
        "description": "Vertical whitespace",
        "category": ComponentCategory.LAYOUT,
        "icon": "move-vertical",
        "keywords": ["spacer", "gap", "whitespace"],
        "fields": {
            "height": {"type": "number", "label": "Height", "min": 0, "responsive": True, "defaultValue": {"mobile": 24, "desktop": 48}},
        },
        "render": element_render("div"),
    },
]

CORE_COMPONENTS: List[Dict[str, Any]] = [
    *layout_components,
    *typography_components,
    *button_components,
    *media_components,
]


def register_core_components(registry: ComponentRegistry) -> RegistrationReport:
    """Register all core components with the registry."""
    report = registry.register_all(CORE_COMPONENTS, source=CORE_SOURCE)
    logger.info("Core components registered", count=registry.core_count, errors=len(report.errors))
    return report


def create_registry(include_core: bool = True) -> ComponentRegistry:
    """Create a registry for a new editor session, optionally seeded with the core palette."""
    registry = ComponentRegistry()
    if include_core:
        register_core_components(registry)
    return registry
