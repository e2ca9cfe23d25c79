"""
┌─────────────────────────────────────────────────────────────┐
│                Component Definition Lifecycle               │
│                                                             │
│  [Raw dict] → [Normalize] → [Validate] → [Register] → [Use] │
│                                                             │
│  Sources: core palette | plugin module bundle               │
│  Use: palette listing, default props, render contract       │
└─────────────────────────────────────────────────────────────┘

Component definition types for PageStudio
Flow: Definition data → Field spec validation → Render contract check → Registry entry
"""

import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .field_spec import FieldSpec, field_defaults, normalize_field_data

_TYPE_PATTERN = re.compile(r"^(?:[a-z0-9][a-z0-9_-]*:)?[A-Za-z][A-Za-z0-9_-]*$")

CORE_SOURCE = "core"


class ComponentCategory(str, Enum):
    """Palette categories."""
    LAYOUT = "layout"
    TYPOGRAPHY = "typography"
    BUTTONS = "buttons"
    MEDIA = "media"
    SECTIONS = "sections"
    NAVIGATION = "navigation"
    FORMS = "forms"
    ECOMMERCE = "ecommerce"
    INTERACTIVE = "interactive"
    MARKETING = "marketing"
    CONTENT = "content"
    THREE_D = "3d"
    MODULE = "module"


class ComponentModuleSource(BaseModel):
    """Provenance of a plugin-contributed definition."""
    id: str = Field(..., description="Module ID")
    name: str = Field(..., description="Module display name")
    slug: Optional[str] = Field(default=None, description="Module slug")
    icon: Optional[str] = Field(default=None, description="Module icon")


class ComponentAIConfig(BaseModel):
    """AI assistant hints attached to a definition."""
    description: str = Field(..., description="Description for AI context")
    can_modify: List[str] = Field(default_factory=list, alias="canModify")
    suggestions: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class ComponentDefinition(BaseModel):
    """
    Registry entry for one component type.

    Definition Contract:
    1. type → globally unique key referenced by document nodes
    2. label / category / icon → palette presentation
    3. fields → FieldSpec per editable prop
    4. render → callable receiving resolved props and rendered children
    5. module → provenance when contributed by a plugin module
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        populate_by_name=True,
        extra="ignore",
    )

    type: str = Field(..., description="Unique component type identifier")
    label: str = Field(..., min_length=1, description="Display name")
    description: str = Field(default="", description="Tooltip description")
    category: str = Field(default=ComponentCategory.CONTENT.value, description="Palette category")
    icon: str = Field(default="component", description="Icon name")
    fields: Dict[str, FieldSpec] = Field(default_factory=dict, description="Editable props")
    default_props: Dict[str, Any] = Field(default_factory=dict, alias="defaultProps")
    render: Callable[..., Any] = Field(..., description="Render contract")
    accepts_children: bool = Field(default=False, alias="acceptsChildren")
    allowed_children: Optional[List[str]] = Field(default=None, alias="allowedChildren")
    is_container: bool = Field(default=False, alias="isContainer")
    keywords: List[str] = Field(default_factory=list, description="Search keywords")
    ai: Optional[ComponentAIConfig] = Field(default=None)
    module: Optional[ComponentModuleSource] = Field(default=None)
    thumbnail: Optional[str] = Field(default=None)
    can_delete: bool = Field(default=True, alias="canDelete")
    can_duplicate: bool = Field(default=True, alias="canDuplicate")
    can_move: bool = Field(default=True, alias="canMove")
    layout_direction: str = Field(default="vertical", alias="layoutDirection")

    @model_validator(mode="before")
    @classmethod
    def normalize_aliases(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "allowed_children" not in data and "allowedChildTypes" in data:
            data["allowed_children"] = data.pop("allowedChildTypes")
        if isinstance(data.get("fields"), dict):
            data["fields"] = {
                name: normalize_field_data(spec) for name, spec in data["fields"].items()
            }
        return data

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if not _TYPE_PATTERN.match(v):
            raise ValueError(f"Invalid component type '{v}'")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v):
        if isinstance(v, ComponentCategory):
            return v.value
        if not v:
            raise ValueError("category must not be empty")
        return v

    @field_validator("render")
    @classmethod
    def validate_render(cls, v):
        if not callable(v):
            raise ValueError("render must be callable")
        return v

    @property
    def container(self) -> bool:
        """Whether nodes of this type may hold children."""
        return self.accepts_children or self.is_container

    @property
    def namespace(self) -> Optional[str]:
        """Module slug prefix of a namespaced type (``slug:Type``)."""
        if ":" in self.type:
            return self.type.split(":", 1)[0]
        return None

    def initial_props(self) -> Dict[str, Any]:
        """Props a freshly inserted node starts with: field defaults overlaid by default_props."""
        props = field_defaults(self.fields)
        props.update(self.default_props)
        return props

    def allows_child(self, child_type: str) -> bool:
        if not self.container:
            return False
        if not self.allowed_children:
            return True
        return child_type in self.allowed_children
