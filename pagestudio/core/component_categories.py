"""
Component Category Management Module
Flow: Default categories → Definition mapping → Palette grouping
"""

from typing import Dict, Iterable, List, Optional

import structlog
from pydantic import BaseModel, Field

from .component_base import ComponentDefinition

logger = structlog.get_logger()


class CategoryInfo(BaseModel):
    """Component category grouping."""
    name: str = Field(..., description="Category name")
    display_name: str = Field(..., description="Human-readable category name")
    description: str = Field(default="", description="Category description")
    icon: str = Field(default="folder", description="Category icon")
    components: List[str] = Field(default_factory=list, description="Component types in category")


_DEFAULT_CATEGORIES = [
    ("layout", "Layout", "Sections, containers and grids", "layout"),
    ("typography", "Typography", "Headings and text blocks", "type"),
    ("buttons", "Buttons", "Calls to action", "mouse-pointer-click"),
    ("media", "Media", "Images, video and embeds", "image"),
    ("sections", "Sections", "Pre-built page sections", "layout-template"),
    ("navigation", "Navigation", "Menus, headers and footers", "menu"),
    ("forms", "Forms", "Inputs and form containers", "text-cursor-input"),
    ("ecommerce", "E-Commerce", "Products, carts and checkout", "shopping-cart"),
    ("interactive", "Interactive", "Tabs, accordions and carousels", "sparkles"),
    ("marketing", "Marketing", "Pricing, testimonials and banners", "megaphone"),
    ("content", "Content", "General purpose content", "file-text"),
    ("3d", "3D & Effects", "Three dimensional and motion effects", "box"),
    ("module", "Modules", "Components contributed by installed modules", "puzzle"),
]


class ComponentCategoryManager:
    """
    Manages component categories and their mappings.

    Responsibilities:
    - Category definition and initialization
    - Component to category mapping
    - Category-based component organization
    """

    def __init__(self):
        """Initialize category manager with default categories."""
        self._categories: Dict[str, CategoryInfo] = {}
        self._initialize_default_categories()

    def _initialize_default_categories(self) -> None:
        """Initialize default component categories."""
        for name, display_name, description, icon in _DEFAULT_CATEGORIES:
            self._categories[name] = CategoryInfo(
                name=name,
                display_name=display_name,
                description=description,
                icon=icon,
            )

    def update_category_mappings(self, definitions: Iterable[ComponentDefinition]) -> None:
        """
        Rebuild category component mappings from the registered definitions.

        Args:
            definitions: Currently registered definitions
        """
        # Clear existing mappings
        for category in self._categories.values():
            category.components.clear()

        for definition in definitions:
            category_name = definition.category
            if category_name not in self._categories:
                # Create category if it doesn't exist
                self._categories[category_name] = CategoryInfo(
                    name=category_name,
                    display_name=category_name.replace("_", " ").replace("-", " ").title(),
                    description=f"Components in {category_name} category",
                )
                logger.debug("Category created on the fly", category=category_name)
            self._categories[category_name].components.append(definition.type)

    def get_categories(self) -> Dict[str, CategoryInfo]:
        """Get all component categories."""
        return self._categories.copy()

    def get_category(self, name: str) -> Optional[CategoryInfo]:
        """Get a specific category by name."""
        return self._categories.get(name)

    def non_empty(self) -> List[CategoryInfo]:
        """Categories that currently hold at least one component, in palette order."""
        return [category for category in self._categories.values() if category.components]
