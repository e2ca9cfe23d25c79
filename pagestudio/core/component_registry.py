"""
Component Registry - Main Registry System
Flow: Definition validation → Ownership check → Registration → Category mapping → Lookup / search

One registry instance belongs to one editor session. Nothing here is a module
level singleton, so two sessions in the same process never see each other's
plugin components.
"""

from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Set, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from .component_base import CORE_SOURCE, ComponentDefinition, ComponentModuleSource
from .component_categories import CategoryInfo, ComponentCategoryManager
from .exceptions import DuplicateTypeError, InvalidDefinitionError, PageStudioException
from .ids import new_id

logger = structlog.get_logger()

MODULE_SOURCE = "module"
MAX_RECORDED_ERRORS = 200

DefinitionLike = Union[ComponentDefinition, Mapping[str, Any]]


class RegistryStats(BaseModel):
    """Component registry statistics."""
    total_components: int = Field(..., description="Total registered components")
    core_components: int = Field(..., description="Components registered by the core palette")
    module_components: int = Field(..., description="Components contributed by modules")
    categories: Dict[str, int] = Field(..., description="Components per category")
    modules: Dict[str, int] = Field(..., description="Components per module id")
    registration_errors: List[str] = Field(..., description="Definitions that were rejected")
    last_change_time: Optional[str] = Field(default=None, description="Last registry mutation")


class RegistrationReport(BaseModel):
    """Outcome of registering a batch of definitions from one source."""
    registered: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "definition"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


class ComponentRegistry:
    """
    Registry of component definitions for one editor session.

    Registry Architecture:
    - Definitions keyed by type, each owned by exactly one source
      (``"core"`` or a module id)
    - ComponentCategoryManager: palette grouping
    - Custom field renderers contributed by modules (``slug:fieldType``)

    Core Process:
    1. register() → validate, enforce ownership, attach provenance
    2. unregister_module() → drop everything a module contributed
    3. get() / get_all() / get_grouped_by_category() / search() → palette and renderer lookups

    Ownership rules:
    - A different owner registering an existing type is rejected
    - The same owner registering again replaces the definition in place
    - Removing definitions never touches document nodes
    """

    def __init__(self, registry_id: Optional[str] = None):
        """Initialize an empty registry."""
        self.registry_id = registry_id or new_id("registry")
        self._definitions: Dict[str, ComponentDefinition] = {}
        self._owners: Dict[str, str] = {}
        self._module_types: Dict[str, Set[str]] = defaultdict(set)
        self._custom_fields: Dict[str, Any] = {}
        self._custom_field_owners: Dict[str, str] = {}
        self._retired_modules: Dict[str, str] = {}
        self._errors: Deque[str] = deque(maxlen=MAX_RECORDED_ERRORS)
        self._category_manager = ComponentCategoryManager()
        self._last_change_time: Optional[datetime] = None

        self.logger = logger.bind(registry_id=self.registry_id)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        definition: DefinitionLike,
        source: str = CORE_SOURCE,
        module_id: Optional[str] = None,
        module_name: Optional[str] = None,
        module_slug: Optional[str] = None,
    ) -> ComponentDefinition:
        """
        Register one component definition.

        Args:
            definition: Definition model or raw definition mapping
            source: ``"core"`` or ``"module"``
            module_id: Contributing module id (required for module sources)
            module_name: Module display name, injected into search keywords
            module_slug: Module slug, injected into search keywords

        Returns:
            ComponentDefinition: The stored definition

        Raises:
            InvalidDefinitionError: Definition is malformed
            DuplicateTypeError: Type is owned by a different source
        """
        if source not in (CORE_SOURCE, MODULE_SOURCE):
            raise ValueError(f"Unknown registration source '{source}'")
        if source == MODULE_SOURCE and not module_id:
            raise ValueError("module_id is required when registering from a module")

        owner = module_id if source == MODULE_SOURCE else CORE_SOURCE
        try:
            validated = self._validate(definition, module_id)
            if source == MODULE_SOURCE:
                validated = self._attach_provenance(validated, module_id, module_name, module_slug)

            current_owner = self._owners.get(validated.type)
            if current_owner is not None and current_owner != owner:
                raise DuplicateTypeError(
                    component_type=validated.type,
                    existing_source=current_owner,
                    incoming_source=owner,
                )
        except PageStudioException as e:
            self._errors.append(e.message)
            raise

        replaced = validated.type in self._definitions
        self._definitions[validated.type] = validated
        self._owners[validated.type] = owner
        if source == MODULE_SOURCE:
            self._module_types[module_id].add(validated.type)
        self._retired_modules.pop(validated.type, None)
        self._touch()

        self.logger.info(
            "Component reloaded" if replaced else "Component registered",
            component_type=validated.type,
            source=owner,
            category=validated.category,
        )
        return validated

    def register_all(
        self,
        definitions: Iterable[DefinitionLike],
        source: str = CORE_SOURCE,
        module_id: Optional[str] = None,
        module_name: Optional[str] = None,
        module_slug: Optional[str] = None,
    ) -> RegistrationReport:
        """
        Register a batch of definitions, isolating bad ones.

        A rejected definition is reported and skipped; the remaining
        definitions of the batch are still registered.
        """
        report = RegistrationReport()
        for definition in definitions:
            try:
                registered = self.register(
                    definition,
                    source=source,
                    module_id=module_id,
                    module_name=module_name,
                    module_slug=module_slug,
                )
                report.registered.append(registered.type)
            except PageStudioException as e:
                report.errors.append(e.message)

        self.logger.info(
            "Batch registration completed",
            source=module_id or source,
            registered=len(report.registered),
            errors=len(report.errors),
        )
        return report

    def _validate(self, definition: DefinitionLike, module_id: Optional[str]) -> ComponentDefinition:
        """Validate raw definition data into a ComponentDefinition."""
        if isinstance(definition, ComponentDefinition):
            return definition
        if not isinstance(definition, Mapping):
            raise InvalidDefinitionError(
                reason=f"expected a mapping, got {type(definition).__name__}",
                module_id=module_id,
            )

        component_type = definition.get("type")
        if not component_type:
            raise InvalidDefinitionError(reason="missing 'type'", module_id=module_id)
        if not definition.get("label"):
            raise InvalidDefinitionError(
                reason="missing 'label'", component_type=component_type, module_id=module_id
            )
        if definition.get("render") is None:
            raise InvalidDefinitionError(
                reason="missing render contract", component_type=component_type, module_id=module_id
            )

        try:
            return ComponentDefinition.model_validate(dict(definition))
        except ValidationError as e:
            raise InvalidDefinitionError(
                reason=_format_validation_error(e),
                component_type=component_type,
                module_id=module_id,
            ) from e

    def _attach_provenance(
        self,
        definition: ComponentDefinition,
        module_id: str,
        module_name: Optional[str],
        module_slug: Optional[str],
    ) -> ComponentDefinition:
        """Stamp module provenance and auto-inject discovery keywords."""
        name = module_name or (definition.module.name if definition.module else module_id)
        slug = module_slug or (definition.module.slug if definition.module else None)
        icon = definition.module.icon if definition.module else None

        keywords = list(definition.keywords)
        for keyword in (name, slug):
            if keyword and keyword not in keywords:
                keywords.append(keyword)

        return definition.model_copy(
            update={
                "module": ComponentModuleSource(id=module_id, name=name, slug=slug, icon=icon),
                "keywords": keywords,
            }
        )

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def unregister(self, component_type: str) -> bool:
        """
        Unregister a single component type.

        Returns:
            bool: True if the type was registered
        """
        if component_type not in self._definitions:
            return False

        definition = self._definitions.pop(component_type)
        owner = self._owners.pop(component_type)
        if owner != CORE_SOURCE:
            self._module_types[owner].discard(component_type)
            if not self._module_types[owner]:
                del self._module_types[owner]
            self._retired_modules[component_type] = definition.module.name if definition.module else owner
        self._touch()

        self.logger.info("Component unregistered", component_type=component_type, source=owner)
        return True

    def unregister_module(self, module_id: str) -> List[str]:
        """
        Remove every definition and custom field contributed by a module.

        Idempotent: unknown modules are a no-op.

        Returns:
            List[str]: Component types that were removed
        """
        removed = sorted(self._module_types.get(module_id, set()))
        for component_type in removed:
            self.unregister(component_type)

        for custom_type in [t for t, o in self._custom_field_owners.items() if o == module_id]:
            self._custom_fields.pop(custom_type, None)
            self._custom_field_owners.pop(custom_type, None)

        if removed:
            self.logger.info("Module components unregistered", module_id=module_id, removed=removed)
        return removed

    def clear(self) -> None:
        """Drop every definition, including the core palette."""
        self._definitions.clear()
        self._owners.clear()
        self._module_types.clear()
        self._custom_fields.clear()
        self._custom_field_owners.clear()
        self._retired_modules.clear()
        self._touch()
        self.logger.info("Registry cleared")

    # -------------------------------------------------------------------------
    # Custom fields
    # -------------------------------------------------------------------------

    def register_custom_field(self, custom_type: str, renderer: Any, module_id: str) -> None:
        """Register a module-contributed field renderer under ``slug:fieldType``."""
        owner = self._custom_field_owners.get(custom_type)
        if owner is not None and owner != module_id:
            raise DuplicateTypeError(
                component_type=custom_type,
                existing_source=owner,
                incoming_source=module_id,
                error_code="DUPLICATE_FIELD_TYPE",
            )
        self._custom_fields[custom_type] = renderer
        self._custom_field_owners[custom_type] = module_id
        self.logger.debug("Custom field registered", custom_type=custom_type, module_id=module_id)

    def get_custom_field(self, custom_type: str) -> Optional[Any]:
        return self._custom_fields.get(custom_type)

    def get_custom_field_types(self) -> List[str]:
        return sorted(self._custom_fields)

    def get_module_custom_fields(self, module_id: str) -> Dict[str, Any]:
        """Custom field renderers contributed by one module."""
        return {
            custom_type: self._custom_fields[custom_type]
            for custom_type, owner in self._custom_field_owners.items()
            if owner == module_id
        }

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get(self, component_type: str) -> Optional[ComponentDefinition]:
        """Get definition by type."""
        return self._definitions.get(component_type)

    def is_registered(self, component_type: str) -> bool:
        return component_type in self._definitions

    def get_all(self) -> List[ComponentDefinition]:
        """Get all definitions in registration order."""
        return list(self._definitions.values())

    def get_component_types(self) -> List[str]:
        return list(self._definitions.keys())

    def get_by_module(self, module_id: str) -> List[ComponentDefinition]:
        return [self._definitions[t] for t in sorted(self._module_types.get(module_id, set()))]

    def get_grouped_by_category(self) -> Dict[str, List[ComponentDefinition]]:
        """Definitions grouped by category, in palette order, empty categories omitted."""
        self._category_manager.update_category_mappings(self._definitions.values())
        return {
            category.name: [self._definitions[t] for t in category.components]
            for category in self._category_manager.non_empty()
        }

    def get_categories(self) -> Dict[str, CategoryInfo]:
        self._category_manager.update_category_mappings(self._definitions.values())
        return self._category_manager.get_categories()

    def search(self, query: str) -> List[ComponentDefinition]:
        """
        Search definitions by label, description, type and keywords.

        Keywords include the contributing module's name and slug, so plugin
        components are found by searching for the module. Every whitespace
        separated term must match somewhere (case-insensitive).
        """
        terms = [term for term in query.lower().split() if term]
        if not terms:
            return self.get_all()

        results = []
        for definition in self._definitions.values():
            haystack = " ".join(
                [definition.type, definition.label, definition.description, *definition.keywords]
            ).lower()
            if all(term in haystack for term in terms):
                results.append(definition)
        return results

    def source_of(self, component_type: str) -> Optional[str]:
        """Owner of a registered type: ``"core"`` or a module id."""
        return self._owners.get(component_type)

    def module_name_for(self, component_type: str) -> Optional[str]:
        """
        Best-effort module name for a type, registered or not.

        Falls back to the module that last provided the type, then to the
        namespace prefix of ``slug:Type``.
        """
        definition = self._definitions.get(component_type)
        if definition is not None and definition.module is not None:
            return definition.module.name
        if component_type in self._retired_modules:
            return self._retired_modules[component_type]
        if ":" in component_type:
            return component_type.split(":", 1)[0]
        return None

    @property
    def core_count(self) -> int:
        return sum(1 for owner in self._owners.values() if owner == CORE_SOURCE)

    @property
    def module_count(self) -> int:
        return len(self._owners) - self.core_count

    def get_registration_errors(self) -> List[str]:
        return list(self._errors)

    def get_registry_stats(self) -> RegistryStats:
        """Get registry statistics."""
        category_counts: Dict[str, int] = defaultdict(int)
        for definition in self._definitions.values():
            category_counts[definition.category] += 1

        return RegistryStats(
            total_components=len(self._definitions),
            core_components=self.core_count,
            module_components=self.module_count,
            categories=dict(category_counts),
            modules={module_id: len(types) for module_id, types in self._module_types.items()},
            registration_errors=list(self._errors),
            last_change_time=self._last_change_time.isoformat() if self._last_change_time else None,
        )

    def _touch(self) -> None:
        self._last_change_time = datetime.now(timezone.utc)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, component_type: str) -> bool:
        return component_type in self._definitions
