"""
Module Loader
Flow: Installed modules → Concurrent imports (with timeout) → Bundle extraction → Registration → Report

Each module is imported by its own asyncio task and joined individually, so a
slow or broken module never blocks or fails its siblings.
"""

import asyncio
import importlib
import importlib.util
import inspect
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from pagestudio.config.settings import get_settings

from .logging import get_logger
from .component_base import ComponentDefinition
from .component_registry import MODULE_SOURCE, ComponentRegistry
from .exceptions import ModuleLoadError, ModuleLoadTimeoutError, PageStudioException

logger = get_logger(__name__)

FILE_MODULE_NAMESPACE = "pagestudio_dynamic_modules"


class ModuleStatus(str, Enum):
    """Installation status reported by the module host."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class InstalledModuleInfo(BaseModel):
    """A module installed on a site."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Module id")
    slug: str = Field(..., description="URL-safe module key, also the import name")
    name: Optional[str] = Field(default=None, description="Display name")
    status: ModuleStatus = Field(default=ModuleStatus.ACTIVE)
    version: str = Field(default="1.0.0")
    has_components: bool = Field(
        default=True, alias="hasComponents", description="Whether the module contributes page components"
    )
    icon: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.slug

    @property
    def import_name(self) -> str:
        return self.slug.replace("-", "_")


Importer = Callable[[InstalledModuleInfo], Union[Any, Awaitable[Any]]]


@dataclass
class ModuleLoadReport:
    """Aggregate result of one load batch."""
    loaded: List[str] = field(default_factory=list)
    failed: Dict[str, ModuleLoadError] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    definition_errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def failed_module_names(self) -> List[str]:
        """Names to show in the non-blocking failure list."""
        return [error.module_name or module_id for module_id, error in self.failed.items()]

    def merge(self, other: "ModuleLoadReport") -> None:
        self.loaded.extend(other.loaded)
        self.failed.update(other.failed)
        self.skipped.extend(other.skipped)
        self.definition_errors.update(other.definition_errors)


class ModuleLoader:
    """
    Loads module export bundles into one registry.

    Loading Process:
    1. load_modules() → pick active, component-contributing modules
    2. _import_bundle() → injected importer or importlib, under a timeout
    3. _register_bundle() → definitions and custom fields with provenance
    4. Failures recorded per module id, siblings keep going

    Responsibilities:
    - Per-module isolation of import and validation errors
    - Idempotent unload / reload
    - sys.modules cleanup for dynamically imported modules
    - Explicit accessors; no process-wide state
    """

    def __init__(
        self,
        registry: ComponentRegistry,
        importer: Optional[Importer] = None,
        timeout: Optional[float] = None,
        package_prefix: Optional[str] = None,
        discovery_paths: Optional[List[str]] = None,
    ):
        settings = get_settings()
        self.registry = registry
        self.timeout = timeout if timeout is not None else settings.MODULE_IMPORT_TIMEOUT_SECONDS
        self.package_prefix = package_prefix or settings.MODULE_PACKAGE_PREFIX
        self.discovery_paths = list(
            discovery_paths if discovery_paths is not None else settings.MODULE_DISCOVERY_PATHS
        )
        self._importer = importer

        self._loaded: Dict[str, InstalledModuleInfo] = {}
        self._module_types: Dict[str, List[str]] = {}
        self._failures: Dict[str, ModuleLoadError] = {}
        self._python_modules: Dict[str, Set[str]] = {}

        self.logger = logger.bind(module="module_loader", registry_id=registry.registry_id)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load_modules(self, installed: Iterable[InstalledModuleInfo]) -> ModuleLoadReport:
        """
        Load every active, component-contributing module.

        Args:
            installed: Modules installed on the site

        Returns:
            ModuleLoadReport: Loaded ids, failures keyed by module id, skipped ids
        """
        report = ModuleLoadReport()
        tasks: Dict[str, asyncio.Task] = {}

        for info in installed:
            if not isinstance(info, InstalledModuleInfo):
                info = InstalledModuleInfo.model_validate(info)
            if info.status != ModuleStatus.ACTIVE or not info.has_components:
                report.skipped.append(info.id)
                continue
            if info.id in tasks:
                self.logger.warning("Duplicate module in load batch", module_id=info.id)
                report.skipped.append(info.id)
                continue
            tasks[info.id] = asyncio.create_task(self._load_one(info))

        self.logger.info("Module load started", modules=list(tasks), skipped=report.skipped)

        for module_id, task in tasks.items():
            try:
                errors = await task
            except ModuleLoadError as e:
                report.failed[module_id] = e
                self._failures[module_id] = e
                continue
            report.loaded.append(module_id)
            if errors:
                report.definition_errors[module_id] = errors

        self.logger.info(
            "Module load completed",
            loaded=report.loaded,
            failed=report.failed_module_names(),
            skipped=len(report.skipped),
        )
        return report

    async def load_module(self, info: InstalledModuleInfo) -> ModuleLoadReport:
        return await self.load_modules([info])

    async def _load_one(self, info: InstalledModuleInfo) -> List[str]:
        """Import and register one module; raises ModuleLoadError on failure."""
        try:
            bundle = await asyncio.wait_for(self._import_bundle(info), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ModuleLoadTimeoutError(info.id, self.timeout, module_name=info.display_name)
        except ModuleLoadError:
            raise
        except Exception as e:
            raise ModuleLoadError(info.id, f"{type(e).__name__}: {e}", module_name=info.display_name) from e

        previous = self._snapshot_registration(info.id)
        try:
            return self._register_bundle(info, bundle)
        except Exception as e:
            self._restore_registration(info.id, previous)
            if isinstance(e, ModuleLoadError):
                raise
            raise ModuleLoadError(info.id, f"{type(e).__name__}: {e}", module_name=info.display_name) from e

    async def _import_bundle(self, info: InstalledModuleInfo) -> Any:
        if self._importer is not None:
            result = self._importer(info)
            if inspect.isawaitable(result):
                result = await result
            return result
        return await asyncio.to_thread(self._default_import, info)

    def _register_bundle(self, info: InstalledModuleInfo, bundle: Any) -> List[str]:
        """
        Register a bundle's definitions and custom fields.

        Types the module provided before but no longer exports are removed, so
        a reload leaves exactly the new bundle's types behind.

        Returns:
            List[str]: Per-definition errors (the module still counts as loaded)
        """
        components = _bundle_part(bundle, "components")
        if components is None:
            raise ModuleLoadError(info.id, "bundle has no 'components' export", module_name=info.display_name)

        definitions = _definition_list(components)
        if definitions is None:
            raise ModuleLoadError(
                info.id,
                f"'components' must be a mapping or list, got {type(components).__name__}",
                module_name=info.display_name,
            )

        fields = _bundle_part(bundle, "fields")
        if fields is None:
            fields = {}
        if not isinstance(fields, Mapping):
            raise ModuleLoadError(
                info.id,
                f"'fields' must be a mapping, got {type(fields).__name__}",
                module_name=info.display_name,
            )
        bad_keys = [key for key in fields if not isinstance(key, str) or not key]
        if bad_keys:
            raise ModuleLoadError(
                info.id,
                f"'fields' keys must be non-empty strings, got {bad_keys!r}",
                module_name=info.display_name,
            )

        report = self.registry.register_all(
            definitions,
            source=MODULE_SOURCE,
            module_id=info.id,
            module_name=info.display_name,
            module_slug=info.slug,
        )
        if definitions and not report.registered:
            raise ModuleLoadError(
                info.id,
                f"no valid component definitions ({'; '.join(report.errors)})",
                module_name=info.display_name,
            )

        errors = list(report.errors)
        for custom_type, renderer in fields.items():
            key = custom_type if ":" in custom_type else f"{info.slug}:{custom_type}"
            try:
                self.registry.register_custom_field(key, renderer, info.id)
            except PageStudioException as e:
                errors.append(e.message)

        for stale in set(self._module_types.get(info.id, [])) - set(report.registered):
            self.registry.unregister(stale)

        reloaded = info.id in self._loaded
        self._loaded[info.id] = info
        self._module_types[info.id] = list(report.registered)
        self._failures.pop(info.id, None)

        self.logger.info(
            "Module reloaded" if reloaded else "Module loaded",
            module_id=info.id,
            module_name=info.display_name,
            version=info.version,
            components=report.registered,
            definition_errors=len(errors),
        )
        return errors

    def _snapshot_registration(self, module_id: str) -> Tuple[List[ComponentDefinition], Dict[str, Any]]:
        return (
            self.registry.get_by_module(module_id),
            self.registry.get_module_custom_fields(module_id),
        )

    def _restore_registration(
        self,
        module_id: str,
        previous: Tuple[List[ComponentDefinition], Dict[str, Any]],
    ) -> None:
        """Drop a failed bundle's partial registration and put back what the module had before."""
        definitions, fields = previous
        self.registry.unregister_module(module_id)
        for definition in definitions:
            self.registry.register(
                definition,
                source=MODULE_SOURCE,
                module_id=module_id,
                module_name=definition.module.name if definition.module else None,
                module_slug=definition.module.slug if definition.module else None,
            )
        for custom_type, renderer in fields.items():
            self.registry.register_custom_field(custom_type, renderer, module_id)
        self.logger.info(
            "Module registration rolled back",
            module_id=module_id,
            restored=[definition.type for definition in definitions],
        )

    # -------------------------------------------------------------------------
    # Default importer
    # -------------------------------------------------------------------------

    def _default_import(self, info: InstalledModuleInfo) -> Any:
        """Import ``<prefix>.<slug>``, falling back to a file under the discovery paths."""
        package_name = f"{self.package_prefix}.{info.import_name}"
        self._track_python_modules(info)
        try:
            return importlib.import_module(package_name)
        except ModuleNotFoundError as e:
            if e.name not in (package_name, self.package_prefix):
                raise
            return self._import_from_paths(info)

    def _import_from_paths(self, info: InstalledModuleInfo) -> Any:
        for directory in self.discovery_paths:
            base = Path(directory)
            for candidate in (base / f"{info.import_name}.py", base / info.import_name / "__init__.py"):
                if candidate.is_file():
                    return self._load_module_from_file(info, candidate)

        raise ModuleLoadError(
            info.id,
            f"module '{info.slug}' not found in package '{self.package_prefix}' or discovery paths",
            module_name=info.display_name,
            error_code="MODULE_NOT_FOUND",
        )

    def _load_module_from_file(self, info: InstalledModuleInfo, file_path: Path) -> Any:
        module_name = f"{FILE_MODULE_NAMESPACE}.{info.import_name}"
        spec = importlib.util.spec_from_file_location(
            module_name,
            file_path,
            submodule_search_locations=[str(file_path.parent)] if file_path.name == "__init__.py" else None,
        )
        if not spec or not spec.loader:
            raise ModuleLoadError(info.id, f"cannot create module spec for {file_path}", module_name=info.display_name)

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(module_name, None)
            raise

        self.logger.debug("Module file imported", module_id=info.id, file=str(file_path))
        return module

    def _track_python_modules(self, info: InstalledModuleInfo) -> None:
        """Remember the import names owned by a module; its submodules are matched by prefix on purge."""
        self._python_modules[info.id] = {
            f"{self.package_prefix}.{info.import_name}",
            f"{FILE_MODULE_NAMESPACE}.{info.import_name}",
        }

    def _purge_python_modules(self, module_id: str) -> None:
        """Remove a module's own packages and their submodules from sys.modules; shared imports stay."""
        names = self._python_modules.pop(module_id, set())
        purged = []
        for name in list(sys.modules):
            if name in names or any(name.startswith(f"{tracked}.") for tracked in names):
                del sys.modules[name]
                purged.append(name)
        if purged:
            self.logger.debug("Python modules purged", module_id=module_id, purged=sorted(purged))

    # -------------------------------------------------------------------------
    # Unload / reload
    # -------------------------------------------------------------------------

    def unload_module(self, module_id: str) -> List[str]:
        """
        Remove a module's definitions from the registry.

        Idempotent: unloading an unknown or already unloaded module is a no-op.

        Returns:
            List[str]: Component types that were removed
        """
        removed = self.registry.unregister_module(module_id)
        was_loaded = self._loaded.pop(module_id, None) is not None
        self._module_types.pop(module_id, None)
        self._failures.pop(module_id, None)
        self._purge_python_modules(module_id)

        if was_loaded or removed:
            self.logger.info("Module unloaded", module_id=module_id, removed=removed)
        return removed

    async def reload_module(self, info: InstalledModuleInfo) -> ModuleLoadReport:
        """
        Re-import a module and replace its definitions in place.

        Safe for modules that were never loaded. On failure the previous
        definitions stay registered.
        """
        if info.status != ModuleStatus.ACTIVE or not info.has_components:
            self.unload_module(info.id)
            return ModuleLoadReport(skipped=[info.id])

        self._purge_python_modules(info.id)
        return await self.load_modules([info])

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def loaded_module_ids(self) -> List[str]:
        return sorted(self._loaded)

    def is_loaded(self, module_id: str) -> bool:
        return module_id in self._loaded

    def get_module_info(self, module_id: str) -> Optional[InstalledModuleInfo]:
        return self._loaded.get(module_id)

    def get_module_types(self, module_id: str) -> List[str]:
        return list(self._module_types.get(module_id, []))

    def get_failures(self) -> Dict[str, ModuleLoadError]:
        """Failures of the most recent attempt per module id."""
        return dict(self._failures)


def _bundle_part(bundle: Any, name: str) -> Any:
    """Read ``components`` / ``fields`` from a mapping bundle or a Python module."""
    if bundle is None:
        return None
    if isinstance(bundle, Mapping):
        return bundle.get(name)
    return getattr(bundle, name, None)


def _definition_list(components: Any) -> Optional[List[Any]]:
    """Normalize ``{type: definition}`` or ``[definition, ...]`` into a list."""
    if isinstance(components, Mapping):
        definitions = []
        for component_type, definition in components.items():
            if isinstance(definition, Mapping) and "type" not in definition:
                definition = {**definition, "type": component_type}
            definitions.append(definition)
        return definitions
    if isinstance(components, (list, tuple)):
        return list(components)
    return None
