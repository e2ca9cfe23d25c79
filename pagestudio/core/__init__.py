"""
Editor core: document model, commands, registry and module loading
"""

from .logging import get_logger, setup_logging
from .commands import (
    UNSET,
    Batch,
    Command,
    DeleteSubtree,
    InsertSubtree,
    MoveSubtree,
    SetNodeFlag,
    SetProp,
    execute_command,
)
from .component_base import CORE_SOURCE, ComponentCategory, ComponentDefinition
from .component_registry import ComponentRegistry
from .core_components import create_registry, register_core_components
from .document import ROOT_ID, ComponentNode, PageDocument, create_empty_document
from .editor import EditorSession
from .history import History, HistoryEntry
from .ids import new_component_id, new_id
from .module_events import ModuleEventProcessor
from .module_loader import InstalledModuleInfo, ModuleLoader, ModuleLoadReport, ModuleStatus
from .render import PlaceholderInfo, RenderNode, RenderResolver
from .responsive import Breakpoint, collapse_responsive, expand_responsive, resolve
from .selection import SelectionState
from .templates import DEFAULT_SITE_COLORS, TemplateDefinition, TemplateLibrary, instantiate

__all__ = [
    "get_logger",
    "setup_logging",
    "UNSET",
    "Batch",
    "Command",
    "DeleteSubtree",
    "InsertSubtree",
    "MoveSubtree",
    "SetNodeFlag",
    "SetProp",
    "execute_command",
    "CORE_SOURCE",
    "ComponentCategory",
    "ComponentDefinition",
    "ComponentRegistry",
    "create_registry",
    "register_core_components",
    "ROOT_ID",
    "ComponentNode",
    "PageDocument",
    "create_empty_document",
    "EditorSession",
    "History",
    "HistoryEntry",
    "new_component_id",
    "new_id",
    "ModuleEventProcessor",
    "InstalledModuleInfo",
    "ModuleLoader",
    "ModuleLoadReport",
    "ModuleStatus",
    "PlaceholderInfo",
    "RenderNode",
    "RenderResolver",
    "Breakpoint",
    "collapse_responsive",
    "expand_responsive",
    "resolve",
    "SelectionState",
    "DEFAULT_SITE_COLORS",
    "TemplateDefinition",
    "TemplateLibrary",
    "instantiate",
]
