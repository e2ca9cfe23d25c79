"""
Shared fixtures for the editor core tests
"""

import asyncio
from typing import Any, Dict, Optional

import pytest

from pagestudio.core.component_registry import ComponentRegistry
from pagestudio.core.core_components import create_registry, element_render
from pagestudio.core.editor import EditorSession
from pagestudio.core.history import History
from pagestudio.core.module_loader import InstalledModuleInfo


class ManualClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, milliseconds: float) -> None:
        self.now += milliseconds / 1000.0


class FakeModuleHost:
    """
    Stand-in for the module host's dynamic import mechanism.

    Each slug maps to a bundle, an exception to raise, or is missing entirely.
    Optional per-slug delays let tests exercise the import timeout.
    """

    def __init__(self):
        self.bundles: Dict[str, Any] = {}
        self.errors: Dict[str, Exception] = {}
        self.delays: Dict[str, float] = {}
        self.calls: list = []

    def add(self, slug: str, bundle: Any, delay: Optional[float] = None) -> None:
        self.bundles[slug] = bundle
        if delay is not None:
            self.delays[slug] = delay

    def fail(self, slug: str, error: Exception) -> None:
        self.errors[slug] = error

    async def __call__(self, info: InstalledModuleInfo) -> Any:
        self.calls.append(info.slug)
        if info.slug in self.delays:
            await asyncio.sleep(self.delays[info.slug])
        if info.slug in self.errors:
            raise self.errors[info.slug]
        if info.slug not in self.bundles:
            raise ImportError(f"No module named '{info.slug}'")
        return self.bundles[info.slug]


def component(component_type: str, label: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """Minimal valid definition dict for module bundles."""
    definition = {
        "type": component_type,
        "label": label or component_type,
        "category": "module",
        "render": element_render("div"),
    }
    definition.update(extra)
    return definition


def module_info(module_id: str, slug: Optional[str] = None, name: Optional[str] = None, **extra: Any) -> InstalledModuleInfo:
    return InstalledModuleInfo(id=module_id, slug=slug or module_id, name=name or module_id.title(), **extra)


@pytest.fixture
def registry() -> ComponentRegistry:
    """Registry seeded with the core palette."""
    return create_registry()


@pytest.fixture
def empty_registry() -> ComponentRegistry:
    return ComponentRegistry()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def session(registry, clock) -> EditorSession:
    """Editor session over an empty page with a hand-driven history clock."""
    return EditorSession(registry, history=History(limit=50, coalesce_window_ms=500, clock=clock))


@pytest.fixture
def seeded(session) -> Dict[str, str]:
    """
    Page with a small tree:

    root
    ├── section
    │   ├── heading
    │   └── columns
    │       └── text
    └── button
    """
    ids = {}
    ids["section"] = session.add_component("Section", parent_id="root")
    ids["heading"] = session.add_component("Heading", {"text": "Welcome"}, parent_id=ids["section"])
    ids["columns"] = session.add_component("Columns", parent_id=ids["section"])
    ids["text"] = session.add_component("Text", {"text": "Body"}, parent_id=ids["columns"])
    ids["button"] = session.add_component("Button", parent_id="root")
    session.clear_history()
    session.selection.clear()
    session.mark_saved()
    return ids


@pytest.fixture
def module_host() -> FakeModuleHost:
    return FakeModuleHost()
