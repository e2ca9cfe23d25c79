"""
Tests for serialized module install/uninstall processing
"""

import pytest

from conftest import component, module_info
from pagestudio.core.module_events import ModuleEvent, ModuleEventProcessor, ModuleEventType
from pagestudio.core.module_loader import ModuleLoader


@pytest.mark.asyncio
async def test_events_apply_in_arrival_order(registry, module_host):
    module_host.add("gallery", {"components": [component("Gallery", label="v1")]}, delay=0.02)
    loader = ModuleLoader(registry, importer=module_host, timeout=1.0)
    processor = ModuleEventProcessor(loader)
    await processor.start()

    info = module_info("gallery")
    await processor.install(info)
    await processor.uninstall("gallery")
    await processor.install(info)
    await processor.drain()

    kinds = [p.event.type for p in processor.processed]
    assert kinds == [ModuleEventType.INSTALL, ModuleEventType.UNINSTALL, ModuleEventType.INSTALL]
    assert processor.processed[1].removed == ["Gallery"]
    assert registry.is_registered("Gallery")
    assert loader.is_loaded("gallery")

    await processor.stop()
    assert not processor.is_running


@pytest.mark.asyncio
async def test_uninstall_after_install_leaves_nothing(registry, module_host):
    module_host.add("maps", {"components": [component("Map")]}, delay=0.02)
    processor = ModuleEventProcessor(ModuleLoader(registry, importer=module_host, timeout=1.0))
    await processor.start()

    await processor.install(module_info("maps"))
    await processor.uninstall("maps")
    await processor.stop()

    assert not registry.is_registered("Map")


@pytest.mark.asyncio
async def test_update_reloads_definitions(registry, module_host):
    module_host.add("gallery", {"components": [component("Gallery", label="v1"), component("Lightbox")]})
    processor = ModuleEventProcessor(ModuleLoader(registry, importer=module_host))
    await processor.start()
    await processor.install(module_info("gallery"))
    await processor.drain()

    module_host.add("gallery", {"components": [component("Gallery", label="v2")]})
    await processor.update(module_info("gallery"))
    await processor.stop()

    assert registry.get("Gallery").label == "v2"
    assert not registry.is_registered("Lightbox")
    assert processor.processed[-1].report.loaded == ["gallery"]


@pytest.mark.asyncio
async def test_failing_event_does_not_stop_worker(registry, module_host):
    module_host.add("good", {"components": [component("Good")]})
    processor = ModuleEventProcessor(ModuleLoader(registry, importer=module_host))
    await processor.start()

    await processor.publish(ModuleEvent(type=ModuleEventType.INSTALL, module_id="broken"))
    await processor.install(module_info("good"))
    await processor.drain()

    assert processor.processed[0].error is not None
    assert processor.processed[1].error is None
    assert registry.is_registered("Good")
    assert processor.is_running
    await processor.stop()


@pytest.mark.asyncio
async def test_load_failure_is_reported_not_raised(registry, module_host):
    module_host.fail("crashy", RuntimeError("boom"))
    processor = ModuleEventProcessor(ModuleLoader(registry, importer=module_host))
    await processor.start()
    await processor.install(module_info("crashy"))
    await processor.stop()

    result = processor.processed[0]
    assert result.error is None
    assert result.report.failed_module_names() == ["Crashy"]


@pytest.mark.asyncio
async def test_stop_without_drain_leaves_queue(registry, module_host):
    processor = ModuleEventProcessor(ModuleLoader(registry, importer=module_host))
    await processor.uninstall("never-started")
    await processor.stop(drain=False)

    assert len(processor.processed) == 0
    assert not processor.is_running


@pytest.mark.asyncio
async def test_start_is_idempotent(registry, module_host):
    processor = ModuleEventProcessor(ModuleLoader(registry, importer=module_host))
    await processor.start()
    task = processor._worker_task
    await processor.start()
    assert processor._worker_task is task
    await processor.stop()


@pytest.mark.asyncio
async def test_processed_log_keeps_most_recent(registry, module_host):
    processor = ModuleEventProcessor(ModuleLoader(registry, importer=module_host), keep_processed=2)
    await processor.start()
    for module_id in ("a", "b", "c"):
        await processor.uninstall(module_id)
    await processor.stop()

    assert [p.event.module_id for p in processor.processed] == ["b", "c"]
