"""
Tests for the module loader
"""

import sys
import textwrap

import pytest

from conftest import component, module_info
from pagestudio.core.exceptions import ModuleLoadTimeoutError
from pagestudio.core.module_loader import ModuleLoader, ModuleStatus


@pytest.mark.asyncio
async def test_loads_bundles_with_provenance(registry, module_host):
    module_host.add(
        "ecommerce",
        {
            "components": {"ProductCard": component("ProductCard"), "Cart": component("Cart")},
            "fields": {"product-picker": object()},
        },
    )
    loader = ModuleLoader(registry, importer=module_host, timeout=1.0)

    report = await loader.load_modules([module_info("ecommerce", name="Shop Kit")])

    assert report.loaded == ["ecommerce"]
    assert report.ok
    assert registry.get("ProductCard").module.name == "Shop Kit"
    assert {d.type for d in registry.search("shop kit")} == {"Cart", "ProductCard"}
    assert registry.get_custom_field("ecommerce:product-picker") is not None
    assert loader.is_loaded("ecommerce")
    assert loader.loaded_module_ids() == ["ecommerce"]


@pytest.mark.asyncio
async def test_malformed_module_does_not_block_others(registry, module_host):
    """N modules with one broken still register the other N-1"""
    infos = []
    for i in range(5):
        slug = f"mod{i}"
        infos.append(module_info(slug))
        if i == 2:
            module_host.add(slug, {"components": {"Broken": {"label": "No render"}}})
        else:
            module_host.add(slug, {"components": {f"Widget{i}": component(f"Widget{i}")}})

    report = await ModuleLoader(registry, importer=module_host, timeout=1.0).load_modules(infos)

    assert sorted(report.loaded) == ["mod0", "mod1", "mod3", "mod4"]
    assert list(report.failed) == ["mod2"]
    assert report.failed["mod2"].module_id == "mod2"
    assert "render" in report.failed["mod2"].reason
    for i in (0, 1, 3, 4):
        assert registry.is_registered(f"Widget{i}")
    assert not registry.is_registered("Broken")


@pytest.mark.asyncio
async def test_import_errors_and_missing_exports_are_isolated(registry, module_host):
    module_host.fail("crashy", RuntimeError("boom"))
    module_host.add("empty", {"fields": {}})
    module_host.add("good", {"components": [component("Good")]})
    loader = ModuleLoader(registry, importer=module_host, timeout=1.0)

    report = await loader.load_modules(
        [module_info("crashy"), module_info("missing"), module_info("empty"), module_info("good")]
    )

    assert report.loaded == ["good"]
    assert set(report.failed) == {"crashy", "missing", "empty"}
    assert "boom" in report.failed["crashy"].reason
    assert "components" in report.failed["empty"].reason
    assert set(report.failed_module_names()) == {"Crashy", "Missing", "Empty"}
    assert set(loader.get_failures()) == {"crashy", "missing", "empty"}


@pytest.mark.asyncio
async def test_timeout_fails_only_the_slow_module(registry, module_host):
    module_host.add("slow", {"components": [component("Slow")]}, delay=1.0)
    module_host.add("fast", {"components": [component("Fast")]})

    report = await ModuleLoader(registry, importer=module_host, timeout=0.05).load_modules(
        [module_info("slow"), module_info("fast")]
    )

    assert report.loaded == ["fast"]
    assert isinstance(report.failed["slow"], ModuleLoadTimeoutError)
    assert report.failed["slow"].error_code == "MODULE_LOAD_TIMEOUT"
    assert registry.is_registered("Fast")
    assert not registry.is_registered("Slow")


@pytest.mark.asyncio
async def test_inactive_and_componentless_modules_skipped(registry, module_host):
    module_host.add("paused", {"components": [component("Paused")]})
    module_host.add("analytics", {"components": []})

    report = await ModuleLoader(registry, importer=module_host).load_modules(
        [module_info("paused", status=ModuleStatus.SUSPENDED), module_info("analytics", has_components=False)]
    )

    assert report.skipped == ["paused", "analytics"]
    assert module_host.calls == []


@pytest.mark.asyncio
async def test_partially_invalid_bundle_still_loads(registry, module_host):
    module_host.add("mixed", {"components": [component("Fine"), {"type": "Heading", "label": "Clash", "render": print}]})

    report = await ModuleLoader(registry, importer=module_host).load_modules([module_info("mixed")])

    assert report.loaded == ["mixed"]
    assert len(report.definition_errors["mixed"]) == 1
    assert registry.source_of("Heading") == "core"


@pytest.mark.asyncio
async def test_unload_is_idempotent(registry, module_host):
    module_host.add("ecommerce", {"components": [component("ProductCard")]})
    loader = ModuleLoader(registry, importer=module_host)

    assert loader.unload_module("ecommerce") == []
    await loader.load_modules([module_info("ecommerce")])
    assert loader.unload_module("ecommerce") == ["ProductCard"]
    assert loader.unload_module("ecommerce") == []
    assert not loader.is_loaded("ecommerce")
    assert registry.get("ProductCard") is None


@pytest.mark.asyncio
async def test_reload_replaces_in_place(registry, module_host):
    module_host.add("gallery", {"components": [component("Gallery", label="v1"), component("Lightbox")]})
    loader = ModuleLoader(registry, importer=module_host)
    await loader.load_modules([module_info("gallery")])

    module_host.add("gallery", {"components": [component("Gallery", label="v2")]})
    report = await loader.reload_module(module_info("gallery"))

    assert report.loaded == ["gallery"]
    assert registry.get("Gallery").label == "v2"
    assert registry.get("Lightbox") is None
    assert loader.get_module_types("gallery") == ["Gallery"]


@pytest.mark.asyncio
async def test_reload_of_unknown_module_loads_it(registry, module_host):
    module_host.add("fresh", {"components": [component("Fresh")]})
    loader = ModuleLoader(registry, importer=module_host)
    report = await loader.reload_module(module_info("fresh"))
    assert report.loaded == ["fresh"]


@pytest.mark.asyncio
async def test_failed_reload_keeps_previous_definitions(registry, module_host):
    module_host.add("gallery", {"components": [component("Gallery")]})
    loader = ModuleLoader(registry, importer=module_host)
    await loader.load_modules([module_info("gallery")])

    module_host.fail("gallery", ImportError("syntax error"))
    report = await loader.reload_module(module_info("gallery"))

    assert "gallery" in report.failed
    assert registry.is_registered("Gallery")


@pytest.mark.asyncio
async def test_sync_importer_supported(registry):
    loader = ModuleLoader(registry, importer=lambda info: {"components": [component("Sync")]})
    report = await loader.load_modules([module_info("sync")])
    assert report.loaded == ["sync"]


@pytest.mark.asyncio
async def test_default_importer_loads_from_discovery_path(registry, tmp_path):
    (tmp_path / "weather_widget.py").write_text(
        textwrap.dedent(
            '''
            def render(props, children=None):
                return {"tag": "div", "props": props, "children": list(children or [])}

            components = {
                "WeatherCard": {"label": "Weather card", "category": "content", "render": render},
            }
            '''
        )
    )
    loader = ModuleLoader(registry, package_prefix="pagestudio_test_modules", discovery_paths=[str(tmp_path)])

    report = await loader.load_modules([module_info("weather", slug="weather-widget", name="Weather")])

    assert report.loaded == ["weather"]
    assert registry.get("WeatherCard").module.name == "Weather"
    assert "pagestudio_dynamic_modules.weather_widget" in sys.modules

    loader.unload_module("weather")
    assert "pagestudio_dynamic_modules.weather_widget" not in sys.modules


@pytest.mark.asyncio
async def test_default_importer_reports_missing_module(registry, tmp_path):
    loader = ModuleLoader(registry, package_prefix="pagestudio_test_modules", discovery_paths=[str(tmp_path)])
    report = await loader.load_modules([module_info("ghost")])
    assert report.failed["ghost"].error_code == "MODULE_NOT_FOUND"


@pytest.mark.asyncio
async def test_loaders_do_not_share_state(module_host):
    from pagestudio.core.core_components import create_registry

    module_host.add("ecommerce", {"components": [component("ProductCard")]})
    first = ModuleLoader(create_registry(), importer=module_host)
    second = ModuleLoader(create_registry(), importer=module_host)

    await first.load_modules([module_info("ecommerce")])

    assert first.is_loaded("ecommerce")
    assert not second.is_loaded("ecommerce")
    assert second.registry.get("ProductCard") is None


@pytest.mark.asyncio
async def test_malformed_fields_export_fails_only_that_module(registry, module_host):
    module_host.add("bad", {"components": [component("BadCard")], "fields": ["oops"]})
    module_host.add("good", {"components": [component("GoodCard")]})

    report = await ModuleLoader(registry, importer=module_host).load_modules(
        [module_info("bad"), module_info("good")]
    )

    assert report.loaded == ["good"]
    assert "fields" in report.failed["bad"].reason
    assert registry.is_registered("GoodCard")
    assert not registry.is_registered("BadCard")


@pytest.mark.asyncio
async def test_non_string_field_key_fails_only_that_module(registry, module_host):
    module_host.add("bad", {"components": [component("BadCard")], "fields": {3: object()}})
    module_host.add("good", {"components": [component("GoodCard")]})

    report = await ModuleLoader(registry, importer=module_host).load_modules(
        [module_info("bad"), module_info("good")]
    )

    assert set(report.failed) == {"bad"}
    assert report.loaded == ["good"]
    assert not registry.is_registered("BadCard")


@pytest.mark.asyncio
async def test_unexpected_registration_error_is_isolated_and_rolled_back(registry, module_host, monkeypatch):
    module_host.add("exploding", {"components": [component("Boom")], "fields": {"picker": object()}})
    module_host.add("good", {"components": [component("GoodCard")]})
    original = registry.register_custom_field

    def register_custom_field(custom_type, renderer, module_id):
        if module_id == "exploding":
            raise RuntimeError("renderer rejected")
        return original(custom_type, renderer, module_id)

    monkeypatch.setattr(registry, "register_custom_field", register_custom_field)
    loader = ModuleLoader(registry, importer=module_host)

    report = await loader.load_modules([module_info("exploding"), module_info("good")])

    assert report.loaded == ["good"]
    assert "RuntimeError" in report.failed["exploding"].reason
    assert not registry.is_registered("Boom")
    assert registry.get_by_module("exploding") == []
    assert not loader.is_loaded("exploding")


@pytest.mark.asyncio
async def test_failed_registration_on_reload_restores_previous_bundle(registry, module_host):
    module_host.add("gallery", {"components": [component("Gallery", label="v1")], "fields": {"picker": "v1"}})
    loader = ModuleLoader(registry, importer=module_host)
    await loader.load_modules([module_info("gallery")])

    module_host.add("gallery", {"components": [component("Gallery", label="v2")], "fields": "broken"})
    report = await loader.reload_module(module_info("gallery"))

    assert "gallery" in report.failed
    assert registry.get("Gallery").label == "v1"
    assert registry.get_custom_field("gallery:picker") == "v1"


@pytest.mark.asyncio
async def test_duplicate_module_in_batch_is_reported_as_skipped(registry, module_host):
    module_host.add("maps", {"components": [component("Map")]})

    report = await ModuleLoader(registry, importer=module_host).load_modules(
        [module_info("maps"), module_info("maps")]
    )

    assert report.loaded == ["maps"]
    assert report.skipped == ["maps"]
    assert module_host.calls == ["maps"]


@pytest.mark.asyncio
async def test_unload_keeps_shared_imports(registry, tmp_path, monkeypatch):
    shared_dir = tmp_path / "shared"
    plugin_dir = tmp_path / "plugins"
    shared_dir.mkdir()
    plugin_dir.mkdir()
    (shared_dir / "pagestudio_shared_helper.py").write_text("TAG = 'div'\n")
    (plugin_dir / "alpha.py").write_text(
        textwrap.dedent(
            '''
            import pagestudio_shared_helper

            def render(props, children=None):
                return {"tag": pagestudio_shared_helper.TAG, "props": props, "children": list(children or [])}

            components = [{"type": "Alpha", "label": "Alpha", "render": render}]
            '''
        )
    )
    monkeypatch.syspath_prepend(str(shared_dir))
    monkeypatch.delitem(sys.modules, "pagestudio_shared_helper", raising=False)
    loader = ModuleLoader(registry, package_prefix="pagestudio_test_modules", discovery_paths=[str(plugin_dir)])

    report = await loader.load_modules([module_info("alpha")])
    assert report.loaded == ["alpha"]
    assert "pagestudio_shared_helper" in sys.modules

    loader.unload_module("alpha")

    assert "pagestudio_shared_helper" in sys.modules
    assert "pagestudio_dynamic_modules.alpha" not in sys.modules
    sys.modules.pop("pagestudio_shared_helper", None)
