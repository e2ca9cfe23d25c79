"""
Tests for render resolution and placeholders
"""

from conftest import component
from pagestudio.core.component_registry import MODULE_SOURCE
from pagestudio.core.document import PageDocument
from pagestudio.core.render import RenderResolver


def _document():
    return PageDocument.from_dict(
        {
            "version": "1.0",
            "root": {"id": "root", "type": "Root", "props": {}, "children": ["s1", "card"]},
            "components": {
                "s1": {
                    "id": "s1",
                    "type": "Section",
                    "props": {"minHeight": {"mobile": 200, "desktop": 600}},
                    "children": ["h1", "hidden1"],
                },
                "h1": {"id": "h1", "type": "Heading", "props": {"text": "Hi"}, "parentId": "s1"},
                "hidden1": {"id": "hidden1", "type": "Text", "props": {"text": "x"}, "parentId": "s1", "hidden": True},
                "card": {
                    "id": "card",
                    "type": "ProductCard",
                    "props": {"price": {"mobile": 1, "tablet": 2}},
                    "children": ["inner"],
                },
                "inner": {"id": "inner", "type": "Text", "props": {"text": "In card"}, "parentId": "card"},
            },
        }
    )


def test_responsive_props_resolved_per_breakpoint(registry):
    resolver = RenderResolver(registry)
    document = _document()

    mobile = resolver.resolve(document, "mobile")
    desktop = resolver.resolve(document, "desktop")

    assert mobile[0].props["minHeight"] == 200
    assert desktop[0].props["minHeight"] == 600
    assert desktop[0].render is registry.get("Section").render
    assert [child.id for child in desktop[0].children] == ["h1", "hidden1"]


def test_missing_definition_becomes_placeholder(registry):
    """Unknown types render as placeholders and keep their data"""
    registry.register(component("ProductCard", acceptsChildren=True), source=MODULE_SOURCE, module_id="ecommerce", module_name="Shop Kit")
    registry.unregister_module("ecommerce")
    document = _document()
    before = document.to_dict()

    card = RenderResolver(registry).resolve(document, "tablet")[1]

    assert card.is_placeholder
    assert card.placeholder.original_type == "ProductCard"
    assert card.placeholder.module_name == "Shop Kit"
    assert card.props == {"price": 2}
    assert [child.id for child in card.children] == ["inner"]
    assert document.to_dict() == before


def test_placeholder_module_from_namespace(registry):
    document = PageDocument.from_dict(
        {
            "version": "1.0",
            "root": {"id": "root", "type": "Root", "props": {}, "children": ["m"]},
            "components": {"m": {"id": "m", "type": "maps:Map", "props": {}}},
        }
    )
    node = RenderResolver(registry).resolve(document, "mobile")[0]
    assert node.placeholder.module_name == "maps"


def test_reinstalling_module_restores_rendering(registry):
    document = _document()
    resolver = RenderResolver(registry)
    assert resolver.resolve(document, "mobile")[1].is_placeholder

    registry.register(component("ProductCard", acceptsChildren=True), source=MODULE_SOURCE, module_id="ecommerce")
    card = resolver.resolve(document, "mobile")[1]
    assert not card.is_placeholder
    assert card.props == {"price": 1}


def test_render_invokes_contracts_and_skips_hidden(registry):
    outputs = RenderResolver(registry).render(_document(), "desktop")

    section, placeholder = outputs
    assert section["tag"] == "section"
    assert section["props"]["minHeight"] == 600
    assert [child["tag"] for child in section["children"]] == ["h2"]
    assert placeholder["tag"] == "placeholder"
    assert placeholder["props"]["originalType"] == "ProductCard"
    assert placeholder["children"][0]["props"]["text"] == "In card"

    with_hidden = RenderResolver(registry).render(_document(), "desktop", include_hidden=True)
    assert len(with_hidden[0]["children"]) == 2


def test_resolved_props_are_copies(registry):
    document = _document()
    node = RenderResolver(registry).resolve(document, "mobile")[0].children[0]
    node.props["text"] = "mutated"
    assert document.components["h1"].props["text"] == "Hi"


def test_session_render_uses_default_breakpoint(session, seeded):
    nodes = session.render()
    assert [node.id for node in nodes] == [seeded["section"], seeded["button"]]
