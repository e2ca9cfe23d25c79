"""
Tests for editor session operations
"""

import pytest

from conftest import component
from pagestudio.core.commands import UNSET
from pagestudio.core.component_registry import MODULE_SOURCE
from pagestudio.core.editor import EditorSession
from pagestudio.core.exceptions import CommandRejectedError, ContainerError


def test_add_component_seeds_defaults(session):
    node_id = session.add_component("Heading", {"text": "Custom"})
    node = session.document.components[node_id]

    assert node.props == {"text": "Custom", "level": "h2"}
    assert node.children is None
    assert session.document.root.children == [node_id]
    assert session.selection.component_id == node_id


def test_add_container_gets_child_list(session):
    node_id = session.add_component("Section")
    assert session.document.components[node_id].children == []


def test_add_component_defaults_are_not_shared(session):
    first = session.add_component("Section", parent_id="root")
    second = session.add_component("Section", parent_id="root")
    session.document.components[first].props["padding"]["top"] = 0
    assert session.document.components[second].props["padding"]["top"] == 48


def test_add_unknown_type_rejected(session):
    with pytest.raises(CommandRejectedError) as exc_info:
        session.add_component("Nope")
    assert exc_info.value.error_code == "UNKNOWN_COMPONENT_TYPE"
    assert not session.can_undo()


def test_add_follows_selection(session, seeded):
    session.selection.select(seeded["section"])
    inside = session.add_component("Text", select=False)
    assert session.document.components[seeded["section"]].children[-1] == inside

    session.selection.select(seeded["heading"])
    after = session.add_component("Text", select=False)
    assert session.document.components[seeded["section"]].children[1] == after


def test_add_to_leaf_rejected(session, seeded):
    with pytest.raises(ContainerError):
        session.add_component("Text", parent_id=seeded["heading"])


def test_allowed_children_enforced(session, registry):
    registry.register(
        component("Tabs", acceptsChildren=True, allowedChildren=["Text"]),
        source=MODULE_SOURCE,
        module_id="ui",
    )
    tabs = session.add_component("Tabs")
    session.add_component("Text", parent_id=tabs)
    with pytest.raises(ContainerError) as exc_info:
        session.add_component("Heading", parent_id=tabs)
    assert exc_info.value.error_code == "CHILD_TYPE_NOT_ALLOWED"


def test_update_props_is_one_step(session, seeded):
    button = seeded["button"]
    session.update_props(button, {"label": "Buy", "href": "/shop", "variant": UNSET})
    props = session.document.components[button].props
    assert props["label"] == "Buy"
    assert props["href"] == "/shop"
    assert "variant" not in props

    session.undo()
    assert session.document.components[button].props["variant"] == "primary"
    assert session.document.components[button].props["label"] == "Get started"


def test_set_prop_per_breakpoint(session, seeded):
    heading = seeded["heading"]
    session.set_prop(heading, "align", "left")
    session.history.break_coalescing()
    session.set_prop(heading, "align", "center", breakpoint="desktop")

    assert session.document.components[heading].props["align"] == {"mobile": "left", "desktop": "center"}
    resolved = {node.id: node for node in session.render("tablet")[0].children}
    assert resolved[heading].props["align"] == "left"


def test_update_root_props(session):
    session.update_root_props({"title": "Landing", "description": "Hello"})
    assert session.document.root.props == {"title": "Landing", "description": "Hello"}
    session.undo()
    assert session.document.root.props == {}


def test_delete_components_in_one_step(session, seeded):
    before = session.to_dict()
    deleted = session.delete_components([seeded["text"], seeded["section"], seeded["button"]])

    assert deleted == [seeded["section"], seeded["button"]]
    assert len(session.document) == 0
    assert session.history.undo_depth == 1

    session.undo()
    assert session.to_dict() == before


def test_delete_clears_selection(session, seeded):
    session.selection.select(seeded["text"])
    session.delete_component(seeded["columns"])
    assert session.selection.component_id is None


def test_duplicate_component(session, seeded):
    section = seeded["section"]
    original_ids = set(session.document.subtree_ids(section))

    clone = session.duplicate_component(section)

    clone_ids = set(session.document.subtree_ids(clone))
    assert len(clone_ids) == len(original_ids)
    assert not clone_ids & original_ids
    assert session.document.root.children.index(clone) == session.document.root.children.index(section) + 1
    heading_clone = session.document.components[clone].children[0]
    assert session.document.components[heading_clone].props["text"] == "Welcome"
    assert session.selection.component_id == clone

    session.undo()
    assert not clone_ids & set(session.document.components)
    assert session.history.undo_depth == 0


def test_duplicate_forbidden_type(session, registry):
    registry.register(component("Header", canDuplicate=False), source=MODULE_SOURCE, module_id="nav")
    header = session.add_component("Header")
    with pytest.raises(CommandRejectedError):
        session.duplicate_component(header)


def test_lock_and_hide(session, seeded):
    heading = seeded["heading"]
    session.set_locked(heading)
    with pytest.raises(CommandRejectedError):
        session.delete_component(heading)
    with pytest.raises(CommandRejectedError):
        session.set_prop(heading, "text", "x")

    session.set_locked(heading, False)
    session.set_hidden(heading)
    assert session.document.components[heading].hidden
    assert session.history.undo_labels()[:3] == ["Hide", "Unlock", "Lock"]


def test_undo_is_not_blocked_by_delete_policy(session, registry):
    """Undoing an insert removes the node even when users may not delete it"""
    registry.register(component("Footer", canDelete=False), source=MODULE_SOURCE, module_id="nav")
    footer = session.add_component("Footer")
    with pytest.raises(CommandRejectedError):
        session.delete_component(footer)

    assert session.undo()
    assert footer not in session.document.components
    assert session.redo()
    assert footer in session.document.components


def test_dirty_tracking(session, seeded):
    assert not session.is_dirty
    session.set_prop(seeded["heading"], "text", "x")
    assert session.is_dirty
    session.undo()
    assert not session.is_dirty
    session.redo()
    session.mark_saved()
    assert not session.is_dirty


def test_load_document(session, seeded):
    data = session.to_dict()
    other = EditorSession(session.registry)
    other.add_component("Spacer")
    other.load_document(data)

    assert other.to_dict() == data
    assert not other.can_undo()
    assert not other.is_dirty


def test_sessions_do_not_share_state(registry):
    first = EditorSession(registry)
    second = EditorSession(registry)
    first.add_component("Text")
    assert len(second.document) == 0
    assert not second.can_undo()


def test_undo_restores_section_stored_without_children(session):
    session.load_document(
        {
            "version": "1.0",
            "root": {"id": "root", "type": "Root", "props": {}, "children": ["s1"]},
            "components": {"s1": {"id": "s1", "type": "Section", "props": {}}},
        }
    )
    before = session.to_dict()

    heading_id = session.add_component("Heading", parent_id="s1")
    assert session.document.components["s1"].children == [heading_id]

    assert session.undo()
    assert session.to_dict() == before
    assert not session.is_dirty

    assert session.redo()
    assert session.document.components["s1"].children == [heading_id]
