"""
┌──────────────────────────────────────────────────────────────┐
│                       Editor Session                         │
│                                                              │
│  [UI action] → [Command] → [execute_command] → [History]     │
│                                  │                           │
│                        rejected ─┴─ committed → [Selection]  │
│                                                              │
│  undo / redo → replay inverse through the same choke point   │
└──────────────────────────────────────────────────────────────┘

Editor Session
Flow: User intent → Command construction → Choke point → History record → Selection prune
"""

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pagestudio.config.settings import get_settings

from .logging import get_logger
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
from .component_registry import ComponentRegistry
from .document import ROOT_ID, ComponentNode, PageDocument, create_empty_document
from .exceptions import CommandRejectedError
from .history import History
from .ids import new_component_id, new_id
from .render import RenderNode, RenderResolver
from .responsive import BreakpointLike, with_breakpoint_value
from .selection import SelectionState
from .templates import TemplateDefinition, clone_nodes, instantiate

logger = get_logger(__name__)


class EditorSession:
    """
    One open page: document, history and selection over an injected registry.

    Session Process:
    1. Build a command for the user's intent
    2. execute() → validate, apply, verify invariants (nothing changes on rejection)
    3. Record command + inverse in History (coalescing rapid prop edits)
    4. Prune the selection of ids that no longer exist

    Undo and redo replay through the same choke point with structural checks
    only, so a replay is never blocked by a lock set after the original edit.
    """

    def __init__(
        self,
        registry: ComponentRegistry,
        document: Optional[PageDocument] = None,
        history: Optional[History] = None,
        session_id: Optional[str] = None,
        site_colors: Optional[Mapping[str, str]] = None,
        validate_invariants: Optional[bool] = None,
    ):
        settings = get_settings()
        self.session_id = session_id or new_id("session")
        self.registry = registry
        self.document = document if document is not None else create_empty_document()
        self.history = history if history is not None else History()
        self.selection = SelectionState()
        self.site_colors: Dict[str, str] = dict(site_colors or {})
        self.validate_invariants = (
            validate_invariants if validate_invariants is not None else settings.VALIDATE_INVARIANTS
        )
        self.default_breakpoint = settings.DEFAULT_BREAKPOINT
        self._resolver = RenderResolver(registry)
        self._saved_state = self.document.to_dict()

        self.logger = logger.bind(session_id=self.session_id, registry_id=registry.registry_id)

    # -------------------------------------------------------------------------
    # Choke point
    # -------------------------------------------------------------------------

    def execute(self, command: Command) -> Command:
        """
        Run a user command and record it in history.

        Returns:
            Command: The inverse that was recorded

        Raises:
            CommandRejectedError: Document and history are unchanged
        """
        try:
            inverse = execute_command(
                self.document,
                command,
                registry=self.registry,
                policy=True,
                check_invariants=self.validate_invariants,
            )
        except CommandRejectedError as e:
            self.logger.info(
                "Command rejected",
                command=command.label,
                command_type=command.__class__.__name__,
                error_code=e.error_code,
                reason=e.user_message,
            )
            raise

        entry = self.history.record(command, inverse)
        self.selection.prune(self.document)
        self.logger.debug(
            "Command committed",
            command=command.label,
            command_type=command.__class__.__name__,
            undo_depth=self.history.undo_depth,
            merged_count=entry.merged_count,
        )
        return inverse

    def undo(self) -> bool:
        """Revert the most recent entry; returns False when there is nothing to undo."""
        entry = self.history.peek_undo()
        if entry is None:
            return False

        redo_command = execute_command(
            self.document,
            entry.inverse,
            registry=self.registry,
            policy=False,
            check_invariants=self.validate_invariants,
        )
        self.history.mark_undone(entry, redo_command)
        self.selection.prune(self.document)
        self.logger.info("Undo", label=entry.label, undo_depth=self.history.undo_depth)
        return True

    def redo(self) -> bool:
        """Re-apply the most recently undone entry; returns False when there is nothing to redo."""
        entry = self.history.peek_redo()
        if entry is None:
            return False

        inverse = execute_command(
            self.document,
            entry.command,
            registry=self.registry,
            policy=False,
            check_invariants=self.validate_invariants,
        )
        self.history.mark_redone(entry, inverse)
        self.selection.prune(self.document)
        self.logger.info("Redo", label=entry.label, redo_depth=self.history.redo_depth)
        return True

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    def clear_history(self) -> None:
        self.history.clear()

    # -------------------------------------------------------------------------
    # Component operations
    # -------------------------------------------------------------------------

    def add_component(
        self,
        component_type: str,
        props: Optional[Mapping[str, Any]] = None,
        parent_id: Optional[str] = None,
        index: Optional[int] = None,
        select: bool = True,
    ) -> str:
        """
        Insert a new component seeded from its definition's defaults.

        Without ``parent_id`` the selection decides the target: inside a
        selected container, after a selected leaf, otherwise at the page root.

        Returns:
            str: Id of the new node
        """
        definition = self.registry.get(component_type)
        if definition is None:
            raise CommandRejectedError(
                f"Component type '{component_type}' is not registered",
                error_code="UNKNOWN_COMPONENT_TYPE",
                details={"component_type": component_type},
            )

        if parent_id is None:
            parent_id, default_index = self.selection.insertion_target(self.document, self.registry)
            if index is None:
                index = default_index

        node_props = copy.deepcopy(definition.initial_props())
        node_props.update(copy.deepcopy(dict(props or {})))
        node = ComponentNode(
            id=new_component_id(),
            type=component_type,
            props=node_props,
            children=[] if definition.container else None,
            parent_id=None if parent_id == ROOT_ID else parent_id,
        )

        self.execute(InsertSubtree([node], parent_id, index, label=f"Add {definition.label}"))
        if select:
            self.selection.select(node.id)
        return node.id

    def set_prop(
        self,
        node_id: str,
        prop_name: str,
        value: Any,
        breakpoint: Optional[BreakpointLike] = None,
    ) -> None:
        """
        Set one prop; with ``breakpoint`` only that breakpoint's entry changes.

        Consecutive calls on the same prop coalesce into one undo step.
        """
        if breakpoint is not None:
            current = self.document.require(node_id).props.get(prop_name)
            value = with_breakpoint_value(current, breakpoint, value)
        self.execute(SetProp(node_id, prop_name, value))

    def update_props(self, node_id: str, props: Mapping[str, Any]) -> None:
        """Merge ``props`` into a node; one undo step. A value of ``UNSET`` removes the prop."""
        commands = [SetProp(node_id, name, value) for name, value in props.items()]
        if not commands:
            return
        if len(commands) == 1:
            self.execute(commands[0])
        else:
            self.execute(Batch(commands, label="Edit properties"))

    def remove_prop(self, node_id: str, prop_name: str) -> None:
        self.execute(SetProp(node_id, prop_name, UNSET, label="Reset property"))

    def update_root_props(self, props: Mapping[str, Any]) -> None:
        """Merge page-level props (title, description, styles)."""
        self.update_props(ROOT_ID, props)

    def delete_component(self, node_id: str) -> None:
        """Delete a node and its whole subtree."""
        self.execute(DeleteSubtree(node_id))

    def delete_components(self, node_ids: Iterable[str]) -> List[str]:
        """
        Delete several subtrees as one undo step.

        Ids nested inside another listed subtree are covered by their ancestor.

        Returns:
            List[str]: Root ids actually deleted
        """
        requested = list(dict.fromkeys(node_ids))
        for node_id in requested:
            self.document.require(node_id)
        roots = [
            node_id
            for node_id in requested
            if not any(self.document.is_descendant(node_id, other) for other in requested if other != node_id)
        ]
        if not roots:
            return []

        if len(roots) == 1:
            self.execute(DeleteSubtree(roots[0]))
        else:
            self.execute(Batch([DeleteSubtree(node_id) for node_id in roots], label=f"Delete {len(roots)} components"))
        return roots

    def duplicate_component(self, node_id: str, select: bool = True) -> str:
        """
        Clone a subtree with fresh ids right after the original.

        Returns:
            str: Id of the clone's root
        """
        node = self.document.require(node_id)
        definition = self.registry.get(node.type)
        if definition is not None and not definition.can_duplicate:
            raise CommandRejectedError(
                f"'{node.type}' components cannot be duplicated",
                error_code="DUPLICATE_NOT_ALLOWED",
                details={"node_id": node_id},
            )

        parent_id = self.document.parent_of(node_id)
        index = self.document.index_in_parent(node_id) + 1
        cloned, id_map = clone_nodes(self.document.snapshot_subtree(node_id))

        self.execute(InsertSubtree(cloned, parent_id, index, label="Duplicate"))
        new_root = id_map[node_id]
        if select:
            self.selection.select(new_root)
        return new_root

    def move_component(self, node_id: str, new_parent_id: str, new_index: Optional[int] = None) -> None:
        """Move a subtree; ``new_index`` addresses the target list without the moved node."""
        self.execute(MoveSubtree(node_id, new_parent_id, new_index))

    def set_locked(self, node_id: str, locked: bool = True) -> None:
        self.execute(SetNodeFlag(node_id, "locked", locked, label="Lock" if locked else "Unlock"))

    def set_hidden(self, node_id: str, hidden: bool = True) -> None:
        self.execute(SetNodeFlag(node_id, "hidden", hidden, label="Hide" if hidden else "Show"))

    def insert_template(
        self,
        template: Union[TemplateDefinition, Sequence[Any]],
        parent_id: Optional[str] = None,
        index: Optional[int] = None,
        site_colors: Optional[Mapping[str, str]] = None,
        text_tokens: Optional[Mapping[str, str]] = None,
    ) -> List[str]:
        """
        Instantiate a template and insert it as one undo step.

        Returns:
            List[str]: Root ids of the inserted fragment
        """
        if parent_id is None:
            parent_id, default_index = self.selection.insertion_target(self.document, self.registry)
            if index is None:
                index = default_index

        colors = {**self.site_colors, **(site_colors or {})}
        result = instantiate(template, site_colors=colors, text_tokens=text_tokens)
        name = template.name if isinstance(template, TemplateDefinition) else "template"

        self.execute(InsertSubtree(result.nodes, parent_id, index, label=f"Insert {name}"))
        if result.root_ids:
            self.selection.select(result.root_ids[0])
        return result.root_ids

    # -------------------------------------------------------------------------
    # Persistence and rendering
    # -------------------------------------------------------------------------

    def load_document(self, data: Mapping[str, Any]) -> None:
        """Replace the open document; history and selection start fresh."""
        self.document = PageDocument.from_dict(dict(data))
        self.history.clear()
        self.selection.clear()
        self.mark_saved()
        self.logger.info("Document loaded", components=len(self.document))

    def to_dict(self) -> Dict[str, Any]:
        return self.document.to_dict()

    @property
    def is_dirty(self) -> bool:
        """Whether the document differs from the last saved state."""
        return self.document.to_dict() != self._saved_state

    def mark_saved(self) -> None:
        self._saved_state = self.document.to_dict()

    def render(self, breakpoint: Optional[BreakpointLike] = None) -> List[RenderNode]:
        """Resolve the document for the canvas at ``breakpoint`` (settings default otherwise)."""
        return self._resolver.resolve(self.document, breakpoint or self.default_breakpoint)
