"""
Edit Command Layer
Flow: Command → Validate (no mutation) → Apply (returns inverse) → Invariant check → Commit or roll back

Every structural or prop change to a PageDocument is a command. ``apply``
returns the exact inverse command, which is what makes undo/redo round-trip
the serialized document.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, Dict, Hashable, List, Optional, Sequence

import structlog

from .component_registry import ComponentRegistry
from .document import ROOT_ID, ComponentNode, PageDocument
from .exceptions import (
    CommandRejectedError,
    ContainerError,
    CyclicMoveError,
    InvalidReferenceError,
    InvariantViolationError,
)

logger = structlog.get_logger()


class _Unset:
    """Marker for a prop that is absent (distinct from a prop set to None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __deepcopy__(self, memo):
        return self


UNSET: Any = _Unset()

_NODE_FLAGS = ("locked", "hidden")


class Command(ABC):
    """
    Base class for reversible document edits.

    Command Lifecycle:
    1. validate() → raise a CommandRejectedError without touching the document
    2. apply() → mutate the document and return the inverse command
    3. inverse.apply() → restore the exact previous state

    ``policy`` checks (container rules, locks, can_delete/can_move) apply to
    user-initiated commands. Undo/redo replay only runs structural checks.
    """

    label: str = "Edit"

    @property
    def coalesce_key(self) -> Optional[Hashable]:
        """Key under which rapid successive commands merge into one history entry."""
        return None

    @abstractmethod
    def validate(
        self,
        document: PageDocument,
        registry: Optional[ComponentRegistry] = None,
        policy: bool = True,
    ) -> None:
        """Raise if the command cannot be applied."""

    @abstractmethod
    def apply(self, document: PageDocument) -> "Command":
        """Mutate ``document`` and return the inverse command."""

    def touched_ids(self) -> List[str]:
        return []

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.label})"


# =============================================================================
# Validation helpers
# =============================================================================


def _require_parent(document: PageDocument, parent_id: str) -> None:
    if parent_id != ROOT_ID and parent_id not in document.components:
        raise InvalidReferenceError(parent_id, role="parent")


def _check_accepts_child(
    document: PageDocument,
    registry: Optional[ComponentRegistry],
    parent_id: str,
    child_type: str,
) -> None:
    """Raise ContainerError unless ``parent_id`` may hold a ``child_type`` node."""
    if parent_id == ROOT_ID:
        return

    parent = document.require(parent_id, role="parent")
    definition = registry.get(parent.type) if registry is not None else None
    if definition is None:
        # Unknown or placeholder type: trust the stored shape
        if parent.children is None:
            raise ContainerError(parent_id, "component does not accept children", child_type)
        return

    if not definition.container:
        raise ContainerError(parent_id, f"'{parent.type}' does not accept children", child_type)
    if not definition.allows_child(child_type):
        raise ContainerError(
            parent_id,
            f"'{parent.type}' does not allow '{child_type}' children",
            child_type,
            error_code="CHILD_TYPE_NOT_ALLOWED",
        )


def _check_has_child_list(
    document: PageDocument,
    registry: Optional[ComponentRegistry],
    parent_id: str,
    child_type: str,
) -> None:
    """Structural-only container check used when replaying history."""
    if parent_id == ROOT_ID:
        return
    parent = document.require(parent_id, role="parent")
    if parent.children is not None:
        return
    definition = registry.get(parent.type) if registry is not None else None
    if definition is None or not definition.container:
        raise ContainerError(parent_id, "component does not accept children", child_type)


def _check_not_locked(document: PageDocument, node_id: str, action: str) -> None:
    node = document.components.get(node_id)
    if node is not None and node.locked:
        raise CommandRejectedError(
            f"Cannot {action} locked component '{node_id}'",
            error_code="COMPONENT_LOCKED",
            details={"node_id": node_id, "action": action},
        )


def fragment_roots(nodes: Sequence[ComponentNode]) -> List[str]:
    """
    Validate a detached subtree fragment and return its root ids in order.

    A fragment is a list of nodes whose internal ``children``/``parent_id``
    edges are consistent; roots are the nodes no other fragment node lists.
    """
    ids = [node.id for node in nodes]
    id_set = set(ids)
    violations: List[str] = []

    if len(ids) != len(id_set):
        violations.append("fragment contains duplicate ids")
    if ROOT_ID in id_set:
        violations.append("fragment must not contain the root id")

    listed_by: Dict[str, str] = {}
    by_id = {node.id: node for node in nodes}
    for node in nodes:
        for child_id in node.children or []:
            if child_id not in id_set:
                violations.append(f"'{node.id}' lists child '{child_id}' outside the fragment")
            elif child_id in listed_by:
                violations.append(f"'{child_id}' is listed by more than one node")
            else:
                listed_by[child_id] = node.id
                if by_id[child_id].parent_id != node.id:
                    violations.append(f"'{child_id}' parentId does not match '{node.id}'")

    roots = [node_id for node_id in ids if node_id not in listed_by]
    if nodes and not roots:
        violations.append("fragment has no root (cycle)")

    # Every node must hang off a root
    reachable = set()
    stack = list(roots)
    while stack:
        current = stack.pop()
        if current in reachable:
            continue
        reachable.add(current)
        stack.extend(c for c in (by_id[current].children or []) if c in by_id)
    if id_set - reachable:
        violations.append(f"fragment nodes unreachable from its roots: {sorted(id_set - reachable)}")

    if violations:
        raise InvariantViolationError(violations, command="InsertSubtree")
    return roots


# =============================================================================
# Structural commands
# =============================================================================


class InsertSubtree(Command):
    """
    Insert one or more detached subtrees under ``parent_id`` at ``index``.

    Roots of the fragment are spliced consecutively starting at ``index``
    (``None`` appends). Inverse: delete the same root ids; a ``children``
    list the insert had to create is dropped again by the inverse.
    """

    label = "Insert"

    def __init__(
        self,
        nodes: Sequence[ComponentNode],
        parent_id: str = ROOT_ID,
        index: Optional[int] = None,
        label: Optional[str] = None,
    ):
        self.nodes = [node.model_copy(deep=True) for node in nodes]
        self.parent_id = parent_id
        self.index = index
        if label:
            self.label = label

    def validate(self, document, registry=None, policy=True) -> None:
        if not self.nodes:
            raise CommandRejectedError("Nothing to insert", error_code="EMPTY_INSERT")
        _require_parent(document, self.parent_id)
        roots = fragment_roots(self.nodes)

        clashes = [node.id for node in self.nodes if node.id in document.components]
        if clashes:
            raise InvariantViolationError([f"id '{i}' already exists" for i in clashes], command="InsertSubtree")

        by_id = {node.id: node for node in self.nodes}
        for root_id in roots:
            if policy:
                _check_accepts_child(document, registry, self.parent_id, by_id[root_id].type)
            else:
                _check_has_child_list(document, registry, self.parent_id, by_id[root_id].type)

    def apply(self, document) -> Command:
        roots = fragment_roots(self.nodes)
        created_list = document.lacks_child_list(self.parent_id)
        document.add_nodes([node.model_copy(deep=True) for node in self.nodes])

        start = self.index
        siblings = document.children_of(self.parent_id)
        if start is None or start < 0 or start > len(siblings):
            start = len(siblings)
        for offset, root_id in enumerate(roots):
            document.attach(root_id, self.parent_id, start + offset)

        if len(roots) == 1:
            return DeleteSubtree(roots[0], label=f"Undo {self.label.lower()}", drop_empty_parent=created_list)
        return Batch(
            [DeleteSubtree(root_id, drop_empty_parent=created_list) for root_id in reversed(roots)],
            label=f"Undo {self.label.lower()}",
        )

    def root_ids(self) -> List[str]:
        return fragment_roots(self.nodes)

    def touched_ids(self) -> List[str]:
        return [node.id for node in self.nodes]


class DeleteSubtree(Command):
    """
    Remove a node and every transitive descendant.

    Inverse: re-insert the captured snapshot at the original parent and index.
    """

    label = "Delete"

    def __init__(self, root_id: str, label: Optional[str] = None, drop_empty_parent: bool = False):
        self.root_id = root_id
        self.drop_empty_parent = drop_empty_parent
        if label:
            self.label = label

    def validate(self, document, registry=None, policy=True) -> None:
        if self.root_id == ROOT_ID:
            raise CommandRejectedError("The page root cannot be deleted", error_code="ROOT_IMMUTABLE")
        node = document.require(self.root_id)
        if policy:
            _check_not_locked(document, self.root_id, "delete")
            definition = registry.get(node.type) if registry is not None else None
            if definition is not None and not definition.can_delete:
                raise CommandRejectedError(
                    f"'{node.type}' components cannot be deleted",
                    error_code="DELETE_NOT_ALLOWED",
                    details={"node_id": self.root_id},
                )

    def apply(self, document) -> Command:
        snapshot = document.snapshot_subtree(self.root_id)
        parent_id, index = document.detach(self.root_id)
        document.remove_nodes([node.id for node in snapshot])
        if self.drop_empty_parent:
            document.drop_empty_child_list(parent_id)
        return InsertSubtree(snapshot, parent_id, index, label="Restore")

    def touched_ids(self) -> List[str]:
        return [self.root_id]


class MoveSubtree(Command):
    """
    Move a subtree under ``new_parent_id`` at ``new_index``.

    ``new_index`` addresses the target list after the node has been removed
    from its current position. Inverse: move back to the original parent/index.
    """

    label = "Move"

    def __init__(
        self,
        node_id: str,
        new_parent_id: str,
        new_index: Optional[int] = None,
        label: Optional[str] = None,
        drop_empty_source: bool = False,
    ):
        self.node_id = node_id
        self.new_parent_id = new_parent_id
        self.new_index = new_index
        self.drop_empty_source = drop_empty_source
        if label:
            self.label = label

    def validate(self, document, registry=None, policy=True) -> None:
        if self.node_id == ROOT_ID:
            raise CommandRejectedError("The page root cannot be moved", error_code="ROOT_IMMUTABLE")
        node = document.require(self.node_id)
        _require_parent(document, self.new_parent_id)

        if self.new_parent_id == self.node_id or document.is_descendant(self.new_parent_id, self.node_id):
            raise CyclicMoveError(self.node_id, self.new_parent_id)

        if policy:
            _check_not_locked(document, self.node_id, "move")
            definition = registry.get(node.type) if registry is not None else None
            if definition is not None and not definition.can_move:
                raise CommandRejectedError(
                    f"'{node.type}' components cannot be moved",
                    error_code="MOVE_NOT_ALLOWED",
                    details={"node_id": self.node_id},
                )
            if self.new_parent_id != (node.parent_id or ROOT_ID):
                _check_accepts_child(document, registry, self.new_parent_id, node.type)
        else:
            _check_has_child_list(document, registry, self.new_parent_id, node.type)

    def apply(self, document) -> Command:
        created_list = document.lacks_child_list(self.new_parent_id)
        old_parent_id, old_index = document.detach(self.node_id)
        if self.drop_empty_source:
            document.drop_empty_child_list(old_parent_id)
        document.attach(self.node_id, self.new_parent_id, self.new_index)
        return MoveSubtree(
            self.node_id,
            old_parent_id,
            old_index,
            label=f"Undo {self.label.lower()}",
            drop_empty_source=created_list,
        )

    def touched_ids(self) -> List[str]:
        return [self.node_id]


# =============================================================================
# Prop commands
# =============================================================================


class SetProp(Command):
    """
    Set (or, with ``UNSET``, remove) one prop on a node or on the page root.

    Inverse: SetProp with the prior value, ``UNSET`` if the prop was absent.
    Successive SetProps on the same ``(node_id, prop_name)`` coalesce.
    """

    label = "Edit property"

    def __init__(self, node_id: str, prop_name: str, value: Any = UNSET, label: Optional[str] = None):
        self.node_id = node_id
        self.prop_name = prop_name
        self.value = copy.deepcopy(value)
        if label:
            self.label = label

    @property
    def coalesce_key(self) -> Optional[Hashable]:
        return ("set_prop", self.node_id, self.prop_name)

    def _props(self, document: PageDocument) -> Dict[str, Any]:
        if self.node_id == ROOT_ID:
            return document.root.props
        return document.require(self.node_id).props

    def validate(self, document, registry=None, policy=True) -> None:
        if not self.prop_name:
            raise CommandRejectedError("Prop name must not be empty", error_code="INVALID_PROP")
        self._props(document)
        if policy and self.node_id != ROOT_ID:
            _check_not_locked(document, self.node_id, "edit")

    def apply(self, document) -> Command:
        props = self._props(document)
        prior = props.get(self.prop_name, UNSET)
        if self.value is UNSET:
            props.pop(self.prop_name, None)
        else:
            props[self.prop_name] = copy.deepcopy(self.value)
        return SetProp(self.node_id, self.prop_name, prior, label=self.label)

    def touched_ids(self) -> List[str]:
        return [self.node_id]


class SetNodeFlag(Command):
    """Toggle the ``locked`` or ``hidden`` flag of a node."""

    label = "Change visibility"

    def __init__(self, node_id: str, flag: str, value: bool, label: Optional[str] = None):
        if flag not in _NODE_FLAGS:
            raise ValueError(f"Unknown node flag '{flag}'")
        self.node_id = node_id
        self.flag = flag
        self.value = bool(value)
        self.label = label or ("Lock" if flag == "locked" else "Change visibility")

    def validate(self, document, registry=None, policy=True) -> None:
        document.require(self.node_id)

    def apply(self, document) -> Command:
        node = document.require(self.node_id)
        prior = getattr(node, self.flag)
        setattr(node, self.flag, self.value)
        return SetNodeFlag(self.node_id, self.flag, prior, label=self.label)

    def touched_ids(self) -> List[str]:
        return [self.node_id]


# =============================================================================
# Composite
# =============================================================================


class Batch(Command):
    """
    Several commands committed as one undo step.

    Sub-commands are validated one at a time right before they apply, because
    each may depend on the previous ones. A failure rolls back the
    sub-commands already applied. Inverse: the reversed list of inverses.
    """

    label = "Batch edit"

    def __init__(self, commands: Sequence[Command], label: Optional[str] = None):
        self.commands = list(commands)
        if label:
            self.label = label

    def validate(self, document, registry=None, policy=True) -> None:
        if not self.commands:
            raise CommandRejectedError("Nothing to apply", error_code="EMPTY_BATCH")
        # Only the first sub-command can be checked against the current state
        self.commands[0].validate(document, registry, policy)

    def apply_validated(self, document, registry=None, policy=True) -> Command:
        inverses: List[Command] = []
        try:
            for index, command in enumerate(self.commands):
                if index > 0:
                    command.validate(document, registry, policy)
                if isinstance(command, Batch):
                    inverses.append(command.apply_validated(document, registry, policy))
                else:
                    inverses.append(command.apply(document))
        except CommandRejectedError:
            for inverse in reversed(inverses):
                inverse.apply(document)
            raise
        return Batch(list(reversed(inverses)), label=f"Undo {self.label.lower()}")

    def apply(self, document) -> Command:
        return self.apply_validated(document, registry=None, policy=False)

    def touched_ids(self) -> List[str]:
        ids: List[str] = []
        for command in self.commands:
            ids.extend(command.touched_ids())
        return ids


# =============================================================================
# Choke point
# =============================================================================


def execute_command(
    document: PageDocument,
    command: Command,
    registry: Optional[ComponentRegistry] = None,
    policy: bool = True,
    check_invariants: bool = True,
) -> Command:
    """
    Validate, apply and verify one command; the single path for mutation.

    Args:
        document: Target document
        command: Command to run
        registry: Registry used for container/type policy checks
        policy: Run user-facing policy checks in addition to structural ones
        check_invariants: Re-verify the whole document after applying

    Returns:
        Command: Inverse of the applied command

    Raises:
        CommandRejectedError: Command was rejected; the document is unchanged
    """
    command.validate(document, registry, policy)

    if isinstance(command, Batch):
        inverse = command.apply_validated(document, registry, policy)
    else:
        inverse = command.apply(document)

    if check_invariants:
        violations = document.find_violations()
        if violations:
            inverse.apply(document)
            logger.error(
                "Command rolled back after invariant check",
                command=command.label,
                command_type=command.__class__.__name__,
                violations=violations,
            )
            raise InvariantViolationError(violations, command=command.__class__.__name__)

    return inverse
