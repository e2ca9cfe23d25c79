"""
Page Document Model
Flow: Serialized page → Validation → Flat id→node arena → Queries → Serialization

The tree is stored as a flat ``components`` map plus explicit ``children`` id
lists, so moving a subtree only rewrites two lists and one ``parent_id``.
Structural mutation helpers on :class:`PageDocument` are used by the command
layer only; editor code goes through commands.
"""

import copy
from typing import Any, Dict, Iterator, List, Optional, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import InvalidReferenceError, InvariantViolationError

logger = structlog.get_logger()

ROOT_ID = "root"
ROOT_TYPE = "Root"
DOCUMENT_VERSION = "1.0"


class ComponentNode(BaseModel):
    """One component instance in the document."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique identifier within the document")
    type: str = Field(..., description="Registry key of the component type")
    props: Dict[str, Any] = Field(default_factory=dict, description="Prop values, plain or responsive")
    children: Optional[List[str]] = Field(default=None, description="Ordered child ids, None for leaves")
    parent_id: Optional[str] = Field(default=None, alias="parentId", description="Parent id, None under root")
    locked: bool = Field(default=False, description="Prevent editing")
    hidden: bool = Field(default=False, description="Hidden in canvas, kept in data")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RootNode(BaseModel):
    """Synthetic root holding top-level ids and page props."""
    id: str = Field(default=ROOT_ID)
    type: str = Field(default=ROOT_TYPE)
    props: Dict[str, Any] = Field(default_factory=dict)
    children: List[str] = Field(default_factory=list)


class PageDocument(BaseModel):
    """
    Page structure: synthetic root + flat component map.

    Invariants:
    - every id in a ``children`` list or used as ``parent_id`` exists in ``components``
    - each non-root node appears in exactly one ``children`` list (root's included)
    - a node's ``parent_id`` names the node whose list holds it (None for root)
    - every node is reachable from root, hence no cycles
    """

    version: str = Field(default=DOCUMENT_VERSION)
    root: RootNode = Field(default_factory=RootNode)
    components: Dict[str, ComponentNode] = Field(default_factory=dict)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any], validate: bool = True) -> "PageDocument":
        """
        Build a document from the persistence shape ``{version, root, components}``.

        Raises:
            InvariantViolationError: Payload is malformed or structurally invalid
        """
        try:
            document = cls.model_validate(copy.deepcopy(data))
        except ValidationError as e:
            raise InvariantViolationError([f"malformed document: {err['msg']} at {err['loc']}" for err in e.errors()])

        if validate:
            violations = document.find_violations()
            if violations:
                raise InvariantViolationError(violations, command="load")
        return document

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persistence shape; components are emitted sorted by id."""
        return {
            "version": self.version,
            "root": self.root.model_dump(),
            "components": {
                node_id: self.components[node_id].to_dict() for node_id in sorted(self.components)
            },
        }

    def clone(self) -> "PageDocument":
        return self.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.components

    def __len__(self) -> int:
        return len(self.components)

    def has(self, node_id: Optional[str]) -> bool:
        return node_id is not None and (node_id == ROOT_ID or node_id in self.components)

    def get(self, node_id: str) -> Optional[ComponentNode]:
        return self.components.get(node_id)

    def require(self, node_id: str, role: str = "node") -> ComponentNode:
        """Get a node or raise InvalidReferenceError."""
        node = self.components.get(node_id)
        if node is None:
            raise InvalidReferenceError(node_id, role=role)
        return node

    def children_of(self, parent_id: str) -> List[str]:
        """Child id list of ``parent_id`` (root or a node); empty for leaves."""
        if parent_id == ROOT_ID:
            return self.root.children
        node = self.require(parent_id, role="parent")
        return node.children if node.children is not None else []

    def parent_of(self, node_id: str) -> str:
        """Parent id of a node, ``ROOT_ID`` for top-level nodes."""
        return self.require(node_id).parent_id or ROOT_ID

    def index_in_parent(self, node_id: str) -> int:
        siblings = self.children_of(self.parent_of(node_id))
        try:
            return siblings.index(node_id)
        except ValueError:
            raise InvariantViolationError([f"'{node_id}' is missing from its parent's children"])

    def iter_subtree(self, node_id: str) -> Iterator[str]:
        """Pre-order ids of the subtree rooted at ``node_id`` (inclusive)."""
        stack = [node_id]
        while stack:
            current = stack.pop()
            yield current
            node = self.components.get(current)
            if node is not None and node.children:
                stack.extend(reversed(node.children))

    def subtree_ids(self, node_id: str) -> List[str]:
        self.require(node_id)
        return list(self.iter_subtree(node_id))

    def descendants(self, node_id: str) -> List[str]:
        """Transitive descendants of a node, excluding the node itself."""
        return self.subtree_ids(node_id)[1:]

    def is_descendant(self, candidate_id: str, ancestor_id: str) -> bool:
        """Whether ``candidate_id`` lies strictly inside the subtree of ``ancestor_id``."""
        current = self.components.get(candidate_id)
        seen = set()
        while current is not None and current.parent_id is not None:
            if current.parent_id == ancestor_id:
                return True
            if current.parent_id in seen:
                break
            seen.add(current.parent_id)
            current = self.components.get(current.parent_id)
        return False

    def ancestors(self, node_id: str) -> List[str]:
        """Ancestor ids from the direct parent upward, excluding root."""
        result = []
        parent_id = self.require(node_id).parent_id
        while parent_id is not None and parent_id not in result:
            result.append(parent_id)
            parent = self.components.get(parent_id)
            parent_id = parent.parent_id if parent is not None else None
        return result

    def walk(self) -> List[str]:
        """Every node id in document (pre-order) order."""
        order: List[str] = []
        for top_id in self.root.children:
            order.extend(self.iter_subtree(top_id))
        return order

    def snapshot_subtree(self, node_id: str) -> List[ComponentNode]:
        """Deep copies of a subtree's nodes in pre-order, root first."""
        return [self.components[i].model_copy(deep=True) for i in self.subtree_ids(node_id)]

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def find_violations(self) -> List[str]:
        """Check every structural invariant; an empty list means the document is valid."""
        violations: List[str] = []

        if self.root.id != ROOT_ID:
            violations.append(f"root id must be '{ROOT_ID}', got '{self.root.id}'")
        if ROOT_ID in self.components:
            violations.append("root must not appear in components")

        occurrences: Dict[str, int] = {}
        lists: List[Tuple[str, List[str]]] = [(ROOT_ID, self.root.children)]
        for key, node in self.components.items():
            if key != node.id:
                violations.append(f"component key '{key}' does not match node id '{node.id}'")
            if node.children is not None:
                lists.append((node.id, node.children))

        for owner_id, children in lists:
            for child_id in children:
                occurrences[child_id] = occurrences.get(child_id, 0) + 1
                child = self.components.get(child_id)
                if child is None:
                    violations.append(f"'{owner_id}' lists unknown child '{child_id}'")
                    continue
                expected_parent = None if owner_id == ROOT_ID else owner_id
                if child.parent_id != expected_parent:
                    violations.append(
                        f"'{child_id}' is listed under '{owner_id}' but its parentId is '{child.parent_id}'"
                    )

        for node_id, node in self.components.items():
            count = occurrences.get(node_id, 0)
            if count == 0:
                violations.append(f"'{node_id}' is an orphan")
            elif count > 1:
                violations.append(f"'{node_id}' appears in {count} children lists")
            if node.parent_id is not None and node.parent_id not in self.components:
                violations.append(f"'{node_id}' references unknown parent '{node.parent_id}'")

        # Reachability from root rules out cycles once the partition holds
        reachable = set()
        stack = list(self.root.children)
        while stack:
            current = stack.pop()
            if current in reachable:
                violations.append(f"'{current}' is reachable twice (cycle or duplicate)")
                continue
            reachable.add(current)
            node = self.components.get(current)
            if node is not None and node.children:
                stack.extend(node.children)
        unreachable = set(self.components) - reachable
        for node_id in sorted(unreachable):
            if occurrences.get(node_id, 0) > 0:
                violations.append(f"'{node_id}' is part of a cycle detached from root")

        return violations

    def is_valid(self) -> bool:
        return not self.find_violations()

    # -------------------------------------------------------------------------
    # Structural primitives (command layer only)
    # -------------------------------------------------------------------------

    def _child_list(self, parent_id: str, create: bool = False) -> List[str]:
        if parent_id == ROOT_ID:
            return self.root.children
        parent = self.require(parent_id, role="parent")
        if parent.children is None:
            if not create:
                return []
            parent.children = []
        return parent.children

    def attach(self, node_id: str, parent_id: str, index: Optional[int] = None) -> int:
        """Splice ``node_id`` into ``parent_id``'s children; returns the index used."""
        children = self._child_list(parent_id, create=True)
        if index is None or index < 0 or index > len(children):
            index = len(children)
        children.insert(index, node_id)
        self.components[node_id].parent_id = None if parent_id == ROOT_ID else parent_id
        return index

    def lacks_child_list(self, parent_id: str) -> bool:
        """Whether ``parent_id`` is a node stored without a ``children`` list."""
        return parent_id != ROOT_ID and self.require(parent_id, role="parent").children is None

    def drop_empty_child_list(self, parent_id: str) -> None:
        """Return an emptied ``children`` list to absent, undoing ``attach``'s list creation."""
        if parent_id == ROOT_ID:
            return
        parent = self.require(parent_id, role="parent")
        if parent.children == []:
            parent.children = None

    def detach(self, node_id: str) -> Tuple[str, int]:
        """Remove ``node_id`` from its parent's children; returns ``(parent_id, index)``."""
        parent_id = self.parent_of(node_id)
        index = self.index_in_parent(node_id)
        self._child_list(parent_id).pop(index)
        return parent_id, index

    def add_nodes(self, nodes: List[ComponentNode]) -> None:
        for node in nodes:
            self.components[node.id] = node

    def remove_nodes(self, node_ids: List[str]) -> None:
        for node_id in node_ids:
            self.components.pop(node_id, None)


def create_empty_document(title: str = "", description: str = "") -> PageDocument:
    """Create an empty page."""
    props: Dict[str, Any] = {}
    if title:
        props["title"] = title
    if description:
        props["description"] = description
    return PageDocument(root=RootNode(props=props))
