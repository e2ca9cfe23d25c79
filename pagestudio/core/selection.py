"""
Selection State
Flow: User focus → Selected ids → Default target for the next command

Selection never mutates the document; it only decides where the next insert
goes and which node keyboard shortcuts act on.
"""

from typing import List, Optional, Tuple

import structlog

from .component_registry import ComponentRegistry
from .document import ROOT_ID, PageDocument

logger = structlog.get_logger()


class SelectionState:
    """Single and multi-selection over node ids."""

    def __init__(self):
        self.component_id: Optional[str] = None
        self.component_ids: List[str] = []
        self.is_multi_select: bool = False

    def select(self, node_id: Optional[str], additive: bool = False) -> None:
        """Select a node; ``additive`` adds it to a multi-selection instead of replacing."""
        if node_id is None:
            self.clear()
            return

        if additive and self.component_id is not None:
            if node_id not in self.component_ids:
                self.component_ids.append(node_id)
            self.is_multi_select = len(self.component_ids) > 1
        else:
            self.component_ids = [node_id]
            self.is_multi_select = False
        self.component_id = node_id

    def toggle(self, node_id: str) -> None:
        """Add or remove a node from the multi-selection."""
        if node_id in self.component_ids:
            self.component_ids.remove(node_id)
            self.component_id = self.component_ids[-1] if self.component_ids else None
            self.is_multi_select = len(self.component_ids) > 1
        else:
            self.select(node_id, additive=True)

    def clear(self) -> None:
        self.component_id = None
        self.component_ids = []
        self.is_multi_select = False

    def is_selected(self, node_id: str) -> bool:
        return node_id in self.component_ids

    def prune(self, document: PageDocument) -> None:
        """Drop ids that no longer exist in the document."""
        kept = [node_id for node_id in self.component_ids if node_id in document.components]
        if kept != self.component_ids:
            logger.debug("Selection pruned", removed=sorted(set(self.component_ids) - set(kept)))
        self.component_ids = kept
        if self.component_id not in kept:
            self.component_id = kept[-1] if kept else None
        self.is_multi_select = len(kept) > 1

    # -------------------------------------------------------------------------
    # Keyboard navigation
    # -------------------------------------------------------------------------

    def _step(self, document: PageDocument, delta: int) -> Optional[str]:
        order = document.walk()
        if not order:
            self.clear()
            return None
        if self.component_id not in order:
            target = order[0] if delta > 0 else order[-1]
        else:
            position = order.index(self.component_id) + delta
            target = order[max(0, min(position, len(order) - 1))]
        self.select(target)
        return target

    def select_next(self, document: PageDocument) -> Optional[str]:
        """Select the next node in document order (stays on the last node)."""
        return self._step(document, 1)

    def select_previous(self, document: PageDocument) -> Optional[str]:
        """Select the previous node in document order (stays on the first node)."""
        return self._step(document, -1)

    def select_parent(self, document: PageDocument) -> Optional[str]:
        """Select the parent of the current node; top-level nodes keep their selection."""
        if self.component_id is None or self.component_id not in document.components:
            return None
        parent_id = document.components[self.component_id].parent_id
        if parent_id is not None:
            self.select(parent_id)
        return self.component_id

    # -------------------------------------------------------------------------
    # Command targeting
    # -------------------------------------------------------------------------

    def insertion_target(
        self,
        document: PageDocument,
        registry: Optional[ComponentRegistry] = None,
    ) -> Tuple[str, Optional[int]]:
        """
        Default ``(parent_id, index)`` for the next insert.

        - Selected container → append inside it
        - Selected leaf → right after it in its parent
        - Nothing selected → append to the page root
        """
        node = document.components.get(self.component_id) if self.component_id else None
        if node is None:
            return ROOT_ID, None

        definition = registry.get(node.type) if registry is not None else None
        accepts = definition.container if definition is not None else node.children is not None
        if accepts:
            return node.id, None

        parent_id = node.parent_id or ROOT_ID
        return parent_id, document.index_in_parent(node.id) + 1
