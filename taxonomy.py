"""Category forest of the imported ledger.

Exclusions are decided on the root ancestor of a category, so every category
filed below an excluded root is excluded as well, including ones created after
the configuration was written.
"""

from __future__ import annotations

import logging
import unicodedata
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


def normalize_name(value: Optional[str]) -> str:
    """Lowercase, strip accents and unify apostrophes for name comparisons."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value.replace("’", "'"))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.casefold().split())


@dataclass(frozen=True)
class CategoryNode:
    id: str
    name: str
    parent_id: Optional[str]


class CategoryTaxonomy:
    def __init__(
        self, nodes: Iterable[CategoryNode], excluded_roots: Iterable[str] = ()
    ) -> None:
        self._nodes: dict[str, CategoryNode] = {}
        for node in nodes:
            self._nodes[node.id] = node
        self._keywords = tuple(k for k in (normalize_name(r) for r in excluded_roots) if k)
        self._root_of = self._propagate_roots()
        self._excluded = frozenset(
            category_id
            for category_id, root_id in self._root_of.items()
            if self._matches_keywords(self._nodes[root_id].name)
        )

    @classmethod
    def empty(cls) -> "CategoryTaxonomy":
        return cls(())

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, category_id: object) -> bool:
        return category_id in self._nodes

    def _is_root(self, node: CategoryNode) -> bool:
        # A parent reference pointing outside the table is treated as no parent.
        return not node.parent_id or node.parent_id not in self._nodes

    def _propagate_roots(self) -> dict[str, str]:
        children: dict[str, list[str]] = {}
        for node in self._nodes.values():
            if not self._is_root(node):
                children.setdefault(node.parent_id, []).append(node.id)

        root_of: dict[str, str] = {}
        queue: deque[tuple[str, str]] = deque(
            (node.id, node.id) for node in self._nodes.values() if self._is_root(node)
        )
        while queue:
            category_id, root_id = queue.popleft()
            if category_id in root_of:
                continue
            root_of[category_id] = root_id
            for child_id in children.get(category_id, ()):
                queue.append((child_id, root_id))

        unreachable = len(self._nodes) - len(root_of)
        if unreachable:
            logger.warning(f"category_cycle_ignored: categories={unreachable}")
        return root_of

    def _matches_keywords(self, name: Optional[str]) -> bool:
        normalized = normalize_name(name)
        return any(keyword in normalized for keyword in self._keywords)

    def get(self, category_id: Optional[str]) -> Optional[CategoryNode]:
        if category_id is None:
            return None
        return self._nodes.get(category_id)

    def nodes(self) -> list[CategoryNode]:
        return list(self._nodes.values())

    def ancestors(self, category_id: str) -> list[CategoryNode]:
        """Chain from the category itself up to its root; stops on a cycle."""
        chain: list[CategoryNode] = []
        seen: set[str] = set()
        current = self._nodes.get(category_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current)
            if self._is_root(current):
                break
            current = self._nodes.get(current.parent_id)
        return chain

    def root(self, category_id: Optional[str]) -> Optional[CategoryNode]:
        if category_id is None:
            return None
        root_id = self._root_of.get(category_id)
        return self._nodes[root_id] if root_id else None

    def root_name(self, category_id: Optional[str]) -> Optional[str]:
        node = self.root(category_id)
        return node.name if node else None

    def is_excluded(
        self, category_id: Optional[str], comment: Optional[str] = None
    ) -> bool:
        if category_id is None or category_id not in self._nodes:
            return self._matches_keywords(comment)
        return category_id in self._excluded

    @property
    def excluded_ids(self) -> frozenset[str]:
        return self._excluded

    def chain_mentions(self, category_id: Optional[str], keyword: str) -> bool:
        """True when the category or one of its ancestors has ``keyword`` in its name."""
        if category_id is None:
            return False
        needle = normalize_name(keyword)
        return any(needle in normalize_name(n.name) for n in self.ancestors(category_id))

    def ids_where_chain_mentions(self, keyword: str) -> frozenset[str]:
        return frozenset(
            category_id
            for category_id in self._nodes
            if self.chain_mentions(category_id, keyword)
        )

    def find_by_name(self, name: str) -> list[CategoryNode]:
        target = normalize_name(name)
        return [n for n in self._nodes.values() if normalize_name(n.name) == target]

    def find_containing(self, fragment: str) -> list[CategoryNode]:
        needle = normalize_name(fragment)
        return [n for n in self._nodes.values() if needle in normalize_name(n.name)]
