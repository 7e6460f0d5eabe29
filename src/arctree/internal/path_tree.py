"""Mutable path-segment tree used while an archive is being parsed.

Headers are added in archive order under their path segments; intermediate
nodes are created on demand. Once everything has been added, the tree is
turned into immutable entries bottom-up by :meth:`PathTree.materialize`.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, TypeVar

from arctree.entries import ArchiveEntry
from arctree.internal.utils import join_path

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PathNode(Generic[T]):
    name: str
    record: Optional[T] = None
    children: dict[str, "PathNode[T]"] = field(default_factory=dict)

    def get_or_create_child(self, name: str) -> "PathNode[T]":
        child = self.children.get(name)
        if child is None:
            child = PathNode(name)
            self.children[name] = child
        return child


# Called with (path, node, materialized children); returns the entry for the node.
NodeBuilder = Callable[[str, PathNode[T], dict[str, ArchiveEntry]], ArchiveEntry]


class PathTree(Generic[T]):
    def __init__(self) -> None:
        self.root: PathNode[T] = PathNode("")

    def add(self, segments: list[str], record: T) -> PathNode[T]:
        """Record ``record`` at the node for ``segments``. A later record for the
        same path replaces the earlier one."""
        node = self.root
        for segment in segments:
            node = node.get_or_create_child(segment)
        if node.record is not None:
            logger.debug(
                "Entry %s appears more than once; using the last one",
                join_path(segments),
            )
        node.record = record
        return node

    def materialize(
        self, build: NodeBuilder
    ) -> tuple[ArchiveEntry, dict[str, ArchiveEntry]]:
        """Build entries for all nodes, children before parents.

        Returns the root entry and a map from absolute path to entry covering every
        node, the root included.
        """
        index: dict[str, ArchiveEntry] = {}

        # Iterative post-order; paths can be deeper than the recursion limit.
        stack: list[tuple[PathNode[T], list[str], bool]] = [(self.root, [], False)]
        built: dict[int, ArchiveEntry] = {}
        while stack:
            node, segments, children_done = stack.pop()
            if not children_done:
                stack.append((node, segments, True))
                for child in node.children.values():
                    stack.append((child, segments + [child.name], False))
                continue

            children = {name: built.pop(id(child)) for name, child in node.children.items()}
            path = join_path(segments)
            entry = build(path, node, children)
            built[id(node)] = entry
            index[path] = entry

        return built[id(self.root)], index

