"""Tree assembly and rendering for the animal tree.

The database hands back the tree as a flat list of rows (one per animal,
each carrying its parent's id). This module turns that list into a nested
structure, renders it in the shape the API returns, and checks a flat table
for structural problems.

Nodes are plain dicts:

    {"id": 2, "label": "dog", "parent_id": 1, "children": [...]}
"""

from __future__ import annotations

from typing import Any, Iterable


class TreeInvariantError(RuntimeError):
    """The stored table does not form a rooted tree (e.g. no root row)."""


# =============================================================================
# Assembly
# =============================================================================

def build_tree(rows: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Assemble closure rows into a nested tree and return its root.

    Rows may arrive in any order. A node that was reparented can have a lower
    id than its new parent, so every node is indexed before any is linked.
    Children end up ordered by ascending id.

    Args:
        rows: Dicts with ``id``, ``label`` and ``parent_id`` keys.

    Returns:
        The root node with ``children`` filled in recursively.

    Raises:
        TreeInvariantError: If there are no rows, no root, more than one
            root, or a row whose parent is missing from the set.
    """
    nodes: dict[int, dict[str, Any]] = {}
    for row in sorted(rows, key=lambda r: r["id"]):
        nodes[row["id"]] = {
            "id": row["id"],
            "label": row["label"],
            "parent_id": row["parent_id"],
            "children": [],
        }

    if not nodes:
        raise TreeInvariantError("Tree has no nodes; the root was never created.")

    root = None
    for node in nodes.values():
        parent_id = node["parent_id"]
        if parent_id is None:
            if root is not None:
                raise TreeInvariantError(f"Tree has more than one root: {root['id']} and {node['id']}.")
            root = node
            continue
        parent = nodes.get(parent_id)
        if parent is None:
            raise TreeInvariantError(f"Animal {node['id']} references missing parent {parent_id}.")
        parent["children"].append(node)

    if root is None:
        raise TreeInvariantError("Tree has no root node.")
    return root


# =============================================================================
# Rendering
# =============================================================================

def render_tree(node: dict[str, Any]) -> dict[str, Any]:
    """Render a node keyed by its id: ``{"<id>": {"label": ..., "children": [...]}}``.

    The parent link is never part of the output.
    """
    return {
        str(node["id"]): {
            "label": node["label"],
            "children": [render_tree(child) for child in node["children"]],
        }
    }


# =============================================================================
# Consistency checks
# =============================================================================

def find_tree_problems(rows: Iterable[dict[str, Any]]) -> list[str]:
    """Check a flat animal table for anything that stops it being one rooted tree.

    Returns:
        Human-readable problem descriptions; empty when the table is a valid tree.
    """
    parents = {row["id"]: row["parent_id"] for row in rows}
    problems: list[str] = []

    roots = sorted(animal_id for animal_id, parent_id in parents.items() if parent_id is None)
    if not roots:
        problems.append("No root node.")
    elif len(roots) > 1:
        problems.append(f"Multiple root nodes: {', '.join(str(r) for r in roots)}.")

    for animal_id, parent_id in sorted(parents.items()):
        if parent_id is not None and parent_id not in parents:
            problems.append(f"Animal {animal_id} references missing parent {parent_id}.")

    # Walk up from every node; a node seen twice on one walk is on a cycle.
    reported: set[int] = set()
    for start in sorted(parents):
        path: list[int] = []
        seen: set[int] = set()
        current = start
        while current is not None and current in parents:
            if current in seen:
                cycle = path[path.index(current):]
                if not reported.intersection(cycle):
                    reported.update(cycle)
                    problems.append("Cycle detected: " + " -> ".join(str(n) for n in cycle + [current]))
                break
            seen.add(current)
            path.append(current)
            current = parents[current]

    return problems


def count_nodes(node: dict[str, Any]) -> int:
    return 1 + sum(count_nodes(child) for child in node["children"])
