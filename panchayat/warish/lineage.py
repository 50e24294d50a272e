from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Protocol

from panchayat.warish.errors import CorruptHierarchy, DepthExceeded, ValidationError


class MemberRecord(Protocol):
    id: int
    parent_id: int | None
    name: str
    relation: str


@dataclass
class LineageNode:
    member: MemberRecord
    depth: int
    children: list["LineageNode"] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.member.id

    def walk(self) -> Iterator["LineageNode"]:
        """Yield this node and its descendants in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def to_dict(self) -> dict[str, object]:
        out = _node_payload(self)
        # Iterative so very deep trees do not hit the recursion limit.
        pending = [(self, out)]
        while pending:
            node, payload = pending.pop()
            for child in node.children:
                child_payload = _node_payload(child)
                payload["children"].append(child_payload)
                pending.append((child, child_payload))
        return out


def _node_payload(node: LineageNode) -> dict:
    status = getattr(node.member, "living_status", None)
    return {
        "id": node.member.id,
        "name": node.member.name,
        "relation": node.member.relation,
        "living_status": getattr(status, "value", status),
        "gender": getattr(node.member, "gender", None),
        "spouse_name": getattr(node.member, "spouse_name", None),
        "depth": node.depth,
        "children": [],
    }


def build_lineage(members: Iterable[MemberRecord], max_depth: int | None = None) -> list[LineageNode]:
    """Assemble the family tree of one application.

    ``members`` must be given in insertion order; siblings keep that order.
    Roots have depth 1. With ``max_depth`` set, any node deeper than it raises
    ``DepthExceeded`` instead of being dropped. Dangling parents and members
    that cannot be reached from a root (parent cycles) raise ``CorruptHierarchy``.
    """
    if max_depth is not None and max_depth < 1:
        raise ValueError("max_depth must be at least 1")

    arena: dict[int, MemberRecord] = {}
    by_parent: dict[int | None, list[MemberRecord]] = defaultdict(list)
    for member in members:
        if member.id in arena:
            raise CorruptHierarchy(f"Family member {member.id} appears twice")
        arena[member.id] = member
        by_parent[member.parent_id].append(member)

    for member in arena.values():
        if member.parent_id is not None and member.parent_id not in arena:
            raise CorruptHierarchy(
                f"Family member {member.id} references unknown parent {member.parent_id}"
            )
        if member.parent_id == member.id:
            raise CorruptHierarchy(f"Family member {member.id} is its own parent")

    roots = [LineageNode(member=m, depth=1) for m in by_parent.get(None, [])]
    visited: set[int] = set()
    queue: deque[LineageNode] = deque(roots)
    while queue:
        node = queue.popleft()
        if node.id in visited:
            raise CorruptHierarchy(f"Family member {node.id} reached twice")
        visited.add(node.id)
        if max_depth is not None and node.depth > max_depth:
            raise DepthExceeded(
                f"Family tree exceeds the maximum depth of {max_depth} at member {node.id}"
            )
        for child_member in by_parent.get(node.id, []):
            child = LineageNode(member=child_member, depth=node.depth + 1)
            node.children.append(child)
            queue.append(child)

    unreachable = sorted(set(arena) - visited)
    if unreachable:
        raise CorruptHierarchy(
            f"Family members {unreachable} form a parent cycle and cannot be reached from a root"
        )
    return roots


def payload_depth(members: list) -> int:
    """Depth of a nested ``{"children": [...]}`` payload, computed iteratively."""
    if not isinstance(members, list):
        raise ValidationError("Family members must be given as a list")
    deepest = 0
    stack = [(item, 1) for item in members]
    while stack:
        item, depth = stack.pop()
        if not isinstance(item, dict):
            raise ValidationError("Each family member must be an object")
        children = item.get("children") or []
        if not isinstance(children, list):
            raise ValidationError("Family member children must be given as a list")
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in children)
    return deepest
