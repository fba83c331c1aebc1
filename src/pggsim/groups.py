"""Public goods groups derived from a frozen topology."""
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class GroupStructure:
    """
    One group per node: the node itself plus its neighbors.

    Group g is the game hosted by node g. A node takes part in its own group
    and in the group of each of its neighbors, so it belongs to 1 + degree
    groups.

    Attributes:
    -----------
    members : tuple of tuple of int
        Members of each group, host first
    sizes : tuple of int
        Nominal size of each group
    memberships : tuple of tuple of int
        Groups each node belongs to, in increasing group order
    """
    members: Tuple[Tuple[int, ...], ...]
    sizes: Tuple[int, ...]
    memberships: Tuple[Tuple[int, ...], ...]

    @classmethod
    def from_topology(cls, topology):
        members = []
        memberships = [[] for _ in range(topology.nodes_count)]
        for group in range(topology.nodes_count):
            group_members = (group,) + tuple(topology.neighbors(group))
            members.append(group_members)
            for node in group_members:
                memberships[node].append(group)
        return cls(
            members=tuple(members),
            sizes=tuple(len(m) for m in members),
            memberships=tuple(tuple(m) for m in memberships),
        )

    @property
    def groups_count(self):
        return len(self.members)
