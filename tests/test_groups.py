from pggsim.config import NetworkType
from pggsim.groups import GroupStructure
from pggsim.network import Topology, ring_graph, square_lattice


def test_ring_groups_are_closed_neighborhoods():
    topology = Topology(NetworkType.RING_GRAPH, ring_graph(4, 2).freeze())
    groups = GroupStructure.from_topology(topology)
    assert groups.groups_count == 4
    assert groups.members[0][0] == 0
    assert sorted(groups.members[0]) == [0, 1, 3]
    assert groups.sizes == (3, 3, 3, 3)
    assert groups.memberships[0] == (0, 1, 3)


def test_every_node_belongs_to_one_plus_degree_groups():
    topology = Topology(NetworkType.SQUARE_LATTICE, square_lattice(5).freeze())
    groups = GroupStructure.from_topology(topology)
    for node in range(topology.nodes_count):
        assert len(groups.memberships[node]) == 1 + topology.degrees[node]
        for group in groups.memberships[node]:
            assert node in groups.members[group]


def test_isolated_node_hosts_a_group_of_one():
    topology = Topology(NetworkType.ERDOS_RENYI, ((1,), (0,), ()))
    groups = GroupStructure.from_topology(topology)
    assert groups.members[2] == (2,)
    assert groups.memberships[2] == (2,)
    assert groups.sizes == (2, 2, 1)
