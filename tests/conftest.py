import pytest

from graph.builder import GraphBuilder
from graph.models import NodeType
from graph.node_data import IntRange, MergeStrategy, Size, SizeRange


def build_chain_graph(count=3, size=5.0):
    """start -> room_chain(count..count, size x size) -> output."""
    return (
        GraphBuilder()
        .add("start", NodeType.START)
        .add(
            "hall",
            NodeType.ROOM_CHAIN,
            count_range=IntRange(count, count),
            room_size=SizeRange(Size(size, size), Size(size, size)),
        )
        .add("exit", NodeType.OUTPUT)
        .chain("start", "hall", "exit")
        .build()
    )


def build_fork_graph(strategy=MergeStrategy.ALL, probabilistic=False):
    """start -> branch -> (left | right) -> merge -> after -> output."""
    return (
        GraphBuilder()
        .add("start", NodeType.START)
        .add("fork", NodeType.BRANCH, probabilistic=probabilistic)
        .add("left", NodeType.ROOM)
        .add("right", NodeType.ROOM)
        .add("join", NodeType.MERGE, strategy=strategy)
        .add("after", NodeType.ROOM)
        .add("exit", NodeType.OUTPUT)
        .chain("start", "fork")
        .connect("fork", "left", "out1")
        .connect("fork", "right", "out2")
        .connect("left", "join", target_port="in1")
        .connect("right", "join", target_port="in2")
        .chain("join", "after", "exit")
        .build()
    )


@pytest.fixture
def chain_graph():
    return build_chain_graph()


@pytest.fixture
def fork_graph():
    return build_fork_graph()
