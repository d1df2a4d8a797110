"""
Tests for compiling the editor graph into blocks and back.
"""

import pytest

from chatfunnel.authoring.graph import (
    GraphEdge,
    GraphNode,
    Position,
    compile_graph,
    default_content,
    graph_from_blocks,
)
from chatfunnel.engine.blocks import Script
from chatfunnel.engine.errors import GraphValidationError


def node(node_id, block_type, content=None, x=0, y=0):
    return GraphNode(
        id=node_id,
        block_type=block_type,
        content=content if content is not None else default_content(block_type),
        position=Position(x=x, y=y),
    )


def edge(source, target):
    return GraphEdge(id=f"{source}-{target}", source=source, target=target)


class TestCompile:

    def test_order_and_links(self):
        nodes = [node("n1", "text", x=10, y=20), node("n2", "question"), node("n3", "end")]
        blocks = compile_graph("funnel-1", nodes, [edge("n1", "n2"), edge("n2", "n3")])

        assert [b.order_index for b in blocks] == [0, 1, 2]
        assert [b.type for b in blocks] == ["text", "question", "end"]
        assert blocks[0].next_block_id == blocks[1].id
        assert blocks[1].next_block_id == blocks[2].id
        assert blocks[2].next_block_id is None
        assert all(b.funnel_id == "funnel-1" for b in blocks)
        assert (blocks[0].position_x, blocks[0].position_y) == (10, 20)

    def test_fresh_ids(self):
        blocks = compile_graph("funnel-1", [node("n1", "text")], [])
        assert blocks[0].id != "n1"

    def test_unconnected_nodes_fall_back_to_order(self):
        blocks = compile_graph("funnel-1", [node("n1", "text"), node("n2", "text")], [])
        script = Script(blocks)
        assert script.next_after(blocks[0]).id == blocks[1].id

    def test_unknown_block_type(self):
        with pytest.raises(GraphValidationError):
            compile_graph("funnel-1", [node("n1", "carousel", {})], [])

    def test_edge_to_missing_node(self):
        with pytest.raises(GraphValidationError):
            compile_graph("funnel-1", [node("n1", "text")], [edge("n1", "ghost")])

    def test_two_outgoing_edges(self):
        nodes = [node("n1", "text"), node("n2", "text"), node("n3", "text")]
        with pytest.raises(GraphValidationError):
            compile_graph("funnel-1", nodes, [edge("n1", "n2"), edge("n1", "n3")])

    def test_two_end_nodes(self):
        with pytest.raises(GraphValidationError):
            compile_graph("funnel-1", [node("e1", "end"), node("e2", "end")], [])

    def test_cycle(self):
        nodes = [node("n1", "text"), node("n2", "text"), node("n3", "text")]
        edges = [edge("n1", "n2"), edge("n2", "n3"), edge("n3", "n2")]
        with pytest.raises(GraphValidationError, match="Loop"):
            compile_graph("funnel-1", nodes, edges)

    def test_invalid_content(self):
        with pytest.raises(GraphValidationError):
            compile_graph("funnel-1", [node("n1", "delay", {"duration": -1})], [])

    def test_empty_graph(self):
        assert compile_graph("funnel-1", [], []) == []


class TestLoad:

    def test_round_trip(self):
        nodes = [
            node("n1", "question", {"text": "Email?", "questionType": "email"}, x=5, y=6),
            node("n2", "end"),
        ]
        blocks = compile_graph("funnel-1", nodes, [edge("n1", "n2")])
        loaded_nodes, loaded_edges = graph_from_blocks(blocks)

        assert [n.id for n in loaded_nodes] == [b.id for b in blocks]
        assert loaded_nodes[0].content["questionType"] == "email"
        assert loaded_nodes[0].position == Position(x=5, y=6)
        assert loaded_nodes[1].order_index == 1
        assert [(e.id, e.source, e.target) for e in loaded_edges] == [
            (f"{blocks[0].id}-{blocks[1].id}", blocks[0].id, blocks[1].id)
        ]


class TestDefaults:

    def test_known_types(self):
        assert default_content("text") == {"text": "Nova mensagem de texto"}
        assert default_content("question")["questionType"] == "text"
        assert default_content("typing_effect") == {"duration": 2000}
        assert default_content("delay") == {"duration": 1000}

    def test_end_has_empty_content(self):
        assert default_content("end") == {}

    def test_returns_copy(self):
        default_content("text")["text"] = "mudado"
        assert default_content("text") == {"text": "Nova mensagem de texto"}
