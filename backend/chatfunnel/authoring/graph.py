import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from chatfunnel.engine.blocks import BLOCK_TYPES, Block, content_to_dict, parse_block
from chatfunnel.engine.errors import GraphValidationError
from chatfunnel.engine.records import new_id

logger = logging.getLogger(__name__)


class Position(BaseModel):
    x: float = 0
    y: float = 0


class GraphNode(BaseModel):
    id: str = Field(..., example="node-1")
    block_type: str = Field(..., example="text")
    content: dict = Field(default_factory=dict)
    position: Position = Field(default_factory=Position)
    order_index: Optional[int] = None


class GraphEdge(BaseModel):
    id: Optional[str] = None
    source: str
    target: str


def default_content(block_type: str) -> dict:
    """Starting content for a block freshly dropped on the canvas."""
    defaults = {
        "text": {"text": "Nova mensagem de texto"},
        "question": {"text": "Qual é a sua pergunta?", "questionType": "text"},
        "image": {"mediaUrl": "", "text": ""},
        "video": {"mediaUrl": "", "text": ""},
        "audio": {"mediaUrl": ""},
        "typing_effect": {"duration": 2000},
        "recording_effect": {"duration": 2000},
        "delay": {"duration": 1000},
    }
    return dict(defaults.get(block_type, {}))


def _validate_graph(nodes: List[GraphNode], edges: List[GraphEdge]) -> Dict[str, GraphEdge]:
    node_ids = set()
    end_nodes = 0
    for node in nodes:
        if node.id in node_ids:
            raise GraphValidationError(f"Duplicate node id {node.id}")
        node_ids.add(node.id)
        if node.block_type not in BLOCK_TYPES:
            raise GraphValidationError(f"Node {node.id} has unknown block type '{node.block_type}'")
        if node.block_type == "end":
            end_nodes += 1
    if end_nodes > 1:
        raise GraphValidationError(f"A funnel may have at most one end block, found {end_nodes}")

    outgoing: Dict[str, GraphEdge] = {}
    for edge in edges:
        if edge.source not in node_ids or edge.target not in node_ids:
            raise GraphValidationError(f"Edge {edge.source} -> {edge.target} references a missing node")
        if edge.source in outgoing:
            raise GraphValidationError(f"Node {edge.source} has more than one outgoing connection")
        outgoing[edge.source] = edge

    visiting, visited = set(), set()

    def visit(node_id):
        if node_id in visiting:
            raise GraphValidationError(f"Loop detected involving node {node_id}")
        if node_id in visited:
            return
        visiting.add(node_id)
        edge = outgoing.get(node_id)
        if edge:
            visit(edge.target)
        visiting.remove(node_id)
        visited.add(node_id)

    for node in nodes:
        visit(node.id)

    return outgoing


def compile_graph(funnel_id: str, nodes: List[GraphNode], edges: List[GraphEdge]) -> List[Block]:
    """
    Turn the editor's canvas into the flat block list the interpreter plays.

    Blocks get fresh ids and take their order from the node list. Each
    block's next_block_id follows the node's outgoing connection, if any.
    """
    outgoing = _validate_graph(nodes, edges)
    id_map = {node.id: new_id() for node in nodes}

    blocks = []
    for index, node in enumerate(nodes):
        edge = outgoing.get(node.id)
        try:
            block = parse_block({
                "id": id_map[node.id],
                "funnel_id": funnel_id,
                "type": node.block_type,
                "content": node.content,
                "order_index": index,
                "next_block_id": id_map[edge.target] if edge else None,
                "position_x": node.position.x,
                "position_y": node.position.y,
            })
        except ValidationError as e:
            raise GraphValidationError(f"Node {node.id} has invalid content: {e}") from e
        blocks.append(block)

    logger.info(f"[GRAPH] Compiled {len(nodes)} nodes and {len(outgoing)} connections for funnel {funnel_id}")
    return blocks


def graph_from_blocks(blocks: List[Block]):
    """Nodes and edges for loading a stored script back into the editor."""
    ordered = sorted(blocks, key=lambda block: block.order_index)
    nodes = [
        GraphNode(
            id=block.id,
            block_type=block.type,
            content=content_to_dict(block),
            position=Position(x=block.position_x, y=block.position_y),
            order_index=block.order_index,
        )
        for block in ordered
    ]
    edges = [
        GraphEdge(id=f"{block.id}-{block.next_block_id}", source=block.id, target=block.next_block_id)
        for block in ordered
        if block.next_block_id
    ]
    return nodes, edges
