"""
Node type catalog: category, description and ports per node type.

The catalog is what an editor shows in its palette. The engine uses the
output ports of branching types to derive an edge's label from its
``source_output_index`` when the edge carries no explicit label.
"""

from dataclasses import dataclass, field

from febroflow.graph.flow import TRIGGER_TYPES, NodeType


@dataclass(frozen=True)
class PortInfo:
    name: str
    label: str
    type: str = "any"


@dataclass(frozen=True)
class NodeTypeInfo:
    type: NodeType
    category: str
    description: str
    input_ports: list[PortInfo] = field(default_factory=list)
    output_ports: list[PortInfo] = field(default_factory=list)

    @property
    def is_branching(self) -> bool:
        return len(self.output_ports) > 1

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "category": self.category,
            "description": self.description,
            "input_ports": [p.name for p in self.input_ports],
            "output_ports": [p.name for p in self.output_ports],
        }


_CATEGORIES: dict[NodeType, str] = {
    NodeType.TELEGRAM_TRIGGER: "Triggers",
    NodeType.WEBHOOK_TRIGGER: "Triggers",
    NodeType.SCHEDULE_TRIGGER: "Triggers",
    NodeType.OPEN_AI: "AI",
    NodeType.VECTOR_STORE_RETRIEVER: "AI",
    NodeType.CHAIN_RETRIEVAL_QA: "AI",
    NodeType.MEMORY_MANAGER: "AI",
    NodeType.SWITCH: "Logic",
    NodeType.CODE: "Logic",
    NodeType.SEQUENTIAL_THINKING: "Logic",
    NodeType.IF_CONDITION: "Logic",
    NodeType.TRANSLATOR: "AI",
    NodeType.TELEGRAM_MESSAGE: "Actions",
    NodeType.HTTP_REQUEST: "Actions",
    NodeType.DATABASE_WRITE: "Actions",
    NodeType.FILE_OPERATION: "Actions",
    NodeType.EMBEDDINGS_OPEN_AI: "AI Models",
    NodeType.PINECONE_VECTOR_STORE: "AI Models",
    NodeType.OPEN_AI_CHAT_MODEL: "AI Models",
    NodeType.IMAGE_ANALYSIS: "Media Processing",
    NodeType.AUDIO_TRANSCRIPTION: "Media Processing",
    NodeType.TEXT_TO_SPEECH: "Media Processing",
}

_DESCRIPTIONS: dict[NodeType, str] = {
    NodeType.TELEGRAM_TRIGGER: "Triggers a flow when a Telegram message is received",
    NodeType.WEBHOOK_TRIGGER: "Triggers a flow when a webhook is called",
    NodeType.SCHEDULE_TRIGGER: "Triggers a flow on a schedule",
    NodeType.OPEN_AI: "Processes text with OpenAI models",
    NodeType.VECTOR_STORE_RETRIEVER: "Retrieves information from a vector database",
    NodeType.CHAIN_RETRIEVAL_QA: "Performs question answering with document retrieval",
    NodeType.MEMORY_MANAGER: "Manages conversation memory",
    NodeType.SWITCH: "Routes execution based on a condition",
    NodeType.CODE: "Computes new values from the incoming data",
    NodeType.SEQUENTIAL_THINKING: "Breaks down complex problems into steps",
    NodeType.IF_CONDITION: "Executes different paths based on a condition",
    NodeType.TRANSLATOR: "Translates text between languages",
    NodeType.TELEGRAM_MESSAGE: "Sends a message to Telegram",
    NodeType.HTTP_REQUEST: "Makes an HTTP request",
    NodeType.DATABASE_WRITE: "Writes data to a database",
    NodeType.FILE_OPERATION: "Performs file operations",
    NodeType.EMBEDDINGS_OPEN_AI: "Generates embeddings using OpenAI",
    NodeType.PINECONE_VECTOR_STORE: "Stores vectors in a vector database",
    NodeType.OPEN_AI_CHAT_MODEL: "Generates responses using OpenAI Chat models",
    NodeType.IMAGE_ANALYSIS: "Analyzes images",
    NodeType.AUDIO_TRANSCRIPTION: "Transcribes audio to text",
    NodeType.TEXT_TO_SPEECH: "Converts text to speech",
}

_INPUT = [PortInfo(name="input", label="Input")]
_OUTPUT = [PortInfo(name="output", label="Output")]

_OUTPUT_PORTS: dict[NodeType, list[PortInfo]] = {
    NodeType.IF_CONDITION: [
        PortInfo(name="true", label="True"),
        PortInfo(name="false", label="False"),
    ],
    NodeType.SWITCH: [
        PortInfo(name="true", label="True"),
        PortInfo(name="false", label="False"),
    ],
}


def get_node_type_info(node_type: NodeType) -> NodeTypeInfo:
    """Describe a node type."""
    return NodeTypeInfo(
        type=node_type,
        category=_CATEGORIES.get(node_type, "Other"),
        description=_DESCRIPTIONS.get(node_type, "Unknown node type"),
        input_ports=[] if node_type in TRIGGER_TYPES else list(_INPUT),
        output_ports=list(_OUTPUT_PORTS.get(node_type, _OUTPUT)),
    )


def list_node_types() -> list[NodeTypeInfo]:
    return [get_node_type_info(t) for t in NodeType]
