"""
Flow definition models - what a user builds in the editor.

A flow owns nodes and connections. The engine only ever reads these; they are
created and edited by the definition-management layer.

Connection roles:
- main / conditional: traversal edges, walked by the engine
- ai_*: attachment edges, binding a supporting sub-node (memory, retriever,
  embedding model, ...) to the node they point at. Never walked.
"""

import json
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class NodeType(StrEnum):
    """Closed set of node types."""

    # Triggers
    TELEGRAM_TRIGGER = "telegram_trigger"
    WEBHOOK_TRIGGER = "webhook_trigger"
    SCHEDULE_TRIGGER = "schedule_trigger"

    # Processing
    OPEN_AI = "open_ai"
    VECTOR_STORE_RETRIEVER = "vector_store_retriever"
    CHAIN_RETRIEVAL_QA = "chain_retrieval_qa"
    MEMORY_MANAGER = "memory_manager"
    SWITCH = "switch"
    CODE = "code"
    SEQUENTIAL_THINKING = "sequential_thinking"
    IF_CONDITION = "if_condition"
    TRANSLATOR = "translator"

    # Outputs
    TELEGRAM_MESSAGE = "telegram_message"
    HTTP_REQUEST = "http_request"
    DATABASE_WRITE = "database_write"
    FILE_OPERATION = "file_operation"

    # AI models and media
    EMBEDDINGS_OPEN_AI = "embeddings_open_ai"
    PINECONE_VECTOR_STORE = "pinecone_vector_store"
    OPEN_AI_CHAT_MODEL = "open_ai_chat_model"
    IMAGE_ANALYSIS = "image_analysis"
    AUDIO_TRANSCRIPTION = "audio_transcription"
    TEXT_TO_SPEECH = "text_to_speech"


TRIGGER_TYPES = frozenset(
    {NodeType.TELEGRAM_TRIGGER, NodeType.WEBHOOK_TRIGGER, NodeType.SCHEDULE_TRIGGER}
)


class ConnectionType(StrEnum):
    """Role of a connection between two nodes."""

    MAIN = "main"
    AI_MEMORY = "ai_memory"
    AI_RETRIEVER = "ai_retriever"
    AI_VECTOR_STORE = "ai_vector_store"
    AI_EMBEDDING = "ai_embedding"
    AI_LANGUAGE_MODEL = "ai_language_model"
    CONDITIONAL = "conditional"

    @property
    def is_traversal(self) -> bool:
        return self in (ConnectionType.MAIN, ConnectionType.CONDITIONAL)


DEFAULT_LABEL = "default"


class Position(BaseModel):
    """Editor layout position. Presentation only."""

    x: int = 0
    y: int = 0


class FlowSpec(BaseModel):
    """A named automation."""

    id: str
    name: str = ""
    description: str = ""
    is_active: bool = True
    creator_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}


class NodeSpec(BaseModel):
    """
    A typed unit of work inside a flow.

    ``parameters`` is the node's serialized configuration blob. It is only
    interpreted by the handler bound to ``type``; a JSON string is accepted
    and decoded on load.
    """

    id: str
    flow_id: str = ""
    name: str = ""
    type: NodeType
    parameters: dict[str, Any] = Field(default_factory=dict)
    position: Position = Field(default_factory=Position)
    credential_id: str | None = None

    # Execution policy
    disable_retry_on_fail: bool = False
    always_output_data: bool = True

    model_config = {"extra": "allow"}

    @field_validator("parameters", mode="before")
    @classmethod
    def _decode_parameters(cls, value: Any) -> Any:
        if value is None or value == "":
            return {}
        if isinstance(value, str):
            decoded = json.loads(value)
            if not isinstance(decoded, dict):
                raise ValueError("parameters must decode to a JSON object")
            return decoded
        return value

    @property
    def display_name(self) -> str:
        return self.name or self.id


class ConnectionSpec(BaseModel):
    """A directed edge from one node's output to another node's input."""

    id: str
    flow_id: str = ""
    source_node_id: str
    target_node_id: str
    type: ConnectionType = ConnectionType.MAIN
    label: str | None = Field(
        default=None,
        description="Branch label matched against the source node's output label",
    )
    source_output_index: int | None = None
    target_input_index: int | None = None

    model_config = {"extra": "allow"}

    @property
    def is_traversal(self) -> bool:
        return self.type.is_traversal


class FlowDefinition(BaseModel):
    """
    A flow together with its nodes and connections.

    This is the document format used by the file repository and the CLI:

        {
          "flow": {"id": "greeter", "name": "Greeter"},
          "nodes": [{"id": "start", "type": "webhook_trigger"}, ...],
          "connections": [{"id": "c1", "source_node_id": "start", ...}]
        }

    Nodes and connections without a ``flow_id`` inherit the flow's id.
    """

    flow: FlowSpec
    nodes: list[NodeSpec] = Field(default_factory=list)
    connections: list[ConnectionSpec] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    @model_validator(mode="after")
    def _inherit_flow_id(self) -> "FlowDefinition":
        for node in self.nodes:
            if not node.flow_id:
                node.flow_id = self.flow.id
        for connection in self.connections:
            if not connection.flow_id:
                connection.flow_id = self.flow.id
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> "FlowDefinition":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
