# magistral: Pydantic v2 models for the workspace tree, conversation messages, streamed tool-call fragments and action execution results.

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CustomBaseModel(BaseModel):
    """Pydantic base model configured to forbid unknown fields for strict validation."""
    model_config = ConfigDict(extra="forbid")


class Language(str, Enum):
    javascript = "javascript"
    typescript = "typescript"
    html = "html"
    css = "css"
    json = "json"
    markdown = "markdown"
    python = "python"
    java = "java"
    xml = "xml"
    php = "php"
    sql = "sql"
    yaml = "yaml"
    plaintext = "plaintext"


class FileNode(CustomBaseModel):
    type: Literal["file"] = "file"
    name: str = Field(..., description="File name, unique among its siblings")
    content: str = Field(default="", description="Text content (empty in the on-disk mirror)")
    language: Language = Field(default=Language.plaintext, description="Editor language tag")


class FolderNode(CustomBaseModel):
    type: Literal["folder"] = "folder"
    name: str = Field(..., description="Folder name, unique among its siblings")
    children: Dict[str, "Node"] = Field(default_factory=dict, description="Child nodes keyed by name")


Node = Annotated[Union[FileNode, FolderNode], Field(discriminator="type")]

FolderNode.model_rebuild()


class FileRecord(CustomBaseModel):
    """Result of a successful storage read."""
    path: str
    name: str
    content: str
    language: Language = Language.plaintext


class ChatMessage(CustomBaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ToolCallFragment(CustomBaseModel):
    """Tool call accumulated across stream deltas sharing one index."""
    index: int
    name: Optional[str] = None
    arguments: str = ""


class ActionType(str, Enum):
    create_file = "create_file"
    update_file = "update_file"
    delete_file = "delete_file"
    create_folder = "create_folder"
    read_file = "read_file"


PATHLESS_TYPES = (ActionType.create_file.value, ActionType.create_folder.value)


class Action(BaseModel):
    """
    One canonical file operation. Unknown keys emitted by the model are kept as extras;
    type stays a plain string so unrecognised operations pass through to the executor.
    """
    model_config = ConfigDict(extra="allow")

    type: str
    path: Optional[str] = None
    content: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    @field_validator("start_line", "end_line", mode="before")
    @classmethod
    def lenient_int(cls, v):
        # Models send "12" as often as 12; anything unusable becomes None.
        if v is None or isinstance(v, bool):
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @field_validator("content", mode="before")
    @classmethod
    def stringify_content(cls, v):
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (dict, list)):
            # A structured payload (package.json as an object) is written as JSON text.
            return json.dumps(v, indent=2, ensure_ascii=False)
        return str(v)


class ChangeStats(CustomBaseModel):
    added: int = 0
    removed: int = 0


class ActionResult(CustomBaseModel):
    action: Action
    ok: bool = Field(..., description="Whether the storage operation succeeded")
    stats: ChangeStats = Field(default_factory=ChangeStats)


class ExecutionReport(CustomBaseModel):
    results: List[ActionResult] = Field(default_factory=list)
    continuation: Optional[ChatMessage] = Field(default=None, description="Tool-result message requesting a follow-up turn")
    skipped: List[Action] = Field(default_factory=list, description="Actions never applied (after read_file or unusable)")


class TurnResult(CustomBaseModel):
    text: str = ""
    thinking: str = ""
    reports: List[ExecutionReport] = Field(default_factory=list)
    error: Optional[str] = None
    continuations: int = 0
