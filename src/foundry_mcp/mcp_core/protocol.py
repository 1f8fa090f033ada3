"""
MCP protocol implementation and request/response models.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MCPRequest(BaseModel):
    """MCP Request model for the MCP envelope"""
    version: str
    type: Literal["request"]
    id: str
    tool: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class MCPResponse(BaseModel):
    """MCP Response model for the MCP envelope"""
    version: str
    type: Literal["response", "error"]
    id: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResult(BaseModel):
    """What every tool returns: text blocks plus an error flag."""

    model_config = ConfigDict(populate_by_name=True)

    content: List[TextContent]
    is_error: bool = Field(False, alias="isError")

    @classmethod
    def ok(cls, text: str) -> "ToolResult":
        return cls(content=[TextContent(text=text)])

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(content=[TextContent(text=text)], is_error=True)

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
