"""
Pydantic schemas for the role memory endpoints.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from role_memory.memory.schemas import InjectionMetadata, MemoryEntry


class ToolInvocationRequest(BaseModel):
    """Body of POST /memory/{role_id}/tools/{tool_name}."""

    params: Any = Field(default_factory=dict, description="Tool payload in any accepted shape")
    partial: bool = Field(False, description="Call is still streaming")

    model_config = {
        "json_schema_extra": {
            "example": {
                "params": {
                    "args": "<memory><content>用户喜欢喝咖啡</content><keywords>咖啡,早晨习惯</keywords>"
                            "<priority>75</priority><is_constant>true</is_constant></memory>"
                },
                "partial": False,
            }
        }
    }


class InjectRequest(BaseModel):
    """Body of POST /memory/{role_id}/inject."""

    utterance: str = Field("", description="Latest user utterance")
    history: List[str] = Field(default_factory=list, description="Earlier turns, oldest first")
    emotional_state: Optional[str] = Field(None, description="Current mood of the conversation")
    context_keywords: List[str] = Field(default_factory=list, description="Extra terms to match")
    turn: int = Field(0, ge=0, description="Monotonic turn number")


class InjectResponse(BaseModel):
    """Memory block for the next system prompt."""

    content: str = Field(..., description="Rendered memory block, empty when nothing applies")
    metadata: InjectionMetadata


class MemoryListResponse(BaseModel):
    memories: List[MemoryEntry] = Field(..., description="Matching memory entries")
    count: int = Field(..., description="Number of results returned")


class DeleteMemoryResponse(BaseModel):
    deleted: bool = Field(..., description="Whether the entry was deleted")
    message: str = Field(..., description="Status message")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service status")
    db_path: str = Field(..., description="SQLite database in use")
    tables: Dict[str, int] = Field(default_factory=dict, description="Row count per table")


class BulkDeleteRequest(BaseModel):
    """Body of POST /memory/{role_id}/memories/delete."""

    memory_ids: List[str] = Field(..., min_length=1, description="Memories to delete")
    force: bool = Field(False, description="Also delete constant memories")


class ImportRequest(BaseModel):
    """Body of POST /memory/{role_id}/import; an export payload is accepted as is."""

    memories: List[Any] = Field(..., description="Memory records as produced by the export endpoint")


class ExportResponse(BaseModel):
    role_id: str
    exported_at: float = Field(..., description="Unix time of the export")
    count: int
    memories: List[Dict[str, Any]] = Field(..., description="Memory records in storage form, oldest first")


class PurgeResponse(BaseModel):
    role_id: str
    purged: Dict[str, int] = Field(..., description="Rows deleted per table")
