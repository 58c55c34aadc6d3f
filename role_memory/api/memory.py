"""
Role memory API endpoints.

Tool execution, prompt injection and administration of role memory:
updates, bulk deletes, import / export, purges and an all-roles overview.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from role_memory.config import MemorySettings
from role_memory.errors import MemoryValidationError, NotFoundError, StorageIOError
from role_memory.memory.integrate import MemoryIntegration
from role_memory.memory.policy import EvictionPolicy
from role_memory.memory.recall import TriggerEngine
from role_memory.memory.schemas import (
    BulkDeleteResult,
    ConversationSnapshot,
    ImportReport,
    MemoryEntry,
    MemoryFilter,
    MemoryStats,
    MemoryType,
    RoleOverview,
    ToolResult,
)
from role_memory.memory.store import MemoryStore
from role_memory.persist import KVStore
from role_memory.tools import MemoryToolDispatcher, ToolCall
from .schemas import (
    BulkDeleteRequest,
    DeleteMemoryResponse,
    ExportResponse,
    ImportRequest,
    InjectRequest,
    InjectResponse,
    MemoryListResponse,
    PurgeResponse,
    ToolInvocationRequest,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/memory", tags=["memory"])


class MemoryServices:
    """Store, engine, policy and dispatcher sharing one KV store."""

    def __init__(self, settings: MemorySettings, kv: Optional[KVStore] = None):
        self.settings = settings
        self.kv = kv or KVStore(Path(settings.db_path))
        self.store = MemoryStore(self.kv)
        self.engine = TriggerEngine(self.store, settings.trigger)
        self.policy = EvictionPolicy(self.store, settings.cleanup)
        self.dispatcher = MemoryToolDispatcher(self.store, self.policy, config=settings.normalizer)
        self.integration = MemoryIntegration(self.store, self.engine, self.policy)

    def close(self) -> None:
        self.kv.close()


def get_services(request: Request) -> MemoryServices:
    """Dependency returning the app's memory services."""
    services = getattr(request.app.state, "memory", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Memory services not initialized")
    return services


def _raise_http(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, MemoryValidationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, StorageIOError):
        raise HTTPException(status_code=500, detail=f"Storage failure: {exc}")
    raise exc


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/{role_id}/tools/{tool_name}", response_model=ToolResult)
async def invoke_tool(
    role_id: str,
    tool_name: str,
    body: ToolInvocationRequest,
    services: MemoryServices = Depends(get_services),
):
    """
    Execute one memory tool call.

    Always answers 200 with the tool-result contract; validation problems
    and pending partial calls are reported inside the result.

    Example:
        POST /memory/role-1/tools/add_semantic_memory
        {"params": {"args": "<memory><content>...</content></memory>"}}

        Response:
        {"success": true, "message": "Semantic memory saved", "pending": false, ...}
    """
    call = ToolCall(name=tool_name, params=body.params, partial=body.partial)
    return await services.dispatcher.dispatch(role_id, call)


@router.post("/{role_id}/inject", response_model=InjectResponse)
async def inject_memories(
    role_id: str,
    body: InjectRequest,
    services: MemoryServices = Depends(get_services),
):
    """
    Build the memory block for the next prompt.

    Failures degrade to an empty block rather than an error response.
    """
    snapshot = ConversationSnapshot(role_id=role_id, **body.model_dump())
    content, metadata = await services.integration.inject(snapshot)
    return InjectResponse(content=content, metadata=metadata)


@router.get("/{role_id}/stats", response_model=MemoryStats)
async def memory_stats(role_id: str, services: MemoryServices = Depends(get_services)):
    """Aggregate counts for a role."""
    try:
        return await services.store.stats(role_id)
    except (MemoryValidationError, StorageIOError) as exc:
        _raise_http(exc)


@router.get("/{role_id}/memories", response_model=MemoryListResponse)
async def list_memories(
    role_id: str,
    types: Optional[str] = None,  # Comma-separated
    search: Optional[str] = None,
    is_constant: Optional[bool] = None,
    limit: int = 100,
    sort_by: str = "recency",
    services: MemoryServices = Depends(get_services),
):
    """
    List a role's memories without touching access bookkeeping.

    Query Parameters:
        types: Comma-separated memory types (episodic, semantic)
        search: Substring matched against content and terms
        is_constant: Filter on the constant flag
        limit: Maximum results (default: 100)
        sort_by: recency, priority, access or created
    """
    try:
        memory_types: List[MemoryType] = []
        if types:
            memory_types = [MemoryType(t.strip()) for t in types.split(",") if t.strip()]
        memory_filter = MemoryFilter(
            memory_types=memory_types,
            search=search,
            is_constant=is_constant,
            limit=limit,
            sort_by=sort_by,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        memories = await services.store.list(role_id, memory_filter)
    except (MemoryValidationError, StorageIOError) as exc:
        _raise_http(exc)

    return MemoryListResponse(memories=memories, count=len(memories))


@router.delete("/{role_id}/memories/{memory_id}", response_model=DeleteMemoryResponse)
async def delete_memory(
    role_id: str,
    memory_id: str,
    force: bool = False,
    services: MemoryServices = Depends(get_services),
):
    """
    Delete one memory.

    Constant memories are kept unless `force=true`.
    """
    try:
        deleted = await services.store.remove(role_id, memory_id, force=force)
    except (NotFoundError, MemoryValidationError, StorageIOError) as exc:
        _raise_http(exc)

    if deleted:
        return DeleteMemoryResponse(deleted=True, message="Memory deleted")
    return DeleteMemoryResponse(deleted=False, message=f"Memory {memory_id} is constant; pass force=true to delete")


@router.patch("/{role_id}/memories/{memory_id}", response_model=MemoryEntry)
async def update_memory(
    role_id: str,
    memory_id: str,
    patch: Dict[str, Any] = Body(..., examples=[{"priority": 90, "keywords": ["coffee"]}]),
    services: MemoryServices = Depends(get_services),
):
    """
    Patch fields of one memory.

    `id`, `created_at`, `last_accessed` and `access_count` are ignored; the
    patched entry is validated as a whole.
    """
    try:
        return await services.store.update(role_id, memory_id, patch)
    except (NotFoundError, MemoryValidationError, StorageIOError) as exc:
        _raise_http(exc)


@router.post("/{role_id}/memories/delete", response_model=BulkDeleteResult)
async def delete_memories(
    role_id: str,
    body: BulkDeleteRequest,
    services: MemoryServices = Depends(get_services),
):
    """
    Delete several memories.

    Unknown ids and constant memories kept without `force` are reported in
    the result instead of failing the request.
    """
    try:
        return await services.store.remove_many(role_id, body.memory_ids, force=body.force)
    except (MemoryValidationError, StorageIOError) as exc:
        _raise_http(exc)


@router.get("/{role_id}/export", response_model=ExportResponse)
async def export_memories(
    role_id: str,
    ids: Optional[str] = None,  # Comma-separated
    services: MemoryServices = Depends(get_services),
):
    """Export a role's memories, or only the given ids."""
    memory_ids = [i.strip() for i in ids.split(",") if i.strip()] if ids else None
    try:
        return await services.store.export_role(role_id, memory_ids)
    except (MemoryValidationError, StorageIOError) as exc:
        _raise_http(exc)


@router.post("/{role_id}/import", response_model=ImportReport)
async def import_memories(
    role_id: str,
    body: ImportRequest,
    services: MemoryServices = Depends(get_services),
):
    """
    Import memory records into a role.

    Invalid records are listed in `errors`; ids already in use are replaced
    and listed in `renamed`.
    """
    try:
        return await services.store.import_entries(role_id, body.memories)
    except (MemoryValidationError, StorageIOError) as exc:
        _raise_http(exc)


@router.get("/overview", response_model=Dict[str, RoleOverview])
async def roles_overview(services: MemoryServices = Depends(get_services)):
    """Memory count and type breakdown for every role."""
    try:
        return await services.store.overview()
    except StorageIOError as exc:
        _raise_http(exc)


@router.delete("/{role_id}", response_model=PurgeResponse)
async def purge_role(role_id: str, services: MemoryServices = Depends(get_services)):
    """Delete every memory, trait and goal of a role."""
    try:
        purged = await services.integration.clear_role(role_id)
    except (MemoryValidationError, StorageIOError) as exc:
        _raise_http(exc)

    return PurgeResponse(role_id=role_id, purged=purged)
