# FILE: atelier/workspace/router.py
"""
HTTP surface for workspaces.

A workspace is one live session: a GenerationOrchestrator with its own
memory, file manager and version store, held in the WorkspaceRegistry.
"""
import asyncio
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException

from config.providers import is_known_provider
from atelier.llm.gateway import HttpProviderGateway, ProviderGateway
from atelier.llm.orchestrator import GenerationOrchestrator, OrchestratorConfig
from atelier.llm.schemas import FileType
from atelier.memory.conversation import run_reset_poller
from atelier.workspace import schemas

logger = logging.getLogger(__name__)


class WorkspaceRegistry:
    """Live workspaces keyed by id. One orchestrator per workspace.

    With reset_pollers=True each workspace also gets a background task that
    applies the daily memory reset while the workspace sits idle. Requires a
    running event loop at create() time.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        config: Optional[OrchestratorConfig] = None,
        store_factory: Optional[Callable[[], object]] = None,
        usage_factory: Optional[Callable[[str], object]] = None,
        reset_pollers: bool = False,
    ):
        self.gateway = gateway
        self.config = config or OrchestratorConfig.from_env()
        self.store_factory = store_factory
        self.usage_factory = usage_factory
        self._workspaces: Dict[str, GenerationOrchestrator] = {}
        self.reset_pollers = reset_pollers
        self._pollers: Dict[str, asyncio.Task] = {}

    def create(self, provider_id: Optional[str] = None, user_id: Optional[str] = None):
        config = self.config
        if provider_id:
            config = config.with_provider(provider_id)
        if user_id:
            config = replace(config, user_id=user_id)
        orchestrator = GenerationOrchestrator(
            self.gateway,
            config,
            store=self.store_factory() if self.store_factory else None,
            usage=self.usage_factory(config.user_id) if self.usage_factory else None,
        )
        workspace_id = uuid4().hex
        self._workspaces[workspace_id] = orchestrator
        if self.reset_pollers:
            self._pollers[workspace_id] = asyncio.create_task(run_reset_poller(orchestrator.memory))
        logger.info(f"[workspace] created {workspace_id} ({config.provider_id})")
        return workspace_id, orchestrator

    def get(self, workspace_id: str) -> Optional[GenerationOrchestrator]:
        return self._workspaces.get(workspace_id)

    def remove(self, workspace_id: str) -> bool:
        poller = self._pollers.pop(workspace_id, None)
        if poller is not None:
            poller.cancel()
        return self._workspaces.pop(workspace_id, None) is not None

    def __len__(self) -> int:
        return len(self._workspaces)


_registry: Optional[WorkspaceRegistry] = None


def configure_registry(registry: WorkspaceRegistry) -> None:
    global _registry
    _registry = registry


def get_registry() -> WorkspaceRegistry:
    """FastAPI dependency returning the process-wide registry."""
    global _registry
    if _registry is None:
        _registry = WorkspaceRegistry(HttpProviderGateway())
    return _registry


def _workspace(workspace_id: str, registry: WorkspaceRegistry) -> GenerationOrchestrator:
    orchestrator = registry.get(workspace_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return orchestrator


def _snapshot_entry(files) -> Optional[str]:
    """Entry for a restored snapshot: index.html, else the first page, else the first file."""
    paths = [f.path for f in files]
    if "index.html" in paths:
        return "index.html"
    for f in files:
        if f.file_type == FileType.PAGE:
            return f.path
    return paths[0] if paths else None


def _workspace_out(workspace_id: str, orchestrator: GenerationOrchestrator) -> schemas.WorkspaceOut:
    return schemas.WorkspaceOut(
        workspace_id=workspace_id,
        provider_id=orchestrator.config.provider_id,
        session_id=orchestrator.session_id,
        state=orchestrator.state.value,
    )


router = APIRouter(prefix="/workspaces", tags=["workspaces"])


# ============== WORKSPACES ==============

@router.post("", response_model=schemas.WorkspaceOut, status_code=201)
async def create_workspace(data: schemas.WorkspaceCreate, registry: WorkspaceRegistry = Depends(get_registry)):
    if data.provider_id and not is_known_provider(data.provider_id):
        raise HTTPException(status_code=400, detail=f"Unknown provider: {data.provider_id}")
    workspace_id, orchestrator = registry.create(data.provider_id, data.user_id)
    return _workspace_out(workspace_id, orchestrator)


@router.get("/{workspace_id}", response_model=schemas.WorkspaceOut)
async def get_workspace(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    return _workspace_out(workspace_id, _workspace(workspace_id, registry))


@router.delete("/{workspace_id}", status_code=204)
async def delete_workspace(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    if not registry.remove(workspace_id):
        raise HTTPException(status_code=404, detail="Workspace not found")
    return None


@router.put("/{workspace_id}/provider", response_model=schemas.WorkspaceOut)
async def select_provider(
    workspace_id: str,
    data: schemas.ProviderSelect,
    registry: WorkspaceRegistry = Depends(get_registry),
):
    orchestrator = _workspace(workspace_id, registry)
    if not is_known_provider(data.provider_id):
        raise HTTPException(status_code=400, detail=f"Unknown provider: {data.provider_id}")
    orchestrator.select_provider(data.provider_id)
    return _workspace_out(workspace_id, orchestrator)


# ============== GENERATION ==============

@router.post("/{workspace_id}/submit", response_model=schemas.SubmitResponse)
async def submit(
    workspace_id: str,
    data: schemas.SubmitRequest,
    registry: WorkspaceRegistry = Depends(get_registry),
):
    orchestrator = _workspace(workspace_id, registry)
    inputs = list(data.images) + [a.to_attachment() for a in data.attachments]
    result = await orchestrator.submit(data.text, inputs, data.mode)

    outcome = orchestrator.last_outcome
    if outcome is None or outcome.result is not result:
        # Rejected before the pipeline ran (busy, empty input)
        return schemas.SubmitResponse(result=result, provider_id=result.provider_id)

    return schemas.SubmitResponse(
        result=result,
        mode=outcome.mode,
        final_state=outcome.final_state.value,
        requested_provider=outcome.requested_provider,
        provider_id=outcome.provider_id,
        build_log=outcome.build_log,
        version_id=outcome.version_id,
        session_id=outcome.session_id,
        events=[e.to_dict() for e in outcome.events],
    )


@router.post("/{workspace_id}/cancel", response_model=schemas.CancelOut)
async def cancel(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    orchestrator = _workspace(workspace_id, registry)
    cancelled = orchestrator.cancel()
    return schemas.CancelOut(cancelled=cancelled, state=orchestrator.state.value)


@router.get("/{workspace_id}/messages", response_model=List[schemas.MessageOut])
async def list_messages(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    orchestrator = _workspace(workspace_id, registry)
    return [
        schemas.MessageOut(id=m.id, role=m.role.value, content=m.content, code=m.code, timestamp=m.timestamp)
        for m in orchestrator.memory.snapshot()
    ]


# ============== FILES ==============

@router.get("/{workspace_id}/files", response_model=schemas.ProjectOut)
async def get_project(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    fm = _workspace(workspace_id, registry).file_manager
    exported = fm.export_project()
    return schemas.ProjectOut(tree=fm.get_file_tree(), **exported)


@router.get("/{workspace_id}/files/{path:path}", response_model=schemas.FileOut)
async def get_file(workspace_id: str, path: str, registry: WorkspaceRegistry = Depends(get_registry)):
    pf = _workspace(workspace_id, registry).file_manager.get_file(path)
    if pf is None:
        raise HTTPException(status_code=404, detail="File not found")
    return schemas.FileOut(path=pf.path, content=pf.content, file_type=pf.file_type, last_modified=pf.last_modified)


@router.put("/{workspace_id}/files/{path:path}", response_model=schemas.FileOut)
async def put_file(
    workspace_id: str,
    path: str,
    data: schemas.FileIn,
    registry: WorkspaceRegistry = Depends(get_registry),
):
    fm = _workspace(workspace_id, registry).file_manager
    try:
        pf = fm.add_file(path, data.content, data.file_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return schemas.FileOut(path=pf.path, content=pf.content, file_type=pf.file_type, last_modified=pf.last_modified)


@router.delete("/{workspace_id}/files/{path:path}", status_code=204)
async def delete_file(workspace_id: str, path: str, registry: WorkspaceRegistry = Depends(get_registry)):
    if not _workspace(workspace_id, registry).file_manager.delete_file(path):
        raise HTTPException(status_code=404, detail="File not found")
    return None


@router.put("/{workspace_id}/entry", response_model=schemas.EntryOut)
async def set_entry(workspace_id: str, data: schemas.EntryIn, registry: WorkspaceRegistry = Depends(get_registry)):
    fm = _workspace(workspace_id, registry).file_manager
    if not fm.set_entry(data.path):
        raise HTTPException(status_code=404, detail=str(fm.last_error))
    return schemas.EntryOut(entry=fm.get_entry())


# ============== VERSIONS ==============

@router.get("/{workspace_id}/versions", response_model=List[schemas.VersionOut])
async def list_versions(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    store = _workspace(workspace_id, registry).version_store
    return [schemas.VersionOut(**v.to_dict()) for v in store.get_all_versions()]


@router.get("/{workspace_id}/versions/{older_id}/diff/{newer_id}", response_model=schemas.DiffOut)
async def diff_versions(
    workspace_id: str,
    older_id: int,
    newer_id: int,
    registry: WorkspaceRegistry = Depends(get_registry),
):
    store = _workspace(workspace_id, registry).version_store
    if store.get_version(older_id) is None or store.get_version(newer_id) is None:
        raise HTTPException(status_code=404, detail="Version not found")
    return schemas.DiffOut(**store.diff(older_id, newer_id).to_dict())


@router.post("/{workspace_id}/versions/{version_id}/restore", response_model=schemas.ProjectOut)
async def restore_version(workspace_id: str, version_id: int, registry: WorkspaceRegistry = Depends(get_registry)):
    orchestrator = _workspace(workspace_id, registry)
    files = orchestrator.version_store.restore(version_id)
    if files is None:
        raise HTTPException(status_code=404, detail="Version not found")
    fm = orchestrator.file_manager
    fm.import_project({
        "files": [{"path": f.path, "content": f.content, "type": f.file_type.value} for f in files],
        "entry": _snapshot_entry(files),
    })
    return schemas.ProjectOut(tree=fm.get_file_tree(), **fm.export_project())


@router.delete("/{workspace_id}/versions/{version_id}", status_code=204)
async def delete_version(workspace_id: str, version_id: int, registry: WorkspaceRegistry = Depends(get_registry)):
    if not _workspace(workspace_id, registry).version_store.delete_version(version_id):
        raise HTTPException(status_code=404, detail="Version not found")
    return None
