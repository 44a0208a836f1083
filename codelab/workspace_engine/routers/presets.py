"""Preset endpoints: synchronous install / build / test / lint runs."""

from __future__ import annotations

from fastapi import APIRouter, Query

from codelab.workspace_engine.deps import Executor, http_error
from codelab.workspace_engine.errors import EngineError
from codelab.workspace_engine.models.api import PresetRunResponse

router = APIRouter(prefix="/workspaces/{workspace_id}/presets", tags=["presets"])


@router.post("/{preset}/run", response_model=PresetRunResponse)
async def handle_run_preset(
    workspace_id: str,
    preset: str,
    executor: Executor,
    cwd: str = Query(".", description="Directory to run in, relative to the workspace root."),
) -> PresetRunResponse:
    """Run a preset and wait for it.  A failing command is a normal response."""
    try:
        result = await executor.run_preset(workspace_id, preset, cwd=cwd)
    except EngineError as exc:
        raise http_error(exc) from None
    error = result.error
    if error is None and not result.ok:
        error = result.stderr or f"Exited with code {result.exit_code}"
    return PresetRunResponse(
        success=result.ok,
        output=result.stdout,
        error=error,
        execution_time=result.execution_time,
    )
