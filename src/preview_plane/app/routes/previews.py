"""Preview lifecycle and contract preview API.

Endpoints:
  POST   /api/v1/previews              -> request a preview (202 new, 200 existing)
  GET    /api/v1/previews?userId=      -> list a user's previews
  GET    /api/v1/previews/{id}         -> stored record
  POST   /api/v1/previews/{id}/check   -> stored record plus live remote status
  GET    /api/v1/previews/{id}/logs    -> recent machine log entries
  DELETE /api/v1/previews/{id}         -> tear down, record -> stopped
  POST   /api/v1/contracts/preview     -> inspect a file listing, return the
                                          contract it would run with

Errors are returned as ``{code, message, request_id}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..contracts.builder import build_contract
from ..contracts.runtime_contract import render_contract_json
from ..contracts.server_config import advise
from ..errors import (
    ContractValidationError,
    DuplicatePreviewError,
    PreviewNotFoundError,
    PreviewRequestError,
)
from ..inspection.repo_inspector import Inspection, inspect
from ..provisioning.orchestrator import PreviewIdentity, PreviewOrchestrator

MAX_LOG_LIMIT = 1000


# ── Request schemas ───────────────────────────────────────────────────


class PreviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo: str = Field(description='Repository in owner/repo form.')
    branch: str = 'main'
    project_id: str = Field(alias='projectId')
    user_id: str | None = Field(default=None, alias='userId')


class ContractPreviewRequest(BaseModel):
    files: list[str] = Field(
        default_factory=list,
        description='Repository-relative file paths.',
    )
    overrides: dict[str, Any] | None = None


# ── Response helpers ──────────────────────────────────────────────────


def error_response(
    request: Request, status_code: int, code: str, message: str,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            'code': code,
            'message': message,
            'request_id': getattr(request.state, 'request_id', None),
        },
    )


def _inspection_response(result: Inspection) -> dict:
    return {
        'type': result.type.value,
        'packageManager': result.package_manager,
        'hasDockerfile': result.has_dockerfile,
        'hasEnvFile': result.has_env_file,
        'fileCount': result.file_count,
    }


# ── Route factory ─────────────────────────────────────────────────────


def create_previews_router(orchestrator: PreviewOrchestrator) -> APIRouter:
    """Create the preview lifecycle router bound to ``orchestrator``."""
    router = APIRouter(tags=['previews'])

    @router.post('/api/v1/previews')
    async def request_preview(body: PreviewRequest, request: Request):
        identity = PreviewIdentity(project_id=body.project_id, user_id=body.user_id)
        try:
            record, created = await orchestrator.ensure_preview(
                body.repo, body.branch, identity,
            )
        except PreviewRequestError as exc:
            return error_response(request, 400, 'INVALID_REQUEST', str(exc))
        except DuplicatePreviewError as exc:
            return error_response(request, 409, 'PREVIEW_CONFLICT', str(exc))

        return JSONResponse(
            status_code=202 if created else 200,
            content=record.to_public_dict(),
        )

    @router.get('/api/v1/previews')
    async def list_previews(userId: str | None = None):
        records = await orchestrator.list_previews(userId)
        return {'previews': [r.to_public_dict() for r in records]}

    @router.get('/api/v1/previews/{preview_id}')
    async def get_preview(preview_id: str, request: Request):
        try:
            record = await orchestrator.get_status(preview_id)
        except PreviewNotFoundError as exc:
            return error_response(request, 404, 'PREVIEW_NOT_FOUND', str(exc))
        return record.to_public_dict()

    @router.post('/api/v1/previews/{preview_id}/check')
    async def check_preview(preview_id: str, request: Request):
        """Manual "check now": stored record plus a live remote read."""
        try:
            report = await orchestrator.check_status(preview_id)
        except PreviewNotFoundError as exc:
            return error_response(request, 404, 'PREVIEW_NOT_FOUND', str(exc))
        return report.to_public_dict()

    @router.get('/api/v1/previews/{preview_id}/logs')
    async def preview_logs(
        preview_id: str,
        request: Request,
        limit: int = Query(default=100, ge=1, le=MAX_LOG_LIMIT),
    ):
        try:
            report = await orchestrator.get_logs(preview_id, limit)
        except PreviewNotFoundError as exc:
            return error_response(request, 404, 'PREVIEW_NOT_FOUND', str(exc))
        return report.to_public_dict()

    @router.delete('/api/v1/previews/{preview_id}')
    async def destroy_preview(preview_id: str, request: Request):
        try:
            return await orchestrator.destroy(preview_id)
        except PreviewNotFoundError as exc:
            return error_response(request, 404, 'PREVIEW_NOT_FOUND', str(exc))

    @router.post('/api/v1/contracts/preview')
    async def preview_contract(body: ContractPreviewRequest, request: Request):
        """Show the contract a repository with ``files`` would run with."""
        result = inspect(body.files)
        try:
            contract = build_contract(result, body.overrides)
        except ContractValidationError as exc:
            return error_response(request, 400, 'INVALID_CONTRACT', str(exc))

        return {
            'inspection': _inspection_response(result),
            'contract': contract.to_dict(),
            'advisories': [a.to_dict() for a in advise(contract)],
            'contractJson': render_contract_json(contract),
        }

    return router
