"""
Dashboard - Export API.

============================================================
PURPOSE
============================================================
HTTP JSON API over the export engine.

- Artifact listing (optionally per project)
- Artifact download and deletion
- On-demand export trigger (fire-and-forget)
- Health with leadership and next-run info

HTML rendering is not served here.

============================================================
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from aiohttp import web

from artifact_store.models import format_size, is_safe_name
from core.exceptions import ArtifactNotFoundError, StoreError

if TYPE_CHECKING:
    from orchestrator.engine import ExportEngine


logger = logging.getLogger(__name__)


# ============================================================
# JSON ENCODER
# ============================================================

class ExportEncoder(json.JSONEncoder):
    """JSON encoder for API payloads."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if hasattr(obj, "value"):  # Enums
            return obj.value
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=ExportEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(message: str, status: int) -> web.Response:
    return json_response({"status": "error", "error": message}, status=status)


# ============================================================
# API HANDLERS
# ============================================================

class ExportAPI:
    """HTTP handlers for the export service."""

    def __init__(
        self,
        engine: "ExportEngine",
        is_leader: Optional[Callable[[], bool]] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        self._engine = engine
        self._is_leader = is_leader or (lambda: True)
        self._stop_event = stop_event

    # --------------------------------------------------------
    # ARTIFACTS
    # --------------------------------------------------------

    async def list_exports(self, request: web.Request) -> web.Response:
        """
        GET /api/exports?project_id=

        List artifacts newest first.
        """
        project_id: Optional[int] = None
        raw = request.query.get("project_id", "")
        if raw:
            try:
                project_id = int(raw)
            except ValueError:
                return error_response(f"Invalid project_id: {raw}", 400)

        try:
            records = await self._engine.list_artifacts(project_id)
        except StoreError as e:
            logger.error(f"Error listing exports: {e}")
            return error_response(str(e), 500)

        total_size = sum(r.size_bytes for r in records)
        return json_response({
            "status": "ok",
            "files": [r.to_dict() for r in records],
            "total_files": len(records),
            "total_size": format_size(total_size),
            "project_ids": self._engine.project_ids,
            "selected_project_id": project_id,
        })

    async def download(self, request: web.Request) -> web.Response:
        """
        GET /download/{name}

        Return artifact bytes as an attachment.
        """
        name = request.match_info["name"]
        if not is_safe_name(name):
            return error_response("Access denied", 403)

        try:
            data = await self._engine.fetch_artifact(name)
        except ArtifactNotFoundError:
            return error_response(f"File not found: {name}", 404)
        except StoreError as e:
            logger.error(f"Error downloading {name}: {e}")
            return error_response(str(e), 500)

        return web.Response(
            body=data,
            content_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{name}"'},
        )

    async def delete_export(self, request: web.Request) -> web.Response:
        """
        DELETE /api/exports/{name}
        """
        name = request.match_info["name"]
        if not is_safe_name(name):
            return error_response("Access denied", 403)

        try:
            await self._engine.delete_artifact(name)
        except ArtifactNotFoundError:
            return error_response(f"File not found: {name}", 404)
        except StoreError as e:
            logger.error(f"Error deleting {name}: {e}")
            return error_response(str(e), 500)

        return json_response({"status": "deleted", "name": name})

    # --------------------------------------------------------
    # TRIGGER
    # --------------------------------------------------------

    async def start_export(self, request: web.Request) -> web.Response:
        """
        POST /export

        Body {"project_id": int}; 0 or absent exports every project.
        Returns immediately.
        """
        try:
            body = await request.json() if request.can_read_body else {}
        except ValueError:
            return error_response("Invalid request body", 400)

        if not isinstance(body, dict):
            return error_response("Invalid request body", 400)

        raw = body.get("project_id", 0)
        if isinstance(raw, bool) or not isinstance(raw, int):
            return error_response("project_id must be an integer", 400)

        self._engine.start_run(raw or None, self._stop_event)
        return json_response({"status": "started", "project_id": raw})

    # --------------------------------------------------------
    # HEALTH CHECK
    # --------------------------------------------------------

    async def health(self, request: web.Request) -> web.Response:
        """
        GET /health
        """
        return json_response({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "testops-export",
            "leader": self._is_leader(),
            "backend": self._engine.store.backend_name,
            "next_run": self._engine.next_scheduled_run_info(),
        })


# ============================================================
# APP FACTORY
# ============================================================

def create_export_app(
    engine: "ExportEngine",
    is_leader: Optional[Callable[[], bool]] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> web.Application:
    """
    Create the export API application.

    Returns an aiohttp Application with all routes configured.
    Runs started through POST /export stop when stop_event is set.
    """
    api = ExportAPI(engine, is_leader, stop_event)

    app = web.Application()
    app.router.add_get("/health", api.health)
    app.router.add_get("/api/exports", api.list_exports)
    app.router.add_delete("/api/exports/{name}", api.delete_export)
    app.router.add_get("/download/{name}", api.download)
    app.router.add_post("/export", api.start_export)

    return app


__all__ = ["ExportAPI", "create_export_app", "json_response"]
