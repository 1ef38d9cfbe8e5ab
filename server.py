"""Lightweight aiohttp server -- the JSON API over TaskService.

Routes mirror the task UI's needs: CRUD on /api/tasks plus run-now, status,
cancel and repo-info. One middleware turns AppErrors into JSON responses.
"""

from __future__ import annotations

import json
import logging

from aiohttp import web

from core.errors import AppError, BadRequestError, RemoteAPIError
from engine.service import TaskService
from scheduler.runner import Scheduler

logger = logging.getLogger(__name__)


def create_app(
    service: TaskService,
    scheduler: Scheduler | None = None,
) -> web.Application:
    """Create and configure the aiohttp application."""
    app = web.Application(middlewares=[error_middleware])

    # Store references for route handlers
    app["service"] = service
    app["scheduler"] = scheduler

    app.router.add_get("/health", handle_health)
    app.router.add_get("/api/tasks", handle_list_tasks)
    app.router.add_post("/api/tasks", handle_create_task)
    app.router.add_put("/api/tasks", handle_update_task)
    app.router.add_delete("/api/tasks", handle_delete_task)
    app.router.add_get("/api/tasks/repo-info", handle_repo_info)
    app.router.add_post("/api/tasks/run", handle_run_task)
    app.router.add_post("/api/tasks/status", handle_workflow_status)
    app.router.add_post("/api/tasks/cancel", handle_cancel_run)
    app.router.add_get("/api/tasks/{task_id}", handle_get_task)

    return app


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except RemoteAPIError as exc:
        logger.warning("%s %s -> upstream error %s: %s", request.method, request.path, exc.status, exc.message)
        return web.json_response(exc.to_dict(), status=502)
    except AppError as exc:
        return web.json_response(exc.to_dict(), status=exc.status)
    except Exception:
        logger.exception("Unexpected error handling %s %s", request.method, request.path)
        return web.json_response({"error": "Internal server error"}, status=500)


async def _json_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise BadRequestError("Invalid JSON") from exc
    if not isinstance(body, dict):
        raise BadRequestError("Request body must be a JSON object")
    return body


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

async def handle_health(request: web.Request) -> web.Response:
    """GET /health -- liveness plus the scheduler's view of its timers."""
    scheduler: Scheduler | None = request.app["scheduler"]
    body: dict = {"status": "ok"}
    if scheduler is not None:
        body["scheduler"] = {
            "running": scheduler.running,
            "next_fire": {
                task_id: when.isoformat() if when else None
                for task_id, when in scheduler.next_fire_times().items()
            },
        }
    return web.json_response(body)


async def handle_list_tasks(request: web.Request) -> web.Response:
    """GET /api/tasks -- every task definition."""
    service: TaskService = request.app["service"]
    return web.json_response([t.model_dump(mode="json") for t in service.list_tasks()])


async def handle_get_task(request: web.Request) -> web.Response:
    """GET /api/tasks/{task_id}"""
    service: TaskService = request.app["service"]
    task = service.get_task(request.match_info["task_id"])
    return web.json_response(task.model_dump(mode="json"))


async def handle_create_task(request: web.Request) -> web.Response:
    """POST /api/tasks -- create a task.

    Body: {"name": "...", "repo": "owner/name", "workflow": "build.yml",
           "ref": "main", "cron": "0 2 * * *", "description": "..."}
    """
    service: TaskService = request.app["service"]
    task = await service.create_task(await _json_body(request))
    return web.json_response({"id": task.id, "task": task.model_dump(mode="json")}, status=201)


async def handle_update_task(request: web.Request) -> web.Response:
    """PUT /api/tasks -- update a task. Body carries "id" plus the fields to change."""
    service: TaskService = request.app["service"]
    body = await _json_body(request)
    task_id = body.pop("id", None)
    if not task_id:
        raise BadRequestError("Missing task id")
    task = await service.update_task(str(task_id), body)
    return web.json_response({"success": True, "task": task.model_dump(mode="json")})


async def handle_delete_task(request: web.Request) -> web.Response:
    """DELETE /api/tasks -- Body: {"id": "..."}. Unknown ids succeed."""
    service: TaskService = request.app["service"]
    body = await _json_body(request)
    task_id = body.get("id")
    if not task_id:
        raise BadRequestError("Missing task id")
    await service.delete_task(str(task_id))
    return web.json_response({"success": True})


async def handle_repo_info(request: web.Request) -> web.Response:
    """GET /api/tasks/repo-info?repo=owner/name -- branches and workflows."""
    service: TaskService = request.app["service"]
    repo = request.query.get("repo", "")
    if not repo:
        raise BadRequestError("Missing repo parameter")
    info = await service.get_repo_info(repo)
    return web.json_response(info.model_dump(mode="json"))


async def handle_run_task(request: web.Request) -> web.Response:
    """POST /api/tasks/run -- Body: {"id": "..."}. Dispatch now if the workflow is active."""
    service: TaskService = request.app["service"]
    body = await _json_body(request)
    task_id = body.get("id")
    if not task_id:
        raise BadRequestError("Missing task id")
    result = await service.run_task_now(str(task_id))
    payload = result.model_dump(mode="json")
    payload["success"] = result.status == "triggered"
    return web.json_response(payload)


async def handle_workflow_status(request: web.Request) -> web.Response:
    """POST /api/tasks/status -- Body: {"repo": "...", "workflow": "..."}. Always 200."""
    service: TaskService = request.app["service"]
    body = await _json_body(request)
    repo = str(body.get("repo") or "").strip()
    workflow = str(body.get("workflow") or "").strip()
    if not repo or not workflow:
        raise BadRequestError("Both repo and workflow are required")
    status = await service.get_workflow_status(repo, workflow)
    return web.json_response(status.model_dump(mode="json"))


async def handle_cancel_run(request: web.Request) -> web.Response:
    """POST /api/tasks/cancel -- Body: {"repo": "...", "run_id": 123}."""
    service: TaskService = request.app["service"]
    body = await _json_body(request)
    await service.cancel_run(str(body.get("repo") or "").strip(), body.get("run_id"))
    return web.json_response({"success": True})
