"""GitHub Actions client -- look up, dispatch, poll and cancel workflow runs.

Thin wrapper over the GitHub REST API. Mutating calls raise RemoteAPIError
so the caller decides what a failed dispatch means; the status probe never
raises, because it is polled continuously even while GitHub is degraded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from core.errors import BadRequestError, RemoteAPIError
from core.models.runs import RemoteRun, RepoInfo, WorkflowInfo, WorkflowRef, WorkflowStatus
from engine import status as resolver

logger = logging.getLogger(__name__)

_DEFAULT_URL = "https://api.github.com"


class GitHubWorkflowClient:
    """Workflow client for GitHub Actions.

    Implements the WorkflowClient protocol. Every request carries an explicit
    timeout so a stalled call cannot hold up the event loop's other work.
    """

    def __init__(
        self,
        token: str,
        base_url: str = _DEFAULT_URL,
        timeout: float = 30.0,
        user_agent: str = "actionscron",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": user_agent,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "github"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        """Issue an authenticated call and return the parsed JSON body.

        204 returns None. Any other non-2xx raises RemoteAPIError with the
        upstream status; a timeout or connection failure raises it with status 0.
        """
        try:
            response = await self._client.request(method, endpoint, json=json, params=params)
        except httpx.TimeoutException as exc:
            raise RemoteAPIError(0, f"GitHub API request timed out: {method} {endpoint}") from exc
        except httpx.HTTPError as exc:
            raise RemoteAPIError(0, f"GitHub API request failed: {exc}") from exc

        if not response.is_success:
            raise RemoteAPIError(
                response.status_code,
                f"GitHub API request failed: {_error_message(response)}",
            )

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteAPIError(response.status_code, "GitHub API returned invalid JSON") from exc

    @staticmethod
    def resolve_workflow(workflow: str) -> str:
        """Workflow file name or id: the final segment of a slash-path."""
        return workflow.rstrip("/").rsplit("/", 1)[-1]

    def _workflow_endpoint(self, repo: str, workflow: str) -> str:
        return f"{_repo_path(repo)}/actions/workflows/{_segment(self.resolve_workflow(workflow))}"

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_workflow_info(self, repo: str, workflow: str) -> WorkflowInfo:
        data = await self.request(self._workflow_endpoint(repo, workflow))
        return WorkflowInfo(**(data or {}))

    async def trigger_workflow(self, repo: str, workflow: str, ref: str) -> None:
        await self.request(
            f"{self._workflow_endpoint(repo, workflow)}/dispatches",
            method="POST",
            json={"ref": ref},
        )
        logger.info("Dispatched %s on %s@%s", self.resolve_workflow(workflow), repo, ref)

    async def cancel_workflow(self, repo: str, run_id: int | str) -> None:
        await self.request(f"{_repo_path(repo)}/actions/runs/{_segment(run_id)}/cancel", method="POST")
        logger.info("Cancelled run %s on %s", run_id, repo)

    async def get_repo_info(self, repo: str) -> RepoInfo:
        """Branch names and workflows of a repository, fetched concurrently."""
        branches, workflows = await asyncio.gather(
            self.request(f"{_repo_path(repo)}/branches"),
            self.request(f"{_repo_path(repo)}/actions/workflows"),
        )

        if not isinstance(branches, list) or not isinstance(workflows, dict) \
                or not isinstance(workflows.get("workflows"), list):
            raise BadRequestError(f"Unable to read repository info for {repo}")

        return RepoInfo(
            branches=[b["name"] for b in branches if isinstance(b, dict) and "name" in b],
            workflows=[
                WorkflowRef(name=w.get("name", ""), path=w.get("path", ""))
                for w in workflows["workflows"]
                if isinstance(w, dict)
            ],
        )

    async def get_latest_run(self, repo: str, workflow: str) -> RemoteRun | None:
        """The most recent run. GitHub lists runs newest first; we take the first."""
        data = await self.request(
            f"{self._workflow_endpoint(repo, workflow)}/runs",
            params={"per_page": 1},
        )
        runs = (data or {}).get("workflow_runs") or []
        if not runs:
            return None
        return RemoteRun(**runs[0])

    async def get_workflow_status(self, repo: str, workflow: str) -> WorkflowStatus:
        """Normalized status of the workflow's latest run. Never raises."""
        try:
            try:
                info = await self.get_workflow_info(repo, workflow)
            except RemoteAPIError as exc:
                if exc.status != 404:
                    raise
                info = WorkflowInfo.not_found()

            early = resolver.status_for_lookup(info)
            if early is not None:
                return early

            run = await self.get_latest_run(repo, workflow)
            return resolver.status_for_run(run)
        except Exception as exc:
            logger.warning("Status probe failed for %s %s: %s", repo, workflow, exc)
            return resolver.api_error(exc)

    async def close(self) -> None:
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    """GitHub puts a human message in the JSON body; fall back to the reason phrase."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


def _segment(value: Any) -> str:
    """One URL path segment: slashes, dot segments and query characters are escaped."""
    text = quote(str(value), safe="")
    if text in (".", ".."):
        return text.replace(".", "%2E")
    return text


def _repo_path(repo: str) -> str:
    owner, _, name = repo.partition("/")
    return f"/repos/{_segment(owner)}/{_segment(name)}"
