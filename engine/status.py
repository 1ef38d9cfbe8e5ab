"""Status resolution -- map remote lookup/run results to one normalized status.

Pure functions with no stored state: every call projects the remote system's
current truth. The GitHub client feeds them the workflow lookup and the
latest run; they decide what the operator sees.
"""

from __future__ import annotations

from core.models.runs import NormalizedStatus, RemoteRun, WorkflowInfo, WorkflowStatus

_CONCLUSIONS = {
    "success": NormalizedStatus.SUCCESS,
    "cancelled": NormalizedStatus.CANCELLED,
    "failure": NormalizedStatus.FAILURE,
}

_MESSAGES = {
    NormalizedStatus.NOT_FOUND: "Workflow not found",
    NormalizedStatus.DISABLED: "Workflow is disabled",
    NormalizedStatus.NEVER_RUN: "Workflow has never run",
    NormalizedStatus.RUNNING: "Running",
    NormalizedStatus.SUCCESS: "Succeeded",
    NormalizedStatus.CANCELLED: "Cancelled",
    NormalizedStatus.FAILURE: "Failed",
}


def normalize_conclusion(conclusion: str | None) -> str:
    """success/cancelled/failure map to their statuses; anything else is uppercased as-is."""
    if not conclusion:
        return "UNKNOWN"
    known = _CONCLUSIONS.get(conclusion)
    if known is not None:
        return known.value
    return conclusion.upper()


def status_for_lookup(info: WorkflowInfo) -> WorkflowStatus | None:
    """NOT_FOUND or DISABLED from the workflow lookup, or None to go on to the runs."""
    if info.is_not_found:
        return WorkflowStatus(
            status=NormalizedStatus.NOT_FOUND,
            message=_MESSAGES[NormalizedStatus.NOT_FOUND],
        )
    if info.is_disabled:
        return WorkflowStatus(
            status=NormalizedStatus.DISABLED,
            message=_MESSAGES[NormalizedStatus.DISABLED],
        )
    return None


def status_for_run(run: RemoteRun | None) -> WorkflowStatus:
    """Status of the most recent run, or NEVER_RUN when there is none."""
    if run is None:
        return WorkflowStatus(
            status=NormalizedStatus.NEVER_RUN,
            message=_MESSAGES[NormalizedStatus.NEVER_RUN],
        )

    if run.status != "completed":
        status = NormalizedStatus.RUNNING.value
        message = _MESSAGES[NormalizedStatus.RUNNING]
    else:
        status = normalize_conclusion(run.conclusion)
        message = _MESSAGES.get(status, f"Conclusion: {run.conclusion}")

    return WorkflowStatus(
        status=status,
        last_run=run.created_at,
        run_id=run.id,
        message=message,
    )


def api_error(exc: BaseException) -> WorkflowStatus:
    return WorkflowStatus(
        status=NormalizedStatus.API_ERROR,
        message=f"API error: {exc}",
    )
