"""Worker-level log context (stage, worker id, domain, tick cycle id).

Each field lives in its own ContextVar, so a tick task that sets ``cycle_id``
does not leak it into the scheduler or the main flow task.
"""

from contextvars import ContextVar
from typing import Dict, Optional

LOG_CONTEXT_FIELDS = ("cycle_id", "stage", "worker_id", "domain")

_VARIABLES: Dict[str, ContextVar] = {
    name: ContextVar(f"log_{name}", default="") for name in LOG_CONTEXT_FIELDS
}


def set_log_context(
    cycle_id: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
    domain: Optional[str] = None,
) -> None:
    """Update the given fields; None leaves a field unchanged."""
    values = {"cycle_id": cycle_id, "stage": stage, "worker_id": worker_id, "domain": domain}
    for name, value in values.items():
        if value is not None:
            _VARIABLES[name].set(value)


def get_log_context() -> Dict[str, str]:
    return {name: variable.get() for name, variable in _VARIABLES.items()}


def clear_log_context() -> None:
    for variable in _VARIABLES.values():
        variable.set("")
