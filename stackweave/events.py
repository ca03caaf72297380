"""
Event logging utilities for NDJSON format.
"""

import json
import threading
import time
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from .redact import redact_value
from .state import get_deployment_dir

_write_lock = threading.Lock()


# Predefined event types for consistency
class EventTypes:
    INIT = "INIT"
    SYNTH = "SYNTH"
    SECURITY_WARNING = "SECURITY_WARNING"
    PLAN = "PLAN"
    APPLY_START = "APPLY_START"
    STAGE_START = "STAGE_START"
    STAGE_DONE = "STAGE_DONE"
    RESOURCE_CREATE_START = "RESOURCE_CREATE_START"
    RESOURCE_UPDATE_START = "RESOURCE_UPDATE_START"
    RESOURCE_UNCHANGED = "RESOURCE_UNCHANGED"
    RESOURCE_RETRY = "RESOURCE_RETRY"
    RESOURCE_CREATED = "RESOURCE_CREATED"
    RESOURCE_REPLACED = "RESOURCE_REPLACED"
    RESOURCE_FAILED = "RESOURCE_FAILED"
    RESOURCE_DELETED = "RESOURCE_DELETED"
    RESOURCE_RETAINED = "RESOURCE_RETAINED"
    ROLLBACK = "ROLLBACK"
    OUTPUTS = "OUTPUTS"
    CANCELLED = "CANCELLED"
    DONE = "DONE"
    ERROR = "ERROR"
    DESTROY_START = "DESTROY_START"
    DESTROY_DONE = "DESTROY_DONE"


STATUS_MAP = {
    EventTypes.INIT: "queued",
    EventTypes.SYNTH: "synthesized",
    EventTypes.PLAN: "planned",
    EventTypes.APPLY_START: "applying",
    EventTypes.STAGE_START: "applying",
    EventTypes.STAGE_DONE: "applying",
    EventTypes.OUTPUTS: "applying",
    EventTypes.DONE: "deployed",
    EventTypes.ERROR: "failed",
    EventTypes.ROLLBACK: "failed",
    EventTypes.CANCELLED: "cancelled",
    EventTypes.DESTROY_START: "destroying",
    EventTypes.DESTROY_DONE: "destroyed",
}


def emit_event(deployment_id: str, event_type: str, data: Dict[str, Any]) -> None:
    """
    Emit an event to the deployment's logs.ndjson file.

    Args:
        deployment_id: Deployment ID
        event_type: Event type (e.g., "INIT", "RESOURCE_CREATED", "ERROR")
        data: Event data; redacted before it is written
    """
    logs_file = get_deployment_dir(deployment_id) / "logs.ndjson"

    event = {
        "ts": datetime.now().isoformat(),
        "type": event_type,
        "data": redact_value(data),
    }

    with _write_lock:
        with open(logs_file, "a") as f:
            f.write(json.dumps(event, default=str) + "\n")
            f.flush()


def read_events(deployment_id: str) -> List[Dict[str, Any]]:
    """
    Read all events from a deployment's logs.ndjson file.

    Args:
        deployment_id: Deployment ID

    Returns:
        List of events
    """
    logs_file = get_deployment_dir(deployment_id) / "logs.ndjson"
    if not logs_file.exists():
        return []

    events = []
    with open(logs_file, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue  # Skip malformed lines
    return events


def get_last_event(deployment_id: str) -> Optional[Dict[str, Any]]:
    events = [e for e in read_events(deployment_id) if e.get("type") in STATUS_MAP]
    return events[-1] if events else None


def get_status_from_events(deployment_id: str) -> str:
    """
    Determine deployment status from the last status-bearing event.

    Args:
        deployment_id: Deployment ID

    Returns:
        Status string
    """
    last_event = get_last_event(deployment_id)
    if not last_event:
        return "unknown"
    return STATUS_MAP.get(last_event.get("type", ""), "unknown")


def tail_events(deployment_id: str, follow: bool = False, poll_interval: float = 0.1) -> Iterator[Dict[str, Any]]:
    """
    Generator that yields events as they're written.

    Args:
        deployment_id: Deployment ID
        follow: If True, continue watching for new events

    Yields:
        Event dictionaries
    """
    logs_file = get_deployment_dir(deployment_id) / "logs.ndjson"
    if not logs_file.exists():
        return

    position = 0
    while True:
        try:
            with open(logs_file, "r") as f:
                f.seek(position)
                lines = []
                while True:
                    line = f.readline()
                    if not line:
                        break
                    lines.append(line.strip())
                position = f.tell()
        except FileNotFoundError:
            return
        for line in lines:
            if line:
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    continue
        if not follow:
            return
        time.sleep(poll_interval)
