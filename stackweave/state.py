"""
State management for deployments.

Layout: ``<home>/<deployment_id>/`` holding ``context.json``, ``state.json``,
``outputs.json`` and ``logs.ndjson``.
"""

import json
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .ids import is_valid_deployment_id
from .model import DeployContext, DeploymentState


def get_home() -> Path:
    """
    Get the stackweave home directory.

    Returns:
        Path: Home directory holding one folder per deployment
    """
    home = os.environ.get("STACKWEAVE_HOME", ".stackweave")
    return Path(home).resolve()


def get_deployment_dir(deployment_id: str) -> Path:
    """
    Get the directory for a specific deployment.

    Args:
        deployment_id: Deployment ID

    Returns:
        Path: Deployment directory

    Raises:
        ValueError: If deployment ID is invalid
    """
    if not is_valid_deployment_id(deployment_id):
        raise ValueError(f"Invalid deployment ID: {deployment_id}")

    return get_home() / deployment_id


def create_deployment_dir(deployment_id: str) -> Path:
    deployment_dir = get_deployment_dir(deployment_id)
    deployment_dir.mkdir(parents=True, exist_ok=True)
    return deployment_dir


def write_context_json(deployment_id: str, deploy: DeployContext, backend: str) -> None:
    """
    Write the deploy context to context.json. The database password is never written.

    Args:
        deployment_id: Deployment ID
        deploy: Deploy context
        backend: Backend name the deployment was applied with
    """
    data = {
        "environment": deploy.environment,
        "region": deploy.region,
        "account": deploy.account,
        "backend": backend,
        "updated_at": datetime.now().isoformat(),
    }
    _write_json(get_deployment_dir(deployment_id) / "context.json", data)


def read_context_json(deployment_id: str) -> Dict[str, Any]:
    """
    Read the deploy context of a deployment.

    Raises:
        FileNotFoundError: If the deployment doesn't exist
    """
    context_file = get_deployment_dir(deployment_id) / "context.json"
    if not context_file.exists():
        raise FileNotFoundError(f"Deployment {deployment_id} not found")
    with open(context_file, "r") as f:
        return json.load(f)


def write_state(deployment_id: str, state: DeploymentState) -> None:
    _write_json(get_deployment_dir(deployment_id) / "state.json", state.to_dict())


def read_state(deployment_id: str) -> DeploymentState:
    """Load persisted resource records, or an empty state for a new deployment."""
    state_file = get_deployment_dir(deployment_id) / "state.json"
    if not state_file.exists():
        return DeploymentState()
    with open(state_file, "r") as f:
        return DeploymentState.from_dict(json.load(f))


def write_outputs_json(deployment_id: str, outputs: Dict[str, str]) -> None:
    _write_json(get_deployment_dir(deployment_id) / "outputs.json", outputs)


def read_outputs_json(deployment_id: str) -> Optional[Dict[str, str]]:
    outputs_file = get_deployment_dir(deployment_id) / "outputs.json"
    if not outputs_file.exists():
        return None
    with open(outputs_file, "r") as f:
        return json.load(f)


def list_deployments() -> List[str]:
    """
    List all deployment IDs.

    Returns:
        List of deployment IDs, most recent first
    """
    home = get_home()
    if not home.exists():
        return []

    deployments = [item.name for item in home.iterdir()
                   if item.is_dir() and is_valid_deployment_id(item.name)]
    return sorted(deployments, reverse=True)


def deployment_exists(deployment_id: str) -> bool:
    if not is_valid_deployment_id(deployment_id):
        return False
    deployment_dir = get_deployment_dir(deployment_id)
    return deployment_dir.exists() and (deployment_dir / "context.json").exists()


def cleanup_deployment(deployment_id: str) -> None:
    """Remove deployment directory and all its contents."""
    deployment_dir = get_deployment_dir(deployment_id)
    if deployment_dir.exists():
        shutil.rmtree(deployment_dir)


def _write_json(path: Path, data: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w") as f:
        json.dump(data, f, indent=2, sort_keys=True)
    tmp.replace(path)
