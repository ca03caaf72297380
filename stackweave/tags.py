"""
Tagging utilities for consistent resource tagging across deployments.
"""

from typing import Dict, List, Optional


def base_tags(deployment_id: str, environment: str = "Production",
              extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Generate base tags for every resource of a deployment.

    Args:
        deployment_id: Deployment ID
        environment: Deploy environment, e.g. Production
        extra: Additional tags to include

    Returns:
        Dictionary of tags to apply to resources
    """
    tags = {
        "project": "stackweave",
        "deployment_id": deployment_id,
        "Environment": environment,
    }

    if extra:
        tags.update(extra)

    return tags


def resource_name(name: str, environment: str = "Production") -> str:
    """
    Name a resource following the environment convention.

    Production keeps the bare name; other environments get a suffix so several
    environments can share an account.
    """
    if environment == "Production":
        return name
    return f"{name}-{environment.lower()}"


def as_tag_list(tags: Dict[str, str]) -> List[Dict[str, str]]:
    """Convert a tag dict to the ``[{"Key": ..., "Value": ...}]`` list form."""
    return [{"Key": key, "Value": value} for key, value in sorted(tags.items())]


def parse_user_tags(tag_strings: List[str]) -> Dict[str, str]:
    """
    Parse user-provided tag strings in format "key=value".

    Args:
        tag_strings: List of tag strings in "key=value" format

    Returns:
        Dictionary of parsed tags

    Raises:
        ValueError: If tag string format is invalid
    """
    tags = {}

    for tag_str in tag_strings:
        if "=" not in tag_str:
            raise ValueError(f"Invalid tag format: {tag_str}. Expected 'key=value'")

        key, value = tag_str.split("=", 1)
        if not key.strip() or not value.strip():
            raise ValueError(f"Invalid tag format: {tag_str}. Key and value must not be empty")

        tags[key.strip()] = value.strip()

    return tags
