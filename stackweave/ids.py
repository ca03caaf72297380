"""
Deployment ID generation utilities.

IDs look like ``d-20260118-142501-k3x9``: creation date and time, then a short
random suffix. They double as directory names under the stackweave home, so
anything that doesn't match the pattern is rejected before touching the disk.
"""

import random
import re
import string
from datetime import datetime
from typing import Optional

DEPLOYMENT_ID = re.compile(r"^d-(\d{8})-(\d{6})-([a-z0-9]{4})$")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def new_deployment_id(now: Optional[datetime] = None) -> str:
    """
    Generate a new deployment ID.

    Args:
        now: Creation time; defaults to the current local time

    Returns:
        str: ID in the form ``d-YYYYMMDD-hhmmss-xxxx``
    """
    now = now or datetime.now()
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=4))
    return f"d-{now:%Y%m%d}-{now:%H%M%S}-{suffix}"


def is_valid_deployment_id(deployment_id: str) -> bool:
    return deployment_started_at(deployment_id) is not None


def deployment_started_at(deployment_id: str) -> Optional[datetime]:
    """Creation time encoded in a deployment ID, or None if the ID is malformed."""
    match = DEPLOYMENT_ID.match(deployment_id or "")
    if not match:
        return None
    try:
        return datetime.strptime(f"{match.group(1)}{match.group(2)}", "%Y%m%d%H%M%S")
    except ValueError:
        return None
