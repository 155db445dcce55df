"""
Name Resolver Module

Picks a container name that does not clash with names the daemon already
knows about. Advisory only: the daemon still has the final say.
"""

import time
from typing import Iterable, Optional

from utils import logger

GENERATED_PREFIX = "container-"


def resolve(
    requested: Optional[str], existing_names: Iterable[str], now: Optional[int] = None
) -> str:
    """Return the requested name, or a timestamp-suffixed variant if it is taken"""
    stamp = int(time.time()) if now is None else now

    if not requested or not requested.strip():
        return f"{GENERATED_PREFIX}{stamp}"

    requested = requested.strip()
    taken = {name.lstrip("/") for name in existing_names}
    if requested not in taken:
        return requested

    candidate = f"{requested}-{stamp}"
    # A second request in the same second may already hold that suffix
    while candidate in taken:
        stamp += 1
        candidate = f"{requested}-{stamp}"

    logger.info("Container name conflict", requested_name=requested, resolved_name=candidate)
    return candidate


def disambiguate(name: str) -> str:
    """Suffix a nanosecond timestamp, used after the daemon rejects a name"""
    return f"{name}-{time.time_ns()}"
