"""
Configuration Module

Environment-driven settings for the Docker manager. Values are read once at
import time; a .env file in the working directory is honoured.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _parse_port_list(raw: str):
    """Parse a comma-separated list of ports, ignoring blanks"""
    ports = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if part:
            ports.add(int(part))
    return ports


SERVICE_NAME = "Docker Manager"
SERVICE_VERSION = "1.0.0"

SERVER_PORT = int(os.getenv("PORT", 8080))
SERVER_HOST = os.getenv("IP", "0.0.0.0")
RELOAD = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")

# The service's own listening port can never be handed to a container
RESERVED_PORTS = frozenset({SERVER_PORT} | _parse_port_list(os.getenv("RESERVED_PORTS", "")))

DEFAULT_IMAGE = os.getenv("DEFAULT_IMAGE", "nginx:latest")
DOCKER_TIMEOUT = int(os.getenv("DOCKER_TIMEOUT", 60))

PORT_SEARCH_CEILING = 9999
PORT_FALLBACK_FLOOR = 8081

STOP_TIMEOUT = int(os.getenv("STOP_TIMEOUT", 30))
LOG_TAIL_DEFAULT = os.getenv("LOG_TAIL_DEFAULT", "100")
IMAGE_SEARCH_LIMIT = int(os.getenv("IMAGE_SEARCH_LIMIT", 25))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

RATE_LIMIT_CREATE = os.getenv("RATE_LIMIT_CREATE", "10/minute")
RATE_LIMIT_BULK = os.getenv("RATE_LIMIT_BULK", "10/minute")
RATE_LIMIT_CLEANUP = os.getenv("RATE_LIMIT_CLEANUP", "5/minute")
RATE_LIMIT_PULL = os.getenv("RATE_LIMIT_PULL", "10/minute")

# How often an in-flight request checks whether its client went away
DISCONNECT_POLL_INTERVAL = float(os.getenv("DISCONNECT_POLL_INTERVAL", 0.5))
