"""Engine runtime settings: tunable parameters for flow and chain execution.

All values read from environment variables with sensible defaults.
Import from here instead of hardcoding.

Infrastructure config (API host, agent service URL, tokens) stays
in agentflow/config.py.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Expressions
# =====================================================================

# Maximum expression length to prevent abuse
MAX_EXPRESSION_LENGTH = _int("MAX_EXPRESSION_LENGTH", 500)

# Largest str/list/tuple that + or * may build inside an expression
MAX_SEQUENCE_LENGTH = _int("MAX_SEQUENCE_LENGTH", 1_000_000)


# =====================================================================
# Flow Scheduler
# =====================================================================

# join_strategy: "first-arrival" (default) | "wait-all"
#   first-arrival: a fan-in node runs on the first path that reaches it
#   wait-all: a fan-in node runs once every predecessor has settled
DEFAULT_JOIN_STRATEGY = _str("DEFAULT_JOIN_STRATEGY", "first-arrival")


# =====================================================================
# Chain Stepper
# =====================================================================

# Per-step invocation timeout when a step declares none (milliseconds)
CHAIN_STEP_DEFAULT_TIMEOUT_MS = _int("CHAIN_STEP_DEFAULT_TIMEOUT_MS", 300_000)
CHAIN_STEP_MAX_TIMEOUT_MS = _int("CHAIN_STEP_MAX_TIMEOUT_MS", 3_600_000)

# Retry backoff (seconds). A base delay of 0 retries immediately.
CHAIN_RETRY_BASE_DELAY = _float("CHAIN_RETRY_BASE_DELAY", 0.0)
CHAIN_RETRY_MAX_DELAY = _float("CHAIN_RETRY_MAX_DELAY", 30.0)

# How long deleting a chain waits for each cancelled run to write its record (seconds)
CHAIN_DELETE_WAIT_TIMEOUT = _float("CHAIN_DELETE_WAIT_TIMEOUT", 10.0)


# =====================================================================
# HTTP Clients (engine → agent service)
# =====================================================================

AGENT_HTTP_TIMEOUT = _float("AGENT_HTTP_TIMEOUT", 120.0)
AGENT_HTTP_MAX_CONNECTIONS = _int("AGENT_HTTP_MAX_CONNECTIONS", 10)
AGENT_HTTP_MAX_KEEPALIVE = _int("AGENT_HTTP_MAX_KEEPALIVE", 5)
