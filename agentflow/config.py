"""Agentflow configuration constants: single source of truth for infrastructure env vars."""

import os

# Server binding: used by entrypoint / uvicorn
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# External agent service: the AgentInvoker posts invocations here
AGENT_INVOKER_URL = os.getenv("AGENT_INVOKER_URL", "http://localhost:9000")

# Optional bearer token for the agent service
AGENT_INVOKER_TOKEN = os.getenv("AGENT_INVOKER_TOKEN", "")

# CORS: comma-separated origins for the management console
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
