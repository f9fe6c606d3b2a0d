"""FastAPI server adapter for the expert runtime.

Design intent:
- Keep business logic in `expert_runtime.runtime.service`
- Keep server-specific concerns (routing, HTTP error mapping) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from expert_runtime.server.app import create_app
