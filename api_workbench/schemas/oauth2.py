"""
Pydantic schemas for the OAuth2 endpoints.
"""

from pydantic import BaseModel

from .auth import OAuth2Config
from .environment import Environment


class OAuth2FlowRequest(BaseModel):
    """Payload accepted by every OAuth2 entry point."""
    config: OAuth2Config
    environment: Environment | None = None
    environment_id: int | None = None
