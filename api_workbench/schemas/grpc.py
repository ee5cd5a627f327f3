"""
Pydantic schemas for unary RPC schema loading.
"""

from pydantic import BaseModel


class LoadSchemaRequest(BaseModel):
    """Payload for loading a ``.proto`` schema file."""
    path: str


class SchemaInfo(BaseModel):
    """Services and method names discovered in a loaded schema."""
    services: list[str] = []
    methods: dict[str, list[str]] = {}
