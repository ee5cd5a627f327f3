"""
Pydantic schemas for environments and variables.

``Environment`` and ``Variable`` are the values handed to the execution
pipeline. The remaining schemas back the environment store endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Variable(BaseModel):
    """A single environment variable, referenced as ``{{key}}``."""
    key: str
    value: str = ""
    enabled: bool = True

    model_config = ConfigDict(from_attributes=True)


class Environment(BaseModel):
    """
    A named, ordered set of variables used for interpolation.

    Keys are not required to be unique. When a key occurs more than once,
    the first enabled occurrence in list order is the one that is used.
    """
    name: str = ""
    variables: list[Variable] = []
    is_active: bool = False

    model_config = ConfigDict(from_attributes=True)


# Store schemas

class VariableCreate(BaseModel):
    """Schema for creating a new variable."""
    key: str
    value: str = ""
    enabled: bool = True


class VariableUpdate(BaseModel):
    """Schema for updating an existing variable. All fields are optional."""
    key: str | None = None
    value: str | None = None
    enabled: bool | None = None


class VariableResponse(VariableCreate):
    """Schema for variable response with all fields."""
    id: int
    environment_id: int

    model_config = ConfigDict(from_attributes=True)


class EnvironmentCreate(BaseModel):
    """Schema for creating a new environment."""
    name: str
    is_active: bool = False
    variables: list[VariableCreate] = []


class EnvironmentUpdate(BaseModel):
    """Schema for updating an existing environment. All fields are optional."""
    name: str | None = None
    is_active: bool | None = None


class EnvironmentResponse(BaseModel):
    """Schema for environment response with all fields."""
    id: int
    name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EnvironmentWithVariables(EnvironmentResponse):
    """Schema for environment response including all variables."""
    variables: list[VariableResponse] = []
