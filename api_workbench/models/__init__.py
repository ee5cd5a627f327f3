"""
Models package for the API Workbench environment store.

Exports all SQLAlchemy models for database operations.
"""

from .environment import Environment, Variable

__all__ = [
    "Environment",
    "Variable",
]
