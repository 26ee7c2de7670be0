"""Core entities"""
from abc import ABC


class Entity(ABC):
    """Base class from which all entities are derived. Every entity has a string `id`."""

    id: str
