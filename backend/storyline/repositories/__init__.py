from storyline.repositories.storylines import (
    InMemoryStorylinesRepository,
    SqlAlchemyStorylinesRepository,
    StorylinesRepository,
)

__all__ = [
    "InMemoryStorylinesRepository",
    "SqlAlchemyStorylinesRepository",
    "StorylinesRepository",
]
