"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError, so callers can
treat any store failure as fatal for the enclosing operation with a single
except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails."""

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when a referenced user, request, offer or incident does not exist.

    Optional lookups return None instead; this is raised by operations
    whose caller named an entity that must exist.
    """

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class DataIntegrityError(PersistenceError):
    """Raised when a constraint violation occurs (foreign key, unique, check)."""

    pass
