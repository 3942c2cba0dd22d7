"""Persistence layer built on SQLAlchemy.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - UserRepository: identity lookup and capability queries
    - ServiceRepository: requests/offers for both domains, match check-and-set
    - NotificationRepository: notification record store
    - IncidentRepository: emergency incidents and guarded transitions

    # Exceptions
    - PersistenceError: Base exception for all persistence errors
    - DatabaseConnectionError: Database connection/initialization failures
    - RecordNotFoundError: Referenced entity does not exist
    - DataIntegrityError: Constraint violations

Example usage:
    >>> init_database("sqlite:///./data/flight_companion.db")
    >>> with get_session() as session:
    ...     admins = UserRepository(session).list_users_with_capability("Admin")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    IncidentRepository,
    NotificationRepository,
    ServiceRepository,
    UserRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "UserRepository",
    "ServiceRepository",
    "NotificationRepository",
    "IncidentRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
