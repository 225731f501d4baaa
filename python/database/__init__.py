"""
Database Package for the ANPR Event Service

This package provides:
- SQLAlchemy ORM models for plates, events and lists
- FastAPI Dependency Injection for database sessions
- Unit of Work pattern for transaction management
- Repository pattern for data access
- The ingestion service (validate, normalize, persist, match lists)
- Performance monitoring and query timing
"""

from database.models import (
    Base,
    Plate,
    Vehicle,
    ANPREvent,
    PlateList,
    ListItem,
    ListType,
    normalize_plate,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    # FastAPI dependencies
    get_db,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    PlateRepository,
    EventRepository,
    ListRepository,
    ListHit,
    RepositoryError,
    DuplicatePlateError,
)
from database.anpr_service import (
    ANPRService,
    ANPRServiceError,
    InvalidInputError,
    NotFoundError,
    IngestionSettings,
    EventInput,
    ProcessResult,
    PlateInfo,
    EventInfo,
)
from database.monitoring import (
    query_timer,
    timed_query,
    get_operation_stats,
    get_slow_operations,
    reset_operation_stats,
    record_ingestion,
    record_list_hits,
    record_purge,
    check_health,
    HealthStatus,
)

__all__ = [
    # Base
    'Base',
    # Models
    'Plate',
    'Vehicle',
    'ANPREvent',
    'PlateList',
    'ListItem',
    'ListType',
    'normalize_plate',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    # FastAPI dependencies
    'get_db',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Repositories
    'PlateRepository',
    'EventRepository',
    'ListRepository',
    'ListHit',
    'RepositoryError',
    'DuplicatePlateError',
    # Service
    'ANPRService',
    'ANPRServiceError',
    'InvalidInputError',
    'NotFoundError',
    'IngestionSettings',
    'EventInput',
    'ProcessResult',
    'PlateInfo',
    'EventInfo',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_operation_stats',
    'get_slow_operations',
    'reset_operation_stats',
    'record_ingestion',
    'record_list_hits',
    'record_purge',
    'check_health',
    'HealthStatus',
]
