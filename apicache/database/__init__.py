"""
Database Layer

Usage:
    from apicache.database import (
        # Session management
        create_db_engine, get_engine, get_db_context, init_db,

        # Models
        ApiCacheErrorLog, RateLimitCounter,
        DataForSeoSerpGoogleOrganicItem, DataForSeoLabsGoogleKeywordResearchItem,

        # Upserts
        batch_insert_or_update, UpsertStats,
    )
"""

from .models import (
    Base,
    ApiCacheErrorLog,
    RateLimitCounter,
    DataForSeoSerpGoogleOrganicListing,
    DataForSeoSerpGoogleOrganicItem,
    DataForSeoSerpGoogleOrganicPaaItem,
    DataForSeoLabsGoogleKeywordResearchItem,
    build_responses_table,
    utcnow,
)
from .session import (
    check_db_connection,
    create_db_engine,
    get_database_url,
    get_db_context,
    get_engine,
    get_session_factory,
    init_db,
)
from .upsert import (
    UpsertStats,
    batch_insert_or_update,
    insert_or_ignore,
)

__all__ = [
    # Models
    "Base",
    "ApiCacheErrorLog",
    "RateLimitCounter",
    "DataForSeoSerpGoogleOrganicListing",
    "DataForSeoSerpGoogleOrganicItem",
    "DataForSeoSerpGoogleOrganicPaaItem",
    "DataForSeoLabsGoogleKeywordResearchItem",
    "build_responses_table",
    "utcnow",
    # Session
    "check_db_connection",
    "create_db_engine",
    "get_database_url",
    "get_db_context",
    "get_engine",
    "get_session_factory",
    "init_db",
    # Upserts
    "UpsertStats",
    "batch_insert_or_update",
    "insert_or_ignore",
]
