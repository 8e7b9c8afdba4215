"""
SQLAlchemy Models for the API cache

Three groups of tables:
1. Per-client response tables (api_cache_{client}_responses[_compressed]),
   built at runtime by build_responses_table() since their names depend on
   the client
2. Bookkeeping tables: api_cache_errors, api_cache_rate_limits
3. Processor item tables: flattened records extracted from cached DataForSEO
   responses, each with a natural key and response_id/task_id back-references
"""

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Float, Index, Integer,
    LargeBinary, MetaData, String, Table, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# RESPONSE TABLES
# =============================================================================

PAYLOAD_COLUMNS = ("request_headers", "request_body", "response_headers", "response_body")


def build_responses_table(metadata: MetaData, name: str, compressed: bool) -> Table:
    """
    Define a per-client response table.

    Compressed tables store payload columns as binary, uncompressed tables
    as text. Everything else is identical.
    """
    payload_type = LargeBinary if compressed else Text

    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("key", String(255), nullable=False, unique=True),
        Column("client", String(255), nullable=False),
        Column("version", String(255)),
        Column("endpoint", String(255), nullable=False),
        Column("base_url", String(255)),
        Column("full_url", Text),
        Column("method", String(16)),
        Column("attributes", String(255)),
        Column("credits", Integer),
        Column("cost", Float),
        Column("request_params_summary", String(255)),
        Column("request_headers", payload_type),
        Column("request_body", payload_type),
        Column("response_headers", payload_type),
        Column("response_body", payload_type),
        Column("response_status_code", Integer),
        Column("response_size", Integer),
        Column("response_time", Float),
        Column("expires_at", DateTime),
        Column("processed_at", DateTime),
        Column("processed_status", Text),
        Column("created_at", DateTime, default=utcnow),
        Column("updated_at", DateTime, default=utcnow, onupdate=utcnow),
        Index(f"{name}_client_endpoint_version_index", "client", "endpoint", "version"),
        Index(f"{name}_expires_at_index", "expires_at"),
        Index(f"{name}_processed_at_index", "processed_at"),
        extend_existing=True,
    )


# =============================================================================
# BOOKKEEPING
# =============================================================================

class ApiCacheErrorLog(Base):
    """API errors and rejected responses recorded by the HTTP client layer."""
    __tablename__ = "api_cache_errors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    api_client = Column(String(255), nullable=False, index=True)
    error_type = Column(String(50), nullable=False, index=True)  # http_error, cache_rejected, ...
    log_level = Column(String(20), nullable=False)
    error_message = Column(Text)
    api_message = Column(Text)
    response_preview = Column(Text)  # first 2000 chars of the body
    context_data = Column(Text)  # JSON
    created_at = Column(DateTime, default=utcnow, index=True)


class RateLimitCounter(Base):
    """Fixed-window attempt counter used by the database rate-limit store."""
    __tablename__ = "api_cache_rate_limits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False, unique=True)
    attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)


# =============================================================================
# DATAFORSEO SERP GOOGLE ORGANIC
# =============================================================================

class DataForSeoSerpGoogleOrganicListing(Base):
    """One SERP result page per keyword/location/language/device."""
    __tablename__ = "dataforseo_serp_google_organic_listings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String(255), nullable=False)
    se_domain = Column(String(255))
    location_code = Column(Integer)
    language_code = Column(String(20))
    device = Column(String(20), default="desktop")
    os = Column(String(50))
    task_id = Column(String(255), index=True)
    response_id = Column(Integer, index=True)

    se = Column(String(50))
    se_type = Column(String(50))
    tag = Column(String(255))
    result_keyword = Column(String(255))
    type = Column(String(50))
    check_url = Column(Text)
    result_datetime = Column(String(50))
    spell = Column(Text)  # JSON
    refinement_chips = Column(Text)  # JSON
    item_types = Column(Text)  # JSON
    se_results_count = Column(BigInteger)
    items_count = Column(Integer)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "keyword", "location_code", "language_code", "device",
            name="dfs_serp_organic_listings_unique",
        ),
    )


class DataForSeoSerpGoogleOrganicItem(Base):
    """Organic search result at one absolute rank."""
    __tablename__ = "dataforseo_serp_google_organic_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String(255), nullable=False)
    se_domain = Column(String(255))
    location_code = Column(Integer)
    language_code = Column(String(20))
    device = Column(String(20), default="desktop")
    os = Column(String(50))
    task_id = Column(String(255), index=True)
    response_id = Column(Integer, index=True)

    type = Column(String(50))
    rank_group = Column(Integer)
    rank_absolute = Column(Integer)
    domain = Column(String(255), index=True)
    title = Column(Text)
    description = Column(Text)
    url = Column(Text)
    breadcrumb = Column(Text)
    is_image = Column(Boolean)
    is_video = Column(Boolean)
    is_featured_snippet = Column(Boolean)
    is_malicious = Column(Boolean)
    is_web_story = Column(Boolean)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "keyword", "location_code", "language_code", "device", "rank_absolute",
            name="dfs_serp_organic_items_unique",
        ),
    )


class DataForSeoSerpGoogleOrganicPaaItem(Base):
    """People Also Ask answer, one row per expanded element."""
    __tablename__ = "dataforseo_serp_google_organic_paa_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String(255), nullable=False)
    se_domain = Column(String(255))
    location_code = Column(Integer)
    language_code = Column(String(20))
    device = Column(String(20), default="desktop")
    os = Column(String(50))
    task_id = Column(String(255), index=True)
    response_id = Column(Integer, index=True)

    item_position = Column(Integer)
    type = Column(String(50))
    title = Column(Text)
    seed_question = Column(Text)
    xpath = Column(Text)
    answer_type = Column(String(50))
    answer_featured_title = Column(Text)
    answer_url = Column(Text)
    answer_domain = Column(String(255))
    answer_title = Column(Text)
    answer_description = Column(Text)
    answer_images = Column(Text)  # JSON
    answer_timestamp = Column(String(50))
    answer_table = Column(Text)  # JSON

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "keyword", "location_code", "language_code", "device", "item_position",
            name="dfs_serp_organic_paa_items_unique",
        ),
    )


# =============================================================================
# DATAFORSEO LABS GOOGLE KEYWORD RESEARCH
# =============================================================================

class DataForSeoLabsGoogleKeywordResearchItem(Base):
    """Keyword metrics from the Labs keyword research endpoints."""
    __tablename__ = "dataforseo_labs_google_keyword_research_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String(255), nullable=False)
    location_code = Column(Integer, nullable=False, default=0)
    language_code = Column(String(20), nullable=False, default="none")
    se_type = Column(String(50))
    task_id = Column(String(255), index=True)
    response_id = Column(Integer, index=True)

    # keyword_info
    keyword_info_se_type = Column(String(50))
    keyword_info_last_updated_time = Column(String(50))
    keyword_info_competition = Column(Float)
    keyword_info_competition_level = Column(String(20))
    keyword_info_cpc = Column(Float)
    keyword_info_search_volume = Column(BigInteger)
    keyword_info_low_top_of_page_bid = Column(Float)
    keyword_info_high_top_of_page_bid = Column(Float)
    keyword_info_categories = Column(Text)  # JSON
    keyword_info_monthly_searches = Column(Text)  # JSON
    keyword_info_search_volume_trend_monthly = Column(Integer)
    keyword_info_search_volume_trend_quarterly = Column(Integer)
    keyword_info_search_volume_trend_yearly = Column(Integer)

    # keyword_info_normalized_with_bing
    keyword_info_normalized_with_bing_last_updated_time = Column(String(50))
    keyword_info_normalized_with_bing_search_volume = Column(BigInteger)
    keyword_info_normalized_with_bing_is_normalized = Column(Boolean)
    keyword_info_normalized_with_bing_monthly_searches = Column(Text)  # JSON

    # keyword_info_normalized_with_clickstream
    keyword_info_normalized_with_clickstream_last_updated_time = Column(String(50))
    keyword_info_normalized_with_clickstream_search_volume = Column(BigInteger)
    keyword_info_normalized_with_clickstream_is_normalized = Column(Boolean)
    keyword_info_normalized_with_clickstream_monthly_searches = Column(Text)  # JSON

    # clickstream_keyword_info
    clickstream_keyword_info_search_volume = Column(BigInteger)
    clickstream_keyword_info_last_updated_time = Column(String(50))
    clickstream_keyword_info_gender_distribution_female = Column(Integer)
    clickstream_keyword_info_gender_distribution_male = Column(Integer)
    clickstream_keyword_info_age_distribution_18_24 = Column(Integer)
    clickstream_keyword_info_age_distribution_25_34 = Column(Integer)
    clickstream_keyword_info_age_distribution_35_44 = Column(Integer)
    clickstream_keyword_info_age_distribution_45_54 = Column(Integer)
    clickstream_keyword_info_age_distribution_55_64 = Column(Integer)
    clickstream_keyword_info_monthly_searches = Column(Text)  # JSON

    # keyword_properties
    keyword_properties_se_type = Column(String(50))
    keyword_properties_core_keyword = Column(String(255))
    keyword_properties_synonym_clustering_algorithm = Column(String(50))
    keyword_properties_keyword_difficulty = Column(Integer)
    keyword_properties_detected_language = Column(String(20))
    keyword_properties_is_another_language = Column(Boolean)

    # serp_info
    serp_info_se_type = Column(String(50))
    serp_info_check_url = Column(Text)
    serp_info_serp_item_types = Column(Text)  # JSON
    serp_info_se_results_count = Column(BigInteger)
    serp_info_last_updated_time = Column(String(50))
    serp_info_previous_updated_time = Column(String(50))

    # avg_backlinks_info
    avg_backlinks_info_se_type = Column(String(50))
    avg_backlinks_info_backlinks = Column(Float)
    avg_backlinks_info_dofollow = Column(Float)
    avg_backlinks_info_referring_pages = Column(Float)
    avg_backlinks_info_referring_domains = Column(Float)
    avg_backlinks_info_referring_main_domains = Column(Float)
    avg_backlinks_info_rank = Column(Float)
    avg_backlinks_info_main_domain_rank = Column(Float)
    avg_backlinks_info_last_updated_time = Column(String(50))

    # search_intent_info
    search_intent_info_se_type = Column(String(50))
    search_intent_info_main_intent = Column(String(50))
    search_intent_info_foreign_intent = Column(Text)  # JSON
    search_intent_info_last_updated_time = Column(String(50))

    # endpoint specific
    related_keywords = Column(Text)  # JSON, related_keywords endpoint
    keyword_difficulty = Column(Integer)  # bulk_keyword_difficulty endpoint
    keyword_intent_label = Column(String(50))  # search_intent endpoint
    keyword_intent_probability = Column(Float)
    secondary_keyword_intents_probability_informational = Column(Float)
    secondary_keyword_intents_probability_navigational = Column(Float)
    secondary_keyword_intents_probability_commercial = Column(Float)
    secondary_keyword_intents_probability_transactional = Column(Float)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "keyword", "location_code", "language_code",
            name="dfs_labs_keyword_research_items_unique",
        ),
        Index("dfs_labs_keyword_research_items_keyword_index", "keyword"),
    )
