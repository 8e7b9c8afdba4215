"""
Pytest Configuration and Shared Fixtures

Every test gets its own SQLite database file, a configuration with a plain
client ("demo"), a compressed client ("demo_compressed") and "dataforseo",
and a controllable clock.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Dict

import pytest

from apicache.cache.compression import CompressionService
from apicache.cache.manager import ApiCacheManager
from apicache.cache.repository import CacheRepository
from apicache.database.session import create_db_engine, init_db
from apicache.ratelimit.service import RateLimitService
from apicache.ratelimit.stores import MemoryCounterStore
from apicache.utils.config import ApiCacheConfig, ClientConfig, Settings


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    def timestamp(self) -> float:
        """Float seconds, for MemoryCounterStore."""
        return self.now.timestamp()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        sqlite_path=":memory:",
        clients="demo,demo_compressed,dataforseo",
        compression_enabled=False,
        error_logging_enabled=True,
    )


@pytest.fixture
def config(settings) -> ApiCacheConfig:
    return ApiCacheConfig(
        settings=settings,
        clients={
            "demo": ClientConfig(
                base_url="https://demo.example.com",
                api_key="demo-key",
                rate_limit_max_attempts=3,
                rate_limit_decay_seconds=60,
            ),
            "demo_compressed": ClientConfig(
                base_url="https://demo.example.com",
                compression_enabled=True,
                rate_limit_max_attempts=3,
                rate_limit_decay_seconds=60,
            ),
            "dataforseo": ClientConfig(
                base_url="https://api.dataforseo.com/v3",
                login="login@example.com",
                password="secret",
                rate_limit_max_attempts=1000,
            ),
        },
    )


# ============================================================================
# Database and components
# ============================================================================

@pytest.fixture
def engine(tmp_path, settings):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'api_cache.db'}", settings=settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def compression(config) -> CompressionService:
    return CompressionService(config)


@pytest.fixture
def repository(engine, compression, config, clock) -> CacheRepository:
    repository = CacheRepository(engine, compression, config, clock=clock)
    for client in config.client_names:
        repository.create_response_table(client)
    return repository


@pytest.fixture
def counter_store(clock) -> MemoryCounterStore:
    return MemoryCounterStore(clock=clock.timestamp)


@pytest.fixture
def manager(repository, counter_store, config) -> ApiCacheManager:
    return ApiCacheManager(repository, RateLimitService(counter_store, config), config)


# ============================================================================
# Sample payloads
# ============================================================================

def dataforseo_response(tasks: list, status_code: int = 20000, cost: float = 0.003) -> Dict[str, Any]:
    return {
        "version": "0.1.20240101",
        "status_code": status_code,
        "status_message": "Ok." if status_code == 20000 else "Error.",
        "cost": cost,
        "tasks_count": len(tasks),
        "tasks_error": sum(1 for t in tasks if t.get("status_code", 20000) != 20000),
        "tasks": tasks,
    }


@pytest.fixture
def serp_response_body() -> str:
    """Live SERP response with two organic results and one PAA block."""
    return json.dumps(dataforseo_response([{
        "id": "task-serp-1",
        "status_code": 20000,
        "data": {
            "api": "serp",
            "function": "live",
            "se": "google",
            "se_type": "organic",
            "keyword": "running shoes",
            "location_code": 2840,
            "language_code": "en",
            "device": "desktop",
            "os": "windows",
            "tag": "batch-1",
        },
        "result": [{
            "keyword": "running shoes",
            "type": "organic",
            "se_domain": "google.com",
            "location_code": 2840,
            "language_code": "en",
            "check_url": "https://www.google.com/search?q=running+shoes",
            "datetime": "2024-01-15 12:00:00 +00:00",
            "spell": None,
            "refinement_chips": {"type": "refinement_chips", "items": []},
            "item_types": ["organic", "people_also_ask"],
            "se_results_count": 1250000000,
            "items_count": 3,
            "items": [
                {
                    "type": "organic",
                    "rank_group": 1,
                    "rank_absolute": 1,
                    "domain": "www.nike.com",
                    "title": "Running Shoes",
                    "description": "Shop running shoes.",
                    "url": "https://www.nike.com/running",
                    "breadcrumb": "https://www.nike.com › running",
                    "is_image": False,
                    "is_video": False,
                    "is_featured_snippet": False,
                    "is_malicious": False,
                    "is_web_story": False,
                },
                {
                    "type": "people_also_ask",
                    "rank_group": 1,
                    "rank_absolute": 2,
                    "items": [
                        {
                            "type": "people_also_ask_element",
                            "title": "What are the best running shoes?",
                            "seed_question": None,
                            "xpath": "/html/body/div[1]",
                            "expanded_element": [{
                                "type": "people_also_ask_expanded_element",
                                "featured_title": None,
                                "url": "https://www.runnersworld.com/best",
                                "domain": "www.runnersworld.com",
                                "title": "Best Running Shoes 2024",
                                "description": "Our picks.",
                                "images": None,
                                "timestamp": None,
                                "table": None,
                            }],
                        },
                    ],
                },
                {
                    "type": "organic",
                    "rank_group": 2,
                    "rank_absolute": 3,
                    "domain": "www.adidas.com",
                    "title": "Adidas Running",
                    "description": "Running shoes by Adidas.",
                    "url": "https://www.adidas.com/running",
                },
            ],
        }],
    }]))


@pytest.fixture
def labs_response_body() -> str:
    """related_keywords response: two items wrapped in keyword_data."""
    def keyword_item(keyword: str, volume: int) -> Dict[str, Any]:
        return {
            "se_type": "google",
            "keyword_data": {
                "se_type": "google",
                "keyword": keyword,
                "location_code": 2840,
                "language_code": "en",
                "keyword_info": {
                    "se_type": "google",
                    "last_updated_time": "2024-01-10 00:00:00 +00:00",
                    "competition": 0.8,
                    "competition_level": "HIGH",
                    "cpc": 1.25,
                    "search_volume": volume,
                    "categories": [10994, 10123],
                    "monthly_searches": [{"year": 2023, "month": 12, "search_volume": volume}],
                    "search_volume_trend": {"monthly": 5, "quarterly": 10, "yearly": -3},
                },
                "keyword_properties": {"keyword_difficulty": 67, "detected_language": "en"},
                "search_intent_info": {"main_intent": "commercial", "foreign_intent": ["transactional"]},
            },
            "depth": 0,
            "related_keywords": ["trail running shoes", "best running shoes"],
        }

    return json.dumps(dataforseo_response([{
        "id": "task-labs-1",
        "status_code": 20000,
        "data": {
            "api": "dataforseo_labs",
            "function": "related_keywords",
            "se_type": "google",
            "keyword": "running shoes",
            "location_code": 2840,
            "language_code": "en",
        },
        "result": [{
            "se_type": "google",
            "seed_keyword": "running shoes",
            "location_code": 2840,
            "language_code": "en",
            "items_count": 2,
            "items": [
                keyword_item("running shoes", 90500),
                keyword_item("trail running shoes", 22200),
            ],
        }],
    }]))


def store_dataforseo_response(
    repository,
    key: str,
    body: str,
    endpoint: str,
    status_code: int = 200,
    base_url: str = "https://api.dataforseo.com/v3",
    client: str = "dataforseo",
) -> None:
    repository.store(client, key, {
        "endpoint": endpoint,
        "base_url": base_url,
        "method": "POST",
        "response_body": body,
        "response_status_code": status_code,
    })
