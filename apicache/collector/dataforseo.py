"""
DataForSEO API Client

Cached client for the DataForSEO v3 API. Requests are task arrays posted as
JSON with HTTP basic auth. A response is only cached when the API reports
success (status_code 20000) and at least one task did not fail.
"""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from apicache.cache.entries import ApiResult
from apicache.cache.manager import ApiCacheManager
from apicache.exceptions import ValidationError
from apicache.utils.config import ClientConfig

from .client import BaseApiClient

logger = logging.getLogger(__name__)

CLIENT_NAME = "dataforseo"
STATUS_OK = 20000
MAX_SERP_DEPTH = 700


def safe_get_result(response: Dict, get_items: bool = True) -> Any:
    """
    Safely extract result data from a DataForSEO response.

    Args:
        response: Decoded API response
        get_items: If True, returns the items list. If False, returns the first result object.

    Returns:
        List of items, result dict, or empty list/dict on failure
    """
    try:
        tasks = response.get("tasks")
        if not tasks or not isinstance(tasks, list):
            return [] if get_items else {}

        result = tasks[0].get("result")
        if not result or not isinstance(result, list):
            return [] if get_items else {}

        first_result = result[0]
        if not first_result or not isinstance(first_result, dict):
            return [] if get_items else {}

        if get_items:
            items = first_result.get("items")
            return items if items and isinstance(items, list) else []
        return first_result
    except (AttributeError, TypeError, IndexError, KeyError) as e:
        logger.debug(f"Safe result extraction failed: {e}")
        return [] if get_items else {}


class DataForSeoApiClient(BaseApiClient):
    """
    Client for DataForSEO.

    Usage:
        client = DataForSeoApiClient(manager, login="you@example.com", password="...")
        result = client.serp_google_organic_live_advanced("running shoes")
        client.close()
    """

    BASE_URL = "https://api.dataforseo.com/v3"

    def __init__(
        self,
        manager: ApiCacheManager,
        login: Optional[str] = None,
        password: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 60.0,
        use_cache: bool = True,
        client_name: str = CLIENT_NAME,
    ):
        config = config or manager.config.get_client(client_name)
        if not config.base_url:
            config = config.model_copy(update={"base_url": self.BASE_URL})

        super().__init__(client_name, manager, config, http_client, timeout, use_cache)

        self.login = login or config.login
        self.password = password or config.password

    def get_auth_headers(self) -> Dict[str, str]:
        if not self.login or not self.password:
            return {}
        credentials = f"{self.login}:{self.password}"
        auth_token = base64.b64encode(credentials.encode()).decode()
        return {"Authorization": f"Basic {auth_token}"}

    @staticmethod
    def _decode(response_body: Optional[str]) -> Optional[Dict[str, Any]]:
        if response_body is None:
            return None
        try:
            data = json.loads(response_body)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def should_cache(self, response_body: Optional[str]) -> bool:
        """
        Reject responses that carry no usable data: non-JSON bodies, API level
        errors, and responses where every task failed.
        """
        data = self._decode(response_body)
        if data is None:
            return False

        if data.get("status_code") != STATUS_OK:
            logger.warning(
                f"DataForSEO API error: {data.get('status_message', 'Unknown error')} "
                f"(status: {data.get('status_code')})"
            )
            return False

        tasks_error = data.get("tasks_error") or 0
        tasks_count = data.get("tasks_count") or 0
        if tasks_error >= 1 and tasks_error == tasks_count:
            logger.warning(f"All {tasks_count} DataForSEO tasks failed, not caching")
            return False

        return True

    def calculate_cost(self, response_body: Optional[str]) -> Optional[float]:
        data = self._decode(response_body)
        if data is None:
            return None
        cost = data.get("cost")
        if isinstance(cost, bool) or not isinstance(cost, (int, float)):
            return None
        return float(cost)

    def post_tasks(
        self,
        endpoint: str,
        tasks: List[Dict[str, Any]],
        attributes: Optional[str] = None,
        amount: int = 1,
    ) -> ApiResult:
        """POST a task array through the cache."""
        return self.send_cached_request(endpoint, tasks, "POST", attributes, amount)

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    def serp_google_organic_live_advanced(
        self,
        keyword: str,
        location_code: int = 2840,
        language_code: str = "en",
        device: str = "desktop",
        depth: int = 100,
        os: Optional[str] = None,
        attributes: Optional[str] = None,
        amount: int = 1,
        **extra: Any,
    ) -> ApiResult:
        """
        Live Google organic SERP.

        Args:
            keyword: Search query
            depth: Number of results, at most 700

        Raises:
            ValidationError: depth above 700
        """
        if depth > MAX_SERP_DEPTH:
            raise ValidationError(f"depth must be at most {MAX_SERP_DEPTH}")

        task = {
            "keyword": keyword,
            "location_code": location_code,
            "language_code": language_code,
            "device": device,
            "depth": depth,
            "os": os,
            **extra,
        }
        task = {name: value for name, value in task.items() if value is not None}
        return self.post_tasks(
            "serp/google/organic/live/advanced",
            [task],
            attributes if attributes is not None else keyword,
            amount,
        )

    def labs_google_related_keywords_live(
        self,
        keyword: str,
        location_code: int = 2840,
        language_code: str = "en",
        depth: int = 1,
        limit: int = 100,
        attributes: Optional[str] = None,
        amount: int = 1,
        **extra: Any,
    ) -> ApiResult:
        """Related keywords from DataForSEO Labs."""
        task = {
            "keyword": keyword,
            "location_code": location_code,
            "language_code": language_code,
            "depth": depth,
            "limit": limit,
            **extra,
        }
        return self.post_tasks(
            "dataforseo_labs/google/related_keywords/live",
            [task],
            attributes if attributes is not None else keyword,
            amount,
        )

    def labs_google_keyword_suggestions_live(
        self,
        keyword: str,
        location_code: int = 2840,
        language_code: str = "en",
        limit: int = 100,
        attributes: Optional[str] = None,
        amount: int = 1,
        **extra: Any,
    ) -> ApiResult:
        task = {
            "keyword": keyword,
            "location_code": location_code,
            "language_code": language_code,
            "limit": limit,
            **extra,
        }
        return self.post_tasks(
            "dataforseo_labs/google/keyword_suggestions/live",
            [task],
            attributes if attributes is not None else keyword,
            amount,
        )
