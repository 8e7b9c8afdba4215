"""
DataForSEO Labs Google Keyword Research processor.

Flattens keyword items from the Labs keyword research endpoints
(keywords_for_site, related_keywords, keyword_suggestions, keyword_ideas,
bulk_keyword_difficulty, search_intent, keyword_overview) into one table
keyed by keyword, location_code and language_code.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from apicache.database.models import DataForSeoLabsGoogleKeywordResearchItem
from apicache.processors.base import ItemRows, ResponseProcessor

logger = logging.getLogger(__name__)

KEYWORD_ITEMS = "keyword_items"

SECONDARY_INTENTS = ("informational", "navigational", "commercial", "transactional")

DEFAULT_LOCATION_CODE = 0
DEFAULT_LANGUAGE_CODE = "none"


def _pretty_json(value: Any) -> Optional[str]:
    return json.dumps(value, indent=4) if value is not None else None


class DataForSeoLabsGoogleKeywordResearchProcessor(ResponseProcessor):
    """
    Usage:
        processor = DataForSeoLabsGoogleKeywordResearchProcessor(
            manager, skip_keyword_info_monthly_searches=True,
        )
        stats = processor.process_responses(limit=100)

    The skip_* flags store the bulky monthly_searches arrays as NULL.
    """

    endpoints_to_process = tuple(
        f"dataforseo_labs/google/{name}/"
        for name in (
            "keywords_for_site",
            "related_keywords",
            "keyword_suggestions",
            "keyword_ideas",
            "bulk_keyword_difficulty",
            "search_intent",
            "keyword_overview",
        )
    )
    item_tables = {KEYWORD_ITEMS: DataForSeoLabsGoogleKeywordResearchItem}
    natural_keys = {KEYWORD_ITEMS: ("keyword", "location_code", "language_code")}

    def __init__(
        self,
        manager,
        skip_sandbox: bool = True,
        update_if_newer: bool = True,
        skip_keyword_info_monthly_searches: bool = False,
        skip_keyword_info_normalized_with_bing_monthly_searches: bool = False,
        skip_keyword_info_normalized_with_clickstream_monthly_searches: bool = False,
        skip_clickstream_keyword_info_monthly_searches: bool = False,
        **kwargs,
    ):
        super().__init__(manager, skip_sandbox=skip_sandbox, update_if_newer=update_if_newer, **kwargs)
        self.skip_keyword_info_monthly_searches = skip_keyword_info_monthly_searches
        self.skip_keyword_info_normalized_with_bing_monthly_searches = (
            skip_keyword_info_normalized_with_bing_monthly_searches
        )
        self.skip_keyword_info_normalized_with_clickstream_monthly_searches = (
            skip_keyword_info_normalized_with_clickstream_monthly_searches
        )
        self.skip_clickstream_keyword_info_monthly_searches = skip_clickstream_keyword_info_monthly_searches

    # =========================================================================
    # EXTRACTION
    # =========================================================================

    def extract_task_data(self, task_data: Dict[str, Any]) -> Dict[str, Any]:
        data = {"se_type": task_data.get("se_type")}
        if task_data.get("location_code") is not None:
            data["location_code"] = task_data["location_code"]
        if task_data.get("language_code") is not None:
            data["language_code"] = task_data["language_code"]
        return data

    @staticmethod
    def ensure_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("location_code") is None:
            data["location_code"] = DEFAULT_LOCATION_CODE
        if data.get("language_code") is None:
            data["language_code"] = DEFAULT_LANGUAGE_CODE
        return data

    def extract_result(
        self, result: Dict[str, Any], task_data: Dict[str, Any], now: datetime
    ) -> Tuple[ItemRows, int]:
        items = result.get("items")
        if not isinstance(items, list):
            return {KEYWORD_ITEMS: []}, 0

        merged = self.ensure_defaults(task_data)
        rows = []
        for item in items:
            if not isinstance(item, dict):
                continue
            # related_keywords wraps each keyword in keyword_data
            if "keyword_data" in item:
                actual_item = item.get("keyword_data") or {}
                related_keywords = item.get("related_keywords")
            else:
                actual_item = item
                related_keywords = None
            rows.append(self.extract_keyword_fields(actual_item, related_keywords, merged, now))

        return {KEYWORD_ITEMS: rows}, len(items)

    def extract_keyword_fields(
        self,
        item: Dict[str, Any],
        related_keywords: Optional[List[Any]],
        merged_data: Dict[str, Any],
        now: datetime,
    ) -> Dict[str, Any]:
        keyword_info = item.get("keyword_info") or {}
        trend = keyword_info.get("search_volume_trend") or {}
        bing = item.get("keyword_info_normalized_with_bing") or {}
        clickstream_normalized = item.get("keyword_info_normalized_with_clickstream") or {}
        clickstream = item.get("clickstream_keyword_info") or {}
        gender = clickstream.get("gender_distribution") or {}
        age = clickstream.get("age_distribution") or {}
        properties = item.get("keyword_properties") or {}
        serp_info = item.get("serp_info") or {}
        backlinks = item.get("avg_backlinks_info") or {}
        intent_info = item.get("search_intent_info") or {}
        keyword_intent = item.get("keyword_intent") or {}

        row = {
            **merged_data,
            "keyword": item.get("keyword"),

            "keyword_info_se_type": keyword_info.get("se_type"),
            "keyword_info_last_updated_time": keyword_info.get("last_updated_time"),
            "keyword_info_competition": keyword_info.get("competition"),
            "keyword_info_competition_level": keyword_info.get("competition_level"),
            "keyword_info_cpc": keyword_info.get("cpc"),
            "keyword_info_search_volume": keyword_info.get("search_volume"),
            "keyword_info_low_top_of_page_bid": keyword_info.get("low_top_of_page_bid"),
            "keyword_info_high_top_of_page_bid": keyword_info.get("high_top_of_page_bid"),
            "keyword_info_categories": _pretty_json(keyword_info.get("categories")),
            "keyword_info_monthly_searches": None if self.skip_keyword_info_monthly_searches
            else _pretty_json(keyword_info.get("monthly_searches")),
            "keyword_info_search_volume_trend_monthly": trend.get("monthly"),
            "keyword_info_search_volume_trend_quarterly": trend.get("quarterly"),
            "keyword_info_search_volume_trend_yearly": trend.get("yearly"),

            "keyword_info_normalized_with_bing_last_updated_time": bing.get("last_updated_time"),
            "keyword_info_normalized_with_bing_search_volume": bing.get("search_volume"),
            "keyword_info_normalized_with_bing_is_normalized": bing.get("is_normalized"),
            "keyword_info_normalized_with_bing_monthly_searches":
                None if self.skip_keyword_info_normalized_with_bing_monthly_searches
                else _pretty_json(bing.get("monthly_searches")),

            "keyword_info_normalized_with_clickstream_last_updated_time":
                clickstream_normalized.get("last_updated_time"),
            "keyword_info_normalized_with_clickstream_search_volume": clickstream_normalized.get("search_volume"),
            "keyword_info_normalized_with_clickstream_is_normalized": clickstream_normalized.get("is_normalized"),
            "keyword_info_normalized_with_clickstream_monthly_searches":
                None if self.skip_keyword_info_normalized_with_clickstream_monthly_searches
                else _pretty_json(clickstream_normalized.get("monthly_searches")),

            "clickstream_keyword_info_search_volume": clickstream.get("search_volume"),
            "clickstream_keyword_info_last_updated_time": clickstream.get("last_updated_time"),
            "clickstream_keyword_info_gender_distribution_female": gender.get("female"),
            "clickstream_keyword_info_gender_distribution_male": gender.get("male"),
            "clickstream_keyword_info_age_distribution_18_24": age.get("18-24"),
            "clickstream_keyword_info_age_distribution_25_34": age.get("25-34"),
            "clickstream_keyword_info_age_distribution_35_44": age.get("35-44"),
            "clickstream_keyword_info_age_distribution_45_54": age.get("45-54"),
            "clickstream_keyword_info_age_distribution_55_64": age.get("55-64"),
            "clickstream_keyword_info_monthly_searches":
                None if self.skip_clickstream_keyword_info_monthly_searches
                else _pretty_json(clickstream.get("monthly_searches")),

            "keyword_properties_se_type": properties.get("se_type"),
            "keyword_properties_core_keyword": properties.get("core_keyword"),
            "keyword_properties_synonym_clustering_algorithm": properties.get("synonym_clustering_algorithm"),
            "keyword_properties_keyword_difficulty": properties.get("keyword_difficulty"),
            "keyword_properties_detected_language": properties.get("detected_language"),
            "keyword_properties_is_another_language": properties.get("is_another_language"),

            "serp_info_se_type": serp_info.get("se_type"),
            "serp_info_check_url": serp_info.get("check_url"),
            "serp_info_serp_item_types": _pretty_json(serp_info.get("serp_item_types")),
            "serp_info_se_results_count": serp_info.get("se_results_count"),
            "serp_info_last_updated_time": serp_info.get("last_updated_time"),
            "serp_info_previous_updated_time": serp_info.get("previous_updated_time"),

            "avg_backlinks_info_se_type": backlinks.get("se_type"),
            "avg_backlinks_info_backlinks": backlinks.get("backlinks"),
            "avg_backlinks_info_dofollow": backlinks.get("dofollow"),
            "avg_backlinks_info_referring_pages": backlinks.get("referring_pages"),
            "avg_backlinks_info_referring_domains": backlinks.get("referring_domains"),
            "avg_backlinks_info_referring_main_domains": backlinks.get("referring_main_domains"),
            "avg_backlinks_info_rank": backlinks.get("rank"),
            "avg_backlinks_info_main_domain_rank": backlinks.get("main_domain_rank"),
            "avg_backlinks_info_last_updated_time": backlinks.get("last_updated_time"),

            "search_intent_info_se_type": intent_info.get("se_type"),
            "search_intent_info_main_intent": intent_info.get("main_intent"),
            "search_intent_info_foreign_intent": _pretty_json(intent_info.get("foreign_intent")),
            "search_intent_info_last_updated_time": intent_info.get("last_updated_time"),

            "related_keywords": _pretty_json(related_keywords) if related_keywords else None,
            "keyword_difficulty": item.get("keyword_difficulty"),
            "keyword_intent_label": keyword_intent.get("label"),
            "keyword_intent_probability": keyword_intent.get("probability"),

            "created_at": now,
            "updated_at": now,
        }

        for intent in SECONDARY_INTENTS:
            row[f"secondary_keyword_intents_probability_{intent}"] = None
        for intent in item.get("secondary_keyword_intents") or []:
            label = intent.get("label")
            if label in SECONDARY_INTENTS and intent.get("probability") is not None:
                row[f"secondary_keyword_intents_probability_{label}"] = intent["probability"]

        return row
