"""
DataForSEO SERP Google Organic processor.

Turns cached serp/google/organic responses into three tables:
- listings: one row per result page (check_url, spell, item types, counts)
- organic items: one row per organic result
- PAA items: one row per expanded People Also Ask answer
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from apicache.database.models import (
    DataForSeoSerpGoogleOrganicItem,
    DataForSeoSerpGoogleOrganicListing,
    DataForSeoSerpGoogleOrganicPaaItem,
)
from apicache.processors.base import ItemRows, ProcessingStats, ResponseProcessor

logger = logging.getLogger(__name__)

LISTINGS = "listings"
ORGANIC_ITEMS = "organic_items"
PAA_ITEMS = "paa_items"


def _json_or_none(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


class DataForSeoSerpGoogleOrganicProcessor(ResponseProcessor):
    """
    Usage:
        processor = DataForSeoSerpGoogleOrganicProcessor(manager)
        stats = processor.process_responses(limit=100)
    """

    endpoints_to_process = (
        "serp/google/organic/task_get/",
        "serp/google/organic/live/",
    )
    item_tables = {
        LISTINGS: DataForSeoSerpGoogleOrganicListing,
        ORGANIC_ITEMS: DataForSeoSerpGoogleOrganicItem,
        PAA_ITEMS: DataForSeoSerpGoogleOrganicPaaItem,
    }
    natural_keys = {
        LISTINGS: ("keyword", "location_code", "language_code", "device"),
        ORGANIC_ITEMS: ("keyword", "location_code", "language_code", "device", "rank_absolute"),
        PAA_ITEMS: ("keyword", "location_code", "language_code", "device", "item_position"),
    }

    def __init__(self, manager, skip_sandbox: bool = True, update_if_newer: bool = True,
                 skip_refinement_chips: bool = False, process_paas: bool = True, **kwargs):
        super().__init__(manager, skip_sandbox=skip_sandbox, update_if_newer=update_if_newer, **kwargs)
        self.skip_refinement_chips = skip_refinement_chips
        self.process_paas = process_paas

    def active_tables(self) -> List[str]:
        if self.process_paas:
            return [LISTINGS, ORGANIC_ITEMS, PAA_ITEMS]
        return [LISTINGS, ORGANIC_ITEMS]

    def clear_processed_tables(self, include_paa: bool = True, with_count: bool = False) -> Dict[str, Optional[int]]:
        tables = [LISTINGS, ORGANIC_ITEMS, PAA_ITEMS] if include_paa else [LISTINGS, ORGANIC_ITEMS]
        return super().clear_processed_tables(with_count=with_count, tables=tables)

    def process_responses(self, limit: int = 100, process_paas: Optional[bool] = None) -> ProcessingStats:
        """process_paas overrides the instance setting for this call only."""
        if process_paas is None:
            return super().process_responses(limit)

        instance_setting = self.process_paas
        self.process_paas = process_paas
        try:
            return super().process_responses(limit)
        finally:
            self.process_paas = instance_setting

    # =========================================================================
    # EXTRACTION
    # =========================================================================

    def extract_metadata(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "keyword": data.get("keyword"),
            "se_domain": data.get("se_domain"),
            "location_code": data.get("location_code"),
            "language_code": data.get("language_code"),
            "device": data.get("device"),
            "os": data.get("os"),
        }

    def extract_listings_task_metadata(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "se": data.get("se"),
            "se_type": data.get("se_type"),
            "tag": data.get("tag"),
        }

    def extract_task_data(self, task_data: Dict[str, Any]) -> Dict[str, Any]:
        merged = self.extract_metadata(task_data)
        merged.update(self.extract_listings_task_metadata(task_data))
        return merged

    @staticmethod
    def ensure_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("device") is None:
            data["device"] = "desktop"
        return data

    def extract_result(
        self, result: Dict[str, Any], task_data: Dict[str, Any], now: datetime
    ) -> Tuple[ItemRows, int]:
        listing_data = dict(task_data)
        # Result level values win over the task's request data
        for name, value in self.extract_metadata(result).items():
            if value is not None:
                listing_data[name] = value
        listing_data = self.ensure_defaults(listing_data)

        item_data = {name: listing_data[name] for name in
                     ("keyword", "se_domain", "location_code", "language_code", "device", "os",
                      "task_id", "response_id")}

        rows: ItemRows = {LISTINGS: [self.build_listing(result, listing_data, now)]}

        items = result.get("items")
        if not isinstance(items, list):
            rows[ORGANIC_ITEMS] = []
            if self.process_paas:
                rows[PAA_ITEMS] = []
            return rows, 0

        rows[ORGANIC_ITEMS] = self.build_organic_items(items, item_data, now)
        if self.process_paas:
            rows[PAA_ITEMS] = self.build_paa_items(items, item_data, now)
        return rows, len(items)

    def build_listing(self, result: Dict[str, Any], listing_data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        refinement_chips = None
        if not self.skip_refinement_chips:
            refinement_chips = _json_or_none(result.get("refinement_chips"))

        return {
            **listing_data,
            "result_keyword": result.get("keyword"),
            "type": result.get("type"),
            "check_url": result.get("check_url"),
            "result_datetime": result.get("datetime"),
            "spell": _json_or_none(result.get("spell")),
            "refinement_chips": refinement_chips,
            "item_types": _json_or_none(result.get("item_types")),
            "se_results_count": result.get("se_results_count"),
            "items_count": result.get("items_count"),
            "created_at": now,
            "updated_at": now,
        }

    def build_organic_items(self, items: List[Any], item_data: Dict[str, Any], now: datetime) -> List[Dict[str, Any]]:
        rows = []
        for item in items:
            if not isinstance(item, dict) or item.get("type") != "organic":
                continue
            rows.append({
                **item_data,
                "type": item.get("type"),
                "rank_group": item.get("rank_group"),
                "rank_absolute": item.get("rank_absolute"),
                "domain": item.get("domain"),
                "title": item.get("title"),
                "description": item.get("description"),
                "url": item.get("url"),
                "breadcrumb": item.get("breadcrumb"),
                "is_image": item.get("is_image"),
                "is_video": item.get("is_video"),
                "is_featured_snippet": item.get("is_featured_snippet"),
                "is_malicious": item.get("is_malicious"),
                "is_web_story": item.get("is_web_story"),
                "created_at": now,
                "updated_at": now,
            })
        return rows

    def build_paa_items(self, items: List[Any], item_data: Dict[str, Any], now: datetime) -> List[Dict[str, Any]]:
        """
        One row per people_also_ask_expanded_element.

        item_position counts people_also_ask_element entries (1-based), so
        several expanded answers under one question share a position.
        """
        rows = []
        for item in items:
            if not isinstance(item, dict) or item.get("type") != "people_also_ask":
                continue

            item_position = 0
            for element in item.get("items") or []:
                if element.get("type") != "people_also_ask_element":
                    continue
                item_position += 1

                for expanded in element.get("expanded_element") or []:
                    if expanded.get("type") != "people_also_ask_expanded_element":
                        continue
                    rows.append({
                        **item_data,
                        "item_position": item_position,
                        "type": element.get("type"),
                        "title": element.get("title"),
                        "seed_question": element.get("seed_question"),
                        "xpath": element.get("xpath"),
                        "answer_type": expanded.get("type"),
                        "answer_featured_title": expanded.get("featured_title"),
                        "answer_url": expanded.get("url"),
                        "answer_domain": expanded.get("domain"),
                        "answer_title": expanded.get("title"),
                        "answer_description": expanded.get("description"),
                        "answer_images": _json_or_none(expanded.get("images")),
                        "answer_timestamp": expanded.get("timestamp"),
                        "answer_table": _json_or_none(expanded.get("table")),
                        "created_at": now,
                        "updated_at": now,
                    })
        return rows
