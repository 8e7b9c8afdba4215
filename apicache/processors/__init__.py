"""Batch ETL from cached API responses into normalized item tables."""

from apicache.processors.base import ProcessingStats, ResponseProcessor
from apicache.processors.labs_google_keyword_research import DataForSeoLabsGoogleKeywordResearchProcessor
from apicache.processors.serp_google_organic import DataForSeoSerpGoogleOrganicProcessor

__all__ = [
    "ProcessingStats",
    "ResponseProcessor",
    "DataForSeoLabsGoogleKeywordResearchProcessor",
    "DataForSeoSerpGoogleOrganicProcessor",
]
