"""
Records exchanged with the cache layer.

ResponseMetadata is what callers hand to store(); CacheEntry is what get()
returns; ApiResult is what API clients return to their callers, fresh or
cached.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


@dataclass
class ResponseMetadata:
    """Everything known about one request/response pair before it is stored."""
    endpoint: Optional[str] = None
    response_body: Optional[str] = None
    version: Optional[str] = None
    base_url: Optional[str] = None
    full_url: Optional[str] = None
    method: Optional[str] = None
    attributes: Optional[str] = None
    credits: Optional[int] = None
    cost: Optional[float] = None
    request_params_summary: Optional[str] = None
    request_headers: Optional[Dict[str, Any]] = None
    request_body: Optional[str] = None
    response_headers: Optional[Dict[str, Any]] = None
    response_status_code: Optional[int] = None
    response_size: Optional[int] = None
    response_time: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResponseMetadata":
        """Build from a mapping, ignoring keys that are not metadata fields."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CacheEntry:
    """A cached response as read back from storage, payloads decoded."""
    id: int
    key: str
    client: str
    endpoint: str
    response_body: str
    version: Optional[str] = None
    base_url: Optional[str] = None
    full_url: Optional[str] = None
    method: Optional[str] = None
    attributes: Optional[str] = None
    credits: Optional[int] = None
    cost: Optional[float] = None
    request_params_summary: Optional[str] = None
    request_headers: Optional[Dict[str, Any]] = None
    request_body: Optional[str] = None
    response_headers: Optional[Dict[str, Any]] = None
    response_status_code: Optional[int] = None
    response_size: Optional[int] = None
    response_time: Optional[float] = None
    expires_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processed_status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in ("expires_at", "processed_at", "created_at", "updated_at"):
            if data[name] is not None:
                data[name] = data[name].isoformat()
        return data


@dataclass
class ApiResult:
    """Result of an API call, whether served from the network or the cache."""
    request: Dict[str, Any] = field(default_factory=dict)
    response_body: Optional[str] = None
    response_status_code: Optional[int] = None
    response_headers: Optional[Dict[str, Any]] = None
    response_size: Optional[int] = None
    response_time: Optional[float] = None
    is_cached: bool = False
    cost: Optional[float] = None

    @property
    def is_success(self) -> bool:
        return self.response_status_code is not None and 200 <= self.response_status_code < 300

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "ApiResult":
        return cls(
            request={
                "base_url": entry.base_url,
                "full_url": entry.full_url,
                "method": entry.method,
                "attributes": entry.attributes,
                "credits": entry.credits,
                "headers": entry.request_headers,
                "body": entry.request_body,
            },
            response_body=entry.response_body,
            response_status_code=entry.response_status_code,
            response_headers=entry.response_headers,
            response_size=entry.response_size,
            response_time=entry.response_time,
            is_cached=True,
            cost=entry.cost,
        )
