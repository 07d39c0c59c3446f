"""Core data types shared by the normalizer, scrapers, manager and store."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pricescan.config import settings


def new_id() -> str:
    """Opaque identifier for records created by the pipeline."""
    return uuid4().hex


class ScrapingError(Exception):
    """Base class for scraping pipeline errors."""


class NoScrapersAvailable(ScrapingError):
    """No adapter could be initialized for the requested sources."""


class JobAlreadyRunning(ScrapingError):
    """A manager instance is already driving a job."""


class InvalidJobTransition(ScrapingError):
    """A job status change that the state machine does not allow."""

    def __init__(self, job_id: str, current: "JobStatus", requested: "JobStatus"):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {job_id}: cannot move from {current.value} to {requested.value}"
        )


class JobNotFound(ScrapingError):
    """Referenced job does not exist."""


class SourceNotFound(ScrapingError):
    """Referenced price source does not exist."""


class SupplierNotFound(ScrapingError):
    """Referenced supplier does not exist."""


class ProductNotFound(ScrapingError):
    """One or more referenced normalized products do not exist."""


class JobStatus(str, Enum):
    """Lifecycle states of a scraping job."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.STOPPED)

    def can_transition_to(self, new: "JobStatus") -> bool:
        """Same-status updates carry progress fields and are always allowed."""
        if new == self:
            return True
        return new in _TRANSITIONS[self]


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.STOPPED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.STOPPED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.STOPPED: frozenset(),
}


class AlertType(str, Enum):
    MARGIN_OPPORTUNITY = "MARGIN_OPPORTUNITY"


def _split_known(data: dict[str, Any] | None, aliases: dict[str, str]) -> tuple[dict, dict]:
    """Split a free-form config document into recognized fields and extras."""
    known: dict[str, Any] = {}
    extras: dict[str, Any] = {}
    for key, value in (data or {}).items():
        if key in aliases:
            known[aliases[key]] = value
        else:
            extras[key] = value
    return known, extras


@dataclass
class SourceConfig:
    """Per-source scraper configuration.

    Keys the scrapers do not recognize are kept in ``extras`` and written back
    unchanged by ``to_dict``.
    """

    headers: dict[str, str] = field(default_factory=dict)
    delay_ms: int = 0
    use_headless: bool = False
    region_priority: list[str] = field(default_factory=lambda: ["NL", "BE", "DE", "FR"])
    include_vat: bool = True
    include_shipping: bool = True
    allow_domains: list[str] = field(default_factory=list)
    deny_domains: list[str] = field(default_factory=list)
    selectors: dict[str, Any] = field(default_factory=dict)
    proxy_url: Optional[str] = None
    extras: dict[str, Any] = field(default_factory=dict)

    _ALIASES = {
        "headers": "headers",
        "delayMs": "delay_ms",
        "delay": "delay_ms",
        "useHeadless": "use_headless",
        "regionPriority": "region_priority",
        "includeVAT": "include_vat",
        "includeShipping": "include_shipping",
        "allowDomains": "allow_domains",
        "denyDomains": "deny_domains",
        "selectors": "selectors",
        "proxyUrl": "proxy_url",
    }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SourceConfig":
        known, extras = _split_known(data, cls._ALIASES)
        known = {k: v for k, v in known.items() if v is not None}
        if "delay_ms" in known:
            known["delay_ms"] = int(known["delay_ms"])
        return cls(**known, extras=extras)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extras)
        data.update({
            "headers": self.headers,
            "delayMs": self.delay_ms,
            "useHeadless": self.use_headless,
            "regionPriority": self.region_priority,
            "includeVAT": self.include_vat,
            "includeShipping": self.include_shipping,
            "allowDomains": self.allow_domains,
            "denyDomains": self.deny_domains,
            "selectors": self.selectors,
            "proxyUrl": self.proxy_url,
        })
        return data


@dataclass
class JobConfig:
    """Per-job scraping configuration. An empty ``sources`` list means all active sources."""

    sources: list[str] = field(default_factory=list)
    batch_size: int = field(default_factory=lambda: settings.default_batch_size)
    delay_between_batches: int = field(
        default_factory=lambda: settings.default_delay_between_batches_ms
    )
    max_retries: int = field(default_factory=lambda: settings.default_max_retries)
    confidence_threshold: float = field(
        default_factory=lambda: settings.default_confidence_threshold
    )
    priority: str = "NORMAL"
    extras: dict[str, Any] = field(default_factory=dict)

    _ALIASES = {
        "sources": "sources",
        "batchSize": "batch_size",
        "delayBetweenBatches": "delay_between_batches",
        "maxRetries": "max_retries",
        "confidenceThreshold": "confidence_threshold",
        "priority": "priority",
    }

    def __post_init__(self):
        self.batch_size = max(1, int(self.batch_size))
        self.delay_between_batches = max(0, int(self.delay_between_batches))
        self.max_retries = max(0, int(self.max_retries))
        self.confidence_threshold = min(1.0, max(0.0, float(self.confidence_threshold)))
        self.priority = str(self.priority).upper()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobConfig":
        known, extras = _split_known(data, cls._ALIASES)
        known = {k: v for k, v in known.items() if v is not None}
        return cls(**known, extras=extras)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extras)
        data.update({
            "sources": list(self.sources),
            "batchSize": self.batch_size,
            "delayBetweenBatches": self.delay_between_batches,
            "maxRetries": self.max_retries,
            "confidenceThreshold": self.confidence_threshold,
            "priority": self.priority,
        })
        return data


@dataclass
class NormalizedProduct:
    """Canonical supplier product."""

    brand: str
    product_name: str
    wholesale_price: Decimal
    currency: str
    supplier_id: str = ""
    id: Optional[str] = None
    variant_size: Optional[str] = None
    ean: Optional[str] = None
    pack_size: int = 1
    supplier_name: str = ""
    last_purchase_price: Optional[Decimal] = None
    availability: bool = True
    notes: Optional[str] = None
    import_session_id: Optional[str] = None

    @property
    def search_term(self) -> str:
        parts = [self.brand, self.product_name, self.variant_size or ""]
        return " ".join(p.strip() for p in parts if p and p.strip())


@dataclass
class PriceScrapingSource:
    """An external price source and its scraper configuration."""

    id: str
    name: str
    base_url: str = ""
    country: str = ""
    is_active: bool = True
    priority: int = 1
    rate_limit: int = field(default_factory=lambda: settings.default_source_rate_limit_ms)
    config: SourceConfig = field(default_factory=SourceConfig)


@dataclass
class PriceScrapingJob:
    """A unit of scraping work and its progress counters."""

    name: str
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.PENDING
    description: Optional[str] = None
    supplier_id: Optional[str] = None
    total_products: int = 0
    processed_products: int = 0
    successful_products: int = 0
    failed_products: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    config: JobConfig = field(default_factory=JobConfig)
    created_at: Optional[datetime] = None

    @property
    def progress_percent(self) -> float:
        if self.total_products == 0:
            return 0.0
        return (self.processed_products / self.total_products) * 100


# Fields of PriceScrapingJob that update_job() accepts.
JOB_UPDATE_FIELDS = frozenset(
    f.name for f in fields(PriceScrapingJob) if f.name not in ("id", "status", "config")
)


@dataclass
class PriceScrapingResult:
    """One candidate price observation, ready to persist."""

    normalized_product_id: str
    source_id: str
    product_title: str
    price: Decimal
    id: str = field(default_factory=new_id)
    job_id: Optional[str] = None
    merchant: str = ""
    url: str = ""
    currency: str = "EUR"
    price_incl_vat: Optional[bool] = None
    shipping_cost: Optional[Decimal] = None
    availability: bool = True
    confidence_score: float = 0.0
    is_lowest_price: bool = False
    scraped_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ScrapingAlert:
    """Margin opportunity raised against a normalized product."""

    normalized_product_id: str
    message: str
    current_margin: Decimal
    target_margin: Decimal
    alert_type: AlertType = AlertType.MARGIN_OPPORTUNITY
    id: str = field(default_factory=new_id)
    is_read: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Supplier:
    name: str
    id: str = field(default_factory=new_id)
    country: str = "NL"
    currency: str = "EUR"
    is_active: bool = True


@dataclass
class ResultFilter:
    """Selection criteria for stored price results."""

    job_id: Optional[str] = None
    supplier_id: Optional[str] = None
    source_id: Optional[str] = None
    product_id: Optional[str] = None
    min_confidence: Optional[float] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


@dataclass
class CurrencyRate:
    from_currency: str
    to_currency: str
    rate: Decimal
    date: date
    source: str = "manual"
    is_active: bool = True
    id: str = field(default_factory=new_id)
