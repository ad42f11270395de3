#!/usr/bin/env python3
"""
Valuation Enrichment - writes estimated property values onto CRM contacts.

For every opportunity in a CRM pipeline, looks up the contact's property
valuation (cache first, then the valuation source) and stores it in a
custom field on the contact.

Usage:
    runner = BatchJobRunner()
    register_valuation_enrichment(runner, crm, source, ValuationCacheRepo())
    result = await runner.run(VALUATION_ENRICHMENT_KIND,
                              EnrichmentConfig(pipeline_name="Acquisitions"))
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from api.config import get_config
from api.database import ValuationCacheRepo
from core.errors import FatalResolutionError, NotFoundError, OrbitError
from core.human_behavior import HumanBehavior
from core.rate_limiter import CircuitBreaker

from .core.batch_runner import BatchJob, BatchJobRunner, ItemOutcome, ResolvedTarget

logger = logging.getLogger(__name__)

VALUATION_ENRICHMENT_KIND = "valuation_enrichment"


@dataclass
class EnrichmentConfig:
    """Configuration of one enrichment run."""
    pipeline_name: str
    value_field_name: str = field(default_factory=lambda: get_config().VALUE_FIELD_NAME)
    force: bool = False  # Overwrite values already present on the contact


@dataclass
class Address:
    address_line: Optional[str]
    city: Optional[str]
    region: Optional[str]
    postal_code: Optional[str]

    def is_complete(self) -> bool:
        return all([self.address_line, self.city, self.region, self.postal_code])

    def as_tuple(self) -> Tuple[str, str, str, str]:
        return (self.address_line, self.city, self.region, self.postal_code)

    def __str__(self) -> str:
        return f"{self.address_line}, {self.city}, {self.region} {self.postal_code}"


@dataclass
class Pipeline:
    id: str
    name: str


@dataclass
class CustomField:
    id: str
    name: str


@dataclass
class Opportunity:
    id: str
    name: str
    contact_id: str


@dataclass
class Contact:
    id: str
    address: Address
    custom_fields: Dict[str, Any] = field(default_factory=dict)  # field id -> value


@dataclass
class ValuationResult:
    estimated_value: Optional[int]
    source_url: Optional[str] = None
    error: Optional[str] = None


class CrmClient(ABC):
    """CRM operations the enrichment job needs."""

    @abstractmethod
    async def list_pipelines(self) -> List[Pipeline]:
        ...

    @abstractmethod
    async def find_or_create_field(self, name: str) -> CustomField:
        ...

    @abstractmethod
    async def search_opportunities(self, pipeline_id: str) -> List[Opportunity]:
        ...

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Contact:
        ...

    @abstractmethod
    async def update_contact_field(self, contact_id: str, field_id: str, value: Any):
        ...


class ValuationSource(ABC):
    """Looks up the estimated value of a property."""

    @abstractmethod
    async def lookup(self, address: Address) -> ValuationResult:
        ...


class ValuationEnrichmentJob(BatchJob):
    """Enriches the contacts of one pipeline with property valuations."""

    def __init__(
        self,
        config: EnrichmentConfig,
        crm: CrmClient,
        source: ValuationSource,
        cache: ValuationCacheRepo,
        behavior: Optional[HumanBehavior] = None,
        breaker: Optional[CircuitBreaker] = None,
        delay_range: Optional[Tuple[float, float]] = None,
    ):
        app_config = get_config()
        self.config = config
        self.crm = crm
        self.source = source
        self.cache = cache
        self.behavior = behavior or HumanBehavior()
        self.breaker = breaker or CircuitBreaker(name="valuation")
        self.delay_range = delay_range or (
            app_config.ENRICHMENT_DELAY_MIN_SECONDS,
            app_config.ENRICHMENT_DELAY_MAX_SECONDS,
        )

        self._seen_contacts: Set[str] = set()
        self._live_lookup = False

    async def resolve(self) -> ResolvedTarget:
        try:
            pipelines = await self.crm.list_pipelines()
        except OrbitError:
            raise
        except Exception as e:
            raise FatalResolutionError(
                f"Could not list pipelines: {e}",
                {"pipeline_name": self.config.pipeline_name},
            ) from e

        pipeline = next((p for p in pipelines if p.name == self.config.pipeline_name), None)
        if pipeline is None:
            raise NotFoundError(
                f'Pipeline "{self.config.pipeline_name}" not found',
                {"pipeline_name": self.config.pipeline_name},
            )
        logger.info(f"[Enrichment] Found pipeline: {pipeline.name} ({pipeline.id})")

        try:
            value_field = await self.crm.find_or_create_field(self.config.value_field_name)
        except OrbitError:
            raise
        except Exception as e:
            raise FatalResolutionError(
                f'Could not establish field "{self.config.value_field_name}": {e}',
                {"field_name": self.config.value_field_name},
            ) from e
        logger.info(f"[Enrichment] Value field ID: {value_field.id}")

        return ResolvedTarget(id=pipeline.id, name=pipeline.name, data={"field_id": value_field.id})

    async def list_items(self, target: ResolvedTarget) -> List[Opportunity]:
        opportunities = await self.crm.search_opportunities(target.id)
        logger.info(f"[Enrichment] Found {len(opportunities)} opportunities")
        return opportunities

    def describe_item(self, item: Opportunity) -> Optional[str]:
        return item.name

    async def process_item(self, target: ResolvedTarget, item: Opportunity) -> ItemOutcome:
        self._live_lookup = False
        field_id = target.data["field_id"]

        if item.contact_id in self._seen_contacts:
            logger.info("[Enrichment]   SKIP: Contact already processed in this run")
            return ItemOutcome.SKIPPED
        self._seen_contacts.add(item.contact_id)

        contact = await self.crm.get_contact(item.contact_id)

        existing = contact.custom_fields.get(field_id)
        if existing and not self.config.force:
            logger.info(f"[Enrichment]   SKIP: Already has value {existing}")
            return ItemOutcome.SKIPPED

        address = contact.address
        if not address.is_complete():
            logger.info("[Enrichment]   SKIP: Incomplete address")
            return ItemOutcome.SKIPPED

        result = await self._valuation_for(address)

        if not result.estimated_value:
            logger.info(f"[Enrichment]   NO VALUE: {result.error or 'Unknown'}")
            return ItemOutcome.ERROR

        await self.crm.update_contact_field(item.contact_id, field_id, result.estimated_value)
        logger.info(f"[Enrichment]   Updated contact {item.contact_id}: {result.estimated_value:,}")
        return ItemOutcome.PROCESSED

    async def _valuation_for(self, address: Address) -> ValuationResult:
        cached = await self.cache.find_by_address(*address.as_tuple())
        if cached and cached["estimated_value"]:
            logger.info(f"[Enrichment]   Cache hit: {cached['estimated_value']:,}")
            return ValuationResult(cached["estimated_value"], cached["source_url"])

        logger.info(f"[Enrichment]   Looking up: {address}")
        self._live_lookup = True
        result = await self.breaker.execute(lambda: self.source.lookup(address))

        await self.cache.insert(
            *address.as_tuple(),
            estimated_value=result.estimated_value,
            source_url=result.source_url,
            error=result.error,
        )
        return result

    async def after_item(self, item: Opportunity, outcome: ItemOutcome):
        if not self._live_lookup:
            return
        min_sec, max_sec = self.delay_range
        await self.behavior.delay(min_sec, max_sec)


def _as_config(config: Union[EnrichmentConfig, Dict[str, Any]]) -> EnrichmentConfig:
    if isinstance(config, EnrichmentConfig):
        return config
    if isinstance(config, dict):
        return EnrichmentConfig(**config)
    raise TypeError(f"Expected EnrichmentConfig, got {type(config).__name__}")


def register_valuation_enrichment(
    runner: BatchJobRunner,
    crm: CrmClient,
    source: ValuationSource,
    cache: Optional[ValuationCacheRepo] = None,
    behavior: Optional[HumanBehavior] = None,
    delay_range: Optional[Tuple[float, float]] = None,
):
    """Register the enrichment job kind on a runner."""
    cache = cache or ValuationCacheRepo()

    def factory(config: Union[EnrichmentConfig, Dict[str, Any]]) -> ValuationEnrichmentJob:
        return ValuationEnrichmentJob(
            _as_config(config), crm, source, cache,
            behavior=behavior, delay_range=delay_range,
        )

    runner.register(VALUATION_ENRICHMENT_KIND, factory)
