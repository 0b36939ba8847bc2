"""Incremental crawl of the FIPE catalog.

Traversal is strictly sequential: reference period -> brand -> model ->
model-year -> price. Brands, models and model-years come from a
``CatalogSource`` picked once per run (remote in sync mode, stored rows in
replay mode); reference periods and prices always come from the API.

Remote failures and undecodable payloads skip the smallest enclosing unit
(period's brand list, brand, model, single price). Store errors are not
caught and abort the run.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

from fipe_etl.classifier import Classifier
from fipe_etl.collector_fipe.client import FipeClient
from fipe_etl.collector_fipe.sources import CachedSource, CatalogSource, RemoteSource
from fipe_etl.errors import FipeAPIError, ParseError
from fipe_etl.models import Brand, FipeReference, Model, ModelYear, PriceQuery, ReferenceTable, StoreStats
from fipe_etl.parsers import decode_reference_label, normalize_price
from fipe_etl.upsert import EntityStore

LOGGER = logging.getLogger(__name__)

SEGMENT_SOURCE_AI = "ai"

ProgressSink = Callable[[str], None]


@dataclass
class CrawlOptions:
    """Filters and switches for a single crawl run."""

    reference_code: Optional[int] = None
    years: Optional[Sequence[int]] = None  # defaults to the current year
    months: Optional[Sequence[int]] = None
    brand_code: Optional[str] = None
    model_codes: Optional[Sequence[str]] = None
    classify: bool = False
    force: bool = False  # re-fetch prices that are already stored
    sync: bool = False
    on_progress: Optional[ProgressSink] = None
    show_progress: bool = False


@dataclass
class CrawlSummary:
    """Observational totals of a crawl run."""

    synced: bool = False
    references: int = 0
    prices: int = 0
    cached_prices: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FetchResult:
    """Outcome of one recoverable fetch step."""

    success: bool
    value: Any = None
    error: Optional[Exception] = None


@dataclass
class _Run:
    options: CrawlOptions
    log: ProgressSink
    summary: CrawlSummary = field(default_factory=CrawlSummary)


class Crawler:
    """Drive a FIPE crawl against an entity store."""

    def __init__(
        self,
        client: FipeClient,
        store: EntityStore,
        classifier: Optional[Classifier] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.client = client
        self.store = store
        self.classifier = classifier
        self._clock = clock
        self._today = today

    @staticmethod
    def _attempt(func: Callable[..., Any], *args: Any) -> FetchResult:
        try:
            return FetchResult(success=True, value=func(*args))
        except (FipeAPIError, ParseError) as exc:
            return FetchResult(success=False, error=exc)

    def crawl(self, options: Optional[CrawlOptions] = None) -> CrawlSummary:
        """Crawl the selected reference periods and return run totals."""
        options = options or CrawlOptions()
        run = _Run(options=options, log=options.on_progress or LOGGER.info)
        log = run.log
        started = self._clock()

        run.summary.synced = self._resolve_sync(run)

        log("Fetching reference tables...")
        selected = self._select_references(self.client.get_reference_tables(), run)
        if not selected:
            log("No reference tables found to process")
            return run.summary

        log(f"Found {len(selected)} reference tables to process")
        if not run.summary.synced:
            log("Using cached data (use --sync to refresh from API)")

        source = self._build_source(run)
        for remote, (month, year) in selected:
            reference = self.store.upsert_reference_table(remote.code, month, year)
            log(f"\nProcessing reference {remote.code} ({remote.label.strip()})...")
            if self._crawl_reference(source, reference, run):
                self.store.mark_reference_crawled(reference.code)
                run.summary.references += 1
                log(f"  Completed reference {reference.code}")

        run.summary.duration_seconds = self._clock() - started
        log(f"\nCrawl complete: {run.summary.prices} prices in {round(run.summary.duration_seconds)}s")
        return run.summary

    def _resolve_sync(self, run: _Run) -> bool:
        if run.options.sync:
            return True
        if not self.store.has_cached_data():
            run.log("No cached data found, syncing from FIPE API...")
            return True
        return False

    def _select_references(
        self, references: List[FipeReference], run: _Run
    ) -> List[Tuple[FipeReference, Tuple[int, int]]]:
        options = run.options
        years = list(options.years) if options.years else [self._today().year]
        selected = []
        for remote in references:
            if options.reference_code is not None and remote.code != options.reference_code:
                continue
            try:
                month, year = decode_reference_label(remote.label)
            except ParseError as exc:
                LOGGER.warning("Skipping reference %s: %s", remote.code, exc)
                continue
            if options.reference_code is None:
                if year not in years:
                    continue
                if options.months and month not in options.months:
                    continue
            selected.append((remote, (month, year)))
        return selected

    def _build_source(self, run: _Run) -> CatalogSource:
        if not run.summary.synced:
            return CachedSource(self.store)
        if not run.options.classify:
            return RemoteSource(self.client, self.store)
        if self.classifier is None:
            LOGGER.warning("Classification requested but no classifier is configured")
            return RemoteSource(self.client, self.store)

        def classify_new(brand: Brand, model: Model) -> None:
            self._classify(brand, model, run.log)

        return RemoteSource(self.client, self.store, on_new_model=classify_new)

    def _classify(self, brand: Brand, model: Model, log: ProgressSink) -> Optional[str]:
        segment = self.classifier.classify(brand.name, model.name)
        if segment:
            self.store.update_model_segment(model.id, segment, SEGMENT_SOURCE_AI)
            log(f"    Classified {model.name} as {segment}")
        return segment

    def _crawl_reference(self, source: CatalogSource, reference: ReferenceTable, run: _Run) -> bool:
        result = self._attempt(source.list_brands, reference, run.options.brand_code)
        if not result.success:
            run.log(f"  Error fetching brands for reference {reference.code}: {result.error}")
            run.summary.skipped += 1
            return False

        brands: List[Brand] = result.value
        run.log(f"  Found {len(brands)} brands")
        for brand in brands:
            self._crawl_brand(source, reference, brand, run)
        return True

    def _crawl_brand(self, source: CatalogSource, reference: ReferenceTable, brand: Brand, run: _Run) -> None:
        started = self._clock()
        written_before = run.summary.prices

        result = self._attempt(source.list_models, reference, brand, run.options.model_codes)
        if not result.success:
            run.log(f"    Error fetching models for {brand.name}: {result.error}")
            run.summary.skipped += 1
            return

        models: List[Model] = result.value
        run.log(f"  Processing brand: {brand.name} ({len(models)} models)")

        bar = tqdm(
            models,
            desc=f"    {brand.name[:20]}",
            unit="model",
            ncols=100,
            leave=False,
            disable=not run.options.show_progress,
        )
        for model in bar:
            if run.options.show_progress:
                bar.set_postfix_str(model.name[:30])
            self._crawl_model(source, reference, brand, model, run)
        bar.close()

        duration = round(self._clock() - started)
        run.log(f"  Completed {brand.name} in {duration}s ({run.summary.prices - written_before} prices)")

    def _crawl_model(
        self,
        source: CatalogSource,
        reference: ReferenceTable,
        brand: Brand,
        model: Model,
        run: _Run,
    ) -> None:
        result = self._attempt(source.list_years, reference, brand, model)
        if not result.success:
            run.log(f"    Error fetching years for {brand.name} {model.name}: {result.error}")
            run.summary.skipped += 1
            return

        model_years: List[ModelYear] = result.value
        for model_year in model_years:
            if not run.options.force and self.store.price_exists(model_year.id, reference.id):
                run.summary.cached_prices += 1
                continue
            self._crawl_price(reference, brand, model, model_year, run)

    def _crawl_price(
        self,
        reference: ReferenceTable,
        brand: Brand,
        model: Model,
        model_year: ModelYear,
        run: _Run,
    ) -> None:
        query = PriceQuery(
            reference_code=reference.code,
            brand_code=brand.fipe_code,
            model_code=model.fipe_code,
            year=model_year.year,
            fuel_code=model_year.fuel_code,
        )
        result = self._attempt(self._fetch_price, query)
        if not result.success:
            LOGGER.debug("Price fetch failed for %s: %s", query, result.error)
            run.log(
                f"    Skipping price for {brand.name} {model.name} "
                f"{model_year.year}-{model_year.fuel_code}: {result.error}"
            )
            run.summary.skipped += 1
            return

        fipe_code, price_brl = result.value
        self.store.upsert_price(model_year.id, reference.id, fipe_code, price_brl)
        run.summary.prices += 1

    def _fetch_price(self, query: PriceQuery) -> Tuple[str, str]:
        price = self.client.get_price(query)
        return price.fipe_code, normalize_price(price.value)

    def status(self) -> StoreStats:
        """Return aggregate counts from the store."""
        return self.store.get_stats()

    def backfill_segments(self, limit: Optional[int] = None, on_progress: Optional[ProgressSink] = None) -> int:
        """Classify stored models that have no segment yet.

        Returns the number of models that received a segment.
        """
        log = on_progress or LOGGER.info
        if self.classifier is None:
            log("No classifier configured, nothing to do")
            return 0
        pending = self.store.get_unclassified_models(limit)
        log(f"Classifying {len(pending)} models without segment")
        classified = 0
        for brand, model in pending:
            if self._classify(brand, model, log):
                classified += 1
        log(f"Classified {classified}/{len(pending)} models")
        return classified
