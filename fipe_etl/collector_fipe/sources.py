"""Catalog sources for the brand/model/model-year levels of a crawl.

``RemoteSource`` queries the FIPE API and upserts what it sees;
``CachedSource`` replays rows stored by earlier runs. Both apply the same
brand and model filters so the two modes walk the same universe.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, TypeVar

from pydantic import BaseModel

from fipe_etl.collector_fipe.client import FipeClient
from fipe_etl.models import Brand, Model, ModelYear, ReferenceTable
from fipe_etl.parsers import decode_year_code
from fipe_etl.upsert import EntityStore

LOGGER = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)

NewModelHook = Callable[[Brand, Model], None]


def wanted(code: str, allowed: Optional[Iterable[str]]) -> bool:
    """Return True when ``code`` passes an optional allowlist."""
    return allowed is None or code in allowed


def _unique(records: Iterable[R]) -> List[R]:
    # The API occasionally repeats an entry; upsert collapses it to one row
    seen = set()
    result = []
    for record in records:
        if record.id not in seen:
            seen.add(record.id)
            result.append(record)
    return result


class CatalogSource(Protocol):
    """Where the crawler reads brands, models and model-years from."""

    def list_brands(self, reference: ReferenceTable, brand_code: Optional[str] = None) -> List[Brand]:
        ...

    def list_models(
        self,
        reference: ReferenceTable,
        brand: Brand,
        model_codes: Optional[Sequence[str]] = None,
    ) -> List[Model]:
        ...

    def list_years(self, reference: ReferenceTable, brand: Brand, model: Model) -> List[ModelYear]:
        ...


class RemoteSource:
    """Fetch each level from the FIPE API and upsert it into the store."""

    def __init__(
        self,
        client: FipeClient,
        store: EntityStore,
        on_new_model: Optional[NewModelHook] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.on_new_model = on_new_model

    def list_brands(self, reference: ReferenceTable, brand_code: Optional[str] = None) -> List[Brand]:
        brands = self.client.get_brands(reference.code)
        allowed = None if brand_code is None else {brand_code}
        return _unique(
            self.store.upsert_brand(brand.value, brand.label)
            for brand in brands
            if wanted(brand.value, allowed)
        )

    def list_models(
        self,
        reference: ReferenceTable,
        brand: Brand,
        model_codes: Optional[Sequence[str]] = None,
    ) -> List[Model]:
        remote_models = self.client.get_models(reference.code, brand.fipe_code)
        models = []
        for remote in remote_models:
            code = str(remote.value)
            if not wanted(code, model_codes):
                continue
            model, created = self.store.upsert_model(brand.id, code, remote.label)
            if created:
                LOGGER.debug("New model %s %s (%s)", brand.name, model.name, code)
                if self.on_new_model is not None:
                    self.on_new_model(brand, model)
            models.append(model)
        return _unique(models)

    def list_years(self, reference: ReferenceTable, brand: Brand, model: Model) -> List[ModelYear]:
        remote_years = self.client.get_years(reference.code, brand.fipe_code, model.fipe_code)
        # Decode everything first so a malformed code leaves no partial writes
        decoded = [(decode_year_code(year.value), year.label) for year in remote_years]
        return _unique(
            self.store.upsert_model_year(model.id, year, fuel_code, label)
            for (year, fuel_code), label in decoded
        )


class CachedSource:
    """Replay brands, models and model-years recorded by earlier runs."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def list_brands(self, reference: ReferenceTable, brand_code: Optional[str] = None) -> List[Brand]:
        allowed = None if brand_code is None else {brand_code}
        return [brand for brand in self.store.get_all_brands() if wanted(brand.fipe_code, allowed)]

    def list_models(
        self,
        reference: ReferenceTable,
        brand: Brand,
        model_codes: Optional[Sequence[str]] = None,
    ) -> List[Model]:
        return [
            model
            for model in self.store.get_models_by_brand(brand.id)
            if wanted(model.fipe_code, model_codes)
        ]

    def list_years(self, reference: ReferenceTable, brand: Brand, model: Model) -> List[ModelYear]:
        return self.store.get_model_years_by_model(model.id)
