"""Dictionary-backed EntityStore for tests and dry runs."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from fipe_etl.models import Brand, Model, ModelYear, Price, ReferenceTable, StoreStats


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """EntityStore keeping rows in dictionaries keyed by natural key."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self.references: Dict[int, ReferenceTable] = {}
        self.brands: Dict[str, Brand] = {}
        self.models: Dict[Tuple[int, str], Model] = {}
        self.model_years: Dict[Tuple[int, int, int], ModelYear] = {}
        self.prices: Dict[Tuple[int, int], Price] = {}
        self._next_id: Dict[str, int] = {}

    def _new_id(self, table: str) -> int:
        self._next_id[table] = self._next_id.get(table, 0) + 1
        return self._next_id[table]

    def has_cached_data(self) -> bool:
        return bool(self.brands)

    def upsert_reference_table(self, code: int, month: int, year: int) -> ReferenceTable:
        if code not in self.references:
            self.references[code] = ReferenceTable(
                id=self._new_id("reference_tables"), code=code, month=month, year=year
            )
        return self.references[code]

    def mark_reference_crawled(self, code: int) -> None:
        reference = self.references.get(code)
        if reference is not None:
            self.references[code] = reference.model_copy(update={"crawled_at": self._clock()})

    def get_crawled_references(self) -> List[int]:
        return sorted(code for code, ref in self.references.items() if ref.crawled_at is not None)

    def upsert_brand(self, fipe_code: str, name: str) -> Brand:
        if fipe_code not in self.brands:
            self.brands[fipe_code] = Brand(id=self._new_id("brands"), fipe_code=fipe_code, name=name)
        return self.brands[fipe_code]

    def get_all_brands(self) -> List[Brand]:
        return sorted(self.brands.values(), key=lambda brand: brand.id)

    def upsert_model(self, brand_id: int, fipe_code: str, name: str) -> Tuple[Model, bool]:
        key = (brand_id, fipe_code)
        if key in self.models:
            return self.models[key], False
        model = Model(id=self._new_id("models"), brand_id=brand_id, fipe_code=fipe_code, name=name)
        self.models[key] = model
        return model, True

    def update_model_segment(self, model_id: int, segment: str, source: str) -> None:
        for key, model in self.models.items():
            if model.id == model_id:
                self.models[key] = model.model_copy(
                    update={"segment": segment, "segment_source": source}
                )
                return

    def get_models_by_brand(self, brand_id: int) -> List[Model]:
        models = [model for model in self.models.values() if model.brand_id == brand_id]
        return sorted(models, key=lambda model: model.id)

    def get_unclassified_models(self, limit: Optional[int] = None) -> List[Tuple[Brand, Model]]:
        brands_by_id = {brand.id: brand for brand in self.brands.values()}
        pending = [
            (brands_by_id[model.brand_id], model)
            for model in sorted(self.models.values(), key=lambda model: model.id)
            if model.segment is None
        ]
        return pending if limit is None else pending[:limit]

    def upsert_model_year(
        self, model_id: int, year: int, fuel_code: int, fuel_name: Optional[str]
    ) -> ModelYear:
        key = (model_id, year, fuel_code)
        if key not in self.model_years:
            self.model_years[key] = ModelYear(
                id=self._new_id("model_years"),
                model_id=model_id,
                year=year,
                fuel_code=fuel_code,
                fuel_name=fuel_name,
            )
        return self.model_years[key]

    def get_model_years_by_model(self, model_id: int) -> List[ModelYear]:
        years = [my for my in self.model_years.values() if my.model_id == model_id]
        return sorted(years, key=lambda my: (-my.year, my.fuel_code))

    def price_exists(self, model_year_id: int, reference_table_id: int) -> bool:
        return (model_year_id, reference_table_id) in self.prices

    def upsert_price(
        self, model_year_id: int, reference_table_id: int, fipe_code: str, price_brl: str
    ) -> Price:
        key = (model_year_id, reference_table_id)
        existing = self.prices.get(key)
        if existing is None:
            self.prices[key] = Price(
                id=self._new_id("prices"),
                model_year_id=model_year_id,
                reference_table_id=reference_table_id,
                fipe_code=fipe_code,
                price_brl=price_brl,
                crawled_at=self._clock(),
            )
        elif existing.price_brl != price_brl:
            self.prices[key] = existing.model_copy(
                update={"price_brl": price_brl, "crawled_at": self._clock()}
            )
        return self.prices[key]

    def get_stats(self) -> StoreStats:
        return StoreStats(
            references=len(self.references),
            crawled_references=len(self.get_crawled_references()),
            brands=len(self.brands),
            models=len(self.models),
            model_years=len(self.model_years),
            prices=len(self.prices),
        )
