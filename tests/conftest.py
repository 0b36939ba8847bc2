from typing import Dict, List, Optional, Set, Tuple

import pytest

from fipe_etl.errors import FipeAPIError
from fipe_etl.memory import InMemoryStore
from fipe_etl.models import FipeBrand, FipeModel, FipePrice, FipeReference, FipeYear, PriceQuery


class FakeFipeClient:
    """Spy standing in for FipeClient; every call is recorded in ``calls``."""

    def __init__(self) -> None:
        self.references: List[FipeReference] = [
            FipeReference(code=321, label="fevereiro/2025 "),
            FipeReference(code=320, label="janeiro/2025 "),
            FipeReference(code=319, label="dezembro/2024 "),
        ]
        self.brands: List[FipeBrand] = [
            FipeBrand(label="VW - VolksWagen", value="59"),
            FipeBrand(label="Fiat", value="21"),
        ]
        self.models: Dict[str, List[FipeModel]] = {
            "59": [FipeModel(label="Gol 1.0", value=5940), FipeModel(label="Polo 1.0 TSI", value=5941)],
            "21": [FipeModel(label="Uno Mille", value=2101)],
        }
        self.years: Dict[Tuple[str, str], List[FipeYear]] = {
            ("59", "5940"): [FipeYear(label="2020 Gasolina", value="2020-1"), FipeYear(label="2019 Gasolina", value="2019-1")],
            ("59", "5941"): [FipeYear(label="2024 Flex", value="2024-1"), FipeYear(label="Zero KM", value="32000-1")],
            ("21", "2101"): [FipeYear(label="2010 Flex", value="2010-1")],
        }
        self.price_values: Dict[Tuple[str, str, int, int], str] = {}
        self.failures: Set[tuple] = set()
        self.calls: List[tuple] = []

    def _check(self, key: tuple) -> None:
        if key in self.failures:
            raise FipeAPIError(f"simulated failure {key}")

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def get_reference_tables(self) -> List[FipeReference]:
        self.calls.append(("get_reference_tables",))
        return list(self.references)

    def get_brands(self, reference_code: int) -> List[FipeBrand]:
        self.calls.append(("get_brands", reference_code))
        self._check(("brands", reference_code))
        return list(self.brands)

    def get_models(self, reference_code: int, brand_code: str) -> List[FipeModel]:
        self.calls.append(("get_models", reference_code, brand_code))
        self._check(("models", brand_code))
        return list(self.models.get(brand_code, []))

    def get_years(self, reference_code: int, brand_code: str, model_code: str) -> List[FipeYear]:
        self.calls.append(("get_years", reference_code, brand_code, model_code))
        self._check(("years", brand_code, model_code))
        return list(self.years.get((brand_code, model_code), []))

    def get_price(self, query: PriceQuery) -> FipePrice:
        key = (query.brand_code, query.model_code, query.year, query.fuel_code)
        self.calls.append(("get_price",) + key + (query.reference_code,))
        self._check(("price",) + key)
        value = self.price_values.get(key, f"R$ {query.year % 100}.500,00")
        return FipePrice(value=value, fipe_code=f"005{query.model_code}-1")

    def close(self) -> None:
        pass


class FakeClassifier:
    def __init__(self, answers: Optional[Dict[str, str]] = None) -> None:
        self.answers = answers or {}
        self.calls: List[Tuple[str, str]] = []

    def classify(self, brand_name: str, model_name: str) -> Optional[str]:
        self.calls.append((brand_name, model_name))
        return self.answers.get(model_name)


@pytest.fixture
def fake_client() -> FakeFipeClient:
    return FakeFipeClient()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
