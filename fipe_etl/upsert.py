"""Entity store with idempotent upsert logic.

Every upsert is keyed by the entity's natural key; an existing row is
returned unchanged (prices excepted, see ``upsert_price``). Each call runs
in its own transaction.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

import psycopg2
from psycopg2.extensions import connection as PGConnection
from psycopg2.extras import RealDictCursor

from fipe_etl.models import Brand, Model, ModelYear, Price, ReferenceTable, StoreStats

LOGGER = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS reference_tables (
    id SERIAL PRIMARY KEY,
    code INTEGER NOT NULL UNIQUE,
    month SMALLINT NOT NULL,
    year SMALLINT NOT NULL,
    crawled_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS brands (
    id SERIAL PRIMARY KEY,
    fipe_code VARCHAR(20) NOT NULL UNIQUE,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS models (
    id SERIAL PRIMARY KEY,
    brand_id INTEGER NOT NULL REFERENCES brands(id),
    fipe_code VARCHAR(20) NOT NULL,
    name TEXT NOT NULL,
    segment VARCHAR(30),
    segment_source VARCHAR(20),
    CONSTRAINT uq_models_brand_code UNIQUE (brand_id, fipe_code)
);

CREATE TABLE IF NOT EXISTS model_years (
    id SERIAL PRIMARY KEY,
    model_id INTEGER NOT NULL REFERENCES models(id),
    year INTEGER NOT NULL,
    fuel_code SMALLINT NOT NULL,
    fuel_name TEXT,
    CONSTRAINT uq_model_years_key UNIQUE (model_id, year, fuel_code)
);

CREATE TABLE IF NOT EXISTS prices (
    id SERIAL PRIMARY KEY,
    model_year_id INTEGER NOT NULL REFERENCES model_years(id),
    reference_table_id INTEGER NOT NULL REFERENCES reference_tables(id),
    fipe_code VARCHAR(20) NOT NULL,
    price_brl NUMERIC(14, 2) NOT NULL,
    crawled_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT uq_prices_key UNIQUE (model_year_id, reference_table_id)
);

CREATE INDEX IF NOT EXISTS idx_prices_reference ON prices(reference_table_id);
"""


class EntityStore(Protocol):
    """Persistence operations consumed by the crawler."""

    def has_cached_data(self) -> bool:
        """Return True when at least one brand has been stored."""
        ...

    def upsert_reference_table(self, code: int, month: int, year: int) -> ReferenceTable:
        ...

    def mark_reference_crawled(self, code: int) -> None:
        ...

    def get_crawled_references(self) -> List[int]:
        ...

    def upsert_brand(self, fipe_code: str, name: str) -> Brand:
        ...

    def get_all_brands(self) -> List[Brand]:
        ...

    def upsert_model(self, brand_id: int, fipe_code: str, name: str) -> Tuple[Model, bool]:
        """Return ``(model, created)``; ``created`` is False for an existing row."""
        ...

    def update_model_segment(self, model_id: int, segment: str, source: str) -> None:
        ...

    def get_models_by_brand(self, brand_id: int) -> List[Model]:
        ...

    def get_unclassified_models(self, limit: Optional[int] = None) -> List[Tuple[Brand, Model]]:
        ...

    def upsert_model_year(
        self, model_id: int, year: int, fuel_code: int, fuel_name: Optional[str]
    ) -> ModelYear:
        ...

    def get_model_years_by_model(self, model_id: int) -> List[ModelYear]:
        ...

    def price_exists(self, model_year_id: int, reference_table_id: int) -> bool:
        ...

    def upsert_price(
        self, model_year_id: int, reference_table_id: int, fipe_code: str, price_brl: str
    ) -> Price:
        """Insert a price, or update value and timestamp when the value changed."""
        ...

    def get_stats(self) -> StoreStats:
        ...


def get_db_connection(dsn: str) -> PGConnection:
    """Return a psycopg2 connection for ``dsn``."""
    if dsn.startswith("postgres://"):
        dsn = dsn.replace("postgres://", "postgresql://", 1)
    return psycopg2.connect(dsn)


def _price_row(row: Dict[str, Any]) -> Dict[str, Any]:
    # NUMERIC(14, 2) comes back as Decimal and keeps its scale
    return {**row, "price_brl": str(row["price_brl"])}


class PostgresStore:
    """EntityStore backed by PostgreSQL."""

    def __init__(self, conn: PGConnection) -> None:
        self.conn = conn

    def _fetchone(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[Dict[str, Any]]:
        with self.conn:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
        return dict(row) if row is not None else None

    def _fetchall(self, sql: str, params: Tuple[Any, ...] = ()) -> List[Dict[str, Any]]:
        with self.conn:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [dict(row) for row in rows]

    def _execute(self, sql: str, params: Tuple[Any, ...] = ()) -> int:
        with self.conn:
            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.rowcount

    def ensure_schema(self) -> None:
        """Create tables if they do not exist."""
        self._execute(SCHEMA_SQL)
        LOGGER.info("Ensured FIPE tables exist")

    # Reference tables

    def upsert_reference_table(self, code: int, month: int, year: int) -> ReferenceTable:
        row = self._fetchone(
            """
            INSERT INTO reference_tables (code, month, year)
            VALUES (%s, %s, %s)
            ON CONFLICT (code) DO NOTHING
            RETURNING *;
            """,
            (code, month, year),
        )
        if row is None:
            row = self._fetchone("SELECT * FROM reference_tables WHERE code = %s", (code,))
        return ReferenceTable(**row)

    def mark_reference_crawled(self, code: int) -> None:
        self._execute("UPDATE reference_tables SET crawled_at = NOW() WHERE code = %s", (code,))

    def get_crawled_references(self) -> List[int]:
        rows = self._fetchall(
            "SELECT code FROM reference_tables WHERE crawled_at IS NOT NULL ORDER BY code"
        )
        return [row["code"] for row in rows]

    # Brands

    def has_cached_data(self) -> bool:
        row = self._fetchone("SELECT EXISTS (SELECT 1 FROM brands) AS present")
        return bool(row and row["present"])

    def upsert_brand(self, fipe_code: str, name: str) -> Brand:
        row = self._fetchone(
            """
            INSERT INTO brands (fipe_code, name)
            VALUES (%s, %s)
            ON CONFLICT (fipe_code) DO NOTHING
            RETURNING *;
            """,
            (fipe_code, name),
        )
        if row is None:
            row = self._fetchone("SELECT * FROM brands WHERE fipe_code = %s", (fipe_code,))
        return Brand(**row)

    def get_all_brands(self) -> List[Brand]:
        return [Brand(**row) for row in self._fetchall("SELECT * FROM brands ORDER BY id")]

    # Models

    def upsert_model(self, brand_id: int, fipe_code: str, name: str) -> Tuple[Model, bool]:
        row = self._fetchone(
            """
            INSERT INTO models (brand_id, fipe_code, name)
            VALUES (%s, %s, %s)
            ON CONFLICT (brand_id, fipe_code) DO NOTHING
            RETURNING *;
            """,
            (brand_id, fipe_code, name),
        )
        if row is not None:
            return Model(**row), True
        row = self._fetchone(
            "SELECT * FROM models WHERE brand_id = %s AND fipe_code = %s",
            (brand_id, fipe_code),
        )
        return Model(**row), False

    def update_model_segment(self, model_id: int, segment: str, source: str) -> None:
        self._execute(
            "UPDATE models SET segment = %s, segment_source = %s WHERE id = %s",
            (segment, source, model_id),
        )

    def get_models_by_brand(self, brand_id: int) -> List[Model]:
        rows = self._fetchall("SELECT * FROM models WHERE brand_id = %s ORDER BY id", (brand_id,))
        return [Model(**row) for row in rows]

    def get_unclassified_models(self, limit: Optional[int] = None) -> List[Tuple[Brand, Model]]:
        rows = self._fetchall(
            """
            SELECT m.*, b.fipe_code AS brand_fipe_code, b.name AS brand_name
            FROM models m
            JOIN brands b ON b.id = m.brand_id
            WHERE m.segment IS NULL
            ORDER BY m.id
            LIMIT %s;
            """,
            (limit,),
        )
        result = []
        for row in rows:
            brand = Brand(
                id=row["brand_id"],
                fipe_code=row.pop("brand_fipe_code"),
                name=row.pop("brand_name"),
            )
            result.append((brand, Model(**row)))
        return result

    # Model years

    def upsert_model_year(
        self, model_id: int, year: int, fuel_code: int, fuel_name: Optional[str]
    ) -> ModelYear:
        row = self._fetchone(
            """
            INSERT INTO model_years (model_id, year, fuel_code, fuel_name)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (model_id, year, fuel_code) DO NOTHING
            RETURNING *;
            """,
            (model_id, year, fuel_code, fuel_name),
        )
        if row is None:
            row = self._fetchone(
                "SELECT * FROM model_years WHERE model_id = %s AND year = %s AND fuel_code = %s",
                (model_id, year, fuel_code),
            )
        return ModelYear(**row)

    def get_model_years_by_model(self, model_id: int) -> List[ModelYear]:
        rows = self._fetchall(
            "SELECT * FROM model_years WHERE model_id = %s ORDER BY year DESC, fuel_code",
            (model_id,),
        )
        return [ModelYear(**row) for row in rows]

    # Prices

    def price_exists(self, model_year_id: int, reference_table_id: int) -> bool:
        row = self._fetchone(
            """
            SELECT EXISTS (
                SELECT 1 FROM prices WHERE model_year_id = %s AND reference_table_id = %s
            ) AS present;
            """,
            (model_year_id, reference_table_id),
        )
        return bool(row and row["present"])

    def upsert_price(
        self, model_year_id: int, reference_table_id: int, fipe_code: str, price_brl: str
    ) -> Price:
        row = self._fetchone(
            """
            INSERT INTO prices (model_year_id, reference_table_id, fipe_code, price_brl, crawled_at)
            VALUES (%s, %s, %s, %s, NOW())
            ON CONFLICT (model_year_id, reference_table_id) DO UPDATE
            SET
                price_brl = EXCLUDED.price_brl,
                crawled_at = NOW()
            WHERE prices.price_brl IS DISTINCT FROM EXCLUDED.price_brl
            RETURNING *;
            """,
            (model_year_id, reference_table_id, fipe_code, price_brl),
        )
        if row is None:
            row = self._fetchone(
                "SELECT * FROM prices WHERE model_year_id = %s AND reference_table_id = %s",
                (model_year_id, reference_table_id),
            )
        return Price(**_price_row(row))

    # Stats

    def get_stats(self) -> StoreStats:
        row = self._fetchone(
            """
            SELECT
                (SELECT COUNT(*) FROM reference_tables) AS "references",
                (SELECT COUNT(*) FROM reference_tables WHERE crawled_at IS NOT NULL) AS crawled_references,
                (SELECT COUNT(*) FROM brands) AS brands,
                (SELECT COUNT(*) FROM models) AS models,
                (SELECT COUNT(*) FROM model_years) AS model_years,
                (SELECT COUNT(*) FROM prices) AS prices;
            """
        )
        return StoreStats(**row)
