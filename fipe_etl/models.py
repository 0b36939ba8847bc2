"""Pydantic models shared across the crawler.

Two families live here: payloads returned by the FIPE API (field names are
the API's Portuguese keys, exposed through aliases) and rows persisted by
the entity store.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FipePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class FipeReference(FipePayload):
    code: int = Field(alias="Codigo")
    label: str = Field(alias="Mes")


class FipeBrand(FipePayload):
    label: str = Field(alias="Label")
    value: str = Field(alias="Value")


class FipeModel(FipePayload):
    label: str = Field(alias="Label")
    value: int = Field(alias="Value")


class FipeYear(FipePayload):
    label: str = Field(alias="Label")
    value: str = Field(alias="Value")  # "2020-1" (year-fuelCode)


class FipePrice(FipePayload):
    value: str = Field(alias="Valor")  # "R$ 4.147,00"
    brand: str = Field("", alias="Marca")
    model: str = Field("", alias="Modelo")
    model_year: int = Field(0, alias="AnoModelo")
    fuel: str = Field("", alias="Combustivel")
    fipe_code: str = Field(alias="CodigoFipe")
    reference_month: str = Field("", alias="MesReferencia")
    authentication: str = Field("", alias="Autenticacao")
    vehicle_type: int = Field(1, alias="TipoVeiculo")
    fuel_acronym: str = Field("", alias="SiglaCombustivel")
    queried_at: str = Field("", alias="DataConsulta")


class PriceQuery(BaseModel):
    reference_code: int
    brand_code: str
    model_code: str
    year: int
    fuel_code: int


class ReferenceTable(BaseModel):
    id: int
    code: int
    month: int
    year: int
    crawled_at: Optional[datetime] = None


class Brand(BaseModel):
    id: int
    fipe_code: str
    name: str


class Model(BaseModel):
    id: int
    brand_id: int
    fipe_code: str
    name: str
    segment: Optional[str] = None
    segment_source: Optional[str] = None


class ModelYear(BaseModel):
    id: int
    model_id: int
    year: int
    fuel_code: int
    fuel_name: Optional[str] = None


class Price(BaseModel):
    id: int
    model_year_id: int
    reference_table_id: int
    fipe_code: str
    price_brl: str
    crawled_at: datetime


class StoreStats(BaseModel):
    references: int = 0
    crawled_references: int = 0
    brands: int = 0
    models: int = 0
    model_years: int = 0
    prices: int = 0
