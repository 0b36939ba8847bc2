"""Incremental crawler for the FIPE vehicle pricing catalog.

Reference periods, brands, models, model-years and prices are pulled from
the public FIPE API (or replayed from previously stored rows) and upserted
into PostgreSQL.
"""

__version__ = "0.1.0"
