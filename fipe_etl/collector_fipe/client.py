"""HTTP client for the public FIPE pricing API.

All endpoints are form-encoded POSTs under ``/api/veiculos``. Requests are
paced by ``RATE_LIMIT_MS`` and transient failures (transport errors, 429,
5xx) are retried with exponential backoff. Anything that still fails is
raised as ``FipeAPIError``.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from fipe_etl.config import CrawlerConfig
from fipe_etl.errors import FipeAPIError
from fipe_etl.models import FipeBrand, FipeModel, FipePrice, FipeReference, FipeYear, PriceQuery

LOGGER = logging.getLogger(__name__)

CAR_VEHICLE_TYPE = 1
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

P = TypeVar("P", bound=BaseModel)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class FipeClient:
    """Read-only access to the FIPE catalog hierarchy (cars only)."""

    def __init__(
        self,
        config: CrawlerConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._http = httpx.Client(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.request_timeout),
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
                "Referer": "https://veiculos.fipe.org.br/",
            },
            transport=transport,
        )

    def __enter__(self) -> FipeClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _throttle(self) -> None:
        interval = self.config.rate_limit_ms / 1000.0
        if self._last_request is not None and interval > 0:
            elapsed = time.monotonic() - self._last_request
            if elapsed < interval:
                self._sleep(interval - elapsed)
        self._last_request = time.monotonic()

    def _send(self, endpoint: str, data: Dict[str, Any]) -> Any:
        self._throttle()
        response = self._http.post(f"/{endpoint}", data=data)
        response.raise_for_status()
        LOGGER.debug("POST %s %s (status=%s)", endpoint, data, response.status_code)
        return response.json()

    def _post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=self.config.retry_backoff, max=30),
            retry=retry_if_exception(_is_transient),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            payload = retrying(self._send, endpoint, data or {})
        except httpx.HTTPStatusError as exc:
            raise FipeAPIError(
                f"{endpoint} returned HTTP {exc.response.status_code}",
                endpoint=endpoint,
                status_code=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise FipeAPIError(f"{endpoint} failed: {exc}", endpoint=endpoint) from exc

        # FIPE reports lookup errors with HTTP 200 and {"codigo": "0", "erro": "..."}
        if isinstance(payload, dict) and "erro" in payload:
            raise FipeAPIError(
                f"{endpoint} error {payload.get('codigo')}: {payload['erro']}", endpoint=endpoint
            )
        return payload

    @staticmethod
    def _parse(endpoint: str, model: Type[P], payload: Any) -> P:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise FipeAPIError(f"{endpoint} returned an unexpected payload: {exc}", endpoint=endpoint) from exc

    def _parse_list(self, endpoint: str, model: Type[P], payload: Any) -> List[P]:
        if not isinstance(payload, list):
            raise FipeAPIError(f"{endpoint} returned {type(payload).__name__}, expected list", endpoint=endpoint)
        return [self._parse(endpoint, model, item) for item in payload]

    def get_reference_tables(self) -> List[FipeReference]:
        endpoint = "ConsultarTabelaDeReferencia"
        return self._parse_list(endpoint, FipeReference, self._post(endpoint))

    def get_brands(self, reference_code: int) -> List[FipeBrand]:
        endpoint = "ConsultarMarcas"
        payload = self._post(
            endpoint,
            {
                "codigoTabelaReferencia": reference_code,
                "codigoTipoVeiculo": CAR_VEHICLE_TYPE,
            },
        )
        return self._parse_list(endpoint, FipeBrand, payload)

    def get_models(self, reference_code: int, brand_code: str) -> List[FipeModel]:
        endpoint = "ConsultarModelos"
        payload = self._post(
            endpoint,
            {
                "codigoTabelaReferencia": reference_code,
                "codigoTipoVeiculo": CAR_VEHICLE_TYPE,
                "codigoMarca": brand_code,
            },
        )
        if not isinstance(payload, dict):
            raise FipeAPIError(f"{endpoint} returned {type(payload).__name__}, expected object", endpoint=endpoint)
        return self._parse_list(endpoint, FipeModel, payload.get("Modelos"))

    def get_years(self, reference_code: int, brand_code: str, model_code: str) -> List[FipeYear]:
        endpoint = "ConsultarAnoModelo"
        payload = self._post(
            endpoint,
            {
                "codigoTabelaReferencia": reference_code,
                "codigoTipoVeiculo": CAR_VEHICLE_TYPE,
                "codigoMarca": brand_code,
                "codigoModelo": model_code,
            },
        )
        return self._parse_list(endpoint, FipeYear, payload)

    def get_price(self, query: PriceQuery) -> FipePrice:
        endpoint = "ConsultarValorComTodosParametros"
        payload = self._post(
            endpoint,
            {
                "codigoTabelaReferencia": query.reference_code,
                "codigoTipoVeiculo": CAR_VEHICLE_TYPE,
                "codigoMarca": query.brand_code,
                "codigoModelo": query.model_code,
                "anoModelo": query.year,
                "codigoTipoCombustivel": query.fuel_code,
                "tipoVeiculo": "carro",
                "modeloCodigoExterno": "",
                "tipoConsulta": "tradicional",
            },
        )
        return self._parse(endpoint, FipePrice, payload)
