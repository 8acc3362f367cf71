"""
Remote data cache for currency lists and pairwise rates.

Network-first with cache fallback:
1. Same-currency rates are synthesized without touching store or network.
2. A provider that needs a credential and has none is served from cache,
   or fails with CredentialRequiredError. The network is never tried.
3. Otherwise the network is tried; a parsed result is persisted
   (best-effort) and returned tagged ``network``.
4. Any fetch or parse failure falls back to the cached record, tagged
   ``cache``, or re-raises the original error when nothing is cached.

Staleness is not enforced here; callers flag old records themselves.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fxc.exceptions import (
    CredentialRequiredError,
    FetchError,
    InvalidCredentialError,
    MalformedResponseError,
    NetworkError,
    StoreWriteError,
)
from fxc.logging import get_logger, log_context
from fxc.providers.parsing import extract_api_date, extract_currencies, extract_rate
from fxc.providers.selector import ProviderSelector
from fxc.remote.selection import reconcile_selection
from fxc.storage.fallback import FallbackStore
from fxc.types import (
    Backend,
    CurrencyListRecord,
    CurrencyListResult,
    CurrencyPair,
    DataSource,
    RateRecord,
    RateResult,
    StoreDomain,
    rate_key,
    utc_now,
)

logger = get_logger(__name__)

_REQUEST_HEADERS = {
    "Accept": "application/json",
    "Cache-Control": "no-store",
}


class RemoteDataCache:
    """Domain cache for currency lists and rates of the active provider."""

    def __init__(
        self,
        store: FallbackStore,
        selector: ProviderSelector,
        client: httpx.AsyncClient,
        retry_attempts: int = 2,
        default_from: str = "USD",
        default_to: str = "EUR",
    ) -> None:
        """Initialize remote data cache.

        Args:
            store: Key-value store for records.
            selector: Supplies the active provider and credential.
            client: HTTP client; its timeout bounds every fetch.
            retry_attempts: Attempts on transport errors before falling back.
            default_from: Designated default "from" code for reconciliation.
            default_to: Preferred default "to" code for reconciliation.
        """
        self.store = store
        self.selector = selector
        self.client = client
        self.retry_attempts = retry_attempts
        self.default_from = default_from
        self.default_to = default_to

    # ------------------------------------------------------------------ #
    # Rates
    # ------------------------------------------------------------------ #

    async def load_rate(self, from_code: str, to_code: str) -> RateResult:
        """Load the ``from -> to`` rate for the active provider.

        Raises:
            CredentialRequiredError: Credential missing and nothing cached.
            InvalidCredentialError: Provider rejected the credential, nothing cached.
            NetworkError: Fetch failed, nothing cached.
            RateNotFoundError: Response had no usable rate, nothing cached.
        """
        from_code = from_code.strip().upper()
        to_code = to_code.strip().upper()
        config = self.selector.current_config()

        if from_code == to_code:
            record = RateRecord(
                key=rate_key(config.id, from_code, to_code),
                fetched_at=utc_now(),
                rate=1.0,
                api_date=utc_now().date().isoformat(),
            )
            return RateResult(record=record, source=DataSource.SYNTHETIC)

        key = rate_key(config.id, from_code, to_code)

        with log_context(provider=config.id, component="remote-cache"):
            if self.selector.missing_credential:
                cached = await self._cached_rate(key)
                if cached is not None:
                    return cached
                raise CredentialRequiredError(
                    f"{config.name} requires an API key",
                    context={"provider": config.id},
                )

            try:
                params = {"from": from_code, "to": to_code, **config.rate_params}
                payload = await self._fetch_json(config.rates_endpoint, params)
                rate = extract_rate(payload, from_code, to_code, preferred=config.rate_shape)
                record = RateRecord(
                    key=key,
                    fetched_at=utc_now(),
                    rate=rate,
                    api_date=extract_api_date(payload),
                )
            except FetchError as e:
                logger.warning("Rate fetch failed", pair=f"{from_code}:{to_code}", error=str(e))
                cached = await self._cached_rate(key)
                if cached is not None:
                    return cached
                raise

            backend = await self._write(StoreDomain.RATES, key, record.to_dict())
            logger.info("Fetched rate", pair=f"{from_code}:{to_code}", rate=rate)
            return RateResult(record=record, source=DataSource.NETWORK, backend=backend)

    async def _cached_rate(self, key: str) -> RateResult | None:
        result = await self.store.get(StoreDomain.RATES, key)
        if not isinstance(result.value, dict):
            return None
        try:
            record = RateRecord.from_dict(result.value)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring corrupt cached rate", key=key, error=str(e))
            return None
        logger.info("Serving cached rate", key=key, backend=result.backend.value)
        return RateResult(record=record, source=DataSource.CACHE, backend=result.backend)

    # ------------------------------------------------------------------ #
    # Currency lists
    # ------------------------------------------------------------------ #

    async def load_currency_list(
        self, selection: CurrencyPair | None = None
    ) -> CurrencyListResult:
        """Load the currency list for the active provider.

        Args:
            selection: Previously selected pair, reconciled against the loaded codes.

        Raises:
            CredentialRequiredError: Credential missing and nothing cached.
            FetchError: Fetch or parse failed and nothing cached.
        """
        config = self.selector.current_config()
        key = config.id

        with log_context(provider=config.id, component="remote-cache"):
            if self.selector.missing_credential:
                cached = await self._cached_currencies(key, selection)
                if cached is not None:
                    return cached
                raise CredentialRequiredError(
                    f"{config.name} requires an API key",
                    context={"provider": config.id},
                )

            try:
                payload = await self._fetch_json(config.currencies_endpoint)
                currencies = extract_currencies(payload, preferred=config.currency_shape)
                record = CurrencyListRecord(
                    key=key, fetched_at=utc_now(), currencies=currencies
                )
            except FetchError as e:
                logger.warning("Currency list fetch failed", error=str(e))
                cached = await self._cached_currencies(key, selection)
                if cached is not None:
                    return cached
                raise

            backend = await self._write(StoreDomain.CURRENCIES, key, record.to_dict())
            logger.info("Fetched currency list", count=len(currencies))
            return CurrencyListResult(
                record=record,
                source=DataSource.NETWORK,
                backend=backend,
                selection=self._reconcile(selection, record),
            )

    async def _cached_currencies(
        self, key: str, selection: CurrencyPair | None
    ) -> CurrencyListResult | None:
        result = await self.store.get(StoreDomain.CURRENCIES, key)
        if not isinstance(result.value, dict):
            return None
        try:
            record = CurrencyListRecord.from_dict(result.value)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Ignoring corrupt cached currency list", key=key, error=str(e))
            return None
        if not record.currencies:
            return None
        logger.info("Serving cached currency list", key=key, backend=result.backend.value)
        return CurrencyListResult(
            record=record,
            source=DataSource.CACHE,
            backend=result.backend,
            selection=self._reconcile(selection, record),
        )

    def _reconcile(
        self, selection: CurrencyPair | None, record: CurrencyListRecord
    ) -> CurrencyPair | None:
        if selection is None:
            return None
        return reconcile_selection(
            selection, record.currencies, self.default_from, self.default_to
        )

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    async def _fetch_json(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> Any:
        """GET a provider endpoint and decode its JSON body.

        Raises:
            InvalidCredentialError: On 401/403.
            NetworkError: On any other non-success status or transport failure.
            MalformedResponseError: If the body is not JSON.
        """
        config = self.selector.current_config()
        url = self.selector.build_request_target(endpoint, params)

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                reraise=True,
            ):
                with attempt:
                    response = await self.client.get(url, headers=_REQUEST_HEADERS)
        except httpx.RequestError as e:
            raise NetworkError(
                f"Network request to {config.name} failed",
                context={"provider": config.id, "endpoint": endpoint, "error": str(e)},
            ) from e

        if response.status_code in (401, 403):
            raise InvalidCredentialError(
                f"{config.name} rejected the API key",
                status_code=response.status_code,
                context={"provider": config.id, "status_code": response.status_code},
            )
        if not response.is_success:
            raise NetworkError(
                f"Network error: {response.status_code}",
                status_code=response.status_code,
                context={"provider": config.id, "endpoint": endpoint},
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"{config.name} returned a non-JSON response",
                context={"provider": config.id, "endpoint": endpoint},
            ) from e

    async def _write(self, domain: StoreDomain, key: str, value: dict[str, Any]) -> Backend:
        """Best-effort write: a failed write never fails the surrounding fetch."""
        try:
            return await self.store.set(domain, key, value)
        except StoreWriteError as e:
            logger.warning("Cache write failed", domain=domain.value, key=key, error=str(e))
            return Backend.NONE
