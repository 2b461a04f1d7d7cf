"""
Jupiter API client for venue-restricted quotes, prices and swap transactions.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-interval rate limiter for Jupiter API requests.

    The price-refresh loop fans out many quotes at once; the limiter spaces
    them out so the public endpoint does not answer with 429s.
    """

    def __init__(self, requests_per_second: float = 10.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made."""
        if self.min_interval <= 0:
            return
        async with self._lock:
            time_since_last = time.monotonic() - self._last_request_time
            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)
            self._last_request_time = time.monotonic()


@dataclass
class JupiterQuote:
    """Quote response from Jupiter API."""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: float
    route_plan: List[Dict[str, Any]]
    slippage_bps: int = 50
    context_slot: Optional[int] = None
    raw: Optional[Dict[str, Any]] = None


@dataclass
class JupiterSwapResponse:
    """Swap transaction response from Jupiter API."""
    swap_transaction: str  # base64 unsigned VersionedTransaction
    last_valid_block_height: int
    priority_fee_lamports: Optional[int] = None


class JupiterClient:
    """Client for Jupiter Aggregator API with endpoint fallback and 429 backoff."""

    PUBLIC_ENDPOINTS = [
        "https://lite-api.jup.ag",
        "https://quote-api.jup.ag/v6",
    ]

    AUTH_ENDPOINTS = [
        "https://api.jup.ag",
    ]

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        requests_per_second: float = 10.0,
        max_retries_on_429: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0
    ):
        """
        Initialize Jupiter API client.

        Args:
            api_url: Explicit API URL (disables fallback). If None, uses the endpoint list.
            api_key: Jupiter API key, sent as x-api-key. Selects the authenticated endpoints.
            timeout: Request timeout in seconds.
            requests_per_second: Client-side rate limit.
            max_retries_on_429: Retries on 429 before giving up on an endpoint.
            backoff_base_seconds: Base for exponential backoff on 429.
            backoff_max_seconds: Backoff cap.
        """
        if api_url:
            self.api_url = api_url.rstrip('/')
            self.fallback_endpoints = []
        else:
            self.api_url = None
            self.fallback_endpoints = list(self.AUTH_ENDPOINTS if api_key else self.PUBLIC_ENDPOINTS)

        self.api_key = api_key
        self.timeout = timeout
        self.rate_limiter = RateLimiter(requests_per_second=requests_per_second)
        self.max_retries_on_429 = max_retries_on_429
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

        headers = {"x-api-key": api_key} if api_key else {}
        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)
        self._dead_endpoints = set()  # endpoints that answered 401 / unexpected errors
        self._working_endpoint: Optional[str] = None

    @staticmethod
    def _swap_api_base(endpoint: str) -> str:
        """Strip a legacy /v6 or /v1 suffix; current paths live under /swap/v1."""
        base = endpoint.rstrip('/')
        for suffix in ('/v6', '/v1'):
            if base.endswith(suffix):
                base = base[:-len(suffix)]
        return base

    def _backoff_seconds(self, attempt: int, response: httpx.Response) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)

    def _endpoints_to_try(self) -> List[str]:
        endpoints = []
        if self._working_endpoint:
            endpoints.append(self._working_endpoint)
        if self.api_url and self.api_url not in endpoints:
            endpoints.append(self.api_url)
        for endpoint in self.fallback_endpoints:
            if endpoint not in endpoints and endpoint not in self._dead_endpoints:
                endpoints.append(endpoint)
        return endpoints

    async def _send(self, method: str, url: str, **kwargs) -> Tuple[Optional[httpx.Response], Optional[str]]:
        """
        Send a request with 429 backoff.

        Returns:
            (response, error_type) where error_type is None on success, or one of
            '429', '401', '404', 'network', 'other'
        """
        for attempt in range(self.max_retries_on_429 + 1):
            await self.rate_limiter.acquire()
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                return response, None
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429:
                    if attempt < self.max_retries_on_429:
                        wait_time = self._backoff_seconds(attempt, e.response)
                        logger.warning(
                            f"Rate limit exceeded (429) from {url}, retrying in {wait_time:.1f}s "
                            f"(attempt {attempt + 1}/{self.max_retries_on_429})"
                        )
                        await asyncio.sleep(wait_time)
                        continue
                    logger.error(f"Rate limit exceeded (429) from {url} after {self.max_retries_on_429} retries")
                    return None, '429'
                if status == 401:
                    logger.warning(f"{url} requires authentication (401)")
                    return None, '401'
                if status == 404:
                    # No route for this pair; a valid answer, not an endpoint failure
                    return None, '404'
                logger.warning(f"Jupiter request failed: {status} - {e.response.text}")
                return None, 'other'
            except (httpx.ConnectError, httpx.ConnectTimeout, httpx.NetworkError, httpx.TimeoutException) as e:
                logger.debug(f"Network error for {url}: {e}")
                return None, 'network'
        return None, 'other'

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 50,
        only_direct_routes: bool = False,
        dexes: Optional[Sequence[str]] = None
    ) -> Optional[JupiterQuote]:
        """
        Get an ExactIn quote, trying endpoints in order until one answers.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest units of the input token
            slippage_bps: Slippage in basis points
            only_direct_routes: Only return 1-hop routes
            dexes: Restrict routing to these Jupiter DEX labels (e.g. ['Raydium'])

        Returns:
            JupiterQuote, or None if no endpoint returned a route
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "onlyDirectRoutes": str(only_direct_routes).lower(),
        }
        if dexes:
            params["dexes"] = ",".join(dexes)

        endpoints = self._endpoints_to_try()
        for endpoint in endpoints:
            url = f"{self._swap_api_base(endpoint)}/swap/v1/quote"
            response, error_type = await self._send("GET", url, params=params)
            if response is None:
                if error_type in ('401', 'other'):
                    self._dead_endpoints.add(endpoint)
                if error_type == '404':
                    return None
                continue

            data = response.json()
            quote = JupiterQuote(
                input_mint=data.get("inputMint", input_mint),
                output_mint=data.get("outputMint", output_mint),
                in_amount=int(data.get("inAmount", amount)),
                out_amount=int(data.get("outAmount", 0)),
                price_impact_pct=float(data.get("priceImpactPct", 0) or 0),
                route_plan=data.get("routePlan", []),
                slippage_bps=int(data.get("slippageBps", slippage_bps)),
                context_slot=data.get("contextSlot"),
                raw=data
            )
            self._working_endpoint = endpoint
            logger.debug(
                f"Quote {input_mint[:8]}... -> {output_mint[:8]}... "
                f"in={quote.in_amount} out={quote.out_amount} dexes={params.get('dexes', 'any')}"
            )
            return quote

        if not endpoints:
            logger.error("No Jupiter API endpoints available to try")
        return None

    async def get_price(
        self,
        input_mint: str,
        output_mint: str,
        input_decimals: int,
        output_decimals: int,
        dexes: Optional[Sequence[str]] = None,
        amount_ui: float = 1.0
    ) -> Optional[float]:
        """
        Price of one input token in output tokens, derived from a quote.

        Returns:
            Price as float, or None if no route / zero output
        """
        amount = int(amount_ui * 10 ** input_decimals)
        if amount <= 0:
            return None
        quote = await self.get_quote(input_mint, output_mint, amount, dexes=dexes)
        if quote is None or quote.out_amount <= 0 or quote.in_amount <= 0:
            return None
        out_ui = quote.out_amount / 10 ** output_decimals
        in_ui = quote.in_amount / 10 ** input_decimals
        return out_ui / in_ui

    async def get_swap_transaction(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        priority_fee_lamports: int = 0,
        wrap_unwrap_sol: bool = True,
        dynamic_compute_unit_limit: bool = True
    ) -> Optional[JupiterSwapResponse]:
        """
        Build an unsigned swap transaction for a quote.

        Returns:
            JupiterSwapResponse, or None if the build failed
        """
        quote_response = quote.raw or {
            "inputMint": quote.input_mint,
            "inAmount": str(quote.in_amount),
            "outputMint": quote.output_mint,
            "outAmount": str(quote.out_amount),
            "otherAmountThreshold": str(quote.out_amount),
            "swapMode": "ExactIn",
            "slippageBps": quote.slippage_bps,
            "priceImpactPct": quote.price_impact_pct,
            "routePlan": quote.route_plan
        }
        payload = {
            "quoteResponse": quote_response,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_unwrap_sol,
            "dynamicComputeUnitLimit": dynamic_compute_unit_limit
        }
        if priority_fee_lamports > 0:
            payload["prioritizationFeeLamports"] = {
                "priorityLevelWithMaxLamports": {"maxLamports": priority_fee_lamports, "priorityLevel": "high"}
            }

        endpoint = self._working_endpoint or self.api_url or (self.fallback_endpoints[0] if self.fallback_endpoints else None)
        if not endpoint:
            logger.error("No Jupiter API endpoint available for swap")
            return None

        url = f"{self._swap_api_base(endpoint)}/swap/v1/swap"
        response, error_type = await self._send("POST", url, json=payload)
        if response is None:
            logger.error(f"Jupiter swap transaction failed ({error_type})")
            return None

        data = response.json()
        swap_response = JupiterSwapResponse(
            swap_transaction=data.get("swapTransaction", ""),
            last_valid_block_height=data.get("lastValidBlockHeight", 0),
            priority_fee_lamports=data.get("prioritizationFeeLamports", priority_fee_lamports)
        )
        if not swap_response.swap_transaction:
            logger.error("Jupiter swap response contained no transaction")
            return None
        return swap_response

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
