# paygate/services/chain_sources.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from paygate.core.config import settings
from paygate.core.utils import from_epoch

logger = logging.getLogger("paygate.chain")

SATOSHI = Decimal("100000000")
CRYPTO_QUANT = Decimal("0.00000001")
DEFAULT_EPSILON = Decimal("0.00001")


class ChainSourceError(Exception):
    """Errore transitorio di un explorer/price API (il chiamante logga e salta il tick)."""


@dataclass
class ChainOutput:
    address: Optional[str]
    amount: Decimal


@dataclass
class ChainTransaction:
    txid: str
    block_time: Optional[datetime]
    outputs: List[ChainOutput] = field(default_factory=list)
    confirmed: bool = False


@dataclass
class ChainMatch:
    txid: str
    amount: Decimal
    confirmations: int


# ------------------------------------------------------------
# Matching (funzione pura, niente rete)
# ------------------------------------------------------------
def find_matching_transaction(
    transactions: Iterable[ChainTransaction],
    address: str,
    expected_amount: Decimal,
    epsilon: Decimal = DEFAULT_EPSILON,
    since: Optional[datetime] = None,
    exclude_txids: Iterable[str] = (),
) -> Optional[ChainMatch]:
    """
    Primo output verso `address` con |amount - expected| < epsilon.

    - tx con block_time noto e precedente a `since` vengono saltate
      (tx non confermate, senza block_time, restano candidate)
    - tx già usate per un altro pagamento completato vengono saltate
    """
    expected = Decimal(expected_amount)
    excluded = set(exclude_txids)
    for tx in transactions:
        if tx.txid in excluded:
            continue
        if since is not None and tx.block_time is not None and tx.block_time < since:
            continue
        for out in tx.outputs:
            if out.address != address:
                continue
            if abs(out.amount - expected) < epsilon:
                return ChainMatch(txid=tx.txid, amount=out.amount, confirmations=1 if tx.confirmed else 0)
    return None


def calculate_crypto_amount(usd_price: Decimal, rate_usd: Decimal) -> Decimal:
    """Importo crypto = prezzo USD / tasso, arrotondato a 8 decimali."""
    rate = Decimal(str(rate_usd))
    if rate <= 0:
        raise ValueError("rate must be positive")
    return (Decimal(usd_price) / rate).quantize(CRYPTO_QUANT, rounding=ROUND_HALF_UP)


# ------------------------------------------------------------
# Explorer
# ------------------------------------------------------------
class ChainSource:
    """Interfaccia: transazioni recenti di un indirizzo, normalizzate."""

    symbol: str = ""

    async def fetch_transactions(self, address: str) -> List[ChainTransaction]:
        raise NotImplementedError


class BlockstreamSource(ChainSource):
    """BTC via blockstream.info (valori in satoshi)."""

    symbol = "BTC"

    def __init__(self, base_url: str = "https://blockstream.info", timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout or settings.CHAIN_HTTP_TIMEOUT_SECONDS)

    @staticmethod
    def parse(payload: list) -> List[ChainTransaction]:
        txs = []
        for raw in payload or []:
            status = raw.get("status") or {}
            block_time = status.get("block_time")
            txs.append(
                ChainTransaction(
                    txid=raw.get("txid"),
                    block_time=from_epoch(block_time) if block_time else None,
                    outputs=[
                        ChainOutput(
                            address=out.get("scriptpubkey_address"),
                            amount=Decimal(int(out.get("value") or 0)) / SATOSHI,
                        )
                        for out in raw.get("vout") or []
                    ],
                    confirmed=bool(status.get("confirmed")),
                )
            )
        return txs

    async def fetch_transactions(self, address: str) -> List[ChainTransaction]:
        url = f"{self.base_url}/api/address/{address}/txs"
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                txs = self.parse(resp.json())
        except (httpx.HTTPError, ValueError, AttributeError, TypeError) as e:
            # anche payload malformati: per il monitor restano errori transitori
            raise ChainSourceError(f"blockstream: {e}") from e
        return txs


class BlockchairSource(ChainSource):
    """LTC via api.blockchair.com: dashboard indirizzo, poi dettaglio per ogni hash."""

    symbol = "LTC"

    def __init__(
        self,
        base_url: str = "https://api.blockchair.com",
        chain: str = "litecoin",
        limit: int = 10,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain = chain
        self.limit = limit
        self.timeout = float(timeout or settings.CHAIN_HTTP_TIMEOUT_SECONDS)

    @staticmethod
    def _parse_time(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        # formato blockchair: "YYYY-MM-DD HH:MM:SS" (UTC)
        return datetime.strptime(value, "%Y-%m-%d %H:%M:%S")

    def parse_transaction(self, tx_hash: str, payload: dict) -> Optional[ChainTransaction]:
        entry = ((payload or {}).get("data") or {}).get(tx_hash)
        if not entry:
            return None
        tx = entry.get("transaction") or {}
        block_id = tx.get("block_id")
        return ChainTransaction(
            txid=tx_hash,
            block_time=self._parse_time(tx.get("time")),
            outputs=[
                ChainOutput(
                    address=out.get("recipient"),
                    amount=Decimal(int(out.get("value") or 0)) / SATOSHI,
                )
                for out in entry.get("outputs") or []
            ],
            confirmed=bool(block_id and block_id > 0),
        )

    async def fetch_transactions(self, address: str) -> List[ChainTransaction]:
        base = f"{self.base_url}/{self.chain}/dashboards"
        txs: List[ChainTransaction] = []
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                resp = await client.get(f"{base}/address/{address}", params={"limit": self.limit})
                resp.raise_for_status()
                data = (resp.json().get("data") or {}).get(address) or {}
                for tx_hash in data.get("transactions") or []:
                    tx_resp = await client.get(f"{base}/transaction/{tx_hash}")
                    tx_resp.raise_for_status()
                    parsed = self.parse_transaction(tx_hash, tx_resp.json())
                    if parsed is not None:
                        txs.append(parsed)
        except (httpx.HTTPError, ValueError, AttributeError, TypeError) as e:
            raise ChainSourceError(f"blockchair: {e}") from e
        return txs


def default_chain_sources(timeout: Optional[float] = None) -> Dict[str, ChainSource]:
    return {"BTC": BlockstreamSource(timeout=timeout), "LTC": BlockchairSource(timeout=timeout)}


# ------------------------------------------------------------
# Prezzi
# ------------------------------------------------------------
class PriceSource:
    async def get_price(self, symbol: str) -> Decimal:
        raise NotImplementedError


class CoinGeckoPriceSource(PriceSource):
    """Tasso USD da api.coingecko.com/simple/price."""

    PRICE_IDS = {"BTC": "bitcoin", "LTC": "litecoin"}

    def __init__(self, base_url: str = "https://api.coingecko.com/api/v3", timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout or settings.CHAIN_HTTP_TIMEOUT_SECONDS)

    async def get_price(self, symbol: str) -> Decimal:
        price_id = self.PRICE_IDS.get(symbol.upper())
        if price_id is None:
            raise ChainSourceError(f"unsupported symbol: {symbol}")
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                resp = await client.get(
                    f"{self.base_url}/simple/price",
                    params={"ids": price_id, "vs_currencies": "usd"},
                )
                resp.raise_for_status()
                value = resp.json()[price_id]["usd"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise ChainSourceError(f"coingecko: {e}") from e
        return Decimal(str(value))


async def get_quotes(price_source: PriceSource, usd_price: Decimal, symbols: Iterable[str]) -> Dict[str, Tuple[Decimal, Decimal]]:
    """{symbol: (amount, rate)}; i simboli senza prezzo disponibile sono omessi."""
    quotes: Dict[str, Tuple[Decimal, Decimal]] = {}
    for symbol in symbols:
        try:
            rate = await price_source.get_price(symbol)
        except ChainSourceError as e:
            logger.warning("prezzo %s non disponibile: %s", symbol, e)
            continue
        quotes[symbol] = (calculate_crypto_amount(usd_price, rate), rate)
    return quotes
