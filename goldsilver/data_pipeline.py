"""Assemble the daily gold/silver price history for a date window.

The cached canonical series is the primary source.  When the cache is empty
an auto-discovered price file (``data/prices.csv`` by default) is tried once
per session.  Whatever dates of the requested window are still missing are
fetched from the remote price API in sequential chunks of at most 360 days,
merged under the existing data (cached and uploaded prices always win over
the API for a given date) and the full series is written back to the cache.

Run the module as a script to refresh the cache or import/export files::

    python -m goldsilver.data_pipeline --start 2015-01-01 --api-key KEY
    python -m goldsilver.data_pipeline --import prices.xlsx
    python -m goldsilver.data_pipeline --start 2020-01-01 --export window.csv
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple, Union

import pandas as pd

from .config import Settings
from .engine.errors import FetchError, ParseError, ValidationError
from .engine.normalize import ParseResult, normalize_rows, parse_date, read_price_file
from .engine.series import PriceRecord, empty_series, merge, records_to_frame, slice_range
from .engine.store import JsonFileStore, SeriesStore
from .price_api import MetalPriceClient, RateLimitContext
from .reports.serializer import series_to_csv

logger = logging.getLogger(__name__)

CHUNK_DAYS = 360

Gap = Tuple[str, str]


class SourceProvider(Protocol):
    name: str
    once_per_session: bool

    def load(self) -> ParseResult:
        ...


class CacheSource:
    name = "cache"
    once_per_session = False

    def __init__(self, store: SeriesStore) -> None:
        self.store = store

    def load(self) -> ParseResult:
        return ParseResult(self.store.load(), 0)


class FileSource:
    """A price file on disk; a missing or unreadable file yields no data."""

    once_per_session = True

    def __init__(self, path: Union[str, Path], name: Optional[str] = None) -> None:
        self.path = Path(path)
        self.name = name or f"file:{self.path.name}"

    def load(self) -> ParseResult:
        if not self.path.exists():
            return ParseResult(empty_series(), 0)
        try:
            return read_price_file(self.path)
        except ParseError as exc:
            logger.warning("Ignoring unreadable price file", extra={"path": str(self.path), "error": str(exc)})
            return ParseResult(empty_series(), 0)


@dataclass(frozen=True)
class LoadTicket:
    generation: int


@dataclass
class AssemblyResult:
    prices: pd.DataFrame
    gaps: List[Gap] = field(default_factory=list)
    fetched: int = 0
    errors: List[FetchError] = field(default_factory=list)
    dropped_rows: int = 0
    source: str = "none"
    superseded: bool = False

    @property
    def empty(self) -> bool:
        return self.prices.empty


def _iso(value: str, label: str) -> str:
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"Invalid {label} date: {value!r}")
    return parsed


def validate_window(start: str, end: str) -> Tuple[str, str]:
    start_iso = _iso(start, "start")
    end_iso = _iso(end, "end")
    if end_iso < start_iso:
        raise ValidationError("end date must not be before start date")
    return start_iso, end_iso


def enumerate_dates(start: str, end: str) -> List[str]:
    """Every calendar day in ``[start, end]`` as ISO strings."""

    return [day.strftime("%Y-%m-%d") for day in pd.date_range(start=start, end=end, freq="D")]


def find_gaps(required: Sequence[str], have: Set[str]) -> List[Gap]:
    """Maximal runs of consecutive ``required`` dates absent from ``have``."""

    gaps: List[Gap] = []
    gap_start: Optional[str] = None
    previous: Optional[str] = None
    for day in required:
        if day in have:
            if gap_start is not None:
                gaps.append((gap_start, previous))
                gap_start = None
        elif gap_start is None:
            gap_start = day
        previous = day
    if gap_start is not None:
        gaps.append((gap_start, previous))
    return gaps


def chunk_range(start: str, end: str, max_days: int = CHUNK_DAYS) -> Iterable[Gap]:
    """Split ``[start, end]`` into sequential sub-ranges spanning at most ``max_days``."""

    step = pd.Timedelta(days=max(0, int(max_days)))
    one_day = pd.Timedelta(days=1)
    current = pd.Timestamp(start)
    stop = pd.Timestamp(end)
    while current <= stop:
        chunk_end = min(current + step, stop)
        yield current.strftime("%Y-%m-%d"), chunk_end.strftime("%Y-%m-%d")
        current = chunk_end + one_day


class HistoryAssembler:
    def __init__(
        self,
        store: SeriesStore,
        client: Optional[MetalPriceClient] = None,
        providers: Optional[Sequence[SourceProvider]] = None,
        sleep: Callable[[float], None] = time.sleep,
        chunk_days: int = CHUNK_DAYS,
    ) -> None:
        self.store = store
        self.client = client if client is not None else MetalPriceClient(rate_limit=RateLimitContext(), sleep=sleep)
        self.providers: List[SourceProvider] = list(providers) if providers is not None else [CacheSource(store)]
        self.sleep = sleep
        self.chunk_days = chunk_days
        self.exhausted: Set[str] = set()
        self._generation = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "HistoryAssembler":
        store = SeriesStore(JsonFileStore(settings.cache_dir))
        client = MetalPriceClient(url=settings.api_url, timeout=settings.request_timeout)
        providers = [CacheSource(store), FileSource(settings.price_file, name="default-file")]
        return cls(store, client=client, providers=providers)

    @property
    def rate_limit(self) -> RateLimitContext:
        return self.client.rate_limit

    def begin_load(self) -> LoadTicket:
        """Start a new load; every earlier ticket becomes stale."""

        self._generation += 1
        return LoadTicket(self._generation)

    def is_current(self, ticket: LoadTicket) -> bool:
        return ticket.generation == self._generation

    def load_base(self) -> Tuple[pd.DataFrame, str, int]:
        """Query providers in order until one yields data."""

        dropped = 0
        for provider in self.providers:
            if provider.name in self.exhausted:
                continue
            result = provider.load()
            if provider.once_per_session:
                self.exhausted.add(provider.name)
            dropped += result.dropped
            if result.empty:
                continue
            prices = result.prices
            if not isinstance(provider, CacheSource):
                prices = self.store.save(prices)
                logger.info(
                    "Seeded price cache from external source",
                    extra={"source": provider.name, "rows": len(prices), "dropped": result.dropped},
                )
            return prices, provider.name, dropped
        return empty_series(), "none", dropped

    def load_merged_prices(
        self,
        start: str,
        end: str,
        api_key: Optional[str] = None,
        ticket: Optional[LoadTicket] = None,
    ) -> AssemblyResult:
        """Return the canonical series for ``[start, end]``, filling gaps from the API.

        Raises :class:`ValidationError` before touching any source when the
        window is invalid.  A terminal fetch failure stops further fetching
        but still returns everything already known; the error is reported in
        :attr:`AssemblyResult.errors`.
        """

        start, end = validate_window(start, end)
        if ticket is None:
            ticket = self.begin_load()

        series, source, dropped = self.load_base()
        have = set(series["date"]) if not series.empty else set()
        gaps = find_gaps(enumerate_dates(start, end), have)
        result = AssemblyResult(prices=empty_series(), gaps=gaps, dropped_rows=dropped, source=source)

        fetched: List[PriceRecord] = []
        if api_key and gaps:
            fetched = self._fetch_gaps(gaps, api_key, have, ticket, result)

        if not self.is_current(ticket):
            logger.info("Discarding superseded price load", extra={"start": start, "end": end})
            result.superseded = True
            result.prices = slice_range(series, start, end)
            return result

        if fetched:
            # existing rows win: fetched data only fills true gaps
            series = self.store.save(merge(records_to_frame(fetched), series))
            result.fetched = len({record.date for record in fetched})
        result.prices = slice_range(series, start, end)
        return result

    def _fetch_gaps(
        self,
        gaps: Sequence[Gap],
        api_key: str,
        have: Set[str],
        ticket: LoadTicket,
        result: AssemblyResult,
    ) -> List[PriceRecord]:
        fetched: List[PriceRecord] = []
        for gap_start, gap_end in gaps:
            for chunk_start, chunk_end in chunk_range(gap_start, gap_end, self.chunk_days):
                if not self.is_current(ticket):
                    return fetched
                delay_ms = self.rate_limit.pending_delay()
                if delay_ms > 0:
                    self.sleep(delay_ms / 1000.0)
                self.rate_limit.mark_request()
                try:
                    records = self.client.fetch(chunk_start, chunk_end, api_key)
                except FetchError as exc:
                    logger.error(
                        "Giving up on remaining price gaps",
                        extra={"start": chunk_start, "end": chunk_end, "error": str(exc)},
                    )
                    result.errors.append(exc)
                    return fetched
                fetched.extend(record for record in records if record.date not in have)
                logger.info(
                    "Fetched price chunk",
                    extra={"start": chunk_start, "end": chunk_end, "rows": len(records)},
                )
        return fetched

    def import_upload(self, source: Union[str, Path, pd.DataFrame]) -> ParseResult:
        """Merge an uploaded price table over the cache (upload wins per date)."""

        if isinstance(source, pd.DataFrame):
            parsed = normalize_rows(source)
        else:
            parsed = read_price_file(source)
        if parsed.empty:
            logger.warning("Uploaded price table has no usable rows", extra={"dropped": parsed.dropped})
            return parsed
        self.store.save(merge(self.store.load(), parsed.prices))
        logger.info("Imported uploaded prices", extra={"rows": len(parsed.prices), "dropped": parsed.dropped})
        return parsed

    def export_csv(self, start: str, end: str) -> str:
        start, end = validate_window(start, end)
        return series_to_csv(slice_range(self.store.load(), start, end))


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build the cached gold/silver daily price history")
    parser.add_argument("--start", default=None, help="Window start date (YYYY-MM-DD)")
    parser.add_argument("--end", default=None, help="Window end date (YYYY-MM-DD, default today)")
    parser.add_argument("--api-key", default=None, help="metalpriceapi.com key (default from environment)")
    parser.add_argument("--cache-dir", default=None, type=Path, help="Directory holding the price cache")
    parser.add_argument("--price-file", default=None, type=Path, help="Default price file tried when the cache is empty")
    parser.add_argument("--import", dest="import_file", default=None, type=Path, help="CSV/XLSX file to merge into the cache")
    parser.add_argument("--export", default=None, type=Path, help="Write the window as CSV to this path")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def run_pipeline(args: argparse.Namespace, settings: Optional[Settings] = None) -> int:
    settings = settings or Settings()
    overrides: Dict[str, Path] = {}
    if args.cache_dir is not None:
        overrides["cache_dir"] = args.cache_dir
    if args.price_file is not None:
        overrides["price_file"] = args.price_file
    if overrides:
        settings = settings.model_copy(update=overrides)
    assembler = HistoryAssembler.from_settings(settings)

    try:
        if args.import_file is not None:
            parsed = assembler.import_upload(args.import_file)
            print(f"Imported {len(parsed.prices)} rows ({parsed.dropped} dropped)", file=sys.stderr)

        if args.start is None:
            return 0
        end = args.end or pd.Timestamp.today().strftime("%Y-%m-%d")
        result = assembler.load_merged_prices(args.start, end, api_key=args.api_key or settings.api_key)
    except (ValidationError, ParseError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    print(
        f"Window {args.start}..{end}: {len(result.prices)} rows, {len(result.gaps)} gaps, "
        f"{result.fetched} fetched from API",
        file=sys.stderr,
    )
    for error in result.errors:
        print(f"Fetch error: {error}", file=sys.stderr)
    if args.export is not None:
        args.export.parent.mkdir(parents=True, exist_ok=True)
        args.export.write_text(series_to_csv(result.prices), encoding="utf-8")
        print(f"Wrote {args.export}", file=sys.stderr)
    return 1 if result.errors else 0


if __name__ == "__main__":
    args = parse_args()
    settings = Settings()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose or settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    sys.exit(run_pipeline(args, settings))
