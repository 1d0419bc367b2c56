"""Core price-history and simulation primitives."""

from .errors import FetchError, GoldSilverError, ParseError, ValidationError
from .series import PriceRecord, canonicalize, empty_series, merge, records_to_frame, slice_range
from .normalize import ParseResult, parse_date, parse_number, read_price_csv, read_price_file, read_price_text
from .store import CACHE_KEY, JsonFileStore, MemoryStore, SeriesStore
from .simulation import GOLD_TO_SILVER, SILVER_TO_GOLD, SimulationResult, StrategyParameters, simulate
from .metrics import compute_drawdown, compute_performance_metrics, compute_summary

__all__ = [
    "FetchError",
    "GoldSilverError",
    "ParseError",
    "ValidationError",
    "PriceRecord",
    "canonicalize",
    "empty_series",
    "merge",
    "records_to_frame",
    "slice_range",
    "ParseResult",
    "parse_date",
    "parse_number",
    "read_price_csv",
    "read_price_file",
    "read_price_text",
    "CACHE_KEY",
    "JsonFileStore",
    "MemoryStore",
    "SeriesStore",
    "GOLD_TO_SILVER",
    "SILVER_TO_GOLD",
    "SimulationResult",
    "StrategyParameters",
    "simulate",
    "compute_drawdown",
    "compute_performance_metrics",
    "compute_summary",
]
