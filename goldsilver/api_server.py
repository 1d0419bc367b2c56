from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional, Tuple

import pandas as pd
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, validator

from .config import Settings
from .data_pipeline import AssemblyResult, HistoryAssembler, validate_window
from .engine import StrategyParameters, ValidationError, compute_summary, simulate
from .reports.serializer import serialise_points, serialise_series, series_to_csv

logger = logging.getLogger(__name__)

DEFAULT_START = "1990-01-01"

app = FastAPI(title="Gold/Silver Ratio Backtester API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    if settings.debug:
        logging.getLogger("goldsilver").setLevel(logging.DEBUG)
    return settings


@lru_cache(maxsize=1)
def _build_assembler() -> HistoryAssembler:
    return HistoryAssembler.from_settings(get_settings())


def get_assembler() -> HistoryAssembler:
    return _build_assembler()


def _enforce_date_window(start: Optional[str], end: Optional[str]) -> Tuple[str, str]:
    start = start or DEFAULT_START
    end = end or pd.Timestamp.today().strftime("%Y-%m-%d")
    try:
        return validate_window(start, end)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


class SimulationParams(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    start_asset: Literal["gold", "silver"] = "gold"
    start_amount: float = Field(10_000.0, gt=0)
    up_threshold: Optional[float] = 85.0
    down_threshold: Optional[float] = 60.0

    @validator("start_asset", pre=True)
    def _normalise_asset(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class PricePoint(BaseModel):
    date: str
    gold: float
    silver: float


class SimulationPoint(BaseModel):
    date: str
    gold: float
    silver: float
    ratio: float
    held_asset: Literal["gold", "silver"]
    held_units: float
    portfolio_value: float
    gold_only_value: float
    silver_only_value: float
    portfolio_pct: float
    gold_pct: float
    silver_pct: float
    switched: Optional[Literal["gold_to_silver", "silver_to_gold"]] = None


class Gap(BaseModel):
    start: str
    end: str


class PricesResponse(BaseModel):
    prices: List[PricePoint]
    gaps: List[Gap] = Field(default_factory=list)
    fetched: int = 0
    source: str = "none"
    dropped_rows: int = 0
    superseded: bool = False
    warnings: List[str] = Field(default_factory=list)


class SimulationResponse(BaseModel):
    points: List[SimulationPoint]
    metrics: Dict[str, float] = Field(default_factory=dict)
    switches: int = 0
    up_threshold: Optional[float] = None
    down_threshold: Optional[float] = None
    data: PricesResponse


def _prices_payload(result: AssemblyResult) -> PricesResponse:
    return PricesResponse(
        prices=[PricePoint(**row) for row in serialise_series(result.prices)],
        gaps=[Gap(start=start, end=end) for start, end in result.gaps],
        fetched=result.fetched,
        source=result.source,
        dropped_rows=result.dropped_rows,
        superseded=result.superseded,
        warnings=[str(error) for error in result.errors],
    )


@app.get("/healthz")
def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/prices", response_model=PricesResponse)
def prices(
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    assembler: HistoryAssembler = Depends(get_assembler),
    settings: Settings = Depends(get_settings),
) -> PricesResponse:
    start_iso, end_iso = _enforce_date_window(start, end)
    result = assembler.load_merged_prices(start_iso, end_iso, api_key=settings.api_key)
    return _prices_payload(result)


@app.post("/simulate", response_model=SimulationResponse)
def run_simulation(
    payload: SimulationParams,
    assembler: HistoryAssembler = Depends(get_assembler),
    settings: Settings = Depends(get_settings),
) -> SimulationResponse:
    start_iso, end_iso = _enforce_date_window(payload.start, payload.end)
    params = StrategyParameters(
        start_date=start_iso,
        end_date=end_iso,
        start_asset=payload.start_asset,
        start_amount=payload.start_amount,
        up_threshold=payload.up_threshold,
        down_threshold=payload.down_threshold,
    )
    try:
        params = params.validate()
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    loaded = assembler.load_merged_prices(start_iso, end_iso, api_key=settings.api_key)
    result = simulate(loaded.prices, params)
    if loaded.errors:
        logger.warning("Simulation ran on partial price history", extra={"errors": len(loaded.errors)})

    return SimulationResponse(
        points=[SimulationPoint(**row) for row in serialise_points(result.points)],
        metrics=compute_summary(result),
        switches=result.switches,
        up_threshold=params.up_threshold,
        down_threshold=params.down_threshold,
        data=_prices_payload(loaded),
    )


@app.get("/export", response_class=PlainTextResponse)
def export_csv(
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    assembler: HistoryAssembler = Depends(get_assembler),
) -> PlainTextResponse:
    start_iso, end_iso = _enforce_date_window(start, end)
    body = assembler.export_csv(start_iso, end_iso)
    filename = f"gold_silver_{start_iso}_{end_iso}.csv"
    return PlainTextResponse(
        body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
