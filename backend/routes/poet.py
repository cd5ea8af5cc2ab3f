"""Poet routes: evolve the cycle chain, read history, manual overrides."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from schemas import (
    CountResponse,
    GenerationStatsResponse,
    InitializedResponse,
    InitializeResponse,
    NextPromptRequest,
    OkResponse,
    PoemCycleResponse,
    PoetStateResponse,
    RawResponse,
)
from deps import get_engine
from poet_engine import PoetEngine, PoetStateError
from telemetry import read_poet_telemetry_summary

router = APIRouter(prefix="/api/poet", tags=["poet"])


@router.post("/initialize", response_model=InitializeResponse)
async def initialize_poet(engine: PoetEngine = Depends(get_engine)):
    return {"message": engine.initialize()}


@router.get("/initialized", response_model=InitializedResponse)
async def is_poet_initialized(engine: PoetEngine = Depends(get_engine)):
    return {"initialized": engine.is_initialized()}


@router.post("/evolve", response_model=PoemCycleResponse)
async def evolve_poet(engine: PoetEngine = Depends(get_engine)):
    try:
        cycle = await engine.advance_cycle()
    except PoetStateError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return PoemCycleResponse.model_validate(cycle)


@router.get("/current", response_model=Optional[PoemCycleResponse])
async def get_current_poem(engine: PoetEngine = Depends(get_engine)):
    cycle = engine.current_poem()
    return PoemCycleResponse.model_validate(cycle) if cycle else None


@router.get("/poems", response_model=List[PoemCycleResponse])
async def get_all_poems(engine: PoetEngine = Depends(get_engine)):
    return [PoemCycleResponse.model_validate(c) for c in engine.all_poems()]


@router.get("/poems/{cycle_number}", response_model=Optional[PoemCycleResponse])
async def get_poem_by_cycle(cycle_number: int, engine: PoetEngine = Depends(get_engine)):
    cycle = engine.poem_by_cycle(cycle_number)
    return PoemCycleResponse.model_validate(cycle) if cycle else None


@router.get("/poems/{cycle_number}/raw", response_model=RawResponse)
async def get_raw_response(cycle_number: int, engine: PoetEngine = Depends(get_engine)):
    return {"raw_response": engine.raw_response(cycle_number)}


@router.get("/state", response_model=Optional[PoetStateResponse])
async def get_poet_state(engine: PoetEngine = Depends(get_engine)):
    state = engine.poet_state()
    return PoetStateResponse.model_validate(state) if state else None


@router.get("/count", response_model=CountResponse)
async def get_poem_count(engine: PoetEngine = Depends(get_engine)):
    return {"count": engine.poem_count()}


@router.get("/stats", response_model=GenerationStatsResponse)
async def get_generation_stats(engine: PoetEngine = Depends(get_engine)):
    return engine.generation_stats()


@router.post("/reset", response_model=OkResponse)
async def reset_poet(engine: PoetEngine = Depends(get_engine)):
    return {"ok": engine.reset()}


@router.post("/next-prompt", response_model=OkResponse)
async def set_next_prompt(request: NextPromptRequest, engine: PoetEngine = Depends(get_engine)):
    return {"ok": engine.set_next_prompt(request.next_prompt)}


@router.get("/telemetry/summary")
async def get_poet_telemetry_summary(hours: int = 24, limit: int = 6):
    """Return telemetry counters and recent pipeline events."""
    return read_poet_telemetry_summary(hours=hours, limit=limit)
