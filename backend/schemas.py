from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


# Poem Cycle Schemas
class PoemCycleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cycle_number: int
    poem: str
    title: str
    next_prompt: str
    created_at: Optional[datetime] = None
    raw_response: str
    generation_method: str


# Poet State Schemas
class PoetStateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_cycle: int
    total_poems: int
    genesis_prompt: str
    meta_form: str
    last_updated: Optional[datetime] = None


class GenerationStatsResponse(BaseModel):
    total: int
    primary_count: int
    fallback_count: int
    corrected_count: int
    algorithmic_count: int


# Operation payloads
class InitializeResponse(BaseModel):
    message: str


class InitializedResponse(BaseModel):
    initialized: bool


class CountResponse(BaseModel):
    count: int


class OkResponse(BaseModel):
    ok: bool


class NextPromptRequest(BaseModel):
    next_prompt: str = Field(min_length=1)


class RawResponse(BaseModel):
    raw_response: Optional[str] = None
