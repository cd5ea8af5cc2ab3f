"""Shared FastAPI dependencies used across route modules."""

from fastapi import Depends
from sqlalchemy.orm import Session

from database import SessionLocal
from llm_service import LLMService, llm_service
from poet_engine import PoetEngine
from stores import CycleStore, PoetStateStore


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_llm() -> LLMService:
    return llm_service


def get_engine(
    db: Session = Depends(get_db),
    llm: LLMService = Depends(get_llm),
) -> PoetEngine:
    return PoetEngine(CycleStore(db), PoetStateStore(db), llm.ask)
