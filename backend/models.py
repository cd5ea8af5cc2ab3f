from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from database import Base

POET_STATE_KEY = 0


class PoemCycle(Base):
    __tablename__ = "poem_cycles"

    cycle_number = Column(Integer, primary_key=True, autoincrement=False)
    id = Column(Integer, nullable=False, index=True)  # mirrors cycle_number
    poem = Column(Text, nullable=False)
    title = Column(String(255), nullable=False)
    next_prompt = Column(String(300), nullable=False)
    raw_response = Column(Text, nullable=False, default="")  # first 5000 chars of model output
    generation_method = Column(String(16), nullable=False, index=True)  # Primary | Fallback | Corrected | Algorithmic
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PoetState(Base):
    __tablename__ = "poet_state"

    key = Column(Integer, primary_key=True, autoincrement=False, default=POET_STATE_KEY)
    current_cycle = Column(Integer, nullable=False, default=0)
    total_poems = Column(Integer, nullable=False, default=0)
    genesis_prompt = Column(Text, nullable=False)
    meta_form = Column(Text, nullable=False)  # template captured at init/reset
    last_updated = Column(DateTime(timezone=True), server_default=func.now())
