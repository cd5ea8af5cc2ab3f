"""Persistence handles for cycle history and the poet-state singleton.

Mutating calls commit by default; pass commit=False to stage a change and let
the next committing call land it in the same transaction. Stored cycles are
never overwritten: inserting a cycle number twice raises CycleExistsError.
"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import PoemCycle, PoetState, POET_STATE_KEY


class CycleExistsError(Exception):
    """The cycle number is already stored."""


class CycleStore:
    """Poem cycles keyed by cycle number."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, cycle_number: int) -> Optional[PoemCycle]:
        return self.db.query(PoemCycle).filter(PoemCycle.cycle_number == cycle_number).first()

    def insert(self, cycle: PoemCycle, commit: bool = True) -> PoemCycle:
        if self.get(cycle.cycle_number) is not None:
            raise CycleExistsError(f"Cycle {cycle.cycle_number} is already stored")
        self.db.add(cycle)
        try:
            if commit:
                self.db.commit()
                self.db.refresh(cycle)
            else:
                self.db.flush()
        except IntegrityError as exc:
            # Another writer stored the same cycle number first.
            self.db.rollback()
            raise CycleExistsError(f"Cycle {cycle.cycle_number} is already stored") from exc
        return cycle

    def all(self) -> list[PoemCycle]:
        return self.db.query(PoemCycle).order_by(PoemCycle.cycle_number.asc()).all()

    def count(self) -> int:
        return self.db.query(PoemCycle).count()

    def method_counts(self) -> dict[str, int]:
        """Stored cycles per generation method; methods with no cycles are absent."""
        rows = (
            self.db.query(PoemCycle.generation_method, func.count(PoemCycle.cycle_number))
            .group_by(PoemCycle.generation_method)
            .all()
        )
        return {method: n for method, n in rows}

    def override_next_prompt(self, cycle_number: int, next_prompt: str) -> bool:
        cycle = self.get(cycle_number)
        if cycle is None:
            return False
        cycle.next_prompt = next_prompt
        self.db.commit()
        return True

    def clear(self, commit: bool = True) -> None:
        self.db.query(PoemCycle).delete(synchronize_session=False)
        self.db.expunge_all()
        if commit:
            self.db.commit()
        else:
            self.db.flush()


class PoetStateStore:
    """The single PoetState row, stored under a constant key."""

    def __init__(self, db: Session):
        self.db = db

    def get(self) -> Optional[PoetState]:
        # Reloads the row so changes committed by other sessions are visible.
        return (
            self.db.query(PoetState)
            .populate_existing()
            .filter(PoetState.key == POET_STATE_KEY)
            .first()
        )

    def put(self, state: PoetState) -> PoetState:
        state.key = POET_STATE_KEY
        state = self.db.merge(state)
        self.db.commit()
        self.db.refresh(state)
        return state
