"""
Cycle engine: one advance = prompt, model call, extraction, persist, move state.

Each cycle's NEXT field becomes the following cycle's theme. The engine is the
only writer of both stores; everything else here is a read.
"""

import asyncio
import os
import time
import weakref
from datetime import datetime, timezone
from typing import Callable, Optional

from extraction import ChatRequester, GenerationMethod, PipelineOutcome, run_pipeline
from meta_form import GENESIS_PROMPT, LOST_PROMPT, apply_meta_form, build_meta_form
from models import PoemCycle, PoetState
from stores import CycleExistsError, CycleStore, PoetStateStore
from telemetry import append_poet_telemetry
from text_utils import clip

RAW_RESPONSE_MAX_CHARS = 5000


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


POET_REQUERY_ON_FALLBACK = _env_bool("POET_REQUERY_ON_FALLBACK", False)

# Shared by every PoetEngine on the same event loop: one advance at a time.
_advance_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


def _advance_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _advance_locks.get(loop)
    if lock is None:
        lock = _advance_locks[loop] = asyncio.Lock()
    return lock


class PoetStateError(Exception):
    """Poet state vanished or moved during an advance; nothing was stored."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PoetEngine:
    def __init__(
        self,
        cycles: CycleStore,
        states: PoetStateStore,
        requester: ChatRequester,
        requery_on_fallback: Optional[bool] = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        self.cycles = cycles
        self.states = states
        self.requester = requester
        self.requery_on_fallback = (
            POET_REQUERY_ON_FALLBACK if requery_on_fallback is None else requery_on_fallback
        )
        self.clock = clock

    def _genesis_state(self) -> PoetState:
        return PoetState(
            current_cycle=0,
            total_poems=0,
            genesis_prompt=GENESIS_PROMPT,
            meta_form=build_meta_form(None),
            last_updated=_now(),
        )

    # --------------- lifecycle ---------------

    def initialize(self) -> str:
        """Write a fresh genesis state, replacing any existing one."""
        self.states.put(self._genesis_state())
        append_poet_telemetry("poet_initialized", {"genesis_prompt": GENESIS_PROMPT})
        return f"Poet initialized with genesis prompt: {GENESIS_PROMPT}"

    def is_initialized(self) -> bool:
        return self.states.get() is not None

    def ensure_state(self) -> PoetState:
        """Startup hook: keep an existing state, create one otherwise."""
        state = self.states.get()
        if state is None:
            state = self.states.put(self._genesis_state())
        return state

    def reset(self) -> bool:
        self.cycles.clear(commit=False)
        self.states.put(self._genesis_state())
        append_poet_telemetry("poet_reset", {})
        return True

    # --------------- advance ---------------

    async def _ask(self, prompt: str) -> str:
        try:
            return await self.requester(prompt) or ""
        except Exception as exc:
            print(f"Generation request failed: {exc}")
            return ""

    async def advance_cycle(self) -> PoemCycle:
        """Write the next cycle. Advances in this process run one at a time."""
        async with _advance_lock():
            return await self._advance_locked()

    async def _advance_locked(self) -> PoemCycle:
        state = self.states.get()
        if state is None:
            state = self.states.put(self._genesis_state())
            append_poet_telemetry("poet_initialized", {"genesis_prompt": GENESIS_PROMPT, "lazy": True})

        current_cycle = state.current_cycle
        total_poems = state.total_poems
        genesis_prompt = state.genesis_prompt
        meta_form = state.meta_form
        cycle_number = current_cycle + 1

        previous_poem = None
        if current_cycle > 0:
            previous = self.cycles.get(current_cycle)
            previous_poem = previous.poem if previous else None
            theme = previous.next_prompt if previous else LOST_PROMPT
        else:
            theme = genesis_prompt

        prompt = apply_meta_form(build_meta_form(previous_poem), cycle_number, theme)
        append_poet_telemetry("cycle_start", {"cycle": cycle_number, "theme": clip(theme, 120)})

        raw_response = await self._ask(prompt)
        outcome = await run_pipeline(
            raw_response,
            self.requester,
            cycle_number,
            theme,
            requery_on_fallback=self.requery_on_fallback,
            now_ns=self.clock(),
        )
        for note in outcome.trail:
            layer, _, detail = note.partition(": ")
            append_poet_telemetry("pipeline_step", {"cycle": cycle_number, "layer": layer, "detail": detail})

        # Both model calls are done; nothing has been written for this cycle yet.
        latest = self.states.get()
        if latest is None:
            raise PoetStateError("Poet state disappeared unexpectedly")
        if latest.current_cycle != current_cycle:
            raise PoetStateError(
                f"Poet state moved from cycle {current_cycle} to {latest.current_cycle} during advance"
            )

        now = _now()
        try:
            cycle = self._store_cycle(cycle_number, outcome, raw_response, now)
        except CycleExistsError as exc:
            raise PoetStateError(str(exc)) from exc
        self.states.put(
            PoetState(
                current_cycle=cycle_number,
                total_poems=total_poems + 1,
                genesis_prompt=genesis_prompt,
                meta_form=meta_form,
                last_updated=now,
            )
        )
        append_poet_telemetry(
            "cycle_stored",
            {"cycle": cycle_number, "method": outcome.method.value, "title": outcome.title.strip()},
        )
        return cycle

    def _store_cycle(
        self, cycle_number: int, outcome: PipelineOutcome, raw_response: str, now: datetime
    ) -> PoemCycle:
        return self.cycles.insert(
            PoemCycle(
                id=cycle_number,
                cycle_number=cycle_number,
                poem=outcome.poem.strip(),
                title=outcome.title.strip(),
                next_prompt=outcome.next_prompt.strip(),
                raw_response=clip(raw_response, RAW_RESPONSE_MAX_CHARS),
                generation_method=outcome.method.value,
                created_at=now,
            ),
            commit=False,
        )

    # --------------- queries ---------------

    def current_poem(self) -> Optional[PoemCycle]:
        state = self.states.get()
        if state is None or state.current_cycle == 0:
            return None
        return self.cycles.get(state.current_cycle)

    def all_poems(self) -> list[PoemCycle]:
        return self.cycles.all()

    def poet_state(self) -> Optional[PoetState]:
        return self.states.get()

    def poem_by_cycle(self, cycle_number: int) -> Optional[PoemCycle]:
        return self.cycles.get(cycle_number)

    def poem_count(self) -> int:
        state = self.states.get()
        return state.total_poems if state else 0

    def generation_stats(self) -> dict:
        tally = self.cycles.method_counts()
        return {
            "total": self.cycles.count(),
            "primary_count": tally.get(GenerationMethod.PRIMARY.value, 0),
            "fallback_count": tally.get(GenerationMethod.FALLBACK.value, 0),
            "corrected_count": tally.get(GenerationMethod.CORRECTED.value, 0),
            "algorithmic_count": tally.get(GenerationMethod.ALGORITHMIC.value, 0),
        }

    def raw_response(self, cycle_number: int) -> Optional[str]:
        cycle = self.cycles.get(cycle_number)
        return cycle.raw_response if cycle else None

    # --------------- manual override ---------------

    def set_next_prompt(self, next_prompt: str) -> bool:
        state = self.states.get()
        if state is None or state.current_cycle == 0:
            return False
        updated = self.cycles.override_next_prompt(state.current_cycle, next_prompt)
        if updated:
            append_poet_telemetry(
                "next_prompt_override",
                {"cycle": state.current_cycle, "next_prompt": clip(next_prompt, 120)},
            )
        return updated
