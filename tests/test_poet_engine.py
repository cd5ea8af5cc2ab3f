"""Tests for PoetEngine: cycle chaining, state bookkeeping, queries, overrides."""

import asyncio

import pytest

from extraction import GenerationMethod
from meta_form import GENESIS_PROMPT, LOST_PROMPT, build_meta_form
from models import PoemCycle, PoetState
from poet_engine import PoetEngine, PoetStateError
from stores import CycleStore, PoetStateStore
from conftest import VALID_NEXT, FakeModel, labelled_response


def run(coro):
    return asyncio.run(coro)


def next_prompt_for(n):
    return f"Write about the {n}th door in a hallway that should only have had three"


class TestInitialization:
    def test_initialize_writes_genesis_state(self, poet):
        message = poet.initialize()
        assert GENESIS_PROMPT in message
        state = poet.poet_state()
        assert state.current_cycle == 0
        assert state.total_poems == 0
        assert state.genesis_prompt == GENESIS_PROMPT
        assert state.meta_form == build_meta_form(None)

    def test_is_initialized(self, poet):
        assert poet.is_initialized() is False
        poet.initialize()
        assert poet.is_initialized() is True

    def test_ensure_state_keeps_existing_state(self, poet, fake_model):
        fake_model.responses = [labelled_response()]
        run(poet.advance_cycle())
        state = poet.ensure_state()
        assert state.current_cycle == 1

    def test_queries_before_any_state(self, poet):
        assert poet.poet_state() is None
        assert poet.current_poem() is None
        assert poet.poem_count() == 0
        assert poet.all_poems() == []


class TestAdvanceCycle:
    def test_first_advance_initializes_lazily(self, poet, fake_model):
        fake_model.responses = [labelled_response()]
        cycle = run(poet.advance_cycle())
        assert cycle.cycle_number == 1
        assert cycle.id == 1
        assert cycle.generation_method == GenerationMethod.PRIMARY.value
        assert poet.is_initialized()

    def test_first_prompt_uses_genesis_theme(self, poet, fake_model):
        fake_model.responses = [labelled_response()]
        run(poet.advance_cycle())
        prompt = fake_model.prompts[0]
        assert "Cycle: 1" in prompt
        assert f"YOUR THEME: {GENESIS_PROMPT}" in prompt
        assert "PREVIOUS POEM:" not in prompt

    def test_next_prompt_becomes_following_theme(self, poet, fake_model):
        fake_model.responses = [
            labelled_response(poem="first poem body", next_prompt=next_prompt_for(1)),
            labelled_response(poem="second poem body", next_prompt=next_prompt_for(2)),
        ]
        run(poet.advance_cycle())
        run(poet.advance_cycle())
        second_prompt = fake_model.prompts[1]
        assert "Cycle: 2" in second_prompt
        assert f"YOUR THEME: {next_prompt_for(1)}" in second_prompt
        assert "PREVIOUS POEM:\nfirst poem body" in second_prompt

    def test_repeated_advances_number_cycles(self, poet, fake_model):
        n = 5
        fake_model.responses = [labelled_response(next_prompt=next_prompt_for(i)) for i in range(n)]
        cycles = [run(poet.advance_cycle()) for _ in range(n)]
        assert [c.cycle_number for c in cycles] == list(range(1, n + 1))
        state = poet.poet_state()
        assert state.current_cycle == n
        assert state.total_poems == n
        assert poet.poem_count() == n
        assert [c.cycle_number for c in poet.all_poems()] == list(range(1, n + 1))

    def test_state_carries_genesis_and_meta_form(self, poet, fake_model):
        poet.initialize()
        before = poet.poet_state()
        genesis, meta_form = before.genesis_prompt, before.meta_form
        fake_model.responses = [labelled_response()]
        run(poet.advance_cycle())
        after = poet.poet_state()
        assert after.genesis_prompt == genesis
        assert after.meta_form == meta_form

    def test_raw_response_is_truncated(self, poet, fake_model):
        raw = labelled_response() + ("\n" + "z" * 80) * 100
        fake_model.responses = [raw]
        cycle = run(poet.advance_cycle())
        assert len(cycle.raw_response) == 5000
        assert poet.raw_response(1) == raw[:5000]

    def test_fields_are_trimmed(self, poet, fake_model):
        fake_model.responses = [labelled_response(next_prompt="  " + VALID_NEXT + "  ")]
        cycle = run(poet.advance_cycle())
        assert cycle.next_prompt == VALID_NEXT

    def test_empty_model_output_still_stores_a_cycle(self, poet, fake_model):
        cycle = run(poet.advance_cycle())
        assert cycle.generation_method == GenerationMethod.ALGORITHMIC.value
        assert cycle.title == "Glitch Cycle 1"
        assert 50 <= len(cycle.next_prompt) <= 300
        assert cycle.poem
        # main call plus one correction call
        assert len(fake_model.prompts) == 2

    def test_legacy_markers_are_corrected(self, poet, fake_model):
        fake_model.responses = [
            "[POEM-START]hi[POEM-END][TITLE-START]Hi[TITLE-END][NEXT-START]short[NEXT-END]",
            labelled_response(),
        ]
        cycle = run(poet.advance_cycle())
        assert cycle.generation_method == GenerationMethod.CORRECTED.value
        assert cycle.title == "Neon Rain"
        assert cycle.raw_response.startswith("[POEM-START]")

    def test_model_exception_is_absorbed(self, db_session):
        async def broken(prompt):
            raise RuntimeError("model offline")

        engine = PoetEngine(CycleStore(db_session), PoetStateStore(db_session), broken, clock=lambda: 0)
        cycle = run(engine.advance_cycle())
        assert cycle.generation_method == GenerationMethod.ALGORITHMIC.value
        assert cycle.raw_response == ""

    def test_missing_previous_record_uses_lost_prompt(self, poet, fake_model, db_session):
        fake_model.responses = [labelled_response(), labelled_response()]
        run(poet.advance_cycle())
        db_session.query(PoemCycle).delete()
        db_session.commit()
        run(poet.advance_cycle())
        assert f"YOUR THEME: {LOST_PROMPT}" in fake_model.prompts[1]
        assert "PREVIOUS POEM:" not in fake_model.prompts[1]

    def test_requery_switch_is_honored(self, db_session):
        model = FakeModel(["loose verse\nwithout labels", labelled_response()])
        engine = PoetEngine(
            CycleStore(db_session), PoetStateStore(db_session), model,
            requery_on_fallback=True, clock=lambda: 0,
        )
        cycle = run(engine.advance_cycle())
        assert cycle.generation_method == GenerationMethod.CORRECTED.value

    def test_vanished_state_raises(self, db_session):
        states = PoetStateStore(db_session)

        async def vanishing_model(prompt):
            db_session.query(PoetState).delete()
            db_session.commit()
            return labelled_response()

        engine = PoetEngine(CycleStore(db_session), states, vanishing_model, clock=lambda: 0)
        engine.initialize()
        with pytest.raises(PoetStateError, match="disappeared"):
            run(engine.advance_cycle())
        assert engine.all_poems() == []


class TestConcurrentAdvances:
    @staticmethod
    def engine_for(db, title):
        async def slow_model(prompt):
            await asyncio.sleep(0.01)
            return labelled_response(title=title)

        return PoetEngine(CycleStore(db), PoetStateStore(db), slow_model, clock=lambda: 0)

    def test_overlapping_advances_store_consecutive_cycles(self, session_factory):
        alpha = self.engine_for(session_factory(), "Alpha")
        beta = self.engine_for(session_factory(), "Beta")

        async def both():
            return await asyncio.gather(alpha.advance_cycle(), beta.advance_cycle())

        first, second = run(both())
        assert (first.cycle_number, second.cycle_number) == (1, 2)

        reader = session_factory()
        rows = reader.query(PoemCycle).order_by(PoemCycle.cycle_number).all()
        assert [(r.cycle_number, r.title) for r in rows] == [(1, "Alpha"), (2, "Beta")]
        state = PoetStateStore(reader).get()
        assert state.current_cycle == 2
        assert state.total_poems == 2

    def test_second_advance_follows_first_theme(self, session_factory):
        db_a, db_b = session_factory(), session_factory()
        prompts = []

        def engine_with(db, next_prompt):
            async def model(prompt):
                prompts.append(prompt)
                await asyncio.sleep(0.01)
                return labelled_response(next_prompt=next_prompt)

            return PoetEngine(CycleStore(db), PoetStateStore(db), model, clock=lambda: 0)

        a = engine_with(db_a, next_prompt_for(1))
        b = engine_with(db_b, next_prompt_for(2))

        async def both():
            await asyncio.gather(a.advance_cycle(), b.advance_cycle())

        run(both())
        assert f"YOUR THEME: {next_prompt_for(1)}" in prompts[1]

    def test_state_moved_by_another_writer_stores_nothing(self, session_factory):
        db, other = session_factory(), session_factory()

        async def model(prompt):
            state = other.query(PoetState).first()
            state.current_cycle = 5
            other.commit()
            return labelled_response()

        engine = PoetEngine(CycleStore(db), PoetStateStore(db), model, clock=lambda: 0)
        engine.initialize()
        with pytest.raises(PoetStateError, match="moved from cycle 0 to 5"):
            run(engine.advance_cycle())
        assert engine.all_poems() == []
        assert engine.poet_state().current_cycle == 5


class TestQueries:
    def test_current_poem_tracks_latest(self, poet, fake_model):
        poet.initialize()
        assert poet.current_poem() is None
        fake_model.responses = [labelled_response(title="First"), labelled_response(title="Second")]
        run(poet.advance_cycle())
        run(poet.advance_cycle())
        assert poet.current_poem().title == "Second"
        assert poet.poem_by_cycle(1).title == "First"
        assert poet.poem_by_cycle(99) is None
        assert poet.raw_response(99) is None

    def test_generation_stats_tallies_methods(self, poet, fake_model):
        fake_model.responses = [
            labelled_response(),                       # primary
            "verse\nmore verse\nTitle-ish\nnext-ish",  # fallback
            "",                                        # algorithmic (no correction left)
        ]
        for _ in range(3):
            run(poet.advance_cycle())
        stats = poet.generation_stats()
        assert stats == {
            "total": 3,
            "primary_count": 1,
            "fallback_count": 1,
            "corrected_count": 0,
            "algorithmic_count": 1,
        }


class TestResetAndOverride:
    def test_reset_returns_to_initialized_state(self, poet, fake_model):
        fake_model.responses = [labelled_response(), labelled_response()]
        run(poet.advance_cycle())
        run(poet.advance_cycle())
        assert poet.reset() is True
        state = poet.poet_state()
        assert state.current_cycle == 0
        assert state.total_poems == 0
        assert state.genesis_prompt == GENESIS_PROMPT
        assert poet.all_poems() == []
        assert poet.current_poem() is None
        assert poet.poem_count() == 0

    def test_advance_after_reset_restarts_at_one(self, poet, fake_model):
        fake_model.responses = [labelled_response(), labelled_response()]
        run(poet.advance_cycle())
        poet.reset()
        cycle = run(poet.advance_cycle())
        assert cycle.cycle_number == 1
        assert f"YOUR THEME: {GENESIS_PROMPT}" in fake_model.prompts[-1]

    def test_set_next_prompt_without_cycles_fails(self, poet):
        poet.initialize()
        before = poet.poet_state()
        snapshot = (before.current_cycle, before.total_poems, before.genesis_prompt)
        assert poet.set_next_prompt("Write about anything at all") is False
        after = poet.poet_state()
        assert (after.current_cycle, after.total_poems, after.genesis_prompt) == snapshot
        assert poet.all_poems() == []

    def test_set_next_prompt_without_state_fails(self, poet):
        assert poet.set_next_prompt("Write about anything at all") is False

    def test_set_next_prompt_steers_next_cycle(self, poet, fake_model):
        fake_model.responses = [labelled_response(), labelled_response()]
        run(poet.advance_cycle())
        override = "Write about the hum of a refrigerator in an abandoned house"
        assert poet.set_next_prompt(override) is True
        assert poet.current_poem().next_prompt == override
        run(poet.advance_cycle())
        assert f"YOUR THEME: {override}" in fake_model.prompts[-1]

    def test_set_next_prompt_with_missing_record_fails(self, poet, fake_model, db_session):
        fake_model.responses = [labelled_response()]
        run(poet.advance_cycle())
        db_session.query(PoemCycle).delete()
        db_session.commit()
        assert poet.set_next_prompt("Write about the record that was never there") is False
