"""Check PoetState and PoemCycle tables."""
import sys
sys.path.insert(0, ".")
from database import SessionLocal
from models import PoemCycle, PoetState

db = SessionLocal()

print("=== POET STATE ===")
state = db.query(PoetState).first()
if state is None:
    print("  (no poet state row)")
else:
    print(f"  current_cycle={state.current_cycle} | total_poems={state.total_poems}")
    print(f"  genesis: {state.genesis_prompt}")
    print(f"  meta_form: {len(state.meta_form or '')} chars | last_updated={state.last_updated}")
print()

print("=== POEM CYCLES ===")
total = db.query(PoemCycle).count()
print(f"Total: {total} records")
recent = db.query(PoemCycle).order_by(PoemCycle.cycle_number.desc()).limit(10).all()
for c in recent:
    print(f"  #{c.cycle_number} | {c.generation_method} | {c.title}")
    print(f"  next: {c.next_prompt}")
    print(f"  raw: {len(c.raw_response or '')} chars")
    print()

print("Method distribution:")
methods = {}
for c in db.query(PoemCycle).all():
    methods[c.generation_method] = methods.get(c.generation_method, 0) + 1
for k, v in sorted(methods.items(), key=lambda x: x[1], reverse=True):
    print(f"  {k}: {v}")

if state is not None and state.current_cycle != total:
    print(f"\nWARNING: current_cycle={state.current_cycle} but {total} cycles stored")

db.close()
