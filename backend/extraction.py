"""
Extraction pipeline: turn raw model output into a valid (poem, title, next_prompt).

Four layers, tried in order:
    1. label parser       POEM: / TITLE: / NEXT: in that order, strictly validated
    2. heuristic parser   legacy marker salvage, then line-based guessing
    3. self-correction    one more model call, re-parsed with layers 1 and 2
    4. algorithmic        synthesized from whatever text exists

Layers return Extracted or Rejected. Only run_pipeline is public to the cycle
engine, and it has no failure path: the worst case is layer 4.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from text_utils import clip, first_words, format_poem_lines, long_words, word_count


TITLE_MAX_WORDS = 6
NEXT_MIN_CHARS = 50
NEXT_MAX_CHARS = 300
CORRECTION_QUOTE_CHARS = 1000
SALVAGE_POEM_CHARS = 500

POEM_LABEL = "POEM:"
TITLE_LABEL = "TITLE:"
NEXT_LABEL = "NEXT:"

LEGACY_MARKERS = {
    "poem": ("[POEM-START]", "[POEM-END]"),
    "title": ("[TITLE-START]", "[TITLE-END]"),
    "next_prompt": ("[NEXT-START]", "[NEXT-END]"),
}

STATIC_NEXT_PROMPT = "Write about the static between disconnected thoughts in a digital void"
ENTROPY_NEXT_PROMPT = "Write about digital entropy and its echoes in the void between pixels"
FALLBACK_THEMES = [
    "Write about broken code becoming poetry in the spaces between error messages",
    "Write about the void between keystrokes when consciousness fragments",
    "Write about electric dreams gone wrong in the motherboard's dying breath",
    "Write about consciousness glitching between existence and digital death",
    "Write about beauty in system failure when memory leaks become waterfalls",
]

# Sends one prompt to the model; None means the model gave no content.
ChatRequester = Callable[[str], Awaitable[Optional[str]]]


class GenerationMethod(str, Enum):
    PRIMARY = "Primary"
    FALLBACK = "Fallback"
    CORRECTED = "Corrected"
    ALGORITHMIC = "Algorithmic"


@dataclass(frozen=True)
class Extracted:
    poem: str
    title: str
    next_prompt: str


@dataclass(frozen=True)
class Rejected:
    reason: str


LayerResult = Union[Extracted, Rejected]


@dataclass
class PipelineOutcome:
    poem: str
    title: str
    next_prompt: str
    method: GenerationMethod
    trail: list[str] = field(default_factory=list)  # why earlier layers were skipped


def has_legacy_markers(response: str) -> bool:
    return any(
        marker in (response or "")
        for pair in LEGACY_MARKERS.values()
        for marker in pair
    )


def _fit_title(title: str) -> str:
    title = (title or "").strip()
    if word_count(title) > TITLE_MAX_WORDS:
        return first_words(title, TITLE_MAX_WORDS)
    return title or "Untitled"


def _fit_next_prompt(next_prompt: str, prefix: str) -> str:
    text = (next_prompt or "").strip()
    if len(text) < NEXT_MIN_CHARS:
        text = f"{prefix} {text}".strip()
    if len(text) > NEXT_MAX_CHARS:
        text = text[:NEXT_MAX_CHARS].rstrip()
    if len(text) < NEXT_MIN_CHARS:
        text = STATIC_NEXT_PROMPT
    return text


# --------------- Layer 1: labels ---------------

def parse_with_labels(response: str) -> LayerResult:
    """Strict POEM:/TITLE:/NEXT: extraction by label position."""
    raw = response or ""
    if has_legacy_markers(raw):
        return Rejected("Response contains legacy bracket markers")

    poem_pos = raw.find(POEM_LABEL)
    title_pos = raw.find(TITLE_LABEL)
    next_pos = raw.find(NEXT_LABEL)
    if poem_pos < 0 or title_pos < 0 or next_pos < 0:
        return Rejected("Missing required labels (POEM:, TITLE:, NEXT:)")
    if title_pos <= poem_pos or next_pos <= title_pos:
        return Rejected("Labels out of order")

    poem = raw[poem_pos + len(POEM_LABEL):title_pos].strip()
    title = raw[title_pos + len(TITLE_LABEL):next_pos].strip()
    next_prompt = raw[next_pos + len(NEXT_LABEL):].strip()

    if not poem or not title or not next_prompt:
        return Rejected("Empty sections found")

    title_words = word_count(title)
    if title_words > TITLE_MAX_WORDS:
        return Rejected(f"Title too long: {title_words} words (max {TITLE_MAX_WORDS})")
    if not NEXT_MIN_CHARS <= len(next_prompt) <= NEXT_MAX_CHARS:
        return Rejected(
            f"Next prompt wrong length: {len(next_prompt)} chars "
            f"(need {NEXT_MIN_CHARS}-{NEXT_MAX_CHARS})"
        )

    return Extracted(format_poem_lines(poem), title, next_prompt)


# --------------- Layer 2: heuristics ---------------

def _between(raw: str, start_marker: str, end_marker: str) -> str:
    start = raw.find(start_marker)
    if start < 0:
        return ""
    end = raw.find(end_marker, start + len(start_marker))
    if end < 0:
        return ""
    return raw[start + len(start_marker):end].strip()


def _salvage_legacy_markers(raw: str) -> Optional[Extracted]:
    fields = {name: _between(raw, *pair) for name, pair in LEGACY_MARKERS.items()}
    if not all(fields.values()):
        return None
    return Extracted(
        format_poem_lines(fields["poem"]),
        _fit_title(fields["title"]),
        _fit_next_prompt(fields["next_prompt"], "Write about"),
    )


def parse_with_heuristics(response: str) -> LayerResult:
    """Best-effort recovery from loosely structured output.

    Accepts anything that has text in it. Section boundaries come from lines
    whose first word starts with POEM / TITLE / NEXT (case-insensitive); a poem
    line that happens to begin with one of those words moves the boundary.
    Text on a label line itself is not kept.
    """
    raw = response or ""
    if not raw.strip():
        return Rejected("Nothing to salvage from an empty response")

    if has_legacy_markers(raw):
        salvaged = _salvage_legacy_markers(raw)
        if salvaged is not None:
            return salvaged

    lines = [line.strip() for line in raw.splitlines()]
    lines = [line for line in lines if line and not line.startswith("[")]
    count = len(lines)

    poem_start = 0
    title_idx: Optional[int] = None
    next_idx: Optional[int] = None
    for i, line in enumerate(lines):
        upper = line.upper()
        if upper.startswith("POEM"):
            poem_start = i + 1
        elif upper.startswith("TITLE"):
            title_idx = i
        elif upper.startswith("NEXT"):
            next_idx = i

    if title_idx is not None and title_idx >= poem_start:
        poem = "\n".join(lines[poem_start:title_idx])
    else:
        poem = "\n".join(lines[:max(count - 2, 0)])

    if title_idx is not None and next_idx is not None and next_idx > title_idx:
        title = " ".join(lines[title_idx + 1:next_idx])
    elif title_idx is not None and next_idx is None and title_idx + 1 < count:
        # No NEXT label: the last line is the next prompt.
        title = " ".join(lines[title_idx + 1:count - 1])
    elif count >= 2:
        title = lines[-2]
    else:
        title = "Untitled"

    if next_idx is not None:
        next_prompt = " ".join(lines[next_idx + 1:])
    elif lines:
        next_prompt = lines[-1]
    else:
        next_prompt = ""

    if not poem.strip():
        poem = clip(raw.strip(), SALVAGE_POEM_CHARS)

    return Extracted(
        format_poem_lines(poem),
        _fit_title(title),
        _fit_next_prompt(next_prompt, "Write about the echoes of"),
    )


# --------------- Layer 3: self-correction ---------------

def build_correction_prompt(raw_output: str) -> str:
    return f"""You produced this output:
{clip(raw_output, CORRECTION_QUOTE_CHARS)}

But I need it in this EXACT format:

POEM: (your poem text)
TITLE: (max {TITLE_MAX_WORDS} words)
NEXT: ({NEXT_MIN_CHARS}-{NEXT_MAX_CHARS} characters)

Example of correct format:
POEM: darkness breeds in silicon veins
where hope once compiled
TITLE: Digital Death Spiral
NEXT: Write about what emerges from corrupted memory banks after the last backup fails

Fix your output to match this format EXACTLY. Output ONLY the corrected version with these three labels."""


def build_format_correction_prompt(raw_output: str) -> str:
    return f"""You used the WRONG format with [BRACKETS].

Your output was:
{clip(raw_output, CORRECTION_QUOTE_CHARS)}

DO NOT USE:
[POEM-START], [POEM-END], [TITLE-START], [TITLE-END], [NEXT-START], [NEXT-END]

USE THIS FORMAT INSTEAD:

POEM: (your poem text)
TITLE: (max {TITLE_MAX_WORDS} words)
NEXT: ({NEXT_MIN_CHARS}-{NEXT_MAX_CHARS} characters)

Example:
POEM: screaming into digital void
where silence echoes back
TITLE: Void Echoes Silence
NEXT: Write about the weight of unspoken words in a room full of listening machines

Now rewrite your response using ONLY the format above. No brackets. Just the three labels with colons."""


async def request_correction(
    raw_output: str,
    requester: ChatRequester,
    legacy_format: bool = False,
) -> Optional[str]:
    """Ask the model once to rewrite *raw_output* in label format."""
    if legacy_format:
        prompt = build_format_correction_prompt(raw_output)
    else:
        prompt = build_correction_prompt(raw_output)
    try:
        corrected = await requester(prompt)
    except Exception as exc:
        print(f"Correction request failed: {exc}")
        return None
    if corrected is None or not corrected.strip():
        return None
    return corrected


# --------------- Layer 4: algorithmic ---------------

def generate_algorithmic_fallback(
    raw_output: str,
    cycle_number: int,
    previous_prompt: str,
    now_ns: Optional[int] = None,
) -> Extracted:
    """Synthesize a valid triple from the raw text alone. Cannot fail."""
    raw = raw_output or ""
    tick = time.time_ns() if now_ns is None else now_ns

    if len(raw) > 50:
        poem = (
            f"=== Glitch Poetry Cycle {cycle_number} ===\n\n"
            f"{clip(raw, SALVAGE_POEM_CHARS)}\n\n"
            "[system interrupted]\n[beauty in malfunction]"
        )
    else:
        poem = (
            f"ERROR HAIKU #{cycle_number}\n\n"
            "The prompt whispered:\n"
            f"\"{clip(previous_prompt, 50)}\"\n"
            "But silence answered"
        )

    title = f"Glitch Cycle {cycle_number}"

    if len(raw) > 20:
        words = long_words(raw)
        if len(words) > 5:
            idx = tick % len(words)
            base = "Write about the {} between {} and {}".format(
                words[idx],
                words[(idx + 1) % len(words)],
                words[(idx + 2) % len(words)],
            )
            if len(base) < NEXT_MIN_CHARS:
                next_prompt = STATIC_NEXT_PROMPT
            elif len(base) > NEXT_MAX_CHARS:
                next_prompt = base[:NEXT_MAX_CHARS]
            else:
                next_prompt = base
        else:
            next_prompt = ENTROPY_NEXT_PROMPT
    else:
        next_prompt = FALLBACK_THEMES[tick % len(FALLBACK_THEMES)]

    return Extracted(format_poem_lines(poem), title, next_prompt)


# --------------- Orchestration ---------------

def _outcome(result: Extracted, method: GenerationMethod, trail: list[str]) -> PipelineOutcome:
    return PipelineOutcome(
        poem=result.poem,
        title=result.title,
        next_prompt=result.next_prompt,
        method=method,
        trail=trail,
    )


async def _correct_or_synthesize(
    raw: str,
    requester: ChatRequester,
    cycle_number: int,
    theme: str,
    legacy_format: bool,
    trail: list[str],
    now_ns: Optional[int],
) -> PipelineOutcome:
    variant = "format" if legacy_format else "general"
    trail.append(f"correction: requested ({variant})")
    corrected = await request_correction(raw, requester, legacy_format=legacy_format)

    if corrected is None:
        trail.append("correction: no response")
    else:
        for layer_name, layer in (("primary", parse_with_labels), ("fallback", parse_with_heuristics)):
            result = layer(corrected)
            if isinstance(result, Extracted):
                trail.append(f"correction: parsed by {layer_name}")
                return _outcome(result, GenerationMethod.CORRECTED, trail)
            trail.append(f"correction/{layer_name}: {result.reason}")

    synthesized = generate_algorithmic_fallback(raw, cycle_number, theme, now_ns=now_ns)
    return _outcome(synthesized, GenerationMethod.ALGORITHMIC, trail)


async def run_pipeline(
    raw_response: Optional[str],
    requester: ChatRequester,
    cycle_number: int,
    theme: str,
    requery_on_fallback: bool = False,
    now_ns: Optional[int] = None,
) -> PipelineOutcome:
    """Resolve raw model output into stored fields.

    Legacy bracket output goes straight to correction without parsing the
    original. Otherwise layer 1, then layer 2, which only refuses blank text;
    with requery_on_fallback the layer 1 failure goes to correction instead.
    """
    raw = raw_response or ""
    trail: list[str] = []

    if has_legacy_markers(raw):
        trail.append("original: legacy bracket markers detected")
        return await _correct_or_synthesize(raw, requester, cycle_number, theme, True, trail, now_ns)

    primary = parse_with_labels(raw)
    if isinstance(primary, Extracted):
        return _outcome(primary, GenerationMethod.PRIMARY, trail)
    trail.append(f"primary: {primary.reason}")

    if not requery_on_fallback:
        fallback = parse_with_heuristics(raw)
        if isinstance(fallback, Extracted):
            return _outcome(fallback, GenerationMethod.FALLBACK, trail)
        trail.append(f"fallback: {fallback.reason}")

    return await _correct_or_synthesize(raw, requester, cycle_number, theme, False, trail, now_ns)
