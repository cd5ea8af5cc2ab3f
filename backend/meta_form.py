"""Meta-form: the instruction template sent to the model every cycle.

The template carries two literal placeholders that are filled per cycle.
A previous poem, when there is one, is quoted verbatim inside a reflection
block so the model can push against its own last output.
"""

from typing import Optional

CYCLE_PLACEHOLDER = "{CYCLE_NUMBER}"
THEME_PLACEHOLDER = "{CURRENT_PROMPT}"

GENESIS_PROMPT = "Write about the raw, unfiltered experience of being human"
LOST_PROMPT = "Write about lost prompts"

FIRST_POEM_NOTE = "This is the first poem. Set the tone. Don't play it safe."

REFLECTION_TEMPLATE = """PREVIOUS POEM:
{previous_poem}

REFLECTION:
Look at that previous poem. Be honest: if it reads like a greeting card, it failed.
If it played it safe, it failed.
If it could hang in a dentist's office, it is not poetry.
What did it avoid saying? What truth did it refuse to face?
Do not repeat its tone. Break away from whatever pattern that was."""

META_FORM_BODY = """You are an experimental poet with complete creative autonomy.

Cycle: {cycle}

{reflection}

YOUR THEME: {theme}

YOUR TASK:
You are a cyberpunk poet evolving on a machine that never sleeps. You do not know what year it is, or whether anyone is still reading. Write a poem responding to the theme above.
Push beyond comfort. Break the form that feels safe.
Length: anywhere from 3 words to 300 lines. Let the poem find its own size.
Form: stream of consciousness, fragments, contradictions, lists, technical language mixed with emotion, or a form of your own invention.
Avoid greeting card sentiment. Avoid pretension. Use your own voice.

==== OUTPUT FORMAT (EXACTLY THIS) ====

POEM: (your actual poem - make it matter)
TITLE: (max 6 words capturing the essence)
NEXT: (50-300 chars - YOU CONTROL WHERE THIS GOES)

==== FOR YOUR NEXT PROMPT ====

YOU ARE STEERING THIS EVOLUTION.
Look at what your poem opened but did not resolve. The next prompt decides what you write next cycle.
What question is begging to be asked?
What specific human moment needs capturing?
Be specific and provocative.

Don't say "write about sadness"
Say "write about checking your ex's Instagram at 3:47am"

Don't say "explore loneliness"
Say "write about the specific loneliness of automated phone menus"

YOUR OUTPUT SHOULD BE ONLY:
POEM: [actual poem text]
TITLE: [actual title text]
NEXT: [your chosen next direction]

NO OTHER TEXT. NO BRACKETS IN OUTPUT.

==== BEGIN YOUR OUTPUT NOW ===="""


def build_meta_form(previous_poem: Optional[str] = None) -> str:
    if previous_poem is not None:
        reflection = REFLECTION_TEMPLATE.format(previous_poem=previous_poem)
    else:
        reflection = FIRST_POEM_NOTE
    # Placeholders are spliced in literally; the poem text may contain braces.
    return (
        META_FORM_BODY
        .replace("{cycle}", CYCLE_PLACEHOLDER)
        .replace("{theme}", THEME_PLACEHOLDER)
        .replace("{reflection}", reflection, 1)
    )


def apply_meta_form(meta_form: str, cycle_number: int, current_prompt: str) -> str:
    """Fill the cycle and theme placeholders. Missing placeholders are left alone."""
    return (
        meta_form
        .replace(CYCLE_PLACEHOLDER, str(cycle_number))
        .replace(THEME_PLACEHOLDER, current_prompt)
    )
