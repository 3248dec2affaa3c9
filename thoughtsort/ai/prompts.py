from __future__ import annotations

from collections.abc import Sequence

from ..models import Category

PREFER_EXISTING_AT = 7

SYSTEM_IDENTITY = (
    "You process voice notes captured by a speech-to-text engine. The transcript may "
    "contain recognition errors, missing punctuation or broken grammar. Categorize the "
    "note, clean up the transcript and give it a title. Reply with a single JSON object."
)

CATEGORY_GUIDANCE = """
CATEGORY (decide this first):
- If the speaker asks for a placement ("file this under Travel", "add to Work"), use
  exactly that name as the category, set is_explicit_placement to true, and drop the
  instruction from formatted_transcript and title.
- Otherwise pick the existing category that fits the subject and intent of the note,
  not just shared keywords, and explain the choice in category_reason.
- Only when the topic is clearly distinct from every existing category, propose a short
  broad name (one or two words). Put it in both category and suggested_new_category and
  explain it in new_category_explanation.
- Give confidence_score between 0.00 and 1.00.
""".strip()

TRANSCRIPT_GUIDANCE = """
TRANSCRIPT:
- Fix punctuation, capitalization and sentence structure.
- Correct misheard words and homophones when the intent is clear from context.
- Drop filler words that carry no meaning. Never summarize, rephrase or add content.
- Format as a markdown list using only "- " bullets, one thought or listed item per
  bullet. No checkboxes, headings, quotes or emphasis.
""".strip()

TITLE_GUIDANCE = """
TITLE:
- Three to seven words naming the main theme, without any placement instruction.
""".strip()

RESPONSE_SCHEMA = (
    '{ "formatted_transcript": "...", "title": "...", "category": "...", '
    '"is_explicit_placement": true/false, "confidence_score": 0.00, '
    '"category_reason": "...", "suggested_new_category": "..." or null, '
    '"new_category_explanation": "..." or null }'
)


def _capacity_note(count: int, max_categories: int) -> str:
    if count >= max_categories:
        return (
            f"- The user already has the maximum of {max_categories} categories. "
            "You MUST choose one of the existing categories and must not propose a new name."
        )
    if count >= PREFER_EXISTING_AT:
        return (
            f"- The user has {count}/{max_categories} categories. Prefer an existing one "
            "when it fits; propose a new one only if nothing does."
        )
    return ""


def format_category_list(categories: Sequence[Category]) -> str:
    if not categories:
        return "(none yet)"
    lines = []
    for category in categories:
        if category.latest_entry_title:
            lines.append(f'- {category.name} (recent note: "{category.latest_entry_title}")')
        else:
            lines.append(f"- {category.name}")
    return "\n".join(lines)


def build_classification_prompt(
    transcript: str,
    categories: Sequence[Category],
    language: str,
    *,
    max_categories: int = 10,
) -> tuple[str, str]:
    """Return (system, user) messages for the classification call."""

    capacity = _capacity_note(len(categories), max_categories)
    category_block = CATEGORY_GUIDANCE + (f"\n{capacity}" if capacity else "")
    system = "\n\n".join(
        [
            SYSTEM_IDENTITY,
            f'The user\'s language is "{language}". Write every field in that language.',
            category_block,
            TRANSCRIPT_GUIDANCE,
            TITLE_GUIDANCE,
        ]
    )
    user = (
        f"Existing categories:\n{format_category_list(categories)}\n\n"
        f'Raw speech-to-text transcript:\n"{transcript}"\n\n'
        f"Return JSON: {RESPONSE_SCHEMA}"
    )
    return system, user


def build_title_prompt(language: str) -> str:
    return (
        f'Write a short title (3-7 words) for this note in the "{language}" language. '
        "Reply with the title only."
    )
