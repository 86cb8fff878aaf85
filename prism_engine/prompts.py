"""Image-mode prompt assembly."""

from __future__ import annotations

import random

from .modes import ModeState, validate_similarity


PERSON_FALLBACKS = (
    "a person walking",
    "a person reading a book",
    "a person looking at the sky",
    "a person sitting on a bench",
    "a person dancing",
    "a person taking a photo",
)

REMOVE_TEXT_CLAUSE = "remove any text from the image"

SIMILARITY_CLAUSES = {
    25: "use the original image as a loose inspiration for the new image",
    50: "apply the changes described, but feel free to creatively reinterpret the original image",
    75: "apply the changes described while maintaining a strong resemblance to the original image's style and composition",
    100: "make only the changes described and keep the rest of the image identical to the original",
}

CLAUSE_SEPARATOR = ", "


def person_clause(suggestion: str | None, rng: random.Random | None = None) -> str:
    if suggestion and suggestion.strip():
        return suggestion.strip()
    return (rng or random).choice(PERSON_FALLBACKS)


def similarity_clause(similarity: int | None) -> str | None:
    if similarity is None:
        return None
    validate_similarity(similarity)
    return SIMILARITY_CLAUSES[similarity]


def assemble_image_prompt(state: ModeState, rng: random.Random | None = None) -> str:
    """Build the final image prompt.

    Clauses follow the user's prompt in a fixed order: person, text removal,
    similarity. Empty pieces are skipped so no stray separators appear.
    """
    clauses = [state.prompt.strip()]
    if state.add_person:
        clauses.append(person_clause(state.contextual_person_suggestion, rng))
    if state.remove_text:
        clauses.append(REMOVE_TEXT_CLAUSE)
    band = similarity_clause(state.similarity)
    if band:
        clauses.append(band)
    return CLAUSE_SEPARATOR.join(clause for clause in clauses if clause)
