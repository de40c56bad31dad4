"""Vision prompts for each extraction phase, keyed by poster type.

Every prompt asks for a bare JSON object.  The Type phase has one
classification prompt plus a refinement prompt that quotes the first
answer back to the model; the Artist, Venue and Event phases pick their
prompt from the poster type decided by the Type phase, falling back to
the ``unknown`` prompt.
"""

from __future__ import annotations

from src.models.phases import PhaseName
from src.models.poster import PosterType

_JSON_ONLY = "Return only the JSON object, with no markdown fences and no commentary."


def _fill(template: str, **values: str) -> str:
    """Substitute ``{name}`` placeholders without touching the JSON braces."""
    for name, value in values.items():
        template = template.replace("{" + name + "}", value)
    return template


# ---------------------------------------------------------------------------
# Phase 1: type classification
# ---------------------------------------------------------------------------

TYPE_CLASSIFICATION_PROMPT = (
    "Classify what this poster advertises.\n"
    "\n"
    "## Poster types\n"
    "- concert: live music at a named venue on a given date (doors, show time, tickets).\n"
    "- festival: many acts billed together, a festival name, often several days.\n"
    '- album: a record release ("new album", "out now", streaming logos) with no show.\n'
    '- film: a movie ("in theaters", "directed by", "starring", a rating box).\n'
    "- theater: a play or musical with a run of dates and a playwright.\n"
    "- comedy: stand-up; comedians at a club.\n"
    "- promo: promotion of an act, brand or product with no specific event.\n"
    "- exhibition: an art show at a gallery or museum.\n"
    "- hybrid: two of the above at once, e.g. an album release show.\n"
    "- unknown: none of the above can be decided.\n"
    "\n"
    "## Required JSON Output\n"
    "{\n"
    '  "poster_type": "concert|festival|album|film|theater|comedy|promo|exhibition|hybrid|unknown",\n'
    '  "confidence": <0.0-1.0>,\n'
    '  "evidence": ["<what on the poster supports the type>"],\n'
    '  "visual_cues": {\n'
    '    "has_artist_photo": true|false,\n'
    '    "has_album_artwork": true|false,\n'
    '    "has_logo": true|false,\n'
    '    "dominant_colors": ["<color>"],\n'
    '    "style": "photographic|illustrated|typographic|mixed|other"\n'
    "  },\n"
    '  "extracted_text": "<all legible text on the poster>"\n'
    "}\n"
    "\n" + _JSON_ONLY
)

TYPE_REFINEMENT_PROMPT = (
    "A first look at this poster was not conclusive.\n"
    "\n"
    "First answer: {previous_type} ({previous_confidence}% confidence)\n"
    "Evidence given: {previous_evidence}\n"
    "\n"
    "Look again and check specifically:\n"
    "1. Is there both a venue and a date? (concert, comedy, theater)\n"
    '2. Is there release wording such as "out now" or streaming logos? (album)\n'
    "3. Are there film-style credits? (film)\n"
    "4. Does it announce a release and a live show together? (hybrid)\n"
    "\n"
    "Answer in the same JSON format as before.\n"
    "\n" + _JSON_ONLY
)

# ---------------------------------------------------------------------------
# Phase 2: artists
# ---------------------------------------------------------------------------

_SEPARATE_NAMES_RULE = (
    "## Formatting rules\n"
    "- Put every act in its own array entry; never join several acts in one string.\n"
    '- "Act A with Act B and Act C" gives headliner "Act A" and supporting acts '
    '["Act B", "Act C"].\n'
    '- A band name stays whole ("The Black Eyed Peas" is one entry).\n'
)

_HEADLINER_PROMPT = (
    "Extract the performers from this {label} poster.\n"
    "\n"
    "- headliner: the top-billed act, usually the largest name.\n"
    "- supporting_acts: openers and guests, usually smaller text.\n"
    "- tour_name: the tour or series name, if any.\n"
    "- record_label: the label, if printed.\n"
    "\n" + _SEPARATE_NAMES_RULE + "\n"
    "## Required JSON Output\n"
    "{\n"
    '  "headliner": "<name>",\n'
    '  "supporting_acts": ["<name>"],\n'
    '  "tour_name": "<tour>" | null,\n'
    '  "record_label": "<label>" | null\n'
    "}\n"
    "\n" + _JSON_ONLY
)

ARTIST_PROMPTS: dict[PosterType, str] = {
    PosterType.CONCERT: _fill(_HEADLINER_PROMPT, label="CONCERT"),
    PosterType.FESTIVAL: _fill(_HEADLINER_PROMPT, label="FESTIVAL lineup"),
    PosterType.COMEDY: _fill(_HEADLINER_PROMPT, label="COMEDY"),
    PosterType.PROMO: _fill(_HEADLINER_PROMPT, label="PROMOTIONAL"),
    PosterType.HYBRID: _fill(_HEADLINER_PROMPT, label="release-show"),
    PosterType.ALBUM: (
        "Extract the artist and release details from this ALBUM poster.\n"
        "\n"
        "- headliner: who made the record (not the album title).\n"
        "- album_title: the name of the release.\n"
        '- featured_artists: "feat." / "ft." credits.\n'
        "- record_label: the releasing label.\n"
        "\n" + _SEPARATE_NAMES_RULE + "\n"
        "## Required JSON Output\n"
        "{\n"
        '  "headliner": "<artist>",\n'
        '  "album_title": "<title>" | null,\n'
        '  "featured_artists": ["<name>"],\n'
        '  "record_label": "<label>" | null\n'
        "}\n"
        "\n" + _JSON_ONLY
    ),
    PosterType.FILM: (
        "Extract the credits from this FILM poster.\n"
        "\n"
        '- director: the "directed by" / "a film by" credit.\n'
        "- cast: the starring actors, top billing first, one entry each.\n"
        "\n"
        "## Required JSON Output\n"
        "{\n"
        '  "director": "<name>" | null,\n'
        '  "cast": ["<actor>"]\n'
        "}\n"
        "\n" + _JSON_ONLY
    ),
    PosterType.THEATER: (
        "Extract the credits from this THEATER poster.\n"
        "\n"
        "## Required JSON Output\n"
        "{\n"
        '  "playwright": "<writer>" | null,\n'
        '  "performers": ["<performer>"],\n'
        '  "director": "<stage director>" | null\n'
        "}\n"
        "\n" + _JSON_ONLY
    ),
    PosterType.EXHIBITION: (
        "Extract the artist from this EXHIBITION poster.\n"
        "\n"
        "## Required JSON Output\n"
        "{\n"
        '  "exhibiting_artist": "<artist whose work is shown>" | null\n'
        "}\n"
        "\n" + _JSON_ONLY
    ),
    PosterType.UNKNOWN: (
        "Extract any people or acts named on this poster: musicians, bands, "
        "actors, directors, comedians or artists.\n"
        "\n"
        "## Required JSON Output\n"
        "{\n"
        '  "primary_name": "<most prominent name>" | null,\n'
        '  "other_names": ["<name>"]\n'
        "}\n"
        "\n" + _JSON_ONLY
    ),
}

# ---------------------------------------------------------------------------
# Phase 3: venue
# ---------------------------------------------------------------------------

_VENUE_PROMPT = (
    "Extract where this {label} takes place.\n"
    "\n"
    "- venue_name: the club, hall, arena, park or gallery. Do not include the date.\n"
    "- city, state, country: as printed; leave null when absent.\n"
    "\n"
    "## Required JSON Output\n"
    "{\n"
    '  "venue_name": "<venue>" | null,\n'
    '  "city": "<city>" | null,\n'
    '  "state": "<state or region>" | null,\n'
    '  "country": "<country>" | null\n'
    "}\n"
    "\n" + _JSON_ONLY
)

VENUE_PROMPTS: dict[PosterType, str] = {
    PosterType.CONCERT: _fill(_VENUE_PROMPT, label="CONCERT"),
    PosterType.FESTIVAL: _fill(_VENUE_PROMPT, label="FESTIVAL"),
    PosterType.COMEDY: _fill(_VENUE_PROMPT, label="COMEDY show"),
    PosterType.THEATER: _fill(_VENUE_PROMPT, label="THEATER production"),
    PosterType.HYBRID: _fill(_VENUE_PROMPT, label="release show"),
    PosterType.PROMO: _fill(_VENUE_PROMPT, label="promotion, if anywhere"),
    PosterType.UNKNOWN: _fill(_VENUE_PROMPT, label="poster's event, if anywhere"),
    PosterType.ALBUM: (
        "Album posters rarely name a venue. Extract one only if the poster also "
        "announces a release show or an in-store event.\n"
        "\n"
        "## Required JSON Output\n"
        "{\n"
        '  "venue_name": "<venue>" | null,\n'
        '  "city": "<city>" | null,\n'
        '  "is_streaming_only": true|false\n'
        "}\n"
        "\n" + _JSON_ONLY
    ),
    PosterType.FILM: (
        "Extract the screening details from this FILM poster.\n"
        "\n"
        '- theater_name: a specific cinema, or the release channel ("In Cinemas", "On Netflix").\n'
        "\n"
        "## Required JSON Output\n"
        "{\n"
        '  "theater_name": "<cinema or channel>" | null,\n'
        '  "city": "<city>" | null\n'
        "}\n"
        "\n" + _JSON_ONLY
    ),
    PosterType.EXHIBITION: (
        "Extract the hosting gallery or museum from this EXHIBITION poster.\n"
        "\n"
        "## Required JSON Output\n"
        "{\n"
        '  "venue_name": "<gallery or museum>" | null,\n'
        '  "city": "<city>" | null,\n'
        '  "country": "<country>" | null\n'
        "}\n"
        "\n" + _JSON_ONLY
    ),
}

# ---------------------------------------------------------------------------
# Phase 4: event details
# ---------------------------------------------------------------------------

_DATE_RULES = (
    "## Output rules\n"
    "- Write dates as DD/MM/YYYY, or DD/MM when the year is not printed.\n"
    "- Write times as HH:MM.\n"
    '- Use null for anything not on the poster; never write "not specified".\n'
)

_SHOWS_FIELD = (
    '  "shows": [\n'
    '    {"date": "DD/MM/YYYY", "day_of_week": "<day>" | null, "door_time": "HH:MM" | null,\n'
    '     "show_time": "HH:MM" | null, "ticket_price": "<price>" | null,\n'
    '     "age_restriction": "<restriction>" | null}\n'
    "  ],\n"
)

_EVENT_PROMPT = (
    "Extract the date and show details from this {label} poster.\n"
    "\n"
    "List every dated show in `shows` when the poster has more than one.\n"
    "\n" + _DATE_RULES + "\n"
    "## Required JSON Output\n"
    "{\n"
    '  "{date_field}": "DD/MM/YYYY" | null,\n'
    '  "year": <YYYY> | null,\n'
    '  "door_time": "HH:MM" | null,\n'
    '  "show_time": "HH:MM" | null,\n'
    '  "ticket_price": "<price with currency>" | null,\n'
    '  "age_restriction": "<e.g. 18+>" | null,\n'
    + _SHOWS_FIELD
    + '  "promoter": "<presenter>" | null\n'
    "}\n"
    "\n" + _JSON_ONLY
)


EVENT_PROMPTS: dict[PosterType, str] = {
    PosterType.CONCERT: _fill(_EVENT_PROMPT, label="CONCERT", date_field="event_date"),
    PosterType.COMEDY: _fill(_EVENT_PROMPT, label="COMEDY", date_field="event_date"),
    PosterType.HYBRID: _fill(_EVENT_PROMPT, label="release-show", date_field="event_date"),
    PosterType.UNKNOWN: _fill(_EVENT_PROMPT, label="undetermined", date_field="event_date"),
    PosterType.PROMO: _fill(_EVENT_PROMPT, label="PROMOTIONAL", date_field="event_date"),
    PosterType.FESTIVAL: _fill(_EVENT_PROMPT, label="FESTIVAL", date_field="start_date"),
    PosterType.THEATER: _fill(_EVENT_PROMPT, label="THEATER", date_field="opening_date"),
    PosterType.EXHIBITION: _fill(_EVENT_PROMPT, label="EXHIBITION", date_field="opening_date"),
    PosterType.ALBUM: _fill(_EVENT_PROMPT, label="ALBUM", date_field="release_date"),
    PosterType.FILM: _fill(_EVENT_PROMPT, label="FILM", date_field="release_date"),
}

_PROMPTS_BY_PHASE: dict[PhaseName, dict[PosterType, str]] = {
    PhaseName.ARTIST: ARTIST_PROMPTS,
    PhaseName.VENUE: VENUE_PROMPTS,
    PhaseName.EVENT: EVENT_PROMPTS,
}


def get_phase_prompt(phase: PhaseName, poster_type: PosterType | None = None) -> str:
    """Return the prompt for *phase*, specialised to *poster_type* where it applies.

    Raises:
        ValueError: For the assembly phase, which has no prompt.
    """
    if phase == PhaseName.TYPE:
        return TYPE_CLASSIFICATION_PROMPT
    prompts = _PROMPTS_BY_PHASE.get(phase)
    if prompts is None:
        raise ValueError(f"Phase {phase.value!r} has no vision prompt")
    return prompts.get(poster_type or PosterType.UNKNOWN, prompts[PosterType.UNKNOWN])


def get_refinement_prompt(
    previous_type: PosterType,
    previous_confidence: float,
    previous_evidence: list[str],
) -> str:
    return _fill(
        TYPE_REFINEMENT_PROMPT,
        previous_type=previous_type.value,
        previous_confidence=str(round(previous_confidence * 100)),
        previous_evidence=", ".join(previous_evidence) or "none",
    )
