"""Search query construction from survey answers."""

from __future__ import annotations

from tourquote.matching.filters import region_label
from tourquote.models import SurveyContext


def build_search_query(survey: SurveyContext) -> str:
    """Derive a natural-language similarity query from the survey.

    Example:
        "3-day private tour in seoul (서울) for 2 adults, 1 child. Interests:
        history, food. Budget: mid. Must see: Gyeongbokgung Palace"
    """
    parts: list[str] = []

    trip = f"{survey.days}-day"
    if survey.tour_type:
        trip += f" {survey.tour_type}"
    trip += " tour"
    if survey.region:
        label = region_label(survey.region)
        trip += f" in {survey.region}"
        if label and label != survey.region:
            trip += f" ({label})"

    party = [f"{survey.adults} adult{'s' if survey.adults != 1 else ''}"]
    if survey.children:
        party.append(f"{survey.children} child{'ren' if survey.children != 1 else ''}")
    if survey.infants:
        party.append(f"{survey.infants} infant{'s' if survey.infants != 1 else ''}")
    parts.append(f"{trip} for {', '.join(party)}")

    if survey.interests:
        parts.append(f"Interests: {', '.join(survey.interests)}")
    if survey.budget:
        parts.append(f"Budget: {survey.budget}")
    if survey.attractions:
        parts.append(f"Must see: {', '.join(survey.attractions)}")

    return ". ".join(parts)
