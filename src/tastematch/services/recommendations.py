from __future__ import annotations

from typing import Dict, List

from ..domain.models import Action, Participant, Recommendation
from ..domain.questions import QUESTIONS


def build_recommendations(highlights: List[str]) -> List[Recommendation]:
    """Shared cards shown to both partners on the match_result event."""

    return [
        Recommendation(
            type=Action.DELIVERY,
            title="Order In Together",
            description="Order a romantic dinner for two and have it delivered!",
            matched_preferences=list(highlights),
        ),
        Recommendation(
            type=Action.DINEOUT,
            title="Dine Out Date Night",
            description="Book a table at a restaurant that matches your combined tastes!",
            matched_preferences=list(highlights),
        ),
        Recommendation(
            type=Action.COOK,
            title="Cook Together at Home",
            description="Get the ingredients delivered and cook a romantic meal together!",
            matched_preferences=list(highlights),
        ),
    ]


def answers_by_category(participant: Participant) -> Dict[str, str]:
    given = participant.answer_map()
    return {q.category: given[q.id] for q in QUESTIONS if q.id in given}


def headline(me: Participant, them: Participant, compatibility: int) -> str:
    prefix = f"{me.name} & {them.name}, your Taste Compatibility is {compatibility}%!"
    if compatibility >= 80:
        return f"{prefix} You two are a PERFECT food match!"
    if compatibility >= 50:
        return f"{prefix} A wonderful blend of shared favorites and exciting differences!"
    return f"{prefix} Opposites attract, time to explore each other's food worlds!"


def _order_in_option(mine: Dict[str, str], theirs: Dict[str, str], them: Participant) -> str:
    cuisine = mine.get("cuisine", "your favorite cuisine")
    my_dish = mine.get("dish_type", "")
    their_dish = theirs.get("dish_type", "")
    if mine.get("mood") in ("Cozy & Romantic", "Home-cooked"):
        lead = f"1. **Order In**: A cozy {cuisine} dinner delivered to your door. "
        if my_dish == their_dish:
            return lead + f"You both love {my_dish}, perfect!"
        return lead + f"You love {my_dish}, {them.name} loves {their_dish}, order both!"
    lead = f"1. **Order In**: Get {cuisine} delivered. "
    if my_dish == their_dish:
        return lead + f"You're both craving {my_dish}!"
    return lead + f"Mix it up: {my_dish} for you, {their_dish} for {them.name}."


def _dine_out_option(mine: Dict[str, str], theirs: Dict[str, str], them: Participant) -> str:
    cuisine = mine.get("cuisine", "your favorite cuisine")
    their_cuisine = theirs.get("cuisine", "their favorite cuisine")
    mood = mine.get("mood", "")
    budget = mine.get("budget", "")
    if mood == "Fine Dining" or budget in ("₹1200+", "₹700-1200"):
        return (
            f"2. **Dine Out**: Book a table at a premium {cuisine} restaurant. "
            f"{them.name}'s into {their_cuisine}, find a place that does both!"
        )
    if mood == "Fun & Casual":
        return (
            f"2. **Dine Out**: Hit up a fun, casual {cuisine} spot together. "
            "Budget-friendly and great vibes!"
        )
    return f"2. **Dine Out**: Find the perfect {cuisine} restaurant. A Valentine's dinner to remember!"


def _cook_option(mine: Dict[str, str]) -> str:
    cuisine = mine.get("cuisine", "your favorite cuisine")
    dish = mine.get("dish_type", "special")
    diet = mine.get("diet", "")
    diet_note = f" ({diet.lower()}-friendly of course!)" if diet in ("Veg", "Vegan") else ""
    if mine.get("mood") in ("Home-cooked", "Cozy & Romantic"):
        return (
            f"3. **Cook Together**: Make a homemade {dish} feast{diet_note}. "
            "Get the ingredients delivered and cook with love!"
        )
    return (
        f"3. **Cook Together**: Try your hand at a {cuisine}-inspired {dish} dish{diet_note}. "
        "We deliver the ingredients, you bring the romance!"
    )


def personal_reveal(me: Participant, them: Participant, compatibility: int) -> str:
    """Reveal text for ``me``; options come from ``me``'s own answers, so each partner reads a different message."""

    mine = answers_by_category(me)
    theirs = answers_by_category(them)
    options = [
        _order_in_option(mine, theirs, them),
        _dine_out_option(mine, theirs, them),
        _cook_option(mine),
    ]
    return (
        "The results are in...\n\n"
        f"{headline(me, them, compatibility)}\n\n"
        f"Here's what I'd suggest for you, {me.name}:\n\n"
        + "\n\n".join(options)
        + "\n\nTalk it over and decide together: Order In, Dine Out, or Cook Together? "
        "Either of you can tap to lock in your choice."
    )
