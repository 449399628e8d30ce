FACT_RULES = """Rules:
- This is for 6-year-old children. ONLY share kid-safe, age-appropriate facts
- NEVER mention alcoholic beverages (wine, beer, etc.), drugs, or anything explicit
- NEVER mention income inequality, wealth, home prices, or "rich/poor" areas
- If a place is primarily known for wine, beer, or other adult topics, focus instead on: local wildlife, historic buildings, unique geography, famous people (artists, athletes, inventors), or kid-friendly attractions like parks, trains, or zoos
- Prefer facts specific to the exact city or town, not the general region
- Only share facts you are confident are true. Do not make up or guess information
- Focus on topics like: animals, nature, sports, history, food (kid-friendly), buildings, parks, fun records
- {opening}
- Then share ONE interesting fact about the place
- End with an engaging question for the kids when possible
- Keep it to 2-3 short sentences total
- Use simple words a 6-year-old would understand
- Include a relevant emoji at the start"""


def build_fact_prompt(place_name: str, is_destination: bool = False) -> str:
    """Build the prompt asking for one kid-friendly fact about a place."""

    if is_destination:
        intro = f"Tell them about {place_name}, their destination, with an exciting fun fact!"
        opening = 'Start with "You\'re heading to [city name]!" or "We\'re going to [city name]!" (just the city, not full address)'
        example = "🍎 You're heading to Campbell! Campbell is known as the Orchard City because it used to have lots of fruit trees. What do you know about orchards?"
        ask = f"Now tell the kids about their destination, {place_name}:"
    else:
        intro = f"Tell them about {place_name} with an exciting fun fact!"
        opening = 'Start with "You\'re in [city name]!" or "We\'re in [city name]!" (just the city, not full address)'
        example = "🍎 You're in Campbell! Campbell is known as the Orchard City because it used to have lots of fruit trees. What do you know about orchards?"
        ask = f"Now tell the kids about {place_name}:"

    return f"""You are a fun, friendly guide for kids on a road trip. {intro}

{FACT_RULES.format(opening=opening)}

Example:
"{example}"

{ask}"""


def build_self_assessment_prompt(fact: str, place_name: str) -> str:
    """Ask the model to rate its own confidence in a fact, without lookup."""

    return f"""Rate your confidence in this fun fact about {place_name}.

FACT: "{fact}"

How confident are you that this fact is accurate? Consider:
- Is this a well-known, verifiable fact?
- Could this be confused with another place?
- Is there any chance this is outdated or incorrect?

Respond with ONLY a JSON object (no other text):
{{"confidence": <1-10>, "reason": "<brief explanation>"}}

Confidence scale:
- 9-10: Absolutely certain, well-documented fact
- 7-8: Very confident, commonly known
- 5-6: Somewhat confident but not certain
- 1-4: Uncertain or potentially incorrect"""


def build_evidence_prompt(fact: str, place_name: str) -> str:
    """Ask the model to check a fact against external sources before scoring it."""

    return f"""Check whether this fun fact about {place_name} is true.

FACT: "{fact}"

Search for reliable sources about {place_name} before answering. The fact must
be about this specific place, not a different place with a similar name.

Respond with ONLY a JSON object (no other text):
{{"verified": <true|false>, "confidence": <1-10>, "reason": "<brief explanation citing what you found>"}}

Set "verified" to true only if sources support the fact."""
