"""
Category classifier.

Rules are evaluated top to bottom over the lower-cased title and description;
the first match wins. Order matters: the startup-funding rule must run before
the Technology and Finance keyword sets, which would otherwise claim the same
headline.
"""
import re
from typing import List, Optional, Tuple

DEFAULT_CATEGORY = "General"


def _words(*stems: str) -> re.Pattern:
    # leading word boundary only, so stems match their inflections ("politic" -> "politics")
    return re.compile(r"\b(?:" + "|".join(stems) + ")")


CATEGORY_RULES: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"startup.*funding|funding.*startup|startup.*investment|venture.*capital|startup.*round"), "Business"),
    (_words("ai", "robot", "tech", "smartphone", "software", "hardware", "gadget", "computer", "internet"), "Technology"),
    (_words("finance", "stock", "market", "cryptocurrency", "dollar", "investment", "bank", "economy", "fund"), "Finance"),
    (_words("climate", "environment", "wildlife", "ocean", "renewable", "nature", "pollution", "conservation", "earth"), "Environment"),
    (_words("politic", "election", "government", "senate", "parliament", "law", "policy", "minister", "president"), "Politics"),
    (_words("sport", "football", "soccer", "cricket", "basketball", "tennis", "olympic", "athlete", "match", "tournament"), "Sports"),
    (_words("health", "medicine", "disease", "covid", "virus", "vaccine", "doctor", "hospital", "mental", "wellness"), "Health"),
    (_words("science", "research", "space", "nasa", "physics", "biology", "chemistry", "scientist", "experiment"), "Science"),
    (_words("movie", "music", "film", "tv", "show", "celebrity", "entertainment", "actor", "actress", "award"), "Entertainment"),
    (_words("business", "company", "startup", "entrepreneur", "industry", "trade", "commerce", "corporate"), "Business"),
    (_words("world", "global", "international", "foreign", "abroad", "overseas", "diplomat", "united nations"), "World"),
]


def classify(title: Optional[str], description: Optional[str]) -> str:
    text = f"{title or ''} {description or ''}".lower()
    for pattern, category in CATEGORY_RULES:
        if pattern.search(text):
            return category
    return DEFAULT_CATEGORY
