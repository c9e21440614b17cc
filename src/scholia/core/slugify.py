"""Heading slugs used as link fragments."""

import re
import unicodedata
from dataclasses import dataclass


@dataclass(frozen=True)
class Slug:
    value: str

    def equals(self, other: "Slug") -> bool:
        return self.value == other.value


def slugify(text: str) -> str:
    """
    Convert heading text to a URL-safe anchor.

    - Lowercase
    - Unicode normalize (NFKD), drop combining marks
    - Remove punctuation except spaces and hyphens
    - Convert whitespace to single `-`
    - Collapse multiple `-` to single, strip leading/trailing `-`

    Examples:
        >>> slugify("Parallel transport")
        'parallel-transport'
        >>> slugify("Riemann–Christoffel symbols")
        'riemann-christoffel-symbols'
    """
    text = text.lower()

    # En dash, em dash and minus sign count as hyphens
    text = text.replace('–', '-').replace('—', '-').replace('−', '-')

    text = unicodedata.normalize('NFKD', text)
    text = ''.join(c for c in text if not unicodedata.combining(c))

    text = re.sub(r'[^\w\s-]', '', text)
    text = re.sub(r'\s+', '-', text)
    text = re.sub(r'-+', '-', text)

    return text.strip('-')


class DefaultSlugifier:
    def from_heading(self, heading: str) -> Slug:
        return Slug(slugify(heading))


default_slugifier = DefaultSlugifier()
