"""Catalogue of predefined Hugo themes."""

from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel

from hugohost.state.models import Theme


class CatalogueTheme(BaseModel):
    """A predefined theme offered to users."""

    id: str
    name: str
    git_url: str
    description: str
    tags: List[str]


PREDEFINED_THEMES: List[CatalogueTheme] = [
    CatalogueTheme(
        id="ananke",
        name="Ananke",
        git_url="https://github.com/theNewDynamic/gohugo-theme-ananke.git",
        description="A clean, accessible theme with a focus on readability.",
        tags=["blog", "accessible", "minimal"],
    ),
    CatalogueTheme(
        id="hermit",
        name="Hermit",
        git_url="https://github.com/Track3/hermit.git",
        description="A minimal and fast theme for personal blogs.",
        tags=["minimal", "fast", "personal"],
    ),
    CatalogueTheme(
        id="clarity",
        name="Clarity",
        git_url="https://github.com/chipzoller/hugo-clarity.git",
        description="A theme designed for documentation and blogs with a clean UI.",
        tags=["documentation", "blog", "clean"],
    ),
    CatalogueTheme(
        id="beautifulhugo",
        name="Beautiful Hugo",
        git_url="https://github.com/halogenica/beautifulhugo.git",
        description="A visually appealing theme for Hugo blogs.",
        tags=["blog", "portfolio", "responsive"],
    ),
    CatalogueTheme(
        id="academic",
        name="Academic / Wowchemy",
        git_url="https://github.com/wowchemy/starter-hugo-academic.git",
        description="A feature-rich theme for personal websites, portfolios, and blogs.",
        tags=["portfolio", "academic", "blog", "feature-rich"],
    ),
]

THEMES_BY_ID: Dict[str, CatalogueTheme] = {theme.id: theme for theme in PREDEFINED_THEMES}


class UnknownThemeError(ValueError):
    """Raised when a theme selection cannot be resolved."""


def resolve_theme(theme_id: Optional[str] = None, custom_url: Optional[str] = None) -> Theme:
    """Resolve a catalogue id or a custom Git URL into a Theme.

    Exactly one of `theme_id` and `custom_url` must be given.

    Raises:
        UnknownThemeError: If the id is unknown, the URL is not an
            http(s) URL, or the selection is ambiguous or missing.
    """
    if theme_id and custom_url:
        raise UnknownThemeError("Choose either a predefined theme or a custom theme URL, not both")

    if theme_id:
        found = THEMES_BY_ID.get(theme_id)
        if found is None:
            raise UnknownThemeError(f"Invalid predefined theme selected: {theme_id}")
        return Theme(name=found.name, git_url=found.git_url, is_custom=False)

    if custom_url:
        parsed = urlparse(custom_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise UnknownThemeError("Please provide a valid Git URL for the custom theme")
        return Theme(name="Custom Theme", git_url=custom_url, is_custom=True)

    raise UnknownThemeError("Theme information is missing")
