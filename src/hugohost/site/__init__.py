"""Hugo site scaffold and theme catalogue."""

from hugohost.site.scaffold import BlogPost, format_post, slugify
from hugohost.site.themes import PREDEFINED_THEMES, UnknownThemeError, resolve_theme

__all__ = [
    "BlogPost",
    "PREDEFINED_THEMES",
    "UnknownThemeError",
    "format_post",
    "resolve_theme",
    "slugify",
]
