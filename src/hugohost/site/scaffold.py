"""Hugo site files generated for a deployment.

The scaffold uses Hugo modules: the theme is imported in `hugo.toml`
from its Git URL and `go.mod` declares the site module, so the theme
is fetched at build time and never vendored into the repository.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from hugohost.github.models import ContentFile
from hugohost.state.models import DeploymentRecord, Theme


POSTS_DIR = "content/posts"

# Control characters other than \t \n \r, written as \uXXXX in quoted strings
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

GITIGNORE = """\
/public/
/resources/_gen/
.hugo_build.lock
"""

ARCHETYPE = """\
---
title: "{{ replace .File.ContentBaseName "-" " " | title }}"
date: {{ .Date }}
draft: true
---
"""


class BlogPost(BaseModel):
    """A post to publish. Never persisted by the pipeline.

    Attributes:
        title: Post title; also the source of the file slug.
        content: Markdown body.
        created_at: Publication date written to front matter.
        draft: Whether Hugo should treat the post as a draft.
    """

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(default="")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    draft: bool = Field(default=False)


def slugify(title: str) -> str:
    """Lowercase, turn whitespace runs into '-', drop other non-word chars."""
    slug = re.sub(r"\s+", "-", title.strip().lower())
    return re.sub(r"[^\w-]+", "", slug)


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    escaped = escaped.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
    escaped = CONTROL_CHARS.sub(lambda m: f"\\u{ord(m.group()):04x}", escaped)
    return f'"{escaped}"'


def theme_module_path(theme: Theme) -> str:
    """Hugo module path for a theme Git URL (scheme and .git dropped)."""
    path = re.sub(r"^[a-zA-Z]+://", "", theme.git_url.strip()).rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return path


def readme(title: str) -> str:
    return (
        f"# {title}\n\n"
        "This repository was created by HugoHost. "
        "Add your blog posts in the HugoHost dashboard.\n"
    )


def hugo_config(
    title: str,
    description: str,
    theme: Optional[Theme],
    base_url: str = "/",
) -> str:
    """Render `hugo.toml` importing the theme as a Hugo module."""
    lines = [
        f"baseURL = {_quote(base_url)}",
        'languageCode = "en-us"',
        f"title = {_quote(title)}",
        "",
        "[params]",
        f"  description = {_quote(description)}",
    ]
    if theme is not None:
        lines += [
            "",
            "[module]",
            "  [[module.imports]]",
            f"    path = {_quote(theme_module_path(theme))}",
        ]
    return "\n".join(lines) + "\n"


def go_mod(module_path: str) -> str:
    return f"module {module_path}\n\ngo 1.21\n"


def section_index(title: str, description: str) -> str:
    return f"---\ntitle: {_quote(title)}\n---\n\n{description}\n"


def format_post(post: BlogPost) -> str:
    """Render a post as Markdown with YAML front matter."""
    created_at = post.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (
        "---\n"
        f"title: {_quote(post.title)}\n"
        f"date: {created_at.isoformat()}\n"
        f"draft: {'true' if post.draft else 'false'}\n"
        "---\n\n"
        f"{post.content}"
    )


def post_path(post: BlogPost) -> str:
    slug = slugify(post.title) or "post"
    return f"{POSTS_DIR}/{slug}.md"


def bootstrap_files(record: DeploymentRecord) -> List[ContentFile]:
    """Files for the root commit."""
    return [ContentFile(path="README.md", content=readme(record.blog_title or record.site_name))]


def site_files(record: DeploymentRecord) -> List[ContentFile]:
    """Hugo scaffold committed on top of the bootstrap commit."""
    title = record.blog_title or record.site_name
    module_path = (
        f"github.com/{record.repository_full_name}"
        if record.repository_full_name
        else record.site_name
    )
    return [
        ContentFile(path="hugo.toml", content=hugo_config(title, record.description, record.theme)),
        ContentFile(path="go.mod", content=go_mod(module_path)),
        ContentFile(path="content/_index.md", content=section_index(title, record.description)),
        ContentFile(path="archetypes/default.md", content=ARCHETYPE),
        ContentFile(path=".gitignore", content=GITIGNORE),
    ]


def post_files(posts: List[BlogPost]) -> List[ContentFile]:
    return [ContentFile(path=post_path(post), content=format_post(post)) for post in posts]
