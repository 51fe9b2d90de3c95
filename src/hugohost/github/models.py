"""GitHub-side value types."""

from typing import Union

from pydantic import BaseModel, Field


class ContentFile(BaseModel):
    """A logical file to commit. Never persisted.

    Attributes:
        path: Repository-relative path (no leading slash).
        content: Text (encoded as UTF-8) or raw bytes.
    """

    path: str = Field(..., min_length=1)
    content: Union[str, bytes]


class RepositoryInfo(BaseModel):
    """A created or resolved repository.

    Attributes:
        url: HTML URL of the repository.
        default_branch: The repository's default branch.
        name: Repository name.
        full_name: "owner/name".
    """

    url: str
    default_branch: str = Field(default="main")
    name: str
    full_name: str

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]
