"""Single-commit construction through the Git Data API.

A commit is built in five steps:
1. Resolve the branch tip (absent for an empty repository or branch).
2. Upload each distinct file content as a blob.
3. Create a tree layered on the tip's tree (additive).
4. Create a commit on that tree, parented on the tip if any.
5. Move the branch: create the ref for a root commit, otherwise a
   fast-forward-only update.

A concurrent writer that moves the branch between steps 1 and 5 makes
step 5 fail with BranchConflictError and leaves the branch untouched.
"""

import hashlib
import logging
from typing import Dict, List, Optional, Sequence, Union

from hugohost.github.client import GitHubAPIError, GitHubClient
from hugohost.github.models import ContentFile


logger = logging.getLogger(__name__)

# Regular (non-executable) file mode in git trees.
FILE_MODE = "100644"


def _as_bytes(content: Union[str, bytes]) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)


def git_blob_sha(content: Union[str, bytes]) -> str:
    """Compute the SHA-1 git assigns to a blob with this content."""
    raw = _as_bytes(content)
    header = f"blob {len(raw)}\0".encode("ascii")
    return hashlib.sha1(header + raw).hexdigest()


def deduplicate_files(files: Sequence[ContentFile]) -> List[ContentFile]:
    """Collapse duplicate paths, keeping the last write at the first position."""
    latest: Dict[str, ContentFile] = {}
    for file in files:
        latest[file.path] = file
    return list(latest.values())


class CommitBuilder:
    """Builds one commit from a set of logical files on a branch.

    Attributes:
        client: The GitHub API client.

    Example:
        >>> builder = CommitBuilder(client)
        >>> sha = await builder.commit_files(
        ...     "octocat", "my-blog", "main",
        ...     [ContentFile(path="README.md", content="# My Blog")],
        ...     "Initial commit",
        ... )
    """

    def __init__(self, client: GitHubClient):
        self.client = client

    async def commit_files(
        self,
        owner: str,
        repo: str,
        branch: str,
        files: Sequence[ContentFile],
        message: str,
    ) -> Optional[str]:
        """Commit `files` on `branch` as a single commit.

        Args:
            owner: Repository owner.
            repo: Repository name.
            branch: Target branch; created if it does not exist.
            files: Files to write. Duplicate paths: last write wins.
            message: Commit message.

        Returns:
            The SHA the branch points at afterwards, or None when
            `files` is empty (no-op).

        Raises:
            GitHubAPIError: With `stage` set to the failing step and
                `path` set for blob failures.
            BranchConflictError: If the branch moved concurrently.
        """
        if not files:
            logger.debug(
                "No files to commit",
                extra={"owner": owner, "repo": repo, "branch": branch},
            )
            return None

        unique_files = deduplicate_files(files)

        tip = await self.client.get_branch_tip(owner, repo, branch)
        base_tree: Optional[str] = None
        if tip is not None:
            base_tree = await self.client.get_commit_tree(owner, repo, tip)

        entries = await self._create_blobs(owner, repo, unique_files)

        tree = await self.client.create_tree(owner, repo, entries, base_tree=base_tree)
        if tip is not None and tree == base_tree:
            logger.info(
                "Tree unchanged, skipping commit",
                extra={"owner": owner, "repo": repo, "branch": branch, "tip": tip},
            )
            return tip

        parents = [tip] if tip is not None else []
        commit_sha = await self.client.create_commit(owner, repo, message, tree, parents)

        if tip is None:
            await self.client.create_branch(owner, repo, branch, commit_sha)
        else:
            await self.client.fast_forward_branch(owner, repo, branch, commit_sha)

        logger.info(
            "Committed files",
            extra={
                "owner": owner,
                "repo": repo,
                "branch": branch,
                "commit": commit_sha,
                "files": len(unique_files),
                "root_commit": tip is None,
            },
        )
        return commit_sha

    async def _create_blobs(
        self,
        owner: str,
        repo: str,
        files: Sequence[ContentFile],
    ) -> List[Dict[str, str]]:
        """Upload each distinct content once and return tree entries."""
        uploaded: Dict[str, str] = {}
        entries: List[Dict[str, str]] = []

        for file in files:
            digest = git_blob_sha(file.content)
            blob_sha = uploaded.get(digest)
            if blob_sha is None:
                try:
                    blob_sha = await self.client.create_blob(owner, repo, file.content)
                except GitHubAPIError as e:
                    e.path = file.path
                    raise
                uploaded[digest] = blob_sha
            entries.append(
                {"path": file.path, "mode": FILE_MODE, "type": "blob", "sha": blob_sha}
            )

        return entries
