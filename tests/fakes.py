"""In-memory stand-ins for the GitHub and Cloudflare APIs.

Both fakes are served through `httpx.MockTransport`, so the real
clients (request building, error parsing, envelope handling) run
unchanged in tests.
"""

import base64
import hashlib
import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from hugohost.github.commit_builder import git_blob_sha


def _response(status: int, payload: Any) -> httpx.Response:
    return httpx.Response(status, json=payload)


class FakeGitHub:
    """Git Data API and repository endpoints backed by dictionaries.

    Failures are injected per operation name with `fail()`:
    get_user, create_repository, get_repository, get_ref, get_commit,
    create_blob, create_tree, create_commit, create_ref, update_ref.
    """

    def __init__(self, login: str = "octocat", default_branch: str = "main"):
        self.login = login
        self.default_branch = default_branch
        self.repos: Dict[str, Dict[str, Any]] = {}
        self.blobs: Dict[str, bytes] = {}
        self.trees: Dict[str, Dict[str, str]] = {}
        self.commits: Dict[str, Dict[str, Any]] = {}
        self.refs: Dict[Tuple[str, str], str] = {}
        self.calls: List[Tuple[str, str]] = []
        self.blob_uploads = 0
        self.tokens: List[str] = []
        self.before_update_ref: Optional[Callable[[str, str], None]] = None
        self._failures: Dict[str, List[Tuple[int, Dict[str, Any]]]] = {}
        self._counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def fail(
        self,
        operation: str,
        status: int,
        body: Optional[Dict[str, Any]] = None,
        times: int = 1,
    ) -> None:
        """Make the next `times` calls of `operation` return `status`."""
        payload = body if body is not None else {"message": f"{operation} failed"}
        self._failures.setdefault(operation, []).extend([(status, payload)] * times)

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def add_repository(self, name: str, default_branch: Optional[str] = None) -> Dict[str, Any]:
        full_name = f"{self.login}/{name}"
        data = {
            "name": name,
            "full_name": full_name,
            "html_url": f"https://github.com/{full_name}",
            "default_branch": default_branch or self.default_branch,
            "private": False,
        }
        self.repos[full_name] = data
        return data

    def tip(self, full_name: str, branch: str) -> Optional[str]:
        return self.refs.get((full_name, branch))

    def files(self, full_name: str, branch: str) -> Dict[str, bytes]:
        """Materialized file contents at the branch tip."""
        tip = self.tip(full_name, branch)
        if tip is None:
            return {}
        tree = self.trees[self.commits[tip]["tree"]]
        return {path: self.blobs[sha] for path, sha in tree.items()}

    def history(self, full_name: str, branch: str) -> List[Dict[str, Any]]:
        """Commits reachable from the tip along first parents, newest first."""
        sha = self.tip(full_name, branch)
        commits = []
        while sha is not None:
            commit = self.commits[sha]
            commits.append(commit)
            sha = commit["parents"][0] if commit["parents"] else None
        return commits

    def write_commit(self, full_name: str, branch: str, files: Dict[str, str], message: str) -> str:
        """Simulate another writer committing directly to a branch."""
        tip = self.tip(full_name, branch)
        tree = dict(self.trees[self.commits[tip]["tree"]]) if tip else {}
        for path, content in files.items():
            raw = content.encode("utf-8")
            sha = git_blob_sha(raw)
            self.blobs[sha] = raw
            tree[path] = sha
        tree_sha = self._store_tree(tree)
        commit_sha = self._store_commit(tree_sha, [tip] if tip else [], message)
        self.refs[(full_name, branch)] = commit_sha
        return commit_sha

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def _store_tree(self, entries: Dict[str, str]) -> str:
        listing = "\n".join(f"{path} {sha}" for path, sha in sorted(entries.items()))
        sha = hashlib.sha1(listing.encode("utf-8")).hexdigest()
        self.trees[sha] = dict(entries)
        return sha

    def _store_commit(self, tree: str, parents: List[str], message: str) -> str:
        self._counter += 1
        seed = f"{tree}\n{','.join(parents)}\n{message}\n{self._counter}"
        sha = hashlib.sha1(seed.encode("utf-8")).hexdigest()
        self.commits[sha] = {"sha": sha, "tree": tree, "parents": list(parents), "message": message}
        return sha

    def _is_ancestor(self, ancestor: str, sha: str) -> bool:
        pending = [sha]
        seen = set()
        while pending:
            current = pending.pop()
            if current == ancestor:
                return True
            if current in seen or current not in self.commits:
                continue
            seen.add(current)
            pending.extend(self.commits[current]["parents"])
        return False

    def _injected(self, operation: str) -> Optional[httpx.Response]:
        queue = self._failures.get(operation)
        if queue:
            status, payload = queue.pop(0)
            return _response(status, payload)
        return None

    def _handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        method = request.method
        self.calls.append((method, path))
        self.tokens.append(request.headers.get("authorization", ""))
        body = json.loads(request.content) if request.content else {}

        if method == "GET" and path == "/user":
            return self._injected("get_user") or _response(200, {"login": self.login})

        if method == "POST" and path == "/user/repos":
            return self._injected("create_repository") or self._create_repository(body)

        match = re.fullmatch(r"/repos/([^/]+)/([^/]+)(/.*)?", path)
        if match is None:
            return _response(404, {"message": "Not Found"})
        full_name = f"{match.group(1)}/{match.group(2)}"
        rest = match.group(3) or ""

        if method == "GET" and rest == "":
            injected = self._injected("get_repository")
            if injected is not None:
                return injected
            repo = self.repos.get(full_name)
            return _response(200, repo) if repo else _response(404, {"message": "Not Found"})

        if full_name not in self.repos:
            return _response(404, {"message": "Not Found"})

        if method == "GET" and rest.startswith("/git/ref/heads/"):
            injected = self._injected("get_ref")
            if injected is not None:
                return injected
            branch = rest[len("/git/ref/heads/"):]
            if not any(name == full_name for name, _ in self.refs):
                return _response(409, {"message": "Git Repository is empty."})
            sha = self.refs.get((full_name, branch))
            if sha is None:
                return _response(404, {"message": "Not Found"})
            return _response(200, {"ref": f"refs/heads/{branch}", "object": {"sha": sha, "type": "commit"}})

        if method == "GET" and rest.startswith("/git/commits/"):
            injected = self._injected("get_commit")
            if injected is not None:
                return injected
            commit = self.commits.get(rest[len("/git/commits/"):])
            if commit is None:
                return _response(404, {"message": "Not Found"})
            return _response(200, {"sha": commit["sha"], "tree": {"sha": commit["tree"]}})

        if method == "POST" and rest == "/git/blobs":
            injected = self._injected("create_blob")
            if injected is not None:
                return injected
            raw = base64.b64decode(body["content"])
            sha = git_blob_sha(raw)
            self.blobs[sha] = raw
            self.blob_uploads += 1
            return _response(201, {"sha": sha})

        if method == "POST" and rest == "/git/trees":
            injected = self._injected("create_tree")
            if injected is not None:
                return injected
            entries = dict(self.trees.get(body.get("base_tree"), {}))
            for entry in body["tree"]:
                entries[entry["path"]] = entry["sha"]
            return _response(201, {"sha": self._store_tree(entries)})

        if method == "POST" and rest == "/git/commits":
            injected = self._injected("create_commit")
            if injected is not None:
                return injected
            sha = self._store_commit(body["tree"], body["parents"], body["message"])
            return _response(201, {"sha": sha})

        if method == "POST" and rest == "/git/refs":
            injected = self._injected("create_ref")
            if injected is not None:
                return injected
            branch = body["ref"][len("refs/heads/"):]
            if (full_name, branch) in self.refs:
                return _response(422, {"message": "Reference already exists"})
            self.refs[(full_name, branch)] = body["sha"]
            return _response(201, {"ref": body["ref"], "object": {"sha": body["sha"]}})

        if method == "PATCH" and rest.startswith("/git/refs/heads/"):
            branch = rest[len("/git/refs/heads/"):]
            if self.before_update_ref is not None:
                self.before_update_ref(full_name, branch)
            injected = self._injected("update_ref")
            if injected is not None:
                return injected
            current = self.refs.get((full_name, branch))
            if current is None:
                return _response(422, {"message": "Reference does not exist"})
            if not body.get("force") and not self._is_ancestor(current, body["sha"]):
                return _response(422, {"message": "Update is not a fast forward"})
            self.refs[(full_name, branch)] = body["sha"]
            return _response(200, {"object": {"sha": body["sha"]}})

        return _response(404, {"message": "Not Found"})

    def _create_repository(self, body: Dict[str, Any]) -> httpx.Response:
        name = body["name"]
        if f"{self.login}/{name}" in self.repos:
            return _response(
                422,
                {
                    "message": "Repository creation failed.",
                    "errors": [
                        {
                            "resource": "Repository",
                            "code": "custom",
                            "field": "name",
                            "message": "name already exists on this account",
                        }
                    ],
                },
            )
        return _response(201, self.add_repository(name))


class FakeCloudflare:
    """Cloudflare Pages project endpoints using the v4 response envelope."""

    def __init__(self) -> None:
        self.projects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.created_bodies: List[Dict[str, Any]] = []
        self._failures: Dict[str, List[Tuple[int, Dict[str, Any]]]] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def fail(
        self,
        operation: str,
        status: int,
        errors: Optional[List[Dict[str, Any]]] = None,
        times: int = 1,
    ) -> None:
        """Make the next `times` calls of get_project/create_project fail."""
        envelope = {
            "success": False,
            "errors": errors if errors is not None else [{"code": 10000, "message": "Authentication error"}],
            "result": None,
        }
        self._failures.setdefault(operation, []).extend([(status, envelope)] * times)

    def _injected(self, operation: str) -> Optional[httpx.Response]:
        queue = self._failures.get(operation)
        if queue:
            status, payload = queue.pop(0)
            return _response(status, payload)
        return None

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        match = re.fullmatch(r"/client/v4/accounts/([^/]+)/pages/projects(?:/([^/]+))?", request.url.path)
        if match is None:
            return _response(404, {"success": False, "errors": [{"code": 7003, "message": "No route"}]})
        account_id, name = match.group(1), match.group(2)

        if request.method == "GET" and name:
            injected = self._injected("get_project")
            if injected is not None:
                return injected
            project = self.projects.get((account_id, name))
            if project is None:
                return _response(
                    404,
                    {
                        "success": False,
                        "errors": [{"code": 8000007, "message": "Project not found."}],
                        "result": None,
                    },
                )
            return _response(200, {"success": True, "errors": [], "result": project})

        if request.method == "POST" and not name:
            injected = self._injected("create_project")
            if injected is not None:
                return injected
            body = json.loads(request.content)
            self.created_bodies.append(body)
            project = {"name": body["name"], "subdomain": f"{body['name']}.pages.dev", **body}
            self.projects[(account_id, body["name"])] = project
            return _response(200, {"success": True, "errors": [], "result": project})

        return _response(405, {"success": False, "errors": [{"code": 7001, "message": "Method not allowed"}]})
