# repo.py
# Parsing of user-supplied repository references and building GitHub URLs.
# Pure string handling; nothing in here touches the network.

from __future__ import annotations

from urllib.parse import urlsplit

from .model import RepoRef

DEFAULT_BRANCH = "main"


class InvalidRepoReference(ValueError):
    """Raised when owner or repo cannot be determined from user input."""

    def __init__(self, text: str):
        self.text = text
        super().__init__("Invalid repository. Use owner/repo or GitHub URL.")


def _split_owner_repo(path: str) -> tuple[str, str]:
    parts = path.split("/")
    owner = parts[0].strip() if parts else ""
    repo = parts[1].strip() if len(parts) > 1 else ""
    return owner, repo


def parse_repo_input(text: str) -> RepoRef:
    """
    Parse a repository reference.

    Accepted shapes:
      - https://github.com/owner/repo[/tree/<branch>]
      - owner/repo#branch  or  owner/repo@branch
      - owner/repo

    Raises:
        InvalidRepoReference: if owner or repo is missing
    """
    if not isinstance(text, str):
        raise InvalidRepoReference(str(text))

    trimmed = text.strip()
    owner = repo = ""
    branch = DEFAULT_BRANCH

    if trimmed.startswith("http"):
        try:
            path = urlsplit(trimmed).path
        except ValueError:
            # e.g. an unbalanced IPv6 bracket in the host part
            raise InvalidRepoReference(text) from None
        parts = [p for p in path.split("/") if p]
        if len(parts) >= 2:
            owner, repo = parts[0], parts[1]
            if repo.endswith(".git"):
                repo = repo[: -len(".git")]
        if "tree" in parts:
            idx = parts.index("tree")
            if idx + 1 < len(parts):
                branch = parts[idx + 1]
    else:
        sep = "#" if "#" in trimmed else "@" if "@" in trimmed else None
        if sep:
            head, _, tail = trimmed.partition(sep)
            branch = tail.strip() or branch
            owner, repo = _split_owner_repo(head)
        else:
            owner, repo = _split_owner_repo(trimmed)

    if not owner or not repo:
        raise InvalidRepoReference(text)

    return RepoRef(owner=owner, repo=repo, branch=branch)


def build_repo_url(owner: str, repo: str, branch: str | None = None) -> str:
    """Return the browsable GitHub URL; default branches are left implicit."""
    if branch and branch not in ("main", "master"):
        return f"https://github.com/{owner}/{repo}/tree/{branch}"
    return f"https://github.com/{owner}/{repo}"


def repo_url(ref: RepoRef) -> str:
    return build_repo_url(ref.owner, ref.repo, ref.branch)
