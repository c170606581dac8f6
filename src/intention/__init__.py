from .model import RepoRef, Step, StepSource, StoredTest
from .repo import InvalidRepoReference, build_repo_url, parse_repo_input

__all__ = [
    "RepoRef",
    "Step",
    "StepSource",
    "StoredTest",
    "InvalidRepoReference",
    "build_repo_url",
    "parse_repo_input",
]
