# core/git_manager.py
from pathlib import Path
from typing import Optional

import git


class GitManager:
    """Thin wrapper over the server's single git working directory.

    Every method lets ``git.exc.GitError`` propagate; callers decide how to
    report it.
    """

    def __init__(self, repo_path: str):
        self.repo_path = str(repo_path).rstrip("/") or "/"
        self._repo: Optional[git.Repo] = None

    @property
    def repo(self) -> git.Repo:
        if self._repo is None:
            self._repo = git.Repo(self.repo_path)
        return self._repo

    @property
    def working_dir(self) -> Path:
        return Path(self.repo_path)

    def pull(self) -> str:
        """Run ``git pull`` on the current branch and return git's output."""
        return self.repo.git.pull()

    def checkout(self, branch: str) -> str:
        return self.repo.git.checkout(branch)

    def get_commit_hash(self, short: bool = False) -> str:
        hexsha = self.repo.head.commit.hexsha
        return hexsha[:7] if short else hexsha
