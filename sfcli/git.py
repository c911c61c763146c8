"""Thin helpers around the git command line."""

from __future__ import annotations

import codecs
import os
import subprocess
import sys
from typing import TextIO


class GitError(Exception):
    """A git command could not be run or exited with an error."""

    def __init__(self, message: str, output: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class GitOutputWriter:
    """Indents each complete line of git output by two spaces.

    Both carriage returns and newlines end a line, so progress updates keep
    their in-place rewriting. Lines made of a lone terminator are passed
    through unindented. Incomplete lines are held until they are finished.
    """

    def __init__(self, output: TextIO | None = None) -> None:
        self.output = output if output is not None else sys.stdout
        self._pending = ""

    def write(self, data: str) -> int:
        self._pending += data
        self._scan()
        return len(data)

    def _scan(self) -> None:
        while self._pending:
            ends = [pos for pos in (self._pending.find("\r"), self._pending.find("\n")) if pos != -1]
            if not ends:
                return
            cut = min(ends) + 1
            chunk, self._pending = self._pending[:cut], self._pending[cut:]
            if len(chunk) > 1:
                self.output.write("  ")
            self.output.write(chunk)


def _check_status(returncode: int, output: str) -> None:
    if returncode == 0:
        return
    if returncode == 1:
        raise GitError("Command failed", output, returncode)
    raise GitError(f"git exited with status {returncode}", output, returncode)


def run_git(cwd: str | None, args: list[str], quiet: bool = True) -> str:
    """Run git with the given arguments.

    In quiet mode stdout and stderr are captured together and returned.
    Otherwise the output is streamed, indented, to the terminal and an empty
    string is returned. Raises GitError on failure.
    """
    command = ["git", *args]
    workdir = cwd or None
    if quiet:
        try:
            result = subprocess.run(
                command,
                cwd=workdir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise GitError(f"unable to run git: {exc}") from exc
        output = result.stdout or ""
        _check_status(result.returncode, output)
        return output

    try:
        proc = subprocess.Popen(command, cwd=workdir, stdout=subprocess.PIPE)
    except OSError as exc:
        raise GitError(f"unable to run git: {exc}") from exc
    writer = GitOutputWriter()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        for chunk in iter(lambda: proc.stdout.read1(4096), b""):
            writer.write(decoder.decode(chunk))
        writer.write(decoder.decode(b"", final=True))
    finally:
        proc.stdout.close()
    _check_status(proc.wait(), "")
    return ""


def get_current_branch(cwd: str | None) -> str:
    """Return the short name of the checked-out branch, or "" if there is none."""
    try:
        output = run_git(cwd, ["symbolic-ref", "--short", "HEAD"])
    except GitError:
        return ""
    return output.strip(" \n")


def reset_hard(cwd: str | None, reference: str) -> None:
    run_git(cwd, ["reset", "--hard", reference])


def fetch(cwd: str | None, remote: str, branch: str = "") -> None:
    args = ["fetch", remote]
    if branch:
        args.append(branch)
    run_git(cwd, args)


def clone(url: str, directory: str) -> None:
    run_git(os.path.dirname(directory), ["clone", url, directory], quiet=False)


def push(cwd: str | None, remote: str, ref: str, remote_ref: str = "") -> None:
    if not ref:
        raise ValueError("ref is required when pushing")
    if remote_ref:
        ref = f"{ref}:{remote_ref}"
    run_git(cwd, ["push", "--progress", remote, ref], quiet=False)


def get_upstream_branch(cwd: str | None, *remote_names: str) -> str:
    """Return the upstream branch name if it tracks one of the given remotes."""
    try:
        output = run_git(cwd, ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"])
    except GitError:
        return ""
    upstream = output.strip(" \n")
    if "/" not in upstream:
        return ""
    remote, branch = upstream.split("/", 1)
    return branch if remote in remote_names else ""


def init(directory: str | None, force_main_branch: bool = False, debug: bool = False) -> str | None:
    """Create a repository, optionally on a branch named main."""
    run_git(directory, ["init"], quiet=not debug)
    if force_main_branch:
        return run_git(directory, ["checkout", "-b", "main"], quiet=not debug)
    return None


def add_and_commit(directory: str | None, files: list[str], message: str, debug: bool = False) -> None:
    for args in (["add", *files], ["commit", "-m", message]):
        run_git(directory, args, quiet=not debug)