import logging
import os
import shlex

from gitreceive import runner, util

_log = logging.getLogger(__name__)

PRE_RECEIVE_TEMPLATE = """\
#!/bin/bash
cat | {gateway} hook
"""


class GitError(Exception):
    """git failed"""

    def __init__(self, *args: str, returncode: int = 1) -> None:
        super().__init__(*args)
        self.returncode = returncode

    def __str__(self) -> str:
        return ": ".join([self.__doc__, *self.args])


class GitInitError(GitError):
    """git init failed"""


class RepositoryCreateError(GitError):
    """Cannot create repository directory"""


class HookInstallError(GitError):
    """Cannot write pre-receive hook"""


def init(path: str, _git: str = "git") -> bool:
    """
    Create a bare git repository at C{path} unless C{path} already exists.

    Leading directories of C{path} are created as needed. An existing
    directory is left alone, whatever it contains.

    @param path: Path of repository to create.

    @type path: str

    @return: whether a repository was created.
    """
    if os.path.exists(path):
        return False

    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, mode=0o750, exist_ok=True)
        os.mkdir(path, 0o750)
    except OSError as e:
        raise RepositoryCreateError(path, e.strerror or str(e)) from e
    _log.debug("Initializing bare repository in %s", path)
    result = runner.run_with_output([_git, "init", "--bare", "--quiet"], cwd=path)
    if not result.ok:
        details = [result.error or f"exit status {result.returncode}"]
        if result.output.strip():
            details.append(result.output.strip())
        raise GitInitError(*details, returncode=result.returncode)
    return True


def pre_receive_hook_path(path: str) -> str:
    return os.path.join(path, "hooks", "pre-receive")


def install_pre_receive_hook(path: str, gateway: str) -> str:
    """
    Write the pre-receive hook of the repository at C{path}.

    Whatever was there before is replaced; the hook hands its input to
    C{gateway hook}.
    """
    hook = pre_receive_hook_path(path)
    try:
        os.makedirs(os.path.dirname(hook), exist_ok=True)
        util.write_file(hook, PRE_RECEIVE_TEMPLATE.format(gateway=shlex.quote(gateway)))
        os.chmod(hook, 0o755)  # noqa: S103
    except OSError as e:
        raise HookInstallError(hook, e.strerror or str(e)) from e
    return hook
