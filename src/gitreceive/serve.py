"""Serve a git command arriving through an SSH forced command.

The repository named by the client is created on first use under the git
home directory, its pre-receive hook is pointed back at this program, and
the client's command is then run with the identity of the key holder in
the environment.
"""

import configparser
import logging
import optparse
import os
import re
import shlex
import sys
import typing as t

from gitreceive import app, context, repository, runner, util

_log = logging.getLogger(__name__)

SAFE_PATH_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9@._-]*(/[a-zA-Z0-9][a-zA-Z0-9@._-]*)*$")

COMMANDS = [
    "git-receive-pack",
    "git receive-pack",
    "git-upload-pack",
    "git upload-pack",
    "git-upload-archive",
    "git upload-archive",
]


class ServingError(Exception):
    """Serving error"""

    def __str__(self) -> str:
        return ": ".join([self.__doc__, *self.args])


class MissingCommandError(ServingError):
    """SSH_ORIGINAL_COMMAND is undefined"""


class CommandMayNotContainNewlineError(ServingError):
    """Command may not contain newline"""


class CommandTooShortError(ServingError):
    """SSH_ORIGINAL_COMMAND is too short"""


class UnknownCommandError(ServingError):
    """Unknown command denied"""


class UnsafeArgumentsError(ServingError):
    """Arguments to command look dangerous"""


def parse_command(command: t.Optional[str]) -> tuple[list[str], str]:
    """Split the client's command into an argv and the repository it names.

    Quoting is undone the way a shell would, so ``git-receive-pack 'foo'``
    gives ``(["git-receive-pack", "foo"], "foo")``. The returned argv
    refers to the repository relative to the git home directory.
    """
    if not command:
        raise MissingCommandError

    if "\n" in command:
        raise CommandMayNotContainNewlineError

    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise UnsafeArgumentsError(str(e)) from e

    if len(argv) < 2:
        raise CommandTooShortError(repr(command))

    if argv[0] == "git" and len(argv) == 3:
        verb = f"{argv[0]} {argv[1]}"
    elif len(argv) == 2:
        verb = argv[0]
    else:
        raise UnknownCommandError(repr(command))

    if verb not in COMMANDS:
        raise UnknownCommandError(repr(verb))

    repo = argv[-1].lstrip("/")
    if SAFE_PATH_RE.match(repo) is None or ".." in repo.split("/"):
        raise UnsafeArgumentsError(repr(argv[-1]))

    argv[-1] = repo
    return argv, repo


def prepare(home: str, repo: str, gateway: str, _git: str = "git") -> str:
    """Make sure ``repo`` exists under ``home`` and carries our hook.

    Returns the full path of the repository.
    """
    path = os.path.join(home, repo)
    if repository.init(path, _git=_git):
        _log.info("Created repository %s", repo)
    repository.install_pre_receive_hook(path, gateway=gateway)
    return path


def dispatch(
    home: str,
    user: str,
    fingerprint: str,
    gateway: str,
    command: t.Optional[str],
    environ: t.Optional[t.Mapping[str, str]] = None,
    _git: str = "git",
) -> runner.Result:
    """Run the client's git command on behalf of ``user``."""
    argv, repo = parse_command(command)
    prepare(home=home, repo=repo, gateway=gateway, _git=_git)

    ctx = context.DeliveryContext(user=user, fingerprint=fingerprint, repo=repo, home=home)
    if environ is None:
        environ = os.environ
    env = context.augment_environ(environ, ctx)

    _log.debug("Serving %r for %s (%s)", argv, user, fingerprint)
    return runner.run(argv, cwd=home, env=env)


class Main(app.App):
    name = "run"

    def create_parser(self) -> optparse.OptionParser:
        parser = super().create_parser()
        parser.set_usage("%prog [OPTS] USER FINGERPRINT")
        parser.set_description("Run a git command arriving over SSH for an enrolled key")
        return parser

    def handle_args(
        self,
        parser: optparse.OptionParser,
        cfg: configparser.ConfigParser,
        options: optparse.Values,  # noqa: ARG002
        args: list[str],
    ) -> None:
        try:
            (user, fingerprint) = args
        except ValueError:
            parser.error("Missing arguments USER and FINGERPRINT.")

        cmd = os.environ.get("SSH_ORIGINAL_COMMAND", None)
        _log.debug("Got command: %s", cmd)

        try:
            result = dispatch(
                home=util.get_home_dir(cfg),
                user=user,
                fingerprint=fingerprint,
                gateway=self.gateway_path,
                command=cmd,
            )
        except ServingError as e:
            _log.error("%s", e)
            sys.exit(1)
        except repository.GitError as e:
            _log.error("%s", e)
            sys.exit(e.returncode)

        if result.error is not None:
            print(result.error)
        sys.exit(result.returncode)
