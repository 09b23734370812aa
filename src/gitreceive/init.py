"""Set up the system account that receives pushes."""

import configparser
import logging
import optparse
import os
import sys

from gitreceive import app, runner, util

_log = logging.getLogger(__name__)

SAMPLE_RECEIVER = """\
#!/bin/bash
# Called for every push to the tracked branch as
#
#   receiver REPOSITORY REVISION USER FINGERPRINT
#
# with a tar archive of the pushed tree on stdin. A non-zero exit
# rejects the push.
#URL=http://example.com/hook
#echo "----> Posting to $URL ..."
#curl \\
#  -X 'POST' \\
#  -F "repository=$1" \\
#  -F "revision=$2" \\
#  -F "username=$3" \\
#  -F "fingerprint=$4" \\
#  -F contents=@- \\
#  --silent $URL
cat >/dev/null
"""


class ProvisionError(Exception):
    """Provisioning failed"""

    def __init__(self, *args: str, returncode: int = 1) -> None:
        super().__init__(*args)
        self.returncode = returncode

    def __str__(self) -> str:
        return ": ".join([self.__doc__, *self.args])


class AddUserError(ProvisionError):
    """Failed to add user"""


class SSHDirError(ProvisionError):
    """Failed to create the .ssh directory"""


class AuthorizedKeysOpenError(ProvisionError):
    """Failed to open authorized_keys"""


class ReceiverScriptError(ProvisionError):
    """Failed to write receiver script"""


class ChownError(ProvisionError):
    """Failed to change ownership"""


def _check(result: runner.Result, error: type[ProvisionError], *details: str) -> None:
    if not result.ok:
        output = result.output.strip()
        raise error(
            *details,
            result.error or f"exit status {result.returncode}",
            *([output] if output else []),
            returncode=result.returncode,
        )


def add_user(home: str, user: str, _useradd: str = "useradd") -> None:
    _check(runner.run_with_output([_useradd, "-d", home, user]), AddUserError, user)


def setup_ssh_dir(home: str) -> str:
    """Create ``~/.ssh`` and an empty ``authorized_keys`` in ``home``."""
    ssh_dir = os.path.join(home, ".ssh")
    try:
        os.makedirs(ssh_dir, mode=0o700, exist_ok=True)
    except OSError as e:
        raise SSHDirError(ssh_dir, e.strerror or str(e)) from e
    authorized_keys = os.path.join(ssh_dir, "authorized_keys")
    try:
        os.close(os.open(authorized_keys, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600))
    except OSError as e:
        raise AuthorizedKeysOpenError(authorized_keys, e.strerror or str(e)) from e
    return authorized_keys


def setup_receiver_script(path: str) -> bool:
    """Write a sample receiver to ``path`` unless there is one already."""
    if os.path.exists(path):
        return False
    try:
        util.write_file(path, SAMPLE_RECEIVER)
        os.chmod(path, 0o755)  # noqa: S103
    except OSError as e:
        raise ReceiverScriptError(path, e.strerror or str(e)) from e
    return True


def chown(home: str, user: str, _chown: str = "chown") -> None:
    _check(runner.run_with_output([_chown, "-R", user, home]), ChownError, home)


def provision(
    home: str,
    user: str,
    receiver: str,
    _useradd: str = "useradd",
    _chown: str = "chown",
) -> None:
    add_user(home, user, _useradd=_useradd)
    setup_ssh_dir(home)
    if setup_receiver_script(receiver):
        _log.info("Wrote sample receiver to %s", receiver)
    chown(home, user, _chown=_chown)


class Main(app.App):
    name = "init"

    def create_parser(self) -> optparse.OptionParser:
        parser = super().create_parser()
        parser.set_usage("%prog [OPTS]")
        parser.set_description("Create the system account that receives pushes")
        return parser

    def handle_args(
        self,
        parser: optparse.OptionParser,
        cfg: configparser.ConfigParser,
        options: optparse.Values,
        args: list[str],
    ) -> None:
        super().handle_args(parser, cfg, options, args)

        user = util.get_git_user(cfg)
        home = util.get_home_dir(cfg)
        try:
            provision(home=home, user=user, receiver=util.get_receiver_path(cfg, home))
        except ProvisionError as e:
            _log.error("%s", e)
            sys.exit(e.returncode)
        print(f"Created receiver script in {home} for user '{user}'.")
