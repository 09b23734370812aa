"""Entry point of the ``gitreceive`` executable.

The same executable is the administrator's tool, the forced command of every
enrolled key and the pre-receive hook of every repository, so the first
argument picks the role.
"""

import sys
import typing as t

from gitreceive import app, init, keys, receive, serve

COMMANDS: dict[str, type[app.App]] = {
    # Administrative commands
    "init": init.Main,
    "upload-key": keys.Main,
    # Internal commands
    "run": serve.Main,
    "hook": receive.Main,
}

USAGE = """\
Usage: {prog} <command> [options]

Commands:
  init                     create the account that receives pushes
  upload-key USER          enroll the SSH public key on stdin for USER
  run USER FINGERPRINT     serve a git command (SSH forced command)
  hook                     relay a push to the receiver (pre-receive hook)
"""


def main(argv: t.Optional[list[str]] = None) -> None:
    if argv is None:
        argv = sys.argv
    gateway_path = argv[0]

    if len(argv) < 2:
        print(USAGE.format(prog=gateway_path), end="")
        return

    command = COMMANDS.get(argv[1])
    if command is None:
        print(USAGE.format(prog=gateway_path), end="", file=sys.stderr)
        sys.exit(2)

    command.run(argv[2:], gateway_path=gateway_path)


if __name__ == "__main__":
    main()
