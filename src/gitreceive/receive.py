"""Relay pushed revisions to the receiver from inside a pre-receive hook.

For every update of the tracked branch the tree of the new revision is
archived with ``git archive`` and piped into the receiver program::

    receiver REPO REVISION USER FINGERPRINT < archive.tar

Any failure makes the hook exit non-zero, which makes git reject the
whole push.
"""

import configparser
import logging
import optparse
import os
import subprocess
import sys
import typing as t

from gitreceive import app, context, runner, util

_log = logging.getLogger(__name__)


class DeliveryError(Exception):
    """delivery failed"""

    def __init__(self, revision: str, detail: str, returncode: int = 1) -> None:
        super().__init__(revision, detail)
        self.revision = revision
        self.detail = detail
        self.returncode = returncode

    def __str__(self) -> str:
        return f"push denied - {self.__doc__} for {self.revision}: {self.detail}"


class ReceiverStartError(DeliveryError):
    """failed to start receiver"""


class ArchiverError(DeliveryError):
    """failed to run git archiver"""


class ReceiverError(DeliveryError):
    """receiver failed to exit cleanly"""


class MalformedRefUpdateError(Exception):
    """Malformed ref update"""

    def __str__(self) -> str:
        return ": ".join([self.__doc__, *self.args])


class RefUpdate(t.NamedTuple):
    old: str
    new: str
    ref: str


def read_ref_updates(fp: t.Iterable[str]) -> t.Iterator[RefUpdate]:
    """Parse ``<old-rev> <new-rev> <ref-name>`` lines as fed to pre-receive."""
    for line in fp:
        fields = line.split()
        if not fields:
            continue
        if len(fields) < 3:
            raise MalformedRefUpdateError(repr(line.rstrip("\n")))
        yield RefUpdate(*fields[:3])


def _status(returncode: int) -> str:
    return f"exit status {returncode}"


def deliver(
    ctx: context.DeliveryContext,
    revision: str,
    receiver: str,
    stdout: t.Optional[t.IO] = None,
    _git: str = "git",
) -> None:
    """Stream ``git archive revision`` into a fresh receiver process."""
    read_fd, write_fd = os.pipe()
    try:
        try:
            child = subprocess.Popen(
                [receiver, ctx.repo, revision, ctx.user, ctx.fingerprint],
                stdin=read_fd,
                stdout=stdout,
                close_fds=True,
            )
        except OSError as e:
            raise ReceiverStartError(revision, str(e), runner.FALLBACK_EXIT_CODE) from e
        finally:
            os.close(read_fd)

        try:
            archiver = subprocess.call([_git, "archive", revision], stdout=write_fd, close_fds=True)
        except OSError as e:
            child.kill()
            child.wait()
            raise ArchiverError(revision, str(e), runner.FALLBACK_EXIT_CODE) from e
    finally:
        # the receiver only sees end of input once our end is closed too
        os.close(write_fd)

    if archiver != 0:
        child.wait()
        raise ArchiverError(revision, _status(archiver), runner.exit_code(archiver))

    returncode = child.wait()
    if returncode != 0:
        raise ReceiverError(revision, _status(returncode), runner.exit_code(returncode))


def relay(
    ctx: context.DeliveryContext,
    fp: t.Iterable[str],
    receiver: str,
    branch: str = "refs/heads/master",
    stdout: t.Optional[t.IO] = None,
    _git: str = "git",
) -> int:
    """Deliver every update of ``branch`` read from ``fp``, in order.

    Updates to other refs are skipped. Returns the number of revisions
    delivered; the first failure raises :class:`DeliveryError`.
    """
    delivered = 0
    for update in read_ref_updates(fp):
        if update.ref != branch:
            continue
        _log.debug("Delivering %s of %s to %s", update.new, ctx.repo, receiver)
        deliver(ctx, update.new, receiver, stdout=stdout, _git=_git)
        delivered += 1
    return delivered


class Main(app.App):
    name = "hook"

    def create_parser(self) -> optparse.OptionParser:
        parser = super().create_parser()
        parser.set_usage("%prog [OPTS]")
        parser.set_description("Relay a push to the receiver (run as pre-receive hook)")
        return parser

    def handle_args(
        self,
        parser: optparse.OptionParser,
        cfg: configparser.ConfigParser,
        options: optparse.Values,
        args: list[str],
    ) -> None:
        super().handle_args(parser, cfg, options, args)

        try:
            ctx = context.DeliveryContext.from_environ(os.environ)
        except context.ConfigurationDefectError as e:
            _log.error("%s", e)
            sys.exit(1)

        try:
            relay(
                ctx,
                sys.stdin,
                receiver=util.get_receiver_path(cfg, ctx.home),
                branch=util.get_tracked_branch(cfg),
            )
        except MalformedRefUpdateError as e:
            _log.error("%s", e)
            sys.exit(1)
        except DeliveryError as e:
            print(e)
            sys.exit(e.returncode or 1)
