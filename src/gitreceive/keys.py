"""Enroll SSH public keys behind a ``gitreceive run`` forced command."""

import configparser
import logging
import optparse
import os
import re
import shlex
import sys
import tempfile
import typing as t

from gitreceive import app, runner, util

_log = logging.getLogger(__name__)

_ACCEPTABLE_USER_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.-]*(@[a-zA-Z][a-zA-Z0-9.-]*)?$")
_FINGERPRINT_RE = re.compile(r"^[A-Za-z0-9+/=:._-]+$")
_UNSAFE_GATEWAY_RE = re.compile(r"[\"'\\\r\n]")

KEY_OPTIONS = "no-agent-forwarding,no-pty,no-user-rc,no-X11-forwarding,no-port-forwarding"


class EnrollError(Exception):
    """Cannot enroll key"""

    def __init__(self, *args: str, returncode: int = 1) -> None:
        super().__init__(*args)
        self.returncode = returncode

    def __str__(self) -> str:
        return ": ".join([self.__doc__, *self.args])


class EmptyKeyError(EnrollError):
    """No public key given on standard input"""


class InsecureIdentityError(EnrollError):
    """Identity contains not allowed characters"""


class InsecureGatewayError(EnrollError):
    """Gateway path contains not allowed characters"""


class TempKeyError(EnrollError):
    """Failed to write key to a temporary file"""


class TempKeyCleanupError(EnrollError):
    """Failed to remove the temporary file"""


class FingerprintError(EnrollError):
    """Failed to read key"""


class InvalidFingerprintError(EnrollError):
    """fingerprint seems invalid"""


class AuthorizedKeysError(EnrollError):
    """Failed to add key to authorized_keys"""


def is_safe_username(user: str) -> bool:
    return _ACCEPTABLE_USER_RE.match(user) is not None


def check_gateway(gateway: str) -> None:
    # sshd ends the command option at the first unescaped double quote
    if _UNSAFE_GATEWAY_RE.search(gateway) is not None:
        raise InsecureGatewayError(repr(gateway))


def read_pubkey(fp: t.Optional[t.BinaryIO] = None) -> bytes:
    if fp is None:
        fp = sys.stdin.buffer
    return fp.read()  # type: ignore


def parse_fingerprint(output: str) -> str:
    """Pick the fingerprint out of ``ssh-keygen -l`` output.

    The output looks like ``2048 SHA256:xxxx comment (RSA)``.
    """
    parts = output.split(" ")
    if len(parts) < 2:
        raise InvalidFingerprintError(repr(output))
    fingerprint = parts[1]
    if _FINGERPRINT_RE.match(fingerprint) is None:
        raise InvalidFingerprintError(repr(output))
    return fingerprint


def _remove(path: str) -> None:
    try:
        os.unlink(path)
    except OSError as e:
        raise TempKeyCleanupError(path, e.strerror or str(e)) from e


def fingerprint(key: bytes, _ssh_keygen: str = "ssh-keygen") -> str:
    # ssh-keygen won't read a key from a pipe, so give it a real file
    try:
        fd, path = tempfile.mkstemp(prefix="gitreceive-", suffix=".pub")
    except OSError as e:
        raise TempKeyError(e.strerror or str(e)) from e
    try:
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(key)
        except OSError as e:
            raise TempKeyError(path, e.strerror or str(e)) from e
        result = runner.run_with_output([_ssh_keygen, "-lf", path])
        if not result.ok:
            details = [result.error or f"exit status {result.returncode}"]
            if result.output.strip():
                details.append(result.output.strip())
            raise FingerprintError(*details, returncode=result.returncode)
        return parse_fingerprint(result.output.strip())
    finally:
        _remove(path)


def authorized_key_entry(gateway: str, identity: str, fingerprint: str, key: bytes) -> bytes:
    """Build the ``authorized_keys`` line that forces ``gateway run``.

    The key is kept byte for byte, comment included.
    """
    check_gateway(gateway)
    prefix = f'command="{shlex.quote(gateway)} run {identity} {fingerprint}",{KEY_OPTIONS}'
    return prefix.encode() + b" " + key


def enroll(
    identity: str,
    gateway: str,
    key: bytes,
    authorized_keys: str,
    _ssh_keygen: str = "ssh-keygen",
) -> str:
    """Append ``key`` to ``authorized_keys`` bound to ``identity``.

    Returns the fingerprint of the key, which is also baked into the
    forced command.
    """
    if not key.strip():
        raise EmptyKeyError
    if not is_safe_username(identity):
        raise InsecureIdentityError(repr(identity))
    check_gateway(gateway)

    fpr = fingerprint(key, _ssh_keygen=_ssh_keygen)
    _log.debug("Key for %s has fingerprint %s", identity, fpr)

    entry = authorized_key_entry(gateway=gateway, identity=identity, fingerprint=fpr, key=key)
    try:
        os.makedirs(os.path.dirname(authorized_keys), mode=0o700, exist_ok=True)
        with util.locked_append(authorized_keys) as out:
            out.write(entry)
    except OSError as e:
        raise AuthorizedKeysError(authorized_keys, e.strerror or str(e)) from e
    return fpr


class Main(app.App):
    name = "upload-key"

    def create_parser(self) -> optparse.OptionParser:
        parser = super().create_parser()
        parser.set_usage("%prog [OPTS] USER <KEY")
        parser.set_description("Allow the SSH public key read from stdin to push as USER")
        return parser

    def handle_args(
        self,
        parser: optparse.OptionParser,
        cfg: configparser.ConfigParser,
        options: optparse.Values,  # noqa: ARG002
        args: list[str],
    ) -> None:
        try:
            (user,) = args
        except ValueError:
            parser.error("Missing argument USER.")

        try:
            pubkey = read_pubkey()
        except OSError as e:
            _log.error("Failed to read key from stdin: %s", e)
            sys.exit(1)

        authorized_keys = util.get_ssh_authorized_keys_path(cfg)
        try:
            fpr = enroll(
                identity=user,
                gateway=self.gateway_path,
                key=pubkey,
                authorized_keys=authorized_keys,
            )
        except EnrollError as e:
            _log.error("%s", e)
            sys.exit(e.returncode)
        _log.info("Added key for %s to %s", user, authorized_keys)
        print(fpr)
