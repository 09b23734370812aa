from collections import abc
import configparser
import contextlib
import fcntl
import os
import pwd
import secrets
import typing as t

SECTION = "gitreceive"


@contextlib.contextmanager
def safe_open_write(path: str) -> abc.Iterator[t.IO]:
    tmp = f"{path}.{secrets.token_hex(16)}.tmp"
    with open(tmp, "w") as fp:
        yield fp
        os.fsync(fp)
    os.rename(tmp, path)


def write_file(path: str, contents: str) -> None:
    with safe_open_write(path) as fp:
        fp.write(contents)


@contextlib.contextmanager
def locked_append(path: str, mode: int = 0o600) -> abc.Iterator[t.BinaryIO]:
    """Open ``path`` for appending bytes while holding an exclusive lock on it.

    The file is created with ``mode`` if it does not exist. The lock is
    advisory, so every writer has to go through here.
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, mode)
    with os.fdopen(fd, "ab") as fp:
        fcntl.flock(fp, fcntl.LOCK_EX)
        try:
            yield fp
            fp.flush()
            os.fsync(fp)
        finally:
            fcntl.flock(fp, fcntl.LOCK_UN)


def get(cfg: configparser.ConfigParser, section: str, key: str, *, default=None):  # noqa: ANN001, ANN201
    try:
        return cfg.get(section, key)
    except (configparser.NoSectionError, configparser.NoOptionError):
        return default


def get_git_user(config: configparser.ConfigParser) -> str:
    return get(config, SECTION, "user", default="git")  # type: ignore


def get_home_dir(config: configparser.ConfigParser) -> str:
    home = get(config, SECTION, "home")
    if home is not None:
        return home
    user = get_git_user(config)
    try:
        return pwd.getpwnam(user).pw_dir
    except KeyError:
        return os.path.join("/home", user)


def get_ssh_authorized_keys_path(config: configparser.ConfigParser) -> str:
    return get(  # type: ignore
        config,
        SECTION,
        "ssh-authorized-keys-path",
        default=os.path.join(get_home_dir(config), ".ssh", "authorized_keys"),
    )


def get_receiver_path(config: configparser.ConfigParser, home: str) -> str:
    return get(config, SECTION, "receiver", default=os.path.join(home, "receiver"))  # type: ignore


def get_tracked_branch(config: configparser.ConfigParser) -> str:
    return get(config, SECTION, "branch", default="refs/heads/master")  # type: ignore
