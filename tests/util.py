import os
import stat

from gitreceive.util import write_file


def read_file(path: str) -> str:
    with open(path) as f:
        return f.read()


def read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def check_mode(path: str, mode: int, *, is_file: bool = False, is_dir: bool = False) -> None:
    st = os.stat(path)
    if is_dir:
        assert stat.S_ISDIR(st.st_mode)
    if is_file:
        assert stat.S_ISREG(st.st_mode)

    got = stat.S_IMODE(st.st_mode)
    assert got == mode, f"File mode {got:04o}!={mode:04o} for {path}"


def mock_program(tmpdir, name: str, body: str) -> str:
    """Write an executable shell script called ``name`` into ``tmpdir/mockbin``."""
    mockbindir = os.path.join(tmpdir, "mockbin")
    os.makedirs(mockbindir, exist_ok=True)
    path = os.path.join(mockbindir, name)
    write_file(path, f"#!/bin/sh\n{body}")
    os.chmod(path, 0o700)
    return path
