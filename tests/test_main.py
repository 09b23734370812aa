import io
import os

import pytest

from gitreceive import main
from gitreceive.util import write_file

from .util import mock_program, read_bytes, read_file

GATEWAY = "/usr/local/bin/gitreceive"

PUBKEY = (
    b"ssh-somealgo "
    + b"0123456789ABCDEFAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
    + b"AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA= alice@example.com\n"
)


def write_config(tmpdir, home):
    path = os.path.join(tmpdir, "gitreceive.conf")
    write_file(path, f"[gitreceive]\nhome = {home}\n")
    return path


def test_no_command(capsys):
    main.main([GATEWAY])
    assert capsys.readouterr().out.startswith(f"Usage: {GATEWAY} <command>")


def test_unknown_command(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "frobnicate"])
    assert excinfo.value.code == 2
    assert "upload-key USER" in capsys.readouterr().err


def test_missing_explicit_config(tmpdir):
    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "hook", "--config", os.path.join(tmpdir, "nope.conf")])
    assert excinfo.value.code == 1


def test_upload_key(tmpdir, monkeypatch, capsys):
    mock_program(tmpdir, "ssh-keygen", "echo '256 SHA256:xxxx alice@example.com (ED25519)'\n")
    monkeypatch.setenv("PATH", f"{os.path.join(tmpdir, 'mockbin')}:{os.environ['PATH']}")
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(PUBKEY)))
    home = os.path.join(tmpdir, "home")
    config = write_config(tmpdir, home)

    main.main([GATEWAY, "upload-key", "--config", config, "alice"])

    assert capsys.readouterr().out == "SHA256:xxxx\n"
    got = read_bytes(os.path.join(home, ".ssh", "authorized_keys"))
    assert got == (
        f'command="{GATEWAY} run alice SHA256:xxxx",'.encode()
        + b"no-agent-forwarding,no-pty,no-user-rc,no-X11-forwarding,no-port-forwarding "
        + PUBKEY
    )


def test_upload_key_bad_fingerprint(tmpdir, monkeypatch, capsys):
    mock_program(tmpdir, "ssh-keygen", "echo nonsense\n")
    monkeypatch.setenv("PATH", f"{os.path.join(tmpdir, 'mockbin')}:{os.environ['PATH']}")
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(PUBKEY)))
    home = os.path.join(tmpdir, "home")
    config = write_config(tmpdir, home)

    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "upload-key", "--config", config, "alice"])
    assert excinfo.value.code == 1
    assert capsys.readouterr().out == ""
    assert not os.path.exists(home)


def test_upload_key_missing_user(tmpdir):
    config = write_config(tmpdir, os.path.join(tmpdir, "home"))
    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "upload-key", "--config", config])
    assert excinfo.value.code == 2


def test_run_without_command(tmpdir, monkeypatch):
    monkeypatch.delenv("SSH_ORIGINAL_COMMAND", raising=False)
    home = os.path.join(tmpdir, "home")
    os.mkdir(home)
    config = write_config(tmpdir, home)
    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "run", "--config", config, "alice", "SHA256:xxxx"])
    assert excinfo.value.code == 1
    assert os.listdir(home) == []


def test_run_propagates_exit_code(tmpdir, monkeypatch):
    mock_program(tmpdir, "git-upload-pack", 'printf %s "$RECEIVE_USER" >"$(dirname "$0")/../user"\nexit 3\n')
    monkeypatch.setenv("PATH", f"{os.path.join(tmpdir, 'mockbin')}:{os.environ['PATH']}")
    monkeypatch.setenv("SSH_ORIGINAL_COMMAND", "git-upload-pack 'foo.git'")
    home = os.path.join(tmpdir, "home")
    os.mkdir(home)
    config = write_config(tmpdir, home)
    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "run", "--config", config, "alice", "SHA256:xxxx"])
    assert excinfo.value.code == 3
    assert read_file(os.path.join(tmpdir, "user")) == "alice"
    hook = read_file(os.path.join(home, "foo.git", "hooks", "pre-receive"))
    assert hook == f"#!/bin/bash\ncat | {GATEWAY} hook\n"


def test_upload_key_comment_not_utf8(tmpdir, monkeypatch, capsys):
    mock_program(tmpdir, "ssh-keygen", "echo '256 SHA256:xxxx (ED25519)'\n")
    monkeypatch.setenv("PATH", f"{os.path.join(tmpdir, 'mockbin')}:{os.environ['PATH']}")
    key = b"ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl Jos\xe9@host\n"
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(key)))
    home = os.path.join(tmpdir, "home")
    config = write_config(tmpdir, home)

    main.main([GATEWAY, "upload-key", "--config", config, "jose"])

    assert capsys.readouterr().out == "SHA256:xxxx\n"
    assert read_bytes(os.path.join(home, ".ssh", "authorized_keys")).endswith(b" " + key)


def test_upload_key_keygen_exit_code(tmpdir, monkeypatch):
    mock_program(tmpdir, "ssh-keygen", "echo 'is not a public key file.'\nexit 255\n")
    monkeypatch.setenv("PATH", f"{os.path.join(tmpdir, 'mockbin')}:{os.environ['PATH']}")
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(PUBKEY)))
    home = os.path.join(tmpdir, "home")
    config = write_config(tmpdir, home)

    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "upload-key", "--config", config, "alice"])
    assert excinfo.value.code == 255
    assert not os.path.exists(home)


def test_run_git_init_exit_code(tmpdir, monkeypatch):
    mock_program(tmpdir, "git", "echo 'fatal: cannot init'\nexit 42\n")
    monkeypatch.setenv("PATH", f"{os.path.join(tmpdir, 'mockbin')}:{os.environ['PATH']}")
    monkeypatch.setenv("SSH_ORIGINAL_COMMAND", "git-receive-pack 'foo.git'")
    home = os.path.join(tmpdir, "home")
    os.mkdir(home)
    config = write_config(tmpdir, home)
    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "run", "--config", config, "alice", "SHA256:xxxx"])
    assert excinfo.value.code == 42
    assert not os.path.exists(os.path.join(home, "foo.git", "hooks", "pre-receive"))


def test_init_useradd_exit_code(tmpdir, monkeypatch):
    mock_program(tmpdir, "useradd", "echo 'useradd: user git exists'\nexit 9\n")
    mock_program(tmpdir, "chown", "exit 0\n")
    monkeypatch.setenv("PATH", f"{os.path.join(tmpdir, 'mockbin')}:{os.environ['PATH']}")
    config = write_config(tmpdir, os.path.join(tmpdir, "home"))
    with pytest.raises(SystemExit) as excinfo:
        main.main([GATEWAY, "init", "--config", config])
    assert excinfo.value.code == 9
