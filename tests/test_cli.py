from __future__ import annotations

import os
import time

from mermaid_gateway_cli import cli
from mermaid_gateway_cli.cli import main
from mermaid_gateway_cli.config import read_env_file, write_env_file


def test_cli_help(capsys):
    try:
        main(["init", "--help"])
        assert False, "expected SystemExit"
    except SystemExit as e:
        assert e.code == 0

    out = capsys.readouterr().out
    assert "usage:" in out
    assert "--force" in out


def test_cli_parser_errors():
    # Missing subcommand should exit with SystemExit from argparse
    try:
        main([])
        assert False, "expected SystemExit"
    except SystemExit as e:
        assert e.code != 0


def test_cli_help_top_level(capsys):
    try:
        main(["--help"])
        assert False, "expected SystemExit"
    except SystemExit as e:
        assert e.code == 0

    out = capsys.readouterr().out
    assert "mermaid-gateway" in out
    assert "init" in out
    assert "detect-chrome" in out
    assert "serve" in out
    assert "sweep" in out


def test_init_writes_env_with_defaults(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    monkeypatch.setattr(cli, "resolve_executable", lambda: "/usr/bin/chromium")
    monkeypatch.setattr("builtins.input", lambda prompt="": "")

    assert main(["init", "--env-file", str(env_file)]) == 0

    values = read_env_file(env_file)
    assert values["PORT"] == "3000"
    assert values["CHROME_PATH"] == "/usr/bin/chromium"
    assert values["GATEWAY_ENV"] == "dev"
    assert values["GATEWAY_LOG_LEVEL"] == "INFO"
    assert values["GATEWAY_ARTIFACT_DIR"] == "public/tmp"


def test_init_refuses_to_overwrite(tmp_path, capsys):
    env_file = tmp_path / ".env"
    env_file.write_text("PORT=1\n", encoding="utf-8")

    assert main(["init", "--env-file", str(env_file)]) == 2
    assert "--force" in capsys.readouterr().out
    assert env_file.read_text(encoding="utf-8") == "PORT=1\n"


def test_detect_chrome_writes_found_path(tmp_path, monkeypatch, capsys):
    env_file = tmp_path / ".env"
    env_file.write_text('PORT="3000"\n', encoding="utf-8")
    monkeypatch.delenv("CHROME_PATH", raising=False)
    monkeypatch.setattr(cli, "resolve_executable", lambda: "/opt/google/chrome/chrome")

    assert main(["detect-chrome", "--write", "--env-file", str(env_file)]) == 0

    assert "Found browser: /opt/google/chrome/chrome" in capsys.readouterr().out
    values = read_env_file(env_file)
    assert values["CHROME_PATH"] == "/opt/google/chrome/chrome"
    assert values["PORT"] == "3000"


def test_detect_chrome_prefers_configured_path(tmp_path, monkeypatch, capsys):
    chrome = tmp_path / "chrome"
    chrome.write_text("")
    monkeypatch.setenv("CHROME_PATH", str(chrome))
    monkeypatch.setattr(cli, "resolve_executable", lambda: "/should/not/be/used")

    assert main(["detect-chrome", "--env-file", str(tmp_path / ".env")]) == 0
    assert f"Using configured browser: {chrome}" in capsys.readouterr().out


def test_detect_chrome_falls_back_to_bundled(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("CHROME_PATH", str(tmp_path / "missing"))
    monkeypatch.setattr(cli, "resolve_executable", lambda: None)

    assert main(["detect-chrome", "--env-file", str(tmp_path / ".env")]) == 1
    out = capsys.readouterr().out
    assert "does not exist" in out
    assert "playwright install chromium" in out


def test_sweep_removes_stale_files(tmp_path, capsys):
    stale = tmp_path / "mermaid-1-abc.png"
    fresh = tmp_path / "mermaid-2-def.png"
    stale.write_bytes(b"x")
    fresh.write_bytes(b"y")
    old = time.time() - 7200
    os.utime(stale, (old, old))

    assert main(["sweep", "--dir", str(tmp_path), "--max-age", "3600"]) == 0
    assert not stale.exists()
    assert fresh.exists()
    assert "Removed 1" in capsys.readouterr().out


def test_env_file_keeps_windows_paths(tmp_path):
    env_file = tmp_path / ".env"
    chrome = "C:\\Users\\nick\\AppData\\Local\\Google\\Chrome\\Application\\chrome.exe"

    write_env_file(env_file, {"PORT": "3000", "CHROME_PATH": chrome})

    values = read_env_file(env_file)
    assert values["CHROME_PATH"] == chrome
    assert values["PORT"] == "3000"
    assert env_file.read_text(encoding="utf-8").startswith("# Generated by `mermaid-gateway init`")
