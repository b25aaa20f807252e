from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, set_key


@dataclass(frozen=True)
class SetupAnswers:
    port: int
    chrome_path: Optional[str]
    env: str
    log_format: str
    log_level: str
    artifact_dir: str
    artifact_prefix: str


def env_dict_from_answers(answers: SetupAnswers) -> Dict[str, str]:
    env: Dict[str, str] = {
        "PORT": str(answers.port),
        "GATEWAY_ENV": answers.env,
        "GATEWAY_LOG_FORMAT": answers.log_format,
        "GATEWAY_LOG_LEVEL": answers.log_level,
        "GATEWAY_ARTIFACT_DIR": answers.artifact_dir,
        "GATEWAY_ARTIFACT_PREFIX": answers.artifact_prefix,
    }
    # Leaving CHROME_PATH out means "bundled Chromium".
    if answers.chrome_path:
        env["CHROME_PATH"] = answers.chrome_path
    return env


def write_env_file(path: Path, env: Dict[str, str]) -> None:
    path.write_text("# Generated by `mermaid-gateway init`\n", encoding="utf-8")
    # set_key quotes each value so Windows paths survive a read back.
    for key, value in env.items():
        set_key(str(path), key, value)


def read_env_file(path: Path) -> Dict[str, Optional[str]]:
    if not path.exists():
        return {}
    return dict(dotenv_values(path))


def set_env_value(path: Path, key: str, value: str) -> None:
    """Insert or replace a single key, keeping the rest of the file intact."""
    if not path.exists():
        path.touch()
    set_key(str(path), key, value)
