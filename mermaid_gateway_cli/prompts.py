from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


def _prompt(text: str, default: Optional[str] = None) -> str:
    if default is None:
        s = input(f"{text}: ").strip()
        while not s:
            s = input(f"{text}: ").strip()
        return s

    s = input(f"{text} [{default}]: ").strip()
    return s if s else default


def _prompt_optional(text: str, default: Optional[str] = None) -> Optional[str]:
    if default is None:
        s = input(f"{text} (blank to skip): ").strip()
        return s or None

    s = input(f"{text} [{default}] (blank to skip): ").strip()
    return s or default


def _prompt_choice(text: str, choices: set[str], default: str) -> str:
    while True:
        value = _prompt(f"{text} ({'/'.join(sorted(choices))})", default=default).strip().lower()
        if value in choices:
            return value
        print(f"Invalid value: {value!r}. Choose one of: {', '.join(sorted(choices))}.")


def _prompt_port(text: str, default: int) -> int:
    while True:
        raw = _prompt(text, default=str(default))
        try:
            port = int(raw)
        except ValueError:
            print(f"Not a number: {raw!r}")
            continue
        if 1 <= port <= 65535:
            return port
        print("Port must be between 1 and 65535.")


@dataclass(frozen=True)
class AnswersRaw:
    port: int
    chrome_path: Optional[str]
    env: str
    log_format: str
    log_level: str
    artifact_dir: str
    artifact_prefix: str


def collect_answers(detected_chrome: Optional[str] = None) -> AnswersRaw:
    print("\nMermaid Render Gateway setup\n")

    port = _prompt_port("HTTP port (PORT)", default=3000)

    if detected_chrome:
        print(f"Detected browser: {detected_chrome}")
    else:
        print("No system browser detected; the bundled Playwright Chromium will be used unless you set one.")
    chrome_path = _prompt_optional("Browser executable (CHROME_PATH)", default=detected_chrome)

    env = _prompt_choice("Environment (GATEWAY_ENV)", {"dev", "prod"}, default="dev")
    log_format = _prompt_choice("Log format (GATEWAY_LOG_FORMAT)", {"json", "text"}, default="json")
    log_level = _prompt_choice(
        "Log level (GATEWAY_LOG_LEVEL)",
        {"debug", "info", "warning", "error"},
        default="info",
    ).upper()

    artifact_dir = _prompt("Directory for url-format images (GATEWAY_ARTIFACT_DIR)", default="public/tmp")
    artifact_prefix = _prompt("URL prefix they are served under (GATEWAY_ARTIFACT_PREFIX)", default="/tmp")

    return AnswersRaw(
        port=port,
        chrome_path=chrome_path,
        env=env,
        log_format=log_format,
        log_level=log_level,
        artifact_dir=artifact_dir,
        artifact_prefix=artifact_prefix,
    )
