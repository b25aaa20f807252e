from __future__ import annotations

import argparse
import os
from pathlib import Path

from services.renderer.artifacts import ArtifactStore
from services.renderer.executables import resolve_executable
from services.shared.runtime import get_runtime_config, load_env_file

from .config import SetupAnswers, env_dict_from_answers, read_env_file, set_env_value, write_env_file
from .prompts import collect_answers


SERVICE_NAME = "mermaid-render-gateway"


def _repo_root_from_cwd() -> Path:
    # Works when user runs `mermaid-gateway` inside the project directory.
    return Path(os.getcwd()).resolve()


def _env_path(args: argparse.Namespace) -> Path:
    explicit = getattr(args, "env_file", None)
    return Path(explicit) if explicit else _repo_root_from_cwd() / ".env"


def _print_browser_help() -> None:
    print("")
    print("Options:")
    print("1. Install Chrome: https://www.google.com/chrome/")
    print("2. Install Chromium: https://www.chromium.org/")
    print("3. Install the Playwright browser: playwright install chromium")
    print('4. Point to a binary manually: export CHROME_PATH="/path/to/chrome"')


def cmd_init(args: argparse.Namespace) -> int:
    env_path = _env_path(args)

    if env_path.exists() and not args.force:
        print(".env already exists. Use --force to overwrite.")
        return 2

    raw = collect_answers(detected_chrome=resolve_executable())

    answers = SetupAnswers(
        port=raw.port,
        chrome_path=raw.chrome_path,
        env=raw.env,
        log_format=raw.log_format,
        log_level=raw.log_level,
        artifact_dir=raw.artifact_dir,
        artifact_prefix=raw.artifact_prefix,
    )

    env = env_dict_from_answers(answers)
    write_env_file(env_path, env)

    print(f"\nWrote {env_path}")
    print("\nNext: run `mermaid-gateway serve` to start the gateway.")
    return 0


def cmd_detect_chrome(args: argparse.Namespace) -> int:
    env_path = _env_path(args)
    print("Looking for Chrome/Chromium...")

    # 1. user-specified
    configured = os.environ.get("CHROME_PATH") or read_env_file(env_path).get("CHROME_PATH")
    if configured:
        if os.path.isfile(configured):
            print(f"Using configured browser: {configured}")
            return 0
        print(f"Configured CHROME_PATH does not exist: {configured}")

    # 2. system browser
    detected = resolve_executable()
    if detected:
        print(f"Found browser: {detected}")
        if args.write:
            set_env_value(env_path, "CHROME_PATH", detected)
            print(f"Saved CHROME_PATH to {env_path}")
        return 0

    # 3. bundled Chromium
    print("No system Chrome/Chromium found; the gateway will use Playwright's bundled Chromium.")
    _print_browser_help()
    return 1 if configured else 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    load_env_file()
    runtime = get_runtime_config(service_name=SERVICE_NAME)
    uvicorn.run(
        "services.renderer.app:create_default_app",
        factory=True,
        host=args.host or runtime.host,
        port=args.port or runtime.port,
        reload=args.reload,
    )
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    load_env_file()
    runtime = get_runtime_config(service_name=SERVICE_NAME)
    store = ArtifactStore(
        args.dir or runtime.artifact_dir,
        max_age_seconds=args.max_age if args.max_age is not None else runtime.artifact_max_age_s,
    )
    removed = store.sweep()
    print(f"Removed {removed} stale file(s) from {store.directory}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mermaid-gateway", description="Mermaid render gateway setup + run CLI")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_init = sub.add_parser("init", help="Create a .env file interactively")
    p_init.add_argument("--force", action="store_true", help="Overwrite existing .env")
    p_init.add_argument("--env-file", help="Path of the env file (default: ./.env)")
    p_init.set_defaults(func=cmd_init)

    p_detect = sub.add_parser("detect-chrome", help="Find a Chrome/Chromium binary for the gateway")
    p_detect.add_argument(
        "--write",
        action="store_true",
        help="Store the detected path as CHROME_PATH in the env file",
    )
    p_detect.add_argument("--env-file", help="Path of the env file (default: ./.env)")
    p_detect.set_defaults(func=cmd_detect_chrome)

    p_serve = sub.add_parser("serve", help="Run the gateway with uvicorn")
    p_serve.add_argument("--host", help="Bind address (default: HOST or 0.0.0.0)")
    p_serve.add_argument("--port", type=int, help="Port (default: PORT or 3000)")
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    p_serve.set_defaults(func=cmd_serve)

    p_sweep = sub.add_parser("sweep", help="Delete url-format images older than the max age")
    p_sweep.add_argument("--dir", help="Artifact directory (default: GATEWAY_ARTIFACT_DIR)")
    p_sweep.add_argument("--max-age", type=int, help="Max age in seconds (default: GATEWAY_ARTIFACT_MAX_AGE_S)")
    p_sweep.set_defaults(func=cmd_sweep)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    return int(ns.func(ns))


if __name__ == "__main__":
    raise SystemExit(main())
