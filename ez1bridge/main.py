import os
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from ez1bridge.config import BridgeConfig
from ez1bridge.app import BridgeApp

log = logging.getLogger(__name__)


def _resolve_config_path(cli_path: str | None) -> Optional[Path]:
    """
    Resolve config path with the following precedence:
    1) CLI: --config /path/to/config.yaml
    2) ENV: EZ1BRIDGE_CONFIG=/path/to/config.yaml
    3) Default: <project_root>/config.yaml, if it exists
    Returns None when no file applies; configuration then comes from the environment.
    """
    if cli_path:
        return Path(cli_path).expanduser().resolve()

    env = os.getenv("EZ1BRIDGE_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    default = Path(__file__).resolve().parents[1] / "config.yaml"
    return default if default.exists() else None


def load_config(path: str | Path | None) -> BridgeConfig:
    """Load configuration from a YAML file, or from environment variables when no file is given."""
    if path is None:
        log.info("No config file, reading configuration from environment")
        return BridgeConfig.from_env()

    with open(Path(path).expanduser(), "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    log.info(f"Configuration loaded from {path}")
    return BridgeConfig.model_validate(data)


async def amain(cfg: BridgeConfig) -> None:
    app = BridgeApp(cfg)
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, main_task.cancel)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass

    try:
        log.info("Starting application initialization...")
        await app.init()
        log.info("Application initialization completed, starting main loop...")
        await app.run()
    except asyncio.CancelledError:
        log.info("Application interrupted, stopping")
    finally:
        await app.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(description="EZ1 microinverter to MQTT bridge")
    parser.add_argument(
        "--config",
        help="Path to config.yaml (overrides EZ1BRIDGE_CONFIG and default). "
             "Without a file, configuration is read from environment variables.",
        required=False,
    )
    args = parser.parse_args()

    try:
        cfg = load_config(_resolve_config_path(args.config))
    except (OSError, yaml.YAMLError, ValidationError) as e:
        log.error(f"Invalid configuration: {e}")
        sys.exit(1)

    try:
        asyncio.run(amain(cfg))
    except KeyboardInterrupt:
        log.info("Application interrupted by user")
    except Exception as e:
        log.error(f"Application crashed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
