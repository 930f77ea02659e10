import os
import sys
from dataclasses import dataclass
from typing import Optional

from dotenv import dotenv_values

DEFAULT_CONFIG_FILE = "config.env"
DEFAULT_POLL_INTERVAL = 120


class ConfigError(Exception):
    """Fatal configuration problem, raised before any build or network action."""


@dataclass(frozen=True)
class Config:
    bot_token: str
    chat_id: str
    error_chat_id: str
    device: str
    target: str
    rom_name: str
    compile_jobs: int
    sync_jobs: int
    pd_api: Optional[str] = None
    use_gofile: bool = False
    official_flag: Optional[str] = None
    poll_interval: int = DEFAULT_POLL_INTERVAL
    poweroff: bool = False

    @property
    def out_dir(self):
        return os.path.join("out", "target", "product", self.device)


def _default_jobs():
    cores = os.cpu_count() or 4
    sync = 12 if cores > 8 else cores
    return cores, sync


def _int_env(env, key, default):
    value = env.get(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {value!r}")


def _ask_device():
    if not sys.stdin or not sys.stdin.isatty():
        return ""
    return input("Enter the device codename: ").strip()


def load_config(path=DEFAULT_CONFIG_FILE, env=None, ask_device=_ask_device):
    """Build the immutable Config from ``path`` and the process environment.

    Variables already exported in the environment win over the file.
    """
    if env is None:
        if not os.path.exists(path):
            raise ConfigError(f"{path} not found.")
        env = {**dotenv_values(path), **os.environ}

    device = env.get("CONFIG_DEVICE") or ask_device()
    if not device:
        raise ConfigError("Device codename not provided.")

    missing = [
        key
        for key in ("CONFIG_TARGET", "CONFIG_BOT_TOKEN", "CONFIG_CHATID")
        if not env.get(key)
    ]
    if missing:
        raise ConfigError(
            "Please set all mandatory variables in config.env: "
            + ", ".join(missing)
            + "."
        )

    cores, sync = _default_jobs()
    current_folder = os.path.basename(os.getcwd())

    return Config(
        bot_token=env["CONFIG_BOT_TOKEN"],
        chat_id=env["CONFIG_CHATID"],
        error_chat_id=env.get("CONFIG_ERROR_CHATID") or env["CONFIG_CHATID"],
        device=device,
        target=env["CONFIG_TARGET"],
        rom_name=env.get("CONFIG_ROM_NAME") or current_folder or "Unknown ROM",
        compile_jobs=_int_env(env, "CONFIG_JOBS", cores),
        sync_jobs=_int_env(env, "CONFIG_SYNC_JOBS", sync),
        pd_api=env.get("CONFIG_PDUP_API") or None,
        use_gofile=env.get("CONFIG_GOFILE") == "true",
        official_flag=env.get("CONFIG_OFFICIAL_FLAG") or None,
        poll_interval=_int_env(env, "CONFIG_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
        poweroff=env.get("POWEROFF") == "true",
    )
