"""
Host-specific configuration file selection.

Every host in the fleet carries its own `<hostname>-settings.env`, seeded from
the shared `settings.env` the first time the engine starts on that host.
"""

import logging
import shutil
import socket
from pathlib import Path

BASE_SETTINGS_FILE = "settings.env"


def get_hostname() -> str:
    """Current hostname without domain part."""
    return socket.gethostname().split(".")[0]


def get_hostname_settings_file(base_dir: Path = Path(".")) -> str:
    """
    Return the settings file for this host, seeding it from settings.env when missing.

    Falls back to settings.env when neither file exists, so pydantic-settings
    simply runs on defaults and environment variables.
    """
    hostname = get_hostname()
    base_settings = base_dir / BASE_SETTINGS_FILE
    host_settings = base_dir / f"{hostname}-settings.env"

    if host_settings.exists():
        logging.debug(f"Using host-specific configuration: {host_settings}")
        return str(host_settings)

    if not base_settings.exists():
        return str(base_settings)

    try:
        shutil.copy2(base_settings, host_settings)
        content = host_settings.read_text(encoding="utf-8")
        header = (
            f"# Host-specific storage engine configuration for: {hostname}\n"
            f"# Seeded from {BASE_SETTINGS_FILE}; edit freely for this machine\n\n"
        )
        host_settings.write_text(header + content, encoding="utf-8")
        logging.info(f"Created host-specific configuration: {host_settings}")
        return str(host_settings)
    except OSError as e:
        logging.error(f"Could not seed {host_settings} from {base_settings}: {e}")
        return str(base_settings)


def list_all_settings_files(base_dir: Path = Path(".")) -> list[str]:
    """Base settings file plus every host-specific one found in base_dir."""
    settings_files = []
    if (base_dir / BASE_SETTINGS_FILE).exists():
        settings_files.append(str(base_dir / BASE_SETTINGS_FILE))
    settings_files.extend(str(p) for p in sorted(base_dir.glob("*-settings.env")))
    return settings_files
