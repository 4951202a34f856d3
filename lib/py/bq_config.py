"""Environment configuration for BigQuery upload jobs."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional


class ConfigError(ValueError):
    """Raised when required settings are missing or unreadable."""


def env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


@dataclass(frozen=True)
class BqSettings:
    """Construction inputs for a BqUploader."""

    pkey: bytes
    project_id: str
    dataset_id: str
    service_email: str


def read_key_file(path: str) -> Mapping[str, str]:
    """Read a PEM private key or a service account JSON key file.

    Returns a mapping with ``private_key`` and, for JSON key files, the
    ``client_email`` and ``project_id`` found in the file.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read key file {path}: {exc}") from exc

    if raw.lstrip().startswith("{"):
        try:
            info = json.loads(raw)
        except ValueError as exc:
            raise ConfigError(f"key file {path} is not valid JSON: {exc}") from exc
        if not info.get("private_key"):
            raise ConfigError(f"key file {path} has no private_key")
        return {
            "private_key": info["private_key"],
            "client_email": info.get("client_email", ""),
            "project_id": info.get("project_id", ""),
        }
    return {"private_key": raw}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> BqSettings:
    """Build BqSettings from BQ_* environment variables."""
    get = env if environ is None else (lambda name, default="": environ.get(name, default).strip())

    key_path = get("BQ_KEY_FILE")
    if not key_path:
        raise ConfigError("BQ_KEY_FILE missing")
    key = read_key_file(key_path)

    project_id = get("BQ_PROJECT_ID") or key.get("project_id", "")
    dataset_id = get("BQ_DATASET_ID")
    service_email = get("BQ_SERVICE_EMAIL") or key.get("client_email", "")

    missing = [
        name
        for name, value in (
            ("BQ_PROJECT_ID", project_id),
            ("BQ_DATASET_ID", dataset_id),
            ("BQ_SERVICE_EMAIL", service_email),
        )
        if not value
    ]
    if missing:
        raise ConfigError(f"{', '.join(missing)} missing")

    return BqSettings(
        pkey=key["private_key"].encode("utf-8"),
        project_id=project_id,
        dataset_id=dataset_id,
        service_email=service_email,
    )


__all__: Iterable[str] = ("BqSettings", "ConfigError", "env", "load_settings", "read_key_file")
