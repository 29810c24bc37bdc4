from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from .utils import AUDIO_EXTENSIONS


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.json"


@dataclass
class AppConfig:
    music_library_dir: str = str(PROJECT_ROOT / "Music")
    catalog_file: str = str(PROJECT_ROOT / "catalog.json")
    jwt_secret: str = "dev-secret"
    token_ttl_hours: int = 24
    port: int = 4000
    admin_username: str = "admin"
    admin_password: str = "password"
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    audio_extensions: List[str] = field(default_factory=lambda: sorted(AUDIO_EXTENSIONS))

    @property
    def library_dir(self) -> Path:
        p = Path(self.music_library_dir).expanduser()
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return Path(os.path.normpath(str(p)))

    @property
    def catalog_path(self) -> Path:
        p = Path(self.catalog_file).expanduser()
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p


# env var -> (field, parser)
_ENV_OVERRIDES = {
    "MUSIC_LIBRARY_DIR": ("music_library_dir", str),
    "CATALOG_FILE": ("catalog_file", str),
    "JWT_SECRET": ("jwt_secret", str),
    "TOKEN_TTL_HOURS": ("token_ttl_hours", int),
    "PORT": ("port", int),
    "ADMIN_USERNAME": ("admin_username", str),
    "ADMIN_PASSWORD": ("admin_password", str),
    "ALLOWED_ORIGINS": ("allowed_origins", lambda v: [s.strip() for s in v.split(",") if s.strip()]),
    "AUDIO_EXTENSIONS": ("audio_extensions", lambda v: [s.strip() for s in v.split(",") if s.strip()]),
}


def load_config(config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Defaults, then config.json (if present), then environment variables."""
    path = config_path or DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ
    cfg = AppConfig()

    if path.exists():
        data = json.loads(path.read_text(encoding="utf-8"))
        for key, value in data.items():
            if hasattr(cfg, key) and value not in (None, ""):
                setattr(cfg, key, value)

    for var, (attr, parse) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            setattr(cfg, attr, parse(raw))
        except ValueError as e:
            raise ValueError(f"Invalid value for {var}: {raw!r}") from e
    return cfg
