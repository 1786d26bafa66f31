import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


DATA_DIR = Path(os.getenv("DATA_DIR", "/data")).resolve()
PORT = int(os.getenv("PORT", "8787"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

DEFAULT_M3U_URLS = [
    "https://iptv-org.github.io/iptv/countries/id.m3u",
]
DEFAULT_EPG_URLS = [
    "https://www.open-epg.com/files/indonesia4.xml",
    "https://raw.githubusercontent.com/AqFad2811/epg/main/indonesia.xml",
]

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    data_dir: Path
    default_m3u_urls: List[str] = field(default_factory=lambda: list(DEFAULT_M3U_URLS))
    default_epg_urls: List[str] = field(default_factory=lambda: list(DEFAULT_EPG_URLS))
    cache_ttl_minutes: float = 10
    http_timeout: float = 30
    validate_timeout: float = 30
    guide_path: Optional[Path] = None

    @property
    def storage_dir(self) -> Path:
        return self.data_dir / "storage"

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_minutes * 60

    @property
    def guide_file(self) -> Path:
        return self.guide_path or (self.data_dir / "guide.json")


def default_config() -> dict:
    return {
        "default_m3u_urls": list(DEFAULT_M3U_URLS),
        "default_epg_urls": list(DEFAULT_EPG_URLS),
        "cache_ttl_minutes": 10,
        "http_timeout": 30,
        "validate_timeout": 30,
        "guide_path": None,
    }


def load_config(data_dir: Optional[Path] = None) -> dict:
    path = Path(data_dir or DATA_DIR) / "config.json"
    cfg = default_config()
    if not path.exists():
        return cfg
    try:
        cfg.update(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as e:
        logger.error("Could not read %s, using defaults: %s", path, e)
    return cfg


def save_config(cfg: dict, data_dir: Optional[Path] = None) -> None:
    d = Path(data_dir or DATA_DIR)
    d.mkdir(parents=True, exist_ok=True)
    (d / "config.json").write_text(json.dumps(cfg, ensure_ascii=False, indent=2), encoding="utf-8")


def load_settings(data_dir: Optional[Path] = None) -> Settings:
    d = Path(data_dir or DATA_DIR).resolve()
    cfg = load_config(d)
    guide_path = cfg.get("guide_path")
    return Settings(
        data_dir=d,
        default_m3u_urls=[u.strip() for u in cfg.get("default_m3u_urls") or [] if u and u.strip()],
        default_epg_urls=[u.strip() for u in cfg.get("default_epg_urls") or [] if u and u.strip()],
        cache_ttl_minutes=float(cfg.get("cache_ttl_minutes") or 10),
        http_timeout=float(cfg.get("http_timeout") or 30),
        validate_timeout=float(cfg.get("validate_timeout") or 30),
        guide_path=Path(guide_path) if guide_path else None,
    )


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
