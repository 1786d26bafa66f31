from __future__ import annotations
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List

from .fetcher import DUPLICATE, SourceValidationError
from .storage import Storage

logger = logging.getLogger(__name__)

USER_URLS_KEY = "user_m3u_urls"
DEFAULT_URLS_KEY = "default_m3u_urls"
EPG_URLS_KEY = "epgUrls"


@dataclass
class DefaultSource:
    url: str
    enabled: bool = False


@dataclass
class GuideSource:
    url: str
    active: bool = True


def _clean_urls(urls: Iterable) -> List[str]:
    out = []
    for u in urls or []:
        if isinstance(u, str) and u.strip() and u.strip() not in out:
            out.append(u.strip())
    return out


class SourceListManager:
    """
    Playlist sources: default entries (at most one enabled) and user entries
    (always active). Every mutation writes the new list before it replaces
    the in-memory one; a failed write is logged and the change still applies.
    """

    def __init__(self, storage: Storage, default_urls: Iterable[str] = ()):
        self.storage = storage
        self.configured_defaults = _clean_urls(default_urls)
        self._defaults: List[DefaultSource] = []
        self._user: List[str] = []

    def load(self) -> None:
        stored = self.storage.read_json(DEFAULT_URLS_KEY)
        if isinstance(stored, list):
            defaults = []
            for it in stored:
                if not isinstance(it, dict) or not (it.get("url") or "").strip():
                    continue
                url = it["url"].strip()
                if any(d.url == url for d in defaults):
                    continue
                defaults.append(DefaultSource(url=url, enabled=bool(it.get("enabled"))))
        else:
            defaults = [DefaultSource(url=u, enabled=(i == 0)) for i, u in enumerate(self.configured_defaults)]

        seen_enabled = False
        for d in defaults:
            if d.enabled and seen_enabled:
                d.enabled = False
            seen_enabled = seen_enabled or d.enabled
        self._defaults = defaults
        self._user = _clean_urls(self.storage.read_json(USER_URLS_KEY, []))

    @property
    def user_urls(self) -> List[str]:
        return list(self._user)

    @property
    def default_urls(self) -> List[DefaultSource]:
        return [DefaultSource(d.url, d.enabled) for d in self._defaults]

    def active_urls(self) -> List[str]:
        """Enabled default first, then user urls in list order."""
        urls = [d.url for d in self._defaults if d.enabled]
        urls.extend(u for u in self._user if u not in urls)
        return urls

    def has_sources(self) -> bool:
        return bool(self.active_urls())

    def contains(self, url: str) -> bool:
        url = (url or "").strip()
        return url in self._user or any(d.url == url for d in self._defaults)

    def _ensure_new(self, url: str) -> None:
        if self.contains(url):
            raise SourceValidationError(DUPLICATE, "This URL is already in the list")

    def _write_user(self, urls: List[str]) -> None:
        if not self.storage.write_json(USER_URLS_KEY, urls):
            logger.error("User source list not persisted; keeping it in memory only")
        self._user = urls

    def _write_defaults(self, defaults: List[DefaultSource]) -> None:
        if not self.storage.write_json(DEFAULT_URLS_KEY, [asdict(d) for d in defaults]):
            logger.error("Default source list not persisted; keeping it in memory only")
        self._defaults = defaults

    def add_user_url(self, url: str) -> bool:
        url = (url or "").strip()
        self._ensure_new(url)
        self._write_user(self._user + [url])
        return True

    def delete_user_url(self, url: str) -> bool:
        url = (url or "").strip()
        if url not in self._user:
            return False
        self._write_user([u for u in self._user if u != url])
        return True

    def add_default_url(self, url: str) -> bool:
        url = (url or "").strip()
        self._ensure_new(url)
        self._write_defaults(self.default_urls + [DefaultSource(url=url, enabled=not self._defaults)])
        return True

    def delete_default_url(self, url: str) -> bool:
        url = (url or "").strip()
        if not any(d.url == url for d in self._defaults):
            return False
        self._write_defaults([d for d in self.default_urls if d.url != url])
        return True

    def toggle_default_url(self, url: str) -> bool:
        """
        Enable `url` and disable every other default. Toggling the enabled
        entry disables it, leaving no default active. Unknown urls are ignored.
        """
        url = (url or "").strip()
        target = next((d for d in self._defaults if d.url == url), None)
        if target is None:
            return False
        turn_on = not target.enabled
        self._write_defaults([DefaultSource(d.url, turn_on and d.url == url) for d in self._defaults])
        return True


def normalize_guide_url(url: str) -> str:
    return (url or "").strip().replace("/refs/heads/main/", "/main/")


class GuideSourceManager:
    """Guide (XMLTV) urls. Configured defaults are always present and cannot be deleted."""

    def __init__(self, storage: Storage, default_urls: Iterable[str] = ()):
        self.storage = storage
        self.configured_defaults = [normalize_guide_url(u) for u in _clean_urls(default_urls)]
        self._sources: List[GuideSource] = []

    def load(self) -> None:
        merged: Dict[str, GuideSource] = {}
        for u in self.configured_defaults:
            merged.setdefault(u, GuideSource(url=u, active=True))
        stored = self.storage.read_json(EPG_URLS_KEY, [])
        for it in stored if isinstance(stored, list) else []:
            if not isinstance(it, dict):
                continue
            url = normalize_guide_url(it.get("url") or "")
            if not url:
                continue
            src = merged.setdefault(url, GuideSource(url=url))
            src.active = bool(it.get("active", True))
        self._sources = list(merged.values())

    @property
    def urls(self) -> List[GuideSource]:
        return [GuideSource(s.url, s.active) for s in self._sources]

    def active_urls(self) -> List[str]:
        return [s.url for s in self._sources if s.active]

    def _write(self, sources: List[GuideSource]) -> None:
        if not self.storage.write_json(EPG_URLS_KEY, [asdict(s) for s in sources]):
            logger.error("Guide source list not persisted; keeping it in memory only")
        self._sources = sources

    def add_url(self, url: str) -> bool:
        url = normalize_guide_url(url)
        if any(s.url == url for s in self._sources):
            raise SourceValidationError(DUPLICATE, "This URL is already in the list")
        self._write(self.urls + [GuideSource(url=url, active=True)])
        return True

    def delete_url(self, url: str) -> bool:
        url = normalize_guide_url(url)
        if url in self.configured_defaults or not any(s.url == url for s in self._sources):
            return False
        self._write([s for s in self.urls if s.url != url])
        return True

    def set_active(self, url: str, active: bool) -> bool:
        url = normalize_guide_url(url)
        if not any(s.url == url for s in self._sources):
            return False
        self._write([GuideSource(s.url, active if s.url == url else s.active) for s in self._sources])
        return True
