from __future__ import annotations
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .cache import CatalogCache, now_ms
from .config import Settings
from .epg_core import load_guide, now_and_next
from .events import CacheCleared, CatalogEmpty, CatalogFailed, CatalogLoaded, EventStore, SourcesChanged
from .fetcher import (
    DUPLICATE,
    INVALID_FORMAT,
    UNREACHABLE,
    SourceValidationError,
    check_reachable,
    fetch_feeds,
    validate_playlist_url,
)
from .m3u_core import Catalog, Channel, build_catalog, groups_of, has_playlist_marker, is_valid_url, parse_m3u
from .sources import GuideSourceManager, SourceListManager
from .storage import Storage

logger = logging.getLogger(__name__)

IDLE = "idle"
LOADING = "loading"
READY = "ready"
EMPTY = "empty"
ERROR = "error"

LOAD_FAILED = "Failed to load channels"
REFRESH_JOB_ID = "catalog_refresh"


class CatalogService:
    """
    Owns the channel catalog and everything that feeds it.

    `refetch()` goes cache -> fetch -> parse -> dedup -> cache write. Each
    run takes a sequence number and its result is applied only if no newer
    run has been applied already, so overlapping refreshes cannot roll the
    catalog back. Source list mutations always rebuild past the cache.
    """

    def __init__(
        self,
        settings: Settings,
        storage: Optional[Storage] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings
        self.storage = storage or Storage(settings.storage_dir)
        self.client = client
        self.sources = SourceListManager(self.storage, settings.default_m3u_urls)
        self.guide_sources = GuideSourceManager(self.storage, settings.default_epg_urls)
        self.cache = CatalogCache(self.storage, settings.cache_ttl_seconds, clock)
        self.events = EventStore()

        self.channels: List[Channel] = []
        self.groups: List[str] = []
        self.state = IDLE
        self.error: Optional[str] = None
        self.rebuilds = 0

        self._seq = 0
        self._applied = 0
        self._inflight = 0
        self._loaded_sources = False
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._guide = None
        self._guide_mtime = None

    # ---------------------------
    # lifecycle
    # ---------------------------
    def load_sources(self) -> None:
        self.sources.load()
        self.guide_sources.load()
        self._loaded_sources = True

    async def start(self) -> None:
        if not self._loaded_sources:
            self.load_sources()
        await self.refetch()
        self._start_timer()

    async def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

    def _start_timer(self) -> None:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._scheduled_refetch,
            IntervalTrigger(seconds=self.settings.cache_ttl_seconds),
            id=REFRESH_JOB_ID,
            replace_existing=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()

    async def _scheduled_refetch(self) -> None:
        try:
            await self.refetch(force=True)
        except Exception:
            logger.exception("Scheduled catalog refresh failed")

    @property
    def loading(self) -> bool:
        return self._inflight > 0

    # ---------------------------
    # catalog
    # ---------------------------
    async def refetch(self, force: bool = False) -> str:
        if not self._loaded_sources:
            self.load_sources()
        self._seq += 1
        seq = self._seq
        self._inflight += 1
        self.state = LOADING
        try:
            await self._rebuild(seq, force)
        finally:
            self._inflight -= 1
        return self.state

    def _is_stale(self, seq: int) -> bool:
        if seq <= self._applied:
            logger.info("Dropping result of rebuild #%d, #%d already applied", seq, self._applied)
            return True
        return False

    async def _rebuild(self, seq: int, force: bool) -> None:
        if not force:
            cached = self.cache.load_valid()
            if cached is not None:
                if not self._is_stale(seq):
                    logger.info("Using cached catalog (%d channels)", len(cached))
                    self._apply(seq, Catalog(channels=cached, groups=groups_of(cached)), from_cache=True)
                return

        self.rebuilds += 1
        urls = self.sources.active_urls()
        if not urls:
            if not self._is_stale(seq):
                self._apply_empty(seq)
            return

        logger.info("Rebuilding catalog #%d from %d source(s)", seq, len(urls))
        bodies = await fetch_feeds(urls, self.client, self.settings.http_timeout)
        if self._is_stale(seq):
            return
        for url in [u for u, body in bodies.items() if not has_playlist_marker(body)]:
            logger.warning("Feed %s failed: response is not an M3U playlist", url)
            del bodies[url]
        if not bodies:
            self._apply_failure(seq, LOAD_FAILED)
            return

        parsed: List[Channel] = []
        for url in urls:
            if url in bodies:
                parsed.extend(parse_m3u(bodies[url]))
        catalog = build_catalog(parsed)
        self.cache.save(catalog.channels)
        self._apply(seq, catalog, from_cache=False)

    def _apply(self, seq: int, catalog: Catalog, from_cache: bool) -> None:
        self._applied = seq
        self.channels = catalog.channels
        self.groups = catalog.groups
        self.error = None
        self.state = READY
        self.events.publish(CatalogLoaded(len(catalog.channels), len(catalog.groups), from_cache))

    def _apply_empty(self, seq: int) -> None:
        self._applied = seq
        self.channels = []
        self.groups = []
        self.error = None
        self.state = EMPTY
        self.cache.clear()
        logger.info("No playlist sources configured")
        self.events.publish(CatalogEmpty())

    def _apply_failure(self, seq: int, message: str) -> None:
        # the previous catalog stays available
        self._applied = seq
        self.error = message
        self.state = ERROR
        logger.error("%s: every source failed", message)
        self.events.publish(CatalogFailed(message))

    def clear_cache(self) -> bool:
        removed = self.cache.clear()
        self.events.publish(CacheCleared())
        return removed

    def catalog(self, group: Optional[str] = None) -> dict:
        channels = self.channels if group is None else [ch for ch in self.channels if ch.group == group]
        return {
            "state": self.state,
            "loading": self.loading,
            "error": self.error,
            "channels": [ch.to_dict() for ch in channels],
            "groups": list(self.groups),
        }

    # ---------------------------
    # playlist sources
    # ---------------------------
    @property
    def user_urls(self) -> List[str]:
        return self.sources.user_urls

    @property
    def default_urls(self):
        return self.sources.default_urls

    async def _sources_changed(self) -> None:
        self.events.publish(SourcesChanged("playlist"))
        await self.refetch(force=True)

    async def add_url(self, url: str) -> None:
        url = (url or "").strip()
        if not is_valid_url(url):
            raise SourceValidationError(INVALID_FORMAT, "Invalid URL format")
        if self.sources.contains(url):
            raise SourceValidationError(DUPLICATE, "This URL is already in the list")
        await validate_playlist_url(url, self.client, self.settings.validate_timeout)
        self.sources.add_user_url(url)
        await self._sources_changed()

    async def delete_url(self, url: str) -> bool:
        if not self.sources.delete_user_url(url):
            return False
        await self._sources_changed()
        return True

    async def add_default_url(self, url: str) -> None:
        url = (url or "").strip()
        if not is_valid_url(url):
            raise SourceValidationError(INVALID_FORMAT, "Invalid URL format")
        self.sources.add_default_url(url)
        await self._sources_changed()

    async def delete_default_url(self, url: str) -> bool:
        if not self.sources.delete_default_url(url):
            return False
        await self._sources_changed()
        return True

    async def toggle_default_url(self, url: str) -> bool:
        if not self.sources.toggle_default_url(url):
            return False
        await self._sources_changed()
        return True

    # ---------------------------
    # guide
    # ---------------------------
    async def add_guide_url(self, url: str) -> None:
        url = (url or "").strip()
        if not is_valid_url(url):
            raise SourceValidationError(INVALID_FORMAT, "Invalid URL format")
        if not await check_reachable(url, self.client):
            raise SourceValidationError(UNREACHABLE, "The URL cannot be reached")
        self.guide_sources.add_url(url)
        self.events.publish(SourcesChanged("guide"))

    def delete_guide_url(self, url: str) -> bool:
        if not self.guide_sources.delete_url(url):
            return False
        self.events.publish(SourcesChanged("guide"))
        return True

    def set_guide_active(self, url: str, active: bool) -> bool:
        if not self.guide_sources.set_active(url, active):
            return False
        self.events.publish(SourcesChanged("guide"))
        return True

    def _load_guide(self):
        path: Path = self.settings.guide_file
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            self._guide, self._guide_mtime = None, None
            return None
        if self._guide is None or mtime != self._guide_mtime:
            self._guide = load_guide(path)
            self._guide_mtime = mtime
        return self._guide

    def guide_for(self, tvg_id: str, now: Optional[datetime] = None) -> Optional[dict]:
        guide = self._load_guide()
        if guide is None:
            return None
        return now_and_next(guide, tvg_id, now)

    def status(self) -> dict:
        age = self.cache.age_ms()
        return {
            "state": self.state,
            "loading": self.loading,
            "error": self.error,
            "channels": len(self.channels),
            "groups": len(self.groups),
            "cache_age_seconds": age / 1000 if age is not None else None,
            "cache_ttl_seconds": self.settings.cache_ttl_seconds,
            "user_sources": len(self.sources.user_urls),
            "default_sources": len(self.sources.default_urls),
            "guide_sources": len(self.guide_sources.urls),
            "storage_dir": str(self.storage.root),
            "guide_path": str(self.settings.guide_file),
            "has_guide": self.settings.guide_file.exists(),
        }
