import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import PORT, Settings, configure_logging, load_settings
from .fetcher import SourceValidationError, http_client
from .service import CatalogService

logger = logging.getLogger(__name__)


class UrlBody(BaseModel):
    url: str


class GuideActiveBody(BaseModel):
    url: str
    active: bool = True


def rejected(e: SourceValidationError) -> JSONResponse:
    return JSONResponse({"ok": False, "reason": e.reason, "error": e.message}, status_code=400)


def create_app(settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    settings = settings or load_settings()
    service = CatalogService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with http_client(client, settings.http_timeout) as c:
            service.client = c
            await service.start()
            try:
                yield
            finally:
                await service.stop()
                service.client = None

    app = FastAPI(title="tvcatalog", lifespan=lifespan)
    app.state.service = service

    def sources_payload():
        return {
            "ok": True,
            "user_urls": service.user_urls,
            "default_urls": [{"url": d.url, "enabled": d.enabled} for d in service.default_urls],
        }

    @app.get("/api/catalog")
    def api_catalog(group: Optional[str] = None):
        return JSONResponse({"ok": True, **service.catalog(group)})

    @app.get("/api/groups")
    def api_groups():
        return JSONResponse({"ok": True, "groups": list(service.groups)})

    @app.post("/api/refetch")
    async def api_refetch(force: bool = False):
        await service.refetch(force=force)
        return JSONResponse({"ok": service.error is None, **service.catalog()})

    @app.delete("/api/cache")
    def api_clear_cache():
        removed = service.clear_cache()
        return JSONResponse({"ok": True, "removed": removed})

    @app.get("/api/sources")
    def api_sources():
        return JSONResponse(sources_payload())

    @app.post("/api/sources/user")
    async def api_add_user_source(body: UrlBody):
        try:
            await service.add_url(body.url)
        except SourceValidationError as e:
            return rejected(e)
        return JSONResponse(sources_payload())

    @app.delete("/api/sources/user")
    async def api_delete_user_source(body: UrlBody):
        changed = await service.delete_url(body.url)
        return JSONResponse({**sources_payload(), "changed": changed})

    @app.post("/api/sources/default")
    async def api_add_default_source(body: UrlBody):
        try:
            await service.add_default_url(body.url)
        except SourceValidationError as e:
            return rejected(e)
        return JSONResponse(sources_payload())

    @app.delete("/api/sources/default")
    async def api_delete_default_source(body: UrlBody):
        changed = await service.delete_default_url(body.url)
        return JSONResponse({**sources_payload(), "changed": changed})

    @app.post("/api/sources/default/toggle")
    async def api_toggle_default_source(body: UrlBody):
        changed = await service.toggle_default_url(body.url)
        return JSONResponse({**sources_payload(), "changed": changed})

    @app.get("/api/guide/sources")
    def api_guide_sources():
        return JSONResponse(
            {"ok": True, "urls": [{"url": s.url, "active": s.active} for s in service.guide_sources.urls]}
        )

    @app.post("/api/guide/sources")
    async def api_add_guide_source(body: UrlBody):
        try:
            await service.add_guide_url(body.url)
        except SourceValidationError as e:
            return rejected(e)
        return api_guide_sources()

    @app.delete("/api/guide/sources")
    def api_delete_guide_source(body: UrlBody):
        changed = service.delete_guide_url(body.url)
        return JSONResponse({"ok": changed, "changed": changed})

    @app.post("/api/guide/sources/active")
    def api_set_guide_active(body: GuideActiveBody):
        changed = service.set_guide_active(body.url, body.active)
        return JSONResponse({"ok": changed, "changed": changed})

    @app.get("/api/guide/{tvg_id}")
    def api_guide(tvg_id: str):
        info = service.guide_for(tvg_id)
        if info is None:
            return JSONResponse({"ok": False, "error": "No guide built yet. Run tvcatalog-build-guide first."}, status_code=404)
        return JSONResponse({"ok": True, "tvg_id": tvg_id, **info})

    @app.get("/api/status")
    def api_status():
        return JSONResponse({"ok": True, **service.status()})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    uvicorn.run("tvcatalog.main:app", host="0.0.0.0", port=PORT, reload=False)
