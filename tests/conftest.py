import httpx
import pytest

from tvcatalog.config import Settings
from tvcatalog.service import CatalogService
from tvcatalog.storage import Storage

DEFAULT_A = "http://feeds.example.com/default-a.m3u"
DEFAULT_B = "http://feeds.example.com/default-b.m3u"
USER_1 = "http://lists.example.org/user-1.m3u"
USER_2 = "http://lists.example.org/user-2.m3u"


def m3u(*entries):
    """Build a playlist body from (name, url, group) tuples."""
    lines = ["#EXTM3U"]
    for name, url, group in entries:
        lines.append(f'#EXTINF:-1 tvg-id="{name.lower()}" group-title="{group}",{name}')
        lines.append(url)
    return "\n".join(lines) + "\n"


class FakeFeeds:
    """Routes for httpx.MockTransport. A route set to None raises a connection error."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, body="", status=200):
        self.routes[url] = (status, body)

    def fail(self, url):
        self.routes[url] = None

    def count(self, url=None, method="GET"):
        return sum(1 for m, u in self.requests if m == method and (url is None or u == url))

    def handler(self, request):
        url = str(request.url)
        self.requests.append((request.method, url))
        if url not in self.routes:
            return httpx.Response(404, text="not found")
        route = self.routes[url]
        if route is None:
            raise httpx.ConnectError("connection refused", request=request)
        status, body = route
        return httpx.Response(status, text=body)


class Clock:
    def __init__(self, t=1_700_000_000_000):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, minutes):
        self.t += int(minutes * 60_000)


@pytest.fixture
def feeds():
    return FakeFeeds()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path,
        default_m3u_urls=[DEFAULT_A, DEFAULT_B],
        default_epg_urls=[],
        cache_ttl_minutes=10,
        http_timeout=5,
        validate_timeout=5,
    )


@pytest.fixture
def storage(settings):
    return Storage(settings.storage_dir)


@pytest.fixture
async def client(feeds):
    async with httpx.AsyncClient(transport=httpx.MockTransport(feeds.handler)) as c:
        yield c


@pytest.fixture
def service(settings, storage, client, clock):
    svc = CatalogService(settings, storage=storage, client=client, clock=clock)
    svc.load_sources()
    return svc
