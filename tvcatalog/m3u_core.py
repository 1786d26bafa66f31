import re
from dataclasses import asdict, dataclass, field, fields
from typing import Dict, Iterable, Iterator, List, Optional

EXTM3U_MARKER = "#EXTM3U"
EXTINF_PREFIX = "#EXTINF"
LICENSE_TYPE_PREFIX = "#KODIPROP:inputstream.adaptive.license_type="
LICENSE_KEY_PREFIX = "#KODIPROP:inputstream.adaptive.license_key="
USER_AGENT_PREFIX = "#EXTVLCOPT:http-user-agent="
REFERRER_PREFIX = "#EXTVLCOPT:http-referrer="

UNKNOWN_CHANNEL = "Unknown Channel"
UNKNOWN_GROUP = "Unknown"
NO_LICENSE = "None"
DEFAULT_USER_AGENT = "Default"

ATTR_RE = re.compile(r'([A-Za-z0-9\-_]+)="([^"]*)"')
URL_RE = re.compile(
    r"^(https?://)[\w\-]+(\.[\w\-]+)+([\w\-.,@?^=%&:/~+#]*[\w\-@?^=%&/~+#])?$"
)

JSON_NAMES = {
    "tvg_id": "tvgId",
    "license_type": "licenseType",
    "license_key": "licenseKey",
    "user_agent": "userAgent",
}
FIELD_NAMES = {v: k for k, v in JSON_NAMES.items()}


@dataclass
class Channel:
    url: str
    name: str = UNKNOWN_CHANNEL
    group: str = UNKNOWN_GROUP
    tvg_id: Optional[str] = None
    logo: Optional[str] = None
    license_type: str = NO_LICENSE
    license_key: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    referrer: Optional[str] = None

    def to_dict(self) -> dict:
        return {JSON_NAMES.get(k, k): v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, d: dict) -> "Channel":
        # camelCase record keys; snake_case field names are accepted too
        known = {f.name for f in fields(cls)}
        attrs = {FIELD_NAMES.get(k, k): v for k, v in d.items()}
        return cls(**{k: v for k, v in attrs.items() if k in known})


@dataclass
class Catalog:
    channels: List[Channel] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "channels": [ch.to_dict() for ch in self.channels],
            "groups": list(self.groups),
        }


def parse_attrs(attr_str: str) -> dict:
    attrs = {}
    for m in ATTR_RE.finditer(attr_str):
        attrs[m.group(1).lower()] = m.group(2)
    return attrs


def _directive_value(line: str) -> str:
    return line.partition("=")[2].strip()


def _start_channel(line: str) -> dict:
    head, sep, tail = line.rpartition(",")
    attrs = parse_attrs(head if sep else line)
    name = tail.strip() if sep else ""
    return {
        "tvg_id": attrs.get("tvg-id") or None,
        "logo": attrs.get("tvg-logo") or None,
        "group": attrs.get("group-title") or UNKNOWN_GROUP,
        "name": name or UNKNOWN_CHANNEL,
        "license_type": NO_LICENSE,
        "license_key": None,
        "user_agent": DEFAULT_USER_AGENT,
        "referrer": None,
    }


def parse_m3u(m3u_text: str) -> Iterator[Channel]:
    """
    Yield one Channel per `#EXTINF` entry that is followed by a stream URL.

    Directive lines between the `#EXTINF` line and the URL fill in DRM and
    playback header fields. An entry that never reaches a URL line (end of
    input, or another `#EXTINF` first) is dropped.
    """
    current: Optional[dict] = None
    for raw in (m3u_text or "").splitlines():
        ln = raw.strip().lstrip("\ufeff")
        if not ln:
            continue

        if ln.startswith(EXTINF_PREFIX):
            current = _start_channel(ln)
        elif ln.startswith("#"):
            if current is None:
                continue
            if ln.startswith(LICENSE_TYPE_PREFIX):
                current["license_type"] = _directive_value(ln) or NO_LICENSE
            elif ln.startswith(LICENSE_KEY_PREFIX):
                # verbatim, may be a kid:key pair or a license server URL
                current["license_key"] = ln[len(LICENSE_KEY_PREFIX):].strip() or None
            elif ln.startswith(USER_AGENT_PREFIX):
                current["user_agent"] = _directive_value(ln) or DEFAULT_USER_AGENT
            elif ln.startswith(REFERRER_PREFIX):
                current["referrer"] = _directive_value(ln) or None
        else:
            if current is not None:
                yield Channel(url=ln, **current)
            current = None


def has_playlist_marker(text: str) -> bool:
    return EXTM3U_MARKER in (text or "")


def is_valid_url(url: str) -> bool:
    return bool(URL_RE.match((url or "").strip()))


def groups_of(channels: Iterable[Channel]) -> List[str]:
    seen: Dict[str, None] = {}
    for ch in channels:
        seen.setdefault(ch.group, None)
    return list(seen)


def build_catalog(channels: Iterable[Channel]) -> Catalog:
    """First occurrence per stream URL wins; order of first occurrence is kept."""
    by_url: Dict[str, Channel] = {}
    for ch in channels:
        if not ch.url or ch.url in by_url:
            continue
        by_url[ch.url] = ch

    unique = list(by_url.values())
    return Catalog(channels=unique, groups=groups_of(unique))
