from __future__ import annotations
import json
import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

XMLTV_TS_RE = re.compile(r"^(\d{14})\s*([+\-]\d{4})?$")
UNKNOWN_CHANNEL_ID = "unknown"
NO_TITLE = "No Title"
UPCOMING_LIMIT = 5


class GuideParseError(ValueError):
    """Raised when a guide document is not well-formed XML."""


def parse_xmltv_time(token: str) -> Optional[datetime]:
    """
    "20250101203000 +0700" -> aware datetime. A token without an offset is
    read as UTC. Returns None for anything else.
    """
    m = XMLTV_TS_RE.match((token or "").strip())
    if not m:
        return None
    try:
        dt = datetime.strptime(m.group(1), "%Y%m%d%H%M%S")
    except ValueError:
        return None
    offset = m.group(2)
    if not offset:
        return dt.replace(tzinfo=timezone.utc)
    sign = -1 if offset[0] == "-" else 1
    delta = timedelta(hours=int(offset[1:3]), minutes=int(offset[3:5]))
    try:
        tz = timezone(sign * delta)
    except ValueError:
        return None
    return dt.replace(tzinfo=tz)


def _field(elem: ET.Element, name: str) -> str:
    # attribute first, child element as fallback
    value = elem.get(name)
    if value is None:
        value = elem.findtext(name)
    return (value or "").strip()


def _programme(elem: ET.Element) -> Optional[dict]:
    start = _field(elem, "start")
    stop = _field(elem, "stop")
    if not start or not stop:
        return None
    title_el = elem.find("title")
    title = (title_el.text or "").strip() if title_el is not None else ""
    return {"start": start, "stop": stop, "title": title or NO_TITLE}


def _iter_programmes(root: ET.Element) -> Iterable[Tuple[str, ET.Element]]:
    if root.tag == "tv":
        for p in root.iter("programme"):
            yield (p.get("channel") or "").strip() or UNKNOWN_CHANNEL_ID, p
    elif root.tag == "epg":
        for ch in root.findall("channel"):
            cid = (ch.get("id") or ch.findtext("id") or "").strip() or UNKNOWN_CHANNEL_ID
            for p in ch.findall("programme"):
                yield cid, p


def parse_xmltv(xml_text: str) -> List[dict]:
    """
    Parse one guide document into `[{tvgId, programme: [{start, stop, title}]}]`.

    Two layouts are understood: the XMLTV `<tv><programme channel=..>` form
    and `<epg><channel id=..><programme>`. Any other root yields an empty
    guide. Programmes without start/stop, or with times that do not parse,
    are skipped.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise GuideParseError(f"guide is not valid XML: {e}") from e

    channels: Dict[str, List[dict]] = {}
    for cid, elem in _iter_programmes(root):
        prog = _programme(elem)
        if prog is None:
            continue
        channels.setdefault(cid, []).append(prog)

    return merge_guides([[{"tvgId": cid, "programme": progs} for cid, progs in channels.items()]])


def merge_guides(documents: Iterable[List[dict]]) -> List[dict]:
    """Merge parsed guides per channel, drop repeated programmes, sort by real start time."""
    merged: Dict[str, List[Tuple[datetime, dict]]] = {}
    seen: Dict[str, set] = {}

    for doc in documents:
        for entry in doc:
            cid = entry.get("tvgId") or UNKNOWN_CHANNEL_ID
            bucket = merged.setdefault(cid, [])
            keys = seen.setdefault(cid, set())
            for prog in entry.get("programme") or []:
                key = (prog.get("start"), prog.get("stop"), prog.get("title"))
                if key in keys:
                    continue
                start = parse_xmltv_time(prog.get("start"))
                if start is None or parse_xmltv_time(prog.get("stop")) is None:
                    logger.debug("Skipping programme with bad times on %s: %s", cid, key)
                    continue
                keys.add(key)
                bucket.append((start, {"start": key[0], "stop": key[1], "title": key[2] or NO_TITLE}))

    out = []
    for cid, items in merged.items():
        items.sort(key=lambda t: t[0])
        out.append({"tvgId": cid, "programme": [p for _, p in items]})
    return out


def write_guide(path: Path, guide: List[dict]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(guide, ensure_ascii=False, indent=2), encoding="utf-8")


def load_guide(path: Path) -> Optional[List[dict]]:
    path = Path(path)
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Could not read guide %s: %s", path, e)
        return None


def normalize_tvg_id(tvg_id: Optional[str]) -> str:
    return (tvg_id or "").strip()


def index_guide(guide: List[dict]) -> Dict[str, List[dict]]:
    return {normalize_tvg_id(e.get("tvgId")): e.get("programme") or [] for e in guide}


def now_and_next(guide: List[dict], tvg_id: Optional[str], now: Optional[datetime] = None) -> dict:
    """
    Look up what is on for one channel. Returns `{current, next, upcoming}`;
    `current`/`next` are None when the guide has nothing for that slot.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    programmes = index_guide(guide).get(normalize_tvg_id(tvg_id), [])

    current = None
    upcoming = []
    for prog in programmes:
        start = parse_xmltv_time(prog.get("start"))
        stop = parse_xmltv_time(prog.get("stop"))
        if start is None or stop is None:
            continue
        if start <= now < stop and current is None:
            current = prog
        elif start > now:
            upcoming.append(prog)

    return {
        "current": current,
        "next": upcoming[0] if upcoming else None,
        "upcoming": upcoming[:UPCOMING_LIMIT],
    }
