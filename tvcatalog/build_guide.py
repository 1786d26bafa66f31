import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .config import configure_logging, load_settings
from .epg_core import GuideParseError, merge_guides, parse_xmltv, write_guide
from .fetcher import fetch_feeds
from .sources import GuideSourceManager
from .storage import Storage

logger = logging.getLogger(__name__)

GUIDE_TIMEOUT = 60.0


async def build_guide(urls: List[str], out_path: Path, client=None, timeout: float = GUIDE_TIMEOUT) -> List[dict]:
    bodies = await fetch_feeds(urls, client, timeout)
    documents = []
    for url, body in bodies.items():
        try:
            doc = parse_xmltv(body)
        except GuideParseError as e:
            logger.warning("Skipping guide %s: %s", url, e)
            continue
        logger.info("Parsed %d channel(s) from %s", len(doc), url)
        documents.append(doc)

    guide = merge_guides(documents)
    if not guide:
        logger.error("No guide data from %d feed(s); leaving %s untouched", len(urls), out_path)
        return guide
    write_guide(out_path, guide)
    logger.info("Wrote %d channel(s) to %s", len(guide), out_path)
    return guide


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Build the program guide JSON from XMLTV feeds")
    p.add_argument("urls", nargs="*", help="Guide URLs (default: active guide sources)")
    p.add_argument("-o", "--output", help="Output JSON file (default: DATA_DIR/guide.json)")
    p.add_argument("-d", "--data-dir", help="Data directory holding config.json and storage/")
    p.add_argument("-t", "--timeout", type=float, default=GUIDE_TIMEOUT, help="Per-feed timeout in seconds")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = p.parse_args(argv)

    configure_logging("DEBUG" if args.verbose else None)
    settings = load_settings(Path(args.data_dir) if args.data_dir else None)

    urls = args.urls
    if not urls:
        sources = GuideSourceManager(Storage(settings.storage_dir), settings.default_epg_urls)
        sources.load()
        urls = sources.active_urls()
    if not urls:
        logger.error("No guide URLs given or configured")
        return 1

    out_path = Path(args.output) if args.output else settings.guide_file
    guide = asyncio.run(build_guide(urls, out_path, timeout=args.timeout))
    return 0 if guide else 1


if __name__ == "__main__":
    raise SystemExit(main())
