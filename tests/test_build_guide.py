from tvcatalog.build_guide import build_guide, main
from tvcatalog.config import default_config, save_config
from tvcatalog.epg_core import load_guide, write_guide

GUIDE_1 = "http://epg.example.com/one.xml"
GUIDE_2 = "http://epg.example.com/two.xml"
BROKEN = "http://epg.example.com/broken.xml"

DOC_1 = """<tv>
  <programme start="20250101100000 +0000" stop="20250101110000 +0000" channel="bbc.uk"><title>News</title></programme>
</tv>"""
DOC_2 = """<tv>
  <programme start="20250101100000 +0000" stop="20250101110000 +0000" channel="bbc.uk"><title>News</title></programme>
  <programme start="20250101090000 +0000" stop="20250101100000 +0000" channel="bbc.uk"><title>Breakfast</title></programme>
  <programme start="20250101090000 +0000" stop="20250101100000 +0000" channel="cnn.us"><title>Morning</title></programme>
</tv>"""


async def test_build_guide_merges_feeds(feeds, client, tmp_path):
    feeds.add(GUIDE_1, DOC_1)
    feeds.add(GUIDE_2, DOC_2)
    feeds.add(BROKEN, "<tv><programme>")
    out = tmp_path / "guide.json"

    guide = await build_guide([GUIDE_1, BROKEN, GUIDE_2, "http://epg.example.com/404.xml"], out, client=client)

    by_id = {e["tvgId"]: [p["title"] for p in e["programme"]] for e in guide}
    assert by_id == {"bbc.uk": ["Breakfast", "News"], "cnn.us": ["Morning"]}
    assert load_guide(out) == guide


def test_main_without_urls_fails(tmp_path):
    cfg = default_config()
    cfg["default_epg_urls"] = []
    save_config(cfg, tmp_path)
    assert main(["-d", str(tmp_path)]) == 1
    assert not (tmp_path / "guide.json").exists()


async def test_failed_build_keeps_previous_artifact(feeds, client, tmp_path):
    out = tmp_path / "guide.json"
    previous = [{"tvgId": "bbc.uk", "programme": [{"start": "20250101100000 +0000", "stop": "20250101110000 +0000", "title": "News"}]}]
    write_guide(out, previous)
    feeds.fail(GUIDE_1)
    feeds.add(BROKEN, "<tv><programme>")

    assert await build_guide([GUIDE_1, BROKEN], out, client=client) == []
    assert load_guide(out) == previous


async def test_bad_offset_in_one_feed_does_not_lose_the_others(feeds, client, tmp_path):
    feeds.add(GUIDE_1, DOC_1)
    feeds.add(GUIDE_2, """<tv>
  <programme start="20250101200000 +2400" stop="20250101210000 +2400" channel="cnn.us"><title>Bad</title></programme>
</tv>""")
    out = tmp_path / "guide.json"

    guide = await build_guide([GUIDE_1, GUIDE_2], out, client=client)

    by_id = {e["tvgId"]: [p["title"] for p in e["programme"]] for e in guide}
    assert by_id["bbc.uk"] == ["News"]
    assert load_guide(out) == guide
