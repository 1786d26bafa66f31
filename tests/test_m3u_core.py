"""
Tests for playlist parsing and catalog building.
"""
from tvcatalog.m3u_core import (
    Channel,
    build_catalog,
    has_playlist_marker,
    is_valid_url,
    parse_m3u,
)


class TestParseM3U:

    def test_single_entry(self):
        text = '#EXTINF:-1 tvg-id="c1" group-title="News",Channel One\nhttp://x/1.m3u8\n'
        channels = list(parse_m3u(text))

        assert len(channels) == 1
        ch = channels[0]
        assert ch.tvg_id == "c1"
        assert ch.group == "News"
        assert ch.name == "Channel One"
        assert ch.url == "http://x/1.m3u8"
        assert ch.license_type == "None"
        assert ch.license_key is None
        assert ch.logo is None
        assert ch.user_agent == "Default"
        assert ch.referrer is None

    def test_dangling_entry_at_end(self):
        assert list(parse_m3u('#EXTINF:-1 tvg-id="c1",Channel One\n')) == []

    def test_entry_replaced_by_next_metadata_line(self):
        text = "\n".join([
            "#EXTM3U",
            "#EXTINF:-1,Lost Channel",
            "#EXTINF:-1,Kept Channel",
            "http://stream.example.com/kept",
        ])
        channels = list(parse_m3u(text))
        assert [c.name for c in channels] == ["Kept Channel"]

    def test_defaults_for_bare_metadata(self):
        channels = list(parse_m3u("#EXTINF:-1\nhttp://stream.example.com/a\n"))
        assert channels[0].name == "Unknown Channel"
        assert channels[0].group == "Unknown"
        assert channels[0].tvg_id is None

    def test_name_after_last_comma(self):
        text = '#EXTINF:-1 tvg-logo="http://logo.example.com/a.png" group-title="Movies, Drama",  HBO  \nhttp://s/hbo\n'
        ch = list(parse_m3u(text))[0]
        assert ch.name == "HBO"
        assert ch.group == "Movies, Drama"
        assert ch.logo == "http://logo.example.com/a.png"

    def test_drm_and_header_directives(self):
        text = "\n".join([
            "#EXTM3U",
            '#EXTINF:-1 tvg-id="rcti" group-title="Nasional",RCTI',
            "#KODIPROP:inputstream.adaptive.license_type=clearkey",
            "#KODIPROP:inputstream.adaptive.license_key=0a1b2c:3d4e5f",
            "#EXTVLCOPT:http-user-agent=Mozilla/5.0 (Linux)",
            "#EXTVLCOPT:http-referrer=https://www.example.com/",
            "https://cdn.example.com/rcti/manifest.mpd",
            '#EXTINF:-1 tvg-id="wv",Widevine Channel',
            "#KODIPROP:inputstream.adaptive.license_type=com.widevine.alpha",
            "#KODIPROP:inputstream.adaptive.license_key=https://lic.example.com/wv?token=a=b",
            "https://cdn.example.com/wv/manifest.mpd",
        ])
        rcti, wv = list(parse_m3u(text))

        assert rcti.license_type == "clearkey"
        assert rcti.license_key == "0a1b2c:3d4e5f"
        assert rcti.user_agent == "Mozilla/5.0 (Linux)"
        assert rcti.referrer == "https://www.example.com/"

        assert wv.license_type == "com.widevine.alpha"
        assert wv.license_key == "https://lic.example.com/wv?token=a=b"
        assert wv.user_agent == "Default"

    def test_directives_do_not_leak_into_next_channel(self):
        text = "\n".join([
            "#EXTINF:-1,A",
            "#KODIPROP:inputstream.adaptive.license_type=clearkey",
            "http://s/a",
            "#EXTINF:-1,B",
            "http://s/b",
        ])
        a, b = list(parse_m3u(text))
        assert a.license_type == "clearkey"
        assert b.license_type == "None"

    def test_url_without_metadata_is_ignored(self):
        text = "http://s/orphan\n#EXTINF:-1,A\nhttp://s/a\nhttp://s/second-url\n"
        assert [c.url for c in parse_m3u(text)] == ["http://s/a"]

    def test_body_without_markers(self):
        assert list(parse_m3u("<html><body>Not found</body></html>")) == []
        assert list(parse_m3u("")) == []

    def test_crlf_and_blank_lines(self):
        text = "#EXTM3U\r\n\r\n#EXTINF:-1,A\r\n\r\nhttp://s/a\r\n"
        assert [c.url for c in parse_m3u(text)] == ["http://s/a"]


class TestBuildCatalog:

    def test_first_occurrence_wins(self):
        channels = [
            Channel(url="http://s/1", name="First", group="News"),
            Channel(url="http://s/2", name="Two", group="Sports"),
            Channel(url="http://s/1", name="Duplicate", group="Kids"),
            Channel(url="http://s/3", name="Three", group="News"),
        ]
        cat = build_catalog(channels)

        assert [c.url for c in cat.channels] == ["http://s/1", "http://s/2", "http://s/3"]
        assert cat.channels[0].name == "First"
        assert cat.groups == ["News", "Sports"]

    def test_one_entry_per_url(self):
        urls = ["http://s/%d" % (i % 4) for i in range(20)]
        cat = build_catalog(Channel(url=u, name=str(i)) for i, u in enumerate(urls))
        assert len(cat.channels) == 4
        assert {c.url: c.name for c in cat.channels} == {
            "http://s/0": "0", "http://s/1": "1", "http://s/2": "2", "http://s/3": "3",
        }

    def test_empty_url_never_materialized(self):
        cat = build_catalog([Channel(url=""), Channel(url="http://s/a")])
        assert [c.url for c in cat.channels] == ["http://s/a"]

    def test_to_dict(self):
        cat = build_catalog([Channel(url="http://s/a", name="A", group="G")])
        d = cat.to_dict()
        assert d["groups"] == ["G"]
        assert d["channels"][0]["url"] == "http://s/a"
        assert d["channels"][0]["licenseType"] == "None"
        assert d["channels"][0]["userAgent"] == "Default"
        assert "tvgId" in d["channels"][0]


class TestHelpers:

    def test_is_valid_url(self):
        assert is_valid_url("http://example.com/list.m3u")
        assert is_valid_url("https://pastebin.com/raw/JyCSD9r1")
        assert is_valid_url("  https://iptv-org.github.io/iptv/index.m3u  ")
        assert not is_valid_url("ftp://example.com/list.m3u")
        assert not is_valid_url("http://localhost/list.m3u")
        assert not is_valid_url("example.com/list.m3u")
        assert not is_valid_url("")

    def test_playlist_marker(self):
        assert has_playlist_marker("#EXTM3U\n#EXTINF:-1,A\nhttp://s/a")
        assert not has_playlist_marker("#EXTINF:-1,A\nhttp://s/a")

    def test_channel_from_dict_ignores_unknown_keys(self):
        ch = Channel.from_dict({"url": "http://s/a", "name": "A", "extra": 1})
        assert ch == Channel(url="http://s/a", name="A")

    def test_channel_from_dict_reads_record_keys(self):
        ch = Channel.from_dict({"url": "http://s/a", "tvgId": "a", "licenseType": "clearkey", "userAgent": "VLC"})
        assert (ch.tvg_id, ch.license_type, ch.user_agent) == ("a", "clearkey", "VLC")
        assert Channel.from_dict(ch.to_dict()) == ch
