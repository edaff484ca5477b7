"""Tests for URL classification and asset path derivation."""

import hashlib

import pytest

from dcexport.paths import (
    asset_relative_path,
    escape_file_name,
    legacy_asset_path,
    nested_asset_path,
    normalize_url,
    skip_reason,
    url_hash,
)

ATTACHMENT = "https://cdn.discordapp.com/attachments/111/222/photo.png"


class TestSkipReason:

    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=abc",
        "https://youtu.be/abc",
        "https://player.vimeo.com/video/1",
        "https://open.spotify.com/track/1",
        "https://www.tiktok.com/@x/video/1",
    ])
    def test_embed_only_hosts(self, url):
        assert skip_reason(url) == "embed"

    @pytest.mark.parametrize("url", [
        "https://images-ext-1.discordapp.net/external/abc/https/example.com/a.png",
        "https://images-ext-2.discordapp.net/whatever.png",
        "https://media.discordapp.net/external/abc/https/example.com/a.png",
    ])
    def test_proxy_thumbnails(self, url):
        assert skip_reason(url) == "proxy"

    @pytest.mark.parametrize("url", [
        ATTACHMENT,
        "https://media.discordapp.net/attachments/1/2/a.png",
        "https://notyoutube.com/video.mp4",
        "https://example.com/image.jpg",
    ])
    def test_downloadable(self, url):
        assert skip_reason(url) is None


class TestNormalization:

    def test_strips_signature_params_on_cdn(self):
        url = ATTACHMENT + "?ex=65a1&is=6590&hm=deadbeef&size=64"
        assert normalize_url(url) == ATTACHMENT + "?size=64"

    def test_strips_all_params_when_only_signature(self):
        assert normalize_url(ATTACHMENT + "?ex=1&is=2&hm=3") == ATTACHMENT

    def test_leaves_other_hosts_alone(self):
        url = "https://example.com/a.png?ex=1"
        assert normalize_url(url) == url

    def test_resigned_urls_share_hash(self):
        assert url_hash(ATTACHMENT + "?ex=1&hm=a") == url_hash(ATTACHMENT + "?ex=2&hm=b")


class TestNestedPaths:

    def test_attachment(self):
        assert nested_asset_path(ATTACHMENT) == "attachments/222.png"

    def test_attachment_ignores_signature(self):
        assert nested_asset_path(ATTACHMENT + "?ex=1&is=2&hm=3") == "attachments/222.png"

    def test_emoji_and_sticker(self):
        assert nested_asset_path("https://cdn.discordapp.com/emojis/555.gif") == "emojis/555.gif"
        assert nested_asset_path("https://cdn.discordapp.com/stickers/777.png") == "stickers/777.png"

    def test_icons(self):
        url = "https://cdn.discordapp.com/icons/42/a_hash.webp"
        assert nested_asset_path(url) == "icons/42_a_hash.webp"

    def test_user_and_member_avatars(self):
        assert nested_asset_path("https://cdn.discordapp.com/avatars/9/abc.png") == "avatars/9_abc.png"
        member = "https://cdn.discordapp.com/guilds/1/users/9/avatars/def.png"
        assert nested_asset_path(member) == "avatars/9_def.png"

    def test_twemoji(self):
        url = "https://cdn.jsdelivr.net/gh/twitter/twemoji@latest/assets/svg/1f600.svg"
        assert nested_asset_path(url) == "twemoji/1f600.svg"

    def test_external_is_content_addressed(self):
        url = "https://example.com/images/cat.JPG?x=1"
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        assert nested_asset_path(url) == f"external/example.com/{digest}.jpg"

    def test_external_urls_one_char_apart_do_not_collide(self):
        a = nested_asset_path("https://example.com/a.png?v=1")
        b = nested_asset_path("https://example.com/a.png?v=2")
        assert a != b
        assert len(a.split("/")[-1].split(".")[0]) == 64

    def test_unrecognized_cdn_shape_keeps_path_and_query(self):
        url = "https://cdn.discordapp.com/banners/42/hash.png?size=512"
        assert nested_asset_path(url) == "banners/42/hash_size-512.png"

    def test_long_extension_is_dropped(self):
        url = "https://cdn.discordapp.com/attachments/1/2/file.averyveryverylongext"
        assert nested_asset_path(url) == "attachments/2"

    def test_deterministic(self):
        url = "https://example.com/some/file.mp4"
        assert nested_asset_path(url) == nested_asset_path(url)


class TestLegacyPaths:

    def test_name_hash_extension(self):
        path = legacy_asset_path(ATTACHMENT)
        assert path == f"photo-{url_hash(ATTACHMENT)[:5]}.png"

    def test_signature_params_do_not_change_name(self):
        assert legacy_asset_path(ATTACHMENT + "?ex=1&is=2&hm=3") == legacy_asset_path(ATTACHMENT)

    def test_kept_query_is_hashed_without_separator(self):
        url = "https://cdn.discordapp.com/avatars/1/abc.png?size=256&ex=1&hm=2"
        expected = hashlib.sha256(
            b"https://cdn.discordapp.com/avatars/1/abc.pngsize=256"
        ).hexdigest()[:5]
        assert legacy_asset_path(url) == f"abc-{expected}.png"

    def test_long_stem_is_truncated(self):
        url = f"https://example.com/{'x' * 100}.png"
        stem = legacy_asset_path(url).rsplit("-", 1)[0]
        assert stem == "x" * 42

    def test_no_file_name_gives_bare_hash(self):
        url = "https://example.com/"
        assert legacy_asset_path(url) == url_hash(url)[:5]

    def test_overlong_extension_stays_in_stem(self):
        ext = "y" * 45
        url = f"https://example.com/name.{ext}"
        path = legacy_asset_path(url)
        assert "." not in path.rsplit("-", 1)[1]

    def test_strategy_selection(self):
        assert asset_relative_path(ATTACHMENT, nested=True) == "attachments/222.png"
        assert asset_relative_path(ATTACHMENT, nested=False).startswith("photo-")


def test_escape_file_name():
    assert escape_file_name('a<b>c:d"e/f\\g|h?i*j') == "a_b_c_d_e_f_g_h_i_j"
    assert escape_file_name("plain name.png") == "plain name.png"
