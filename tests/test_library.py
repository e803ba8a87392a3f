"""Test the track registry"""

import pytest

from jukebox.library import (
    Catalog,
    Track,
    catalog_from_urls,
    clamp_page,
    derive_title,
    format_duration,
    list_audio_files,
    normalize_extensions,
    page_for_index,
    page_slice,
    scan,
    sort_filenames,
)
from jukebox.errors import ScanFailure


class TestTitles:
    """Test title derivation from filenames"""

    def test_numeric_prefix_stripped(self):
        assert derive_title("01 - Song Name.mp3") == "Song Name"

    def test_underscores_become_spaces(self):
        assert derive_title("Track_Four.wav") == "Track Four"

    def test_bare_number_kept(self):
        assert derive_title("07.mp3") == "07"

    def test_dot_separator(self):
        assert derive_title("12.Intro.ogg") == "Intro"

    def test_plain_name(self):
        assert derive_title("  Hello World .m4a") == "Hello World"


class TestSorting:
    """Test natural filename ordering"""

    def test_numeric_prefixes_compare_as_integers(self):
        assert sort_filenames(["10 b.mp3", "2 a.mp3", "1 c.mp3"]) == ["1 c.mp3", "2 a.mp3", "10 b.mp3"]

    def test_case_insensitive(self):
        assert sort_filenames(["beta.mp3", "Alpha.mp3", "charlie.mp3"]) == [
            "Alpha.mp3", "beta.mp3", "charlie.mp3"]

    def test_accents_ignored(self):
        assert sort_filenames(["eclair.mp3", "Ébène.mp3"]) == ["Ébène.mp3", "eclair.mp3"]


class TestExtensions:
    def test_normalized(self):
        assert normalize_extensions(["MP3", ".Wav"]) == {".mp3", ".wav"}

    def test_defaults_when_empty(self):
        assert normalize_extensions([]) == {".mp3", ".wav", ".ogg", ".m4a"}
        assert normalize_extensions(None) == {".mp3", ".wav", ".ogg", ".m4a"}


class TestScan:
    """Test directory scans"""

    def test_scan_filters_and_sorts(self, tmp_path):
        for name in ["10 - Ten.mp3", "2 - Two.MP3", "notes.txt", "1 - One.wav"]:
            (tmp_path / name).write_bytes(b"x")
        (tmp_path / "sub.mp3").mkdir()

        catalog = scan(str(tmp_path))

        assert [t.file for t in catalog] == ["1 - One.wav", "2 - Two.MP3", "10 - Ten.mp3"]
        assert [t.title for t in catalog] == ["One", "Two", "Ten"]
        assert [t.id for t in catalog] == [0, 1, 2]
        assert all(t.is_playable for t in catalog)

    def test_scan_respects_extensions(self, tmp_path):
        (tmp_path / "a.mp3").write_bytes(b"x")
        (tmp_path / "b.flac").write_bytes(b"x")
        assert [t.file for t in scan(str(tmp_path), ["flac"])] == ["b.flac"]

    def test_missing_directory_is_empty(self, tmp_path):
        catalog = scan(str(tmp_path / "nope"))
        assert len(catalog) == 0

    def test_file_instead_of_directory_is_empty(self, tmp_path):
        f = tmp_path / "a.mp3"
        f.write_bytes(b"x")
        assert len(scan(str(f))) == 0

    def test_list_audio_files_raises_on_missing(self, tmp_path):
        with pytest.raises(ScanFailure):
            list_audio_files(tmp_path / "missing")


class TestUrlCatalog:
    def test_order_kept(self):
        catalog = catalog_from_urls([
            {"url": "http://x/b.mp3", "title": "B", "artist": "Someone"},
            {"url": "http://x/01 - a.mp3"},
            {"title": "no url"},
        ])
        assert catalog.source == "url"
        assert [t.title for t in catalog] == ["B", "a", "no url"]
        assert catalog[0].artist == "Someone"
        assert catalog.playable_indices() == [0, 1]


class TestCatalog:
    def test_playable(self):
        catalog = Catalog([Track(0, file="a.mp3"), Track(1)])
        assert catalog.is_playable(0)
        assert not catalog.is_playable(1)
        assert not catalog.is_playable(5)
        assert not catalog.is_playable(None)

    def test_to_list_formats_duration(self):
        catalog = Catalog([Track(0, file="a.mp3", duration=125.4)])
        assert catalog.to_list()[0]["duration_text"] == "2:05"


class TestHelpers:
    def test_format_duration(self):
        assert format_duration(90) == "1:30"
        assert format_duration(0) == ""
        assert format_duration(None) == ""
        assert format_duration(float("nan")) == ""

    def test_pagination(self):
        catalog = Catalog([Track(i, file=f"{i}.mp3") for i in range(85)])
        assert page_for_index(0, 40) == 1
        assert page_for_index(45, 40) == 2
        assert clamp_page(9, len(catalog), 40) == 3
        assert clamp_page("x", len(catalog), 40) == 1
        assert [t.id for t in page_slice(catalog, 3, 40)] == list(range(80, 85))
