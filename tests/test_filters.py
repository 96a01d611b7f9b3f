import os
from types import SimpleNamespace
from dataclasses import replace
from pathlib import Path

from dupewatch.config import FilterConfig
from dupewatch.scanning.filters import (
    PathFilter,
    PatternSet,
    PosixSystemProbe,
    WindowsSystemProbe,
    file_extension,
    system_probe_for_platform,
)

def _write(p: Path, size: int = 10) -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(b"x" * size)
    return p

def test_file_extension_rules():
    assert file_extension("archive.tar.gz") == ".gz"
    assert file_extension("Photo.JPG") == ".JPG"
    assert file_extension(".bashrc") == ""
    assert file_extension("name.") == ""
    assert file_extension("README") == ""

def test_default_config_accepts_plain_file(tmp_path):
    f = PathFilter(FilterConfig(), probe=PosixSystemProbe())
    assert f.should_index(_write(tmp_path / "notes.txt"))

def test_directories_and_missing_paths_are_rejected(tmp_path, open_filter):
    f = PathFilter(open_filter)
    d = tmp_path / "sub"
    d.mkdir()
    assert not f.should_index(d)
    assert not f.should_index(tmp_path / "missing.txt")

def test_excluded_extensions_are_case_insensitive(tmp_path):
    f = PathFilter(FilterConfig(), probe=PosixSystemProbe())
    assert not f.should_index(_write(tmp_path / "build.tmp"))
    assert not f.should_index(_write(tmp_path / "SERVER.LOG"))
    assert f.should_index(_write(tmp_path / "server.logs"))

def test_included_extensions_whitelist(tmp_path, open_filter):
    cfg = replace(open_filter, included_extensions=("txt", ".CSV"))
    f = PathFilter(cfg)
    assert f.should_index(_write(tmp_path / "a.txt"))
    assert f.should_index(_write(tmp_path / "b.csv"))
    assert not f.should_index(_write(tmp_path / "c.md"))
    assert not f.should_index(_write(tmp_path / "Makefile"))

def test_size_window_is_inclusive(tmp_path, open_filter):
    f = PathFilter(replace(open_filter, min_file_size=10, max_file_size=20))
    assert not f.should_index(_write(tmp_path / "s9", 9))
    assert f.should_index(_write(tmp_path / "s10", 10))
    assert f.should_index(_write(tmp_path / "s20", 20))
    assert not f.should_index(_write(tmp_path / "s21", 21))

def test_excluded_directories_match_anywhere_in_path(tmp_path):
    f = PathFilter(FilterConfig(), probe=PosixSystemProbe())
    assert not f.should_index(_write(tmp_path / "proj" / "node_modules" / "lib" / "index.js"))
    assert f.should_index(_write(tmp_path / "proj" / "src" / "index.js"))

def test_hidden_files(tmp_path, open_filter):
    hidden = _write(tmp_path / ".secret")
    assert not PathFilter(replace(open_filter, skip_hidden_files=True)).should_index(hidden)
    assert PathFilter(open_filter).should_index(hidden)

def test_read_only_files(tmp_path, open_filter, monkeypatch):
    p = _write(tmp_path / "locked.txt")
    monkeypatch.setattr(os, "access", lambda path, mode: False)
    assert not PathFilter(replace(open_filter, skip_read_only_files=True)).should_index(p)
    assert PathFilter(open_filter).should_index(p)

def test_include_patterns_use_full_match(tmp_path, open_filter):
    f = PathFilter(replace(open_filter, included_patterns=(r"report_\d+\.csv",)))
    assert f.should_index(_write(tmp_path / "REPORT_12.CSV"))
    assert not f.should_index(_write(tmp_path / "report_12.csv.bak"))
    assert not f.should_index(_write(tmp_path / "old_report_12.csv"))

def test_exclude_patterns(tmp_path, open_filter):
    f = PathFilter(replace(open_filter, excluded_patterns=(r"~\$.*",)))
    assert not f.should_index(_write(tmp_path / "~$draft.docx"))
    assert f.should_index(_write(tmp_path / "draft.docx"))

def test_invalid_pattern_is_dropped(tmp_path, open_filter):
    f = PathFilter(replace(open_filter, excluded_patterns=("[unclosed", r".*\.bak")))
    assert len(f.patterns.excluded) == 1
    assert not f.should_index(_write(tmp_path / "a.bak"))
    assert f.should_index(_write(tmp_path / "a.txt"))

def test_update_patterns_swaps_whole_set(tmp_path, open_filter):
    f = PathFilter(open_filter)
    p = _write(tmp_path / "movie.mkv")
    assert f.should_index(p)

    new_set = f.update_patterns([], [r".*\.mkv"])
    assert f.patterns is new_set
    assert not f.should_index(p)

    f.update_patterns([r".*\.mkv"], [])
    assert f.should_index(p)
    assert not f.should_index(_write(tmp_path / "a.txt"))

def test_decision_is_deterministic(tmp_path, open_filter):
    f = PathFilter(replace(open_filter, excluded_patterns=(r"b.*",)))
    files = [_write(tmp_path / n) for n in ("a.txt", "b.txt", "c.txt")]
    first = [f.should_index(p) for p in files]
    assert first == [f.should_index(p) for p in files]
    assert first == [True, False, True]

def test_pattern_set_allows():
    ps = PatternSet.build([r".*\.jpg"], [r"thumb_.*"])
    assert ps.allows("IMG_1.JPG")
    assert not ps.allows("thumb_1.jpg")
    assert not ps.allows("notes.txt")
    assert PatternSet().allows("anything")

def test_posix_probe_heuristics():
    probe = PosixSystemProbe()
    st = SimpleNamespace()
    assert probe.is_system_file(Path("/home/u/.profile"), st)
    assert probe.is_system_file(Path("/proc/self/status"), st)
    assert probe.is_system_file(Path("/mnt/x/dev/null"), st)
    assert not probe.is_system_file(Path("/home/u/devices.txt"), st)
    assert probe.is_hidden(Path("/home/u/.cache"), st)

def test_windows_probe_reads_attribute_bits():
    probe = WindowsSystemProbe()
    assert probe.is_system_file(Path("C:/x"), SimpleNamespace(st_file_attributes=0x4))
    assert probe.is_hidden(Path("C:/x"), SimpleNamespace(st_file_attributes=0x2))
    assert not probe.is_system_file(Path("C:/x"), SimpleNamespace(st_file_attributes=0x20))
    assert not probe.is_hidden(Path("C:/x"), SimpleNamespace())

def test_probe_selection():
    assert isinstance(system_probe_for_platform("win32"), WindowsSystemProbe)
    assert isinstance(system_probe_for_platform("linux"), PosixSystemProbe)

def test_statistics(open_filter):
    cfg = replace(open_filter, included_extensions=(".a", ".b"), excluded_patterns=("x",), max_file_size=99)
    stats = PathFilter(cfg).statistics()
    assert stats.included_extensions == 2
    assert stats.excluded_patterns == 1
    assert stats.max_file_size == 99
