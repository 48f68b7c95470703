import sqlite3
from contextlib import closing

import pytest

from rsprof.errors import DatabaseError
from rsprof.profiles import (
    find_profiles,
    format_duration,
    format_value,
    most_recent_profile,
    read_profile_info,
    render_profile_list,
    run_query,
)


def _make_profile(path, name="app", pid="42", start="2024-01-01", stamps=(1000, 2500), counts=(3, 4)):
    with closing(sqlite3.connect(path)) as conn:
        conn.execute("CREATE TABLE meta (key TEXT, value TEXT)")
        conn.execute("CREATE TABLE checkpoints (timestamp_ms INTEGER)")
        conn.execute("CREATE TABLE cpu_samples (count INTEGER)")
        conn.executemany(
            "INSERT INTO meta VALUES (?, ?)",
            [("process_name", name), ("pid", pid), ("start_time", start)],
        )
        conn.executemany("INSERT INTO checkpoints VALUES (?)", [(s,) for s in stamps])
        conn.executemany("INSERT INTO cpu_samples VALUES (?)", [(c,) for c in counts])
        conn.commit()
    return path


def test_read_profile_info(tmp_path):
    counts = (3, 4)
    path = _make_profile(tmp_path / "rsprof.app.1.db", counts=counts)
    info = read_profile_info(path)
    assert info.process_name == "app"
    assert info.pid == 42
    assert info.created == "2024-01-01"
    assert info.duration_secs == pytest.approx(2.5)
    assert info.samples == sum(counts)
    assert info.path == path


def test_read_profile_info_defaults(tmp_path):
    path = tmp_path / "rsprof.empty.db"
    sqlite3.connect(path).close()
    info = read_profile_info(path)
    assert (info.process_name, info.pid, info.created) == ("unknown", 0, "unknown")
    assert info.duration_secs == 0.0
    assert info.samples == 0


def test_read_profile_info_bad_pid(tmp_path):
    path = _make_profile(tmp_path / "rsprof.x.db", pid="abc")
    assert read_profile_info(path).pid == 0


def test_read_profile_info_missing_file(tmp_path):
    with pytest.raises(DatabaseError):
        read_profile_info(tmp_path / "rsprof.none.db")


def test_find_profiles_filters_and_sorts(tmp_path):
    _make_profile(tmp_path / "rsprof.old.db", name="old", start="2023-01-01")
    _make_profile(tmp_path / "rsprof.new.db", name="new", start="2024-06-01")
    _make_profile(tmp_path / "other.db", name="other")
    _make_profile(tmp_path / "rsprof.txt", name="text")
    profiles = find_profiles(tmp_path)
    assert [p.process_name for p in profiles] == ["new", "old"]
    assert most_recent_profile(tmp_path) == tmp_path / "rsprof.new.db"


def test_most_recent_profile_none(tmp_path):
    assert most_recent_profile(tmp_path) is None


def test_find_profiles_missing_dir(tmp_path):
    with pytest.raises(OSError):
        find_profiles(tmp_path / "absent")


def test_format_duration():
    assert format_duration(30.0) == "30.0s"
    assert format_duration(125.0) == "2m5s"


def test_render_profile_list_empty(tmp_path):
    text = render_profile_list([], tmp_path)
    assert text.startswith("No rsprof profiles found in ")
    assert str(tmp_path) in text


def test_render_profile_list_rows(tmp_path):
    _make_profile(tmp_path / "rsprof.app.1.db", name="app")
    lines = render_profile_list(find_profiles(tmp_path), tmp_path).splitlines()
    assert lines[0].startswith("FILE")
    assert lines[1] == "-" * 76
    assert lines[2].startswith("rsprof.app.1.db")
    assert len(lines) == 3


@pytest.mark.parametrize(
    "value,expected",
    [(None, "NULL"), (5, "5"), ("x", "x"), (b"abc", "<blob 3 bytes>")],
)
def test_format_value(value, expected):
    assert format_value(value) == expected


def test_format_value_real():
    assert format_value(1.5) == "1.500000"


def test_run_query(tmp_path):
    path = _make_profile(tmp_path / "rsprof.q.db")
    text = run_query(path, "SELECT key, value FROM meta ORDER BY key")
    lines = text.splitlines()
    assert lines[0] == "key\tvalue"
    assert "pid\t42" in lines
    assert len(lines) == 4


def test_run_query_null(tmp_path):
    path = _make_profile(tmp_path / "rsprof.q.db")
    assert run_query(path, "SELECT NULL AS n").splitlines() == ["n", "NULL"]


def test_run_query_bad_sql(tmp_path):
    path = _make_profile(tmp_path / "rsprof.q.db")
    with pytest.raises(DatabaseError):
        run_query(path, "SELECT FROM nowhere")


def test_run_query_missing_file(tmp_path):
    with pytest.raises(DatabaseError):
        run_query(tmp_path / "missing.db", "SELECT 1")