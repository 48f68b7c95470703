from rsprof.demo.app import Application, Stats, main
from rsprof.demo.workload import AuditLogger


def test_stats_start_at_zero():
    stats = Stats()
    assert (stats.cache_hits, stats.cache_misses, stats.errors) == (0, 0, 0)


def test_generate_request_at_start():
    app = Application(audit_logger=AuditLogger())
    request = app.generate_request()
    assert request.key == "req_0"
    assert len(request.payload) == 64
    assert request.priority == 0


def test_generate_request_keys_cycle():
    app = Application(audit_logger=AuditLogger())
    app.tick_count = 7
    first = app.generate_request()
    app.tick_count = 7 + 150
    second = app.generate_request()
    assert first.key == second.key
    assert 64 <= len(second.payload) < 128
    assert second.priority in (0, 1, 2)


def test_first_tick_is_a_cache_miss():
    audit = AuditLogger()
    app = Application(audit_logger=audit)
    app.tick()
    assert app.tick_count == 1
    assert app.stats.cache_misses == 1
    assert app.stats.cache_hits == 0
    assert app.stats.errors == 0
    assert "req_1" in app.cache
    assert len(audit.pending_entries) == 1
    assert len(app.validator.history) == 1


def test_repeated_key_hits_cache():
    audit = AuditLogger()
    app = Application(audit_logger=audit)
    app.tick()
    app.tick_count = 150
    app.tick()
    assert app.tick_count == 151
    assert app.stats.cache_hits == 1
    assert app.stats.cache_misses == 1
    assert len(audit.pending_entries) == 2


def test_main_runs_limited_ticks(capsys):
    assert main(["--ticks", "1"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("=== Performance CTF ===")
    assert "PID:" in out
    assert "Press Ctrl-C to stop." in out