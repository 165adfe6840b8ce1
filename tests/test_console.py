from injectscan.core.models import ScanResult
from injectscan.reporters.console import Log


def make_result(**kw):
    base = dict(target="X-Id", payload="1'", status=200, duration_ms=120,
                body_size=512, suspicious=False, reason=None)
    base.update(kw)
    return ScanResult(**base)


def test_clean_result_is_shown_only_when_verbose(capsys):
    res = make_result()
    Log(verbose=1).result(res)
    assert capsys.readouterr().out == ""

    Log(verbose=2).result(res)
    out = capsys.readouterr().out
    assert "[DEBUG]" in out
    assert str(res) in out
    assert "[ok] X-Id: payload=\"1'\" (HTTP 200, 120 ms, 512 B)" in out


def test_suspicious_result_prints_reason(capsys):
    Log(verbose=1).result(make_result(status=500, suspicious=True,
                                      reason="Status code changed from 200 to 500"))
    out = capsys.readouterr().out
    assert "[SUSPICIOUS]" in out
    assert "Status code changed from 200 to 500" in out
