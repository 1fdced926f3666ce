import io

import pytest

from tcpextend.io import CsvSink, JsonlSink, open_sink


def test_csv_sink_flushes_at_threshold():
    out = io.StringIO()
    sink = CsvSink(out, ["a", "b"], buf_size=2)
    sink.write({"a": 1, "b": None})
    assert out.getvalue().splitlines() == ["a,b"]
    sink.write({"a": 2, "b": 3})
    assert out.getvalue().splitlines() == ["a,b", "1,", "2,3"]
    sink.write({"a": 4, "b": 5})
    assert len(out.getvalue().splitlines()) == 3
    sink.close()
    assert out.getvalue().splitlines()[-1] == "4,5"


def test_jsonl_sink_context_manager_flushes():
    out = io.StringIO()
    with JsonlSink(out, buf_size=100) as sink:
        sink.write({"x": None})
        assert out.getvalue() == ""
    assert out.getvalue() == '{"x": null}\n'


def test_open_sink_needs_a_target():
    with pytest.raises(ValueError):
        open_sink(None, "csv", ["a"])


def test_open_sink_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        open_sink(str(tmp_path / "o.xml"), "xml", ["a"])
