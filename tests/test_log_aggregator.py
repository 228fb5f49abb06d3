from review_stream.core.log_aggregator import LogAggregator
from review_stream.core.text_utils import preview, sanitize_html


def test_append_creates_then_replaces():
    logs = LogAggregator()
    logs.append("reasoning", "Hel")
    logs.append("reasoning", "Hello")

    assert len(logs) == 1
    assert logs.find("reasoning").text == "Hello"


def test_append_extends_existing_text():
    logs = LogAggregator()
    logs.append("content", "x")
    logs.append("content", "y", append=True)

    assert logs.find("content").text == "xy"


def test_record_always_adds_a_line():
    logs = LogAggregator()
    logs.record("error", "e1")
    logs.record("error", "e2")
    logs.append("error", "e3")

    assert [e.text for e in logs.of_kind("error")] == ["e3", "e2"]


def test_order_follows_first_appearance():
    logs = LogAggregator()
    logs.append("progress", "Processing page 1/2")
    logs.record("warning", "odd")
    logs.append("progress", "Processing page 2/2")

    assert [(e.kind, e.text) for e in logs.entries] == [
        ("progress", "Processing page 2/2"),
        ("warning", "odd"),
    ]


def test_entries_is_a_copy():
    logs = LogAggregator()
    logs.record("init", "start")
    logs.entries.clear()

    assert len(logs) == 1
    logs.clear()
    assert logs.entries == []


def test_text_is_sanitized():
    logs = LogAggregator()
    entry = logs.record("content", '<span style="opacity:0">Hi</span> &amp; <b>bye</b>')

    assert entry.text == "Hi & bye"


def test_sanitize_html_entities():
    assert sanitize_html("a&nbsp;&lt;b&gt; &quot;c&quot; &#39;d&#39;") == "a <b> \"c\" 'd'"
    assert sanitize_html("") == ""


def test_preview_flattens_and_truncates():
    assert preview("a\n  b") == "a b"
    assert preview("x" * 10, limit=4) == "xxxx..."
