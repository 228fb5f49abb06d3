import asyncio
import json

import httpx
import pytest

from conftest import sse
from review_stream.api.client import ReviewClient
from review_stream.core.form_models import EvaluationSection, FormDocument, SessionPhase
from review_stream.core.session_controller import ReviewSession
from review_stream.errors import ConfigurationError


async def _stream(*messages):
    for message in messages:
        yield message.encode("utf-8") if isinstance(message, str) else message


def _session(config, clock, **kwargs):
    session = ReviewSession(config=config, clock=clock, **kwargs)
    published = []
    session.subscribe(published.append)
    return session, published


def _form_update(title):
    return sse({"type": "form_update", "projectInfo": {"projectTitle": title}})


def test_full_stream_reconciles_form(config, clock):
    session, published = _session(config, clock)

    ok = asyncio.run(session.consume_stream(_stream(
        sse({"type": "progress", "current": 1, "total": 10}),
        sse({"type": "reasoning", "reasoning": "Hello"}),
        sse({"type": "reasoning", "reasoning": " world"}),
        sse({"type": "json_complete", "json_complete": {"projectInfo": {"projectTitle": "X"}}}),
    )))

    assert ok is True
    assert session.phase is SessionPhase.COMPLETE
    assert session.status_message == "Analysis complete"
    assert session.progress == pytest.approx(10.0)
    assert session.reasoning_text == "Hello world"
    assert session.json_complete_ready
    assert session.document.project_info["projectTitle"] == "X"
    assert len(session.document.evaluation_sections) == 3
    assert [e.text for e in session.logs if e.kind == "reasoning"] == ["Hello world"]
    assert session.logs[0].kind == "init"
    assert published[-1] == session.document


def test_messages_split_across_network_chunks(config, clock):
    session, _ = _session(config, clock)
    raw = (sse({"type": "reasoning", "reasoning": "héllo"})
           + sse({"type": "progress", "current": 3, "total": 4})).encode("utf-8")

    chunks = [raw[i:i + 7] for i in range(0, len(raw), 7)]
    asyncio.run(session.consume_stream(_stream(*chunks)))

    assert session.reasoning_text == "héllo"
    assert session.progress == 75.0


def test_backend_error_halts_within_the_same_chunk(config, clock):
    session, _ = _session(config, clock)
    chunk = (sse({"type": "progress", "current": 1, "total": 2})
             + sse({"type": "error", "message": "model overloaded"})
             + sse({"type": "json_complete", "json_complete": {"projectInfo": {"projectTitle": "X"}}}))

    ok = asyncio.run(session.consume_stream(_stream(chunk)))

    assert ok is False
    assert session.phase is SessionPhase.FAILED
    assert session.error == "model overloaded"
    assert not session.json_complete_ready
    assert session.document.project_info["projectTitle"] == ""


def test_partial_updates_are_throttled(config, clock):
    session, published = _session(config, clock)

    async def chunks():
        yield _form_update("A").encode()
        clock.now = 0.05
        yield _form_update("B").encode()
        clock.now = 0.06
        yield sse({"type": "json_complete", "json_complete": {"projectInfo": {"applicantName": "C"}}}).encode()

    asyncio.run(session.consume_stream(chunks()))

    # published[0] is the empty document from the run reset
    assert [d.project_info["projectTitle"] for d in published[1:]] == ["A", "B"]
    assert published[-1].project_info["applicantName"] == "C"


def test_held_update_is_flushed_at_stream_end(config, clock):
    session, published = _session(config, clock)

    async def chunks():
        yield _form_update("A").encode()
        clock.now = 0.05
        yield _form_update("B").encode()

    asyncio.run(session.consume_stream(chunks()))

    assert [d.project_info["projectTitle"] for d in published[1:]] == ["A", "B"]


def test_throttle_interval_comes_from_config(config, clock):
    config['session']['throttle_ms'] = 0
    session, published = _session(config, clock)

    asyncio.run(session.consume_stream(_stream(_form_update("A"), _form_update("B"))))

    assert [d.project_info["projectTitle"] for d in published[1:]] == ["A", "B"]


def test_read_failure_fails_the_session(config, clock):
    session, _ = _session(config, clock)

    async def chunks():
        yield sse({"type": "reasoning", "reasoning": "partial"}).encode()
        raise httpx.ReadError("reset by peer")

    ok = asyncio.run(session.consume_stream(chunks()))

    assert ok is False
    assert session.phase is SessionPhase.FAILED
    assert session.error == "Connection interrupted: reset by peer"
    assert session.reasoning_text == "partial"


def test_reset_cancels_running_stream(config, clock):
    session, _ = _session(config, clock)

    async def chunks():
        yield sse({"type": "reasoning", "reasoning": "old"}).encode()
        session.reset_session()
        yield sse({"type": "reasoning", "reasoning": "new"}).encode()

    ok = asyncio.run(session.consume_stream(chunks()))

    assert ok is False
    assert session.phase is SessionPhase.IDLE
    assert session.reasoning_text == ""
    assert session.logs == []
    assert session.document == FormDocument.empty()
    assert session.generation == 2


def test_user_edit_is_published_immediately_and_preserved(config, clock):
    session, published = _session(config, clock)
    asyncio.run(session.consume_stream(_stream(_form_update("A"))))
    count = len(published)

    assert session.apply_user_edit({"projectInfo": {"applicantName": "Me"}}) is True
    assert len(published) == count + 1

    session.merge_engine.merge({"projectInfo": {"projectTitle": "Z"}})
    assert session.document.project_info["applicantName"] == "Me"
    assert session.document.project_info["projectTitle"] == "Z"


def _structure(text):
    return sse({"type": "json_structure", "json_structure": text})


def test_user_edit_survives_later_structure_fragments(config, clock):
    session, _ = _session(config, clock)

    async def chunks():
        yield _structure('{"projectInfo": {"projectTitle": "Server"').encode()
        session.apply_user_edit({"projectInfo": {"projectTitle": "Mine"}})
        yield _structure("}}").encode()

    assert asyncio.run(session.consume_stream(chunks())) is True
    assert session.document.project_info["projectTitle"] == "Mine"
    assert session.json_structure_text == '{"projectInfo": {"projectTitle": "Server"}}'


def test_apply_json_structure_on_request(config, clock):
    session, published = _session(config, clock)
    asyncio.run(session.consume_stream(_stream(
        _structure('{"projectInfo": {"projectTitle": "Deep'),
        _structure(' Learning"}, "evaluationSections": [{"id": "significance", "aiRecommendation": "Good"}]}'),
    )))
    assert session.document.project_info["projectTitle"] == ""
    count = len(published)

    assert session.apply_json_structure() is True
    assert len(published) == count + 1
    assert published[-1].project_info["projectTitle"] == "Deep Learning"
    assert session.document.section("significance").ai_recommendation == "Good"
    assert session.apply_json_structure() is False


def test_apply_truncated_json_structure(config, clock):
    session, _ = _session(config, clock)
    asyncio.run(session.consume_stream(_stream(_structure('{"projectInfo": {"projectTitle": "Half'))))

    assert session.apply_json_structure() is True
    assert session.document.project_info["projectTitle"] == "Half"


def test_apply_json_structure_without_usable_text(config, clock):
    session, _ = _session(config, clock)
    assert session.apply_json_structure() is False

    asyncio.run(session.consume_stream(_stream(_structure("not json at all"))))
    assert session.apply_json_structure() is False
    assert session.logs[-1].kind == "warning"


def test_custom_default_document(config, clock):
    custom = FormDocument(title="Custom", evaluation_sections=[EvaluationSection(id="only", title="Only")])
    session, _ = _session(config, clock, default_document=custom)

    asyncio.run(session.consume_stream(_stream(
        sse({"type": "json_complete", "json_complete": {"projectInfo": {"projectTitle": "X"}}}),
    )))

    assert session.document.title == "Custom"
    assert [s.id for s in session.document.evaluation_sections] == ["only"]


def test_register_update_callback(config, clock):
    session = ReviewSession(config=config, clock=clock)
    received = []
    session.register_update_callback(received.append)

    asyncio.run(session.consume_stream(_stream(_form_update("A"))))

    assert received[-1].project_info["projectTitle"] == "A"


def test_start_analysis_without_client(config):
    session = ReviewSession(config=config)
    with pytest.raises(ConfigurationError):
        asyncio.run(session.start_analysis("/srv/paper.pdf"))


# ----------------------------------------------------------------------
# Over HTTP
# ----------------------------------------------------------------------

def _run_analysis(config, clock, handler):
    client = ReviewClient(config=config, transport=httpx.MockTransport(handler))
    session = ReviewSession(client, clock=clock)

    async def run():
        async with client:
            return await session.start_analysis("/srv/paper.pdf")

    return session, asyncio.run(run())


def test_start_analysis_over_http(config, clock):
    requests = []
    body = (sse({"type": "progress", "current": 2, "total": 2})
            + sse({"type": "json_complete", "json_complete": {"projectInfo": {"projectTitle": "X"}}})
            + "data: [DONE]\n\n")

    def handler(request):
        requests.append(request)
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body.encode())

    session, ok = _run_analysis(config, clock, handler)

    assert ok is True
    assert session.phase is SessionPhase.COMPLETE
    assert session.progress == 100.0
    assert session.document.project_info["projectTitle"] == "X"
    assert requests[0].url.path == "/review"
    assert json.loads(requests[0].content) == {
        "file_path": "/srv/paper.pdf",
        "num_reviewers": 1,
        "page_limit": 0,
        "use_claude": False,
    }


def test_non_ok_status_fails_the_session(config, clock):
    session, ok = _run_analysis(config, clock, lambda request: httpx.Response(500, text="boom"))

    assert ok is False
    assert session.phase is SessionPhase.FAILED
    assert "500" in session.error
    assert "boom" in session.error
    assert session.logs[-1].kind == "error"


def test_connection_error_fails_the_session(config, clock):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    session, ok = _run_analysis(config, clock, handler)

    assert ok is False
    assert session.phase is SessionPhase.FAILED
    assert session.error == "Request failed: refused"


def test_request_timeout_fails_the_session(config, clock):
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    session, ok = _run_analysis(config, clock, handler)

    assert ok is False
    assert session.error == "Request timeout"
