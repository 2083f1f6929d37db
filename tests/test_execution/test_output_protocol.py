"""Tests for the container output frame protocol."""

import pytest

from groupcron.execution.output_protocol import (
    FRAME_END,
    FRAME_START,
    ContainerOutput,
    FrameDecoder,
    decode_frame,
    encode_frame,
)


def _feed_all(decoder: FrameDecoder, text: str) -> list[ContainerOutput]:
    outputs = []
    for line in text.splitlines(keepends=True):
        output = decoder.feed(line)
        if output is not None:
            outputs.append(output)
    return outputs


class TestDecodeFrame:
    def test_agent_field_names(self):
        output = decode_frame('{"status": "success", "result": "Weekly digest posted", "newSessionId": "sess-9"}')
        assert output == ContainerOutput(status="success", result="Weekly digest posted", new_session_id="sess-9")

    def test_error_frame(self):
        output = decode_frame('{"status": "error", "error": "Rate limited"}')
        assert output.status == "error"
        assert output.error == "Rate limited"

    @pytest.mark.parametrize("body", ['{"status": "ok"}', '{"status": null}', "{}"])
    def test_anything_but_error_is_success(self, body):
        assert decode_frame(body).status == "success"

    @pytest.mark.parametrize("body", ["not json {{{", "[1, 2, 3]", '{"result": 42}'])
    def test_unreadable_frame_becomes_error(self, body):
        output = decode_frame(body)
        assert output.status == "error"
        assert output.error.startswith("Failed to parse output: ")

    def test_error_excerpt_is_bounded(self):
        assert len(decode_frame("x" * 1000).error) == len("Failed to parse output: ") + 200


class TestFrameDecoder:
    def test_noise_around_frames_is_ignored(self):
        stream = (
            "booting agent\n"
            + encode_frame(ContainerOutput(result="first"))
            + "tool call: search\n"
            + encode_frame(ContainerOutput(result="second", new_session_id="s2"))
            + "shutting down\n"
        )
        outputs = _feed_all(FrameDecoder(), stream)
        assert [o.result for o in outputs] == ["first", "second"]
        assert outputs[1].new_session_id == "s2"

    def test_pretty_printed_body_and_crlf(self):
        stream = f'{FRAME_START}\r\n{{\r\n  "result": "multi"\r\n}}\r\n{FRAME_END}\r\n'
        assert _feed_all(FrameDecoder(), stream)[0].result == "multi"

    def test_stray_end_marker(self):
        decoder = FrameDecoder()
        assert decoder.feed(FRAME_END) is None
        assert not decoder.in_frame

    def test_restarted_frame_drops_partial_body(self):
        decoder = FrameDecoder()
        decoder.feed(FRAME_START)
        decoder.feed('{"result": "trunc')
        stream = encode_frame(ContainerOutput(result="whole"))
        assert [o.result for o in _feed_all(decoder, stream)] == ["whole"]

    def test_in_frame_tracks_markers(self):
        decoder = FrameDecoder()
        decoder.feed(FRAME_START)
        assert decoder.in_frame
        decoder.feed("{}")
        decoder.feed(FRAME_END)
        assert not decoder.in_frame


def test_encode_frame_uses_agent_field_names():
    frame = encode_frame(ContainerOutput(result="done", new_session_id="s1"))
    start, body, end = frame.splitlines()
    assert (start, end) == (FRAME_START, FRAME_END)
    assert '"newSessionId":"s1"' in body
    assert "error" not in body
