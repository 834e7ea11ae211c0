"""Tests for the frame codec and message decoding."""

import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chameleon_agent.errors import MalformedFrame, UnknownMessageKind
from chameleon_agent.wire import (
    DELIMITER,
    FileMessage,
    FileReceiveEndMessage,
    LaunchMessage,
    LaunchModelMessage,
    MessageType,
    RequestFileMessage,
    TerminalResizeMessage,
    WaitReceiveMessage,
    decode,
    decode_frame,
    encode_frame,
    join_frames,
    split_frames,
    take_binary_span,
)


class TestSplitFrames:
    def test_two_frames_and_partial(self):
        frames, remainder = split_frames(b'{"a":1}\0{"b":2}\0{"c"')
        assert frames == [b'{"a":1}', b'{"b":2}']
        assert remainder == b'{"c"'

    def test_no_delimiter_is_all_remainder(self):
        assert split_frames(b'{"msg":') == ([], b'{"msg":')

    def test_trailing_delimiter_leaves_empty_remainder(self):
        assert split_frames(b"x\0") == ([b"x"], b"")

    def test_empty_buffer(self):
        assert split_frames(b"") == ([], b"")

    def test_consecutive_delimiters_yield_empty_frames(self):
        frames, remainder = split_frames(b"\0\0a\0")
        assert frames == [b"", b"", b"a"]
        assert remainder == b""

    @pytest.mark.parametrize(
        "buffer",
        [b"", b"\0", b"abc", b"a\0b", b"\0\0\0", b"a\0\0b\0c", b'{"x":1}\0\xff\0rest'],
    )
    def test_join_is_exact_inverse(self, buffer):
        assert join_frames(*split_frames(buffer)) == buffer


class TestTakeBinarySpan:
    def test_need_smaller_than_buffer(self):
        assert take_binary_span(b"ABCDE\0next", 5) == (b"ABCDE", b"\0next")

    def test_need_larger_than_buffer(self):
        assert take_binary_span(b"AB", 5) == (b"AB", b"")

    def test_need_zero(self):
        assert take_binary_span(b"AB", 0) == (b"", b"AB")

    def test_negative_need_rejected(self):
        with pytest.raises(ValueError):
            take_binary_span(b"AB", -1)


class TestDecodeFrame:
    def test_encode_appends_single_delimiter(self):
        data = encode_frame({"msg": "FileWait"})
        assert data == b'{"msg":"FileWait"}\0'
        assert data.count(DELIMITER) == 1

    def test_encoded_strings_never_contain_delimiter(self):
        data = encode_frame({"msg": "Terminal", "data": "a\x00b"})
        assert data.count(DELIMITER) == 1
        assert decode_frame(data[:-1])["data"] == "a\x00b"

    def test_invalid_json(self):
        with pytest.raises(MalformedFrame) as exc_info:
            decode_frame(b'{"msg": ')
        assert exc_info.value.frame == b'{"msg": '
        assert "invalid JSON" in str(exc_info.value)

    def test_invalid_utf8(self):
        with pytest.raises(MalformedFrame):
            decode_frame(b'{"msg":"\xff"}')

    def test_non_object(self):
        with pytest.raises(MalformedFrame):
            decode_frame(b"[1, 2]")

    def test_diagnostic_truncates_large_frames(self):
        frame = b"x" * 10000
        with pytest.raises(MalformedFrame) as exc_info:
            decode_frame(frame)
        assert "10000 bytes" in str(exc_info.value)


class TestDecodeMessage:
    def test_file_announcement(self):
        message = decode(b'{"msg":"File","filePath":"/tmp/x","fileSize":5}')
        assert message == FileMessage(file_size=5, file_path="/tmp/x")
        assert message.kind is MessageType.FILE

    def test_zero_size_file_needs_no_path(self):
        assert decode(b'{"msg":"File","fileSize":0}') == FileMessage(file_size=0)

    def test_all_inbound_kinds(self):
        assert decode(b'{"msg":"FileReceiveEnd"}') == FileReceiveEndMessage()
        assert decode(b'{"msg":"LaunchModel","scriptPath":"run.sh"}') == LaunchModelMessage("run.sh")
        assert decode(b'{"msg":"TerminalResize","cols":80,"rows":24}') == TerminalResizeMessage(80, 24)
        assert decode(b'{"msg":"RequestFile","filePath":"out.bin"}') == RequestFileMessage("out.bin")
        assert decode(b'{"msg":"WaitReceive"}') == WaitReceiveMessage()

    def test_unknown_kind(self):
        with pytest.raises(UnknownMessageKind) as exc_info:
            decode(b'{"msg":"Bogus"}')
        assert exc_info.value.kind == "Bogus"

    def test_missing_kind(self):
        with pytest.raises(UnknownMessageKind):
            decode(b'{"fileSize":3}')

    def test_outbound_only_kind_is_unknown_inbound(self):
        with pytest.raises(UnknownMessageKind):
            decode(b'{"msg":"Terminal","data":"hi"}')

    @pytest.mark.parametrize(
        "payload",
        [
            {"msg": "File", "filePath": "/tmp/x"},
            {"msg": "File", "filePath": "/tmp/x", "fileSize": -1},
            {"msg": "File", "filePath": "/tmp/x", "fileSize": "5"},
            {"msg": "File", "filePath": "/tmp/x", "fileSize": True},
            {"msg": "File", "fileSize": 5},
            {"msg": "LaunchModel"},
            {"msg": "TerminalResize", "cols": 80},
            {"msg": "RequestFile", "filePath": 7},
        ],
    )
    def test_missing_or_mistyped_fields(self, payload):
        with pytest.raises(MalformedFrame):
            decode(json.dumps(payload).encode("utf-8"))

    def test_launch_omits_unset_fields(self):
        assert LaunchMessage().to_dict() == {"msg": "Launch"}
        assert LaunchMessage(history_id=3).to_dict() == {"msg": "Launch", "historyId": 3}
