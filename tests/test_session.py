# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import struct

import pytest

from fakes import MemoryWriter, TrickleReader, connection_from_bytes, connection_pair
from screenshare.coordinator import ReceiverService, stream_to
from screenshare.exceptions import ProtocolViolation
from screenshare.media.capture import PatternCapture
from screenshare.media.display import CallbackDisplay
from screenshare.media.protocol import CaptureSource, FrameSink
from screenshare.net.stream import Connection
from screenshare.streaming.session import ReceiverSession, SenderSession, SessionOutcome, SessionState
from screenshare.streaming.wire import SessionHandshake, pack_frame_header, unpack_frame_header


class RecordingDisplay(FrameSink):
    def __init__(self):
        self.opened = []
        self.frames = []
        self.closed = 0

    def open(self, handshake):
        self.opened.append(handshake)

    def render_frame(self, data, width, height):
        self.frames.append((bytes(data), width, height))

    def close(self):
        self.closed += 1


class SolidCapture(CaptureSource):
    def __init__(self, width, height, size=None):
        super().__init__(width, height)
        self.size = self.frame_size if size is None else size
        self.calls = 0

    def capture_frame(self):
        self.calls += 1
        return bytes([self.calls % 256]) * self.size


def handshake_bytes(width, height, fps=30):
    return struct.pack("!III", width, height, fps)


def test_handshake_wire_layout():
    hs = SessionHandshake(640, 480, 30)
    assert hs.pack() == b"\x00\x00\x02\x80\x00\x00\x01\xe0\x00\x00\x00\x1e"
    assert SessionHandshake.unpack(hs.pack()) == hs
    assert hs.frame_size == 640 * 480 * 3
    assert str(hs) == "640x480@30"
    assert unpack_frame_header(pack_frame_header(hs.frame_size)) == 921600


@pytest.mark.parametrize("width, height, fps", [(0, 480, 30), (640, 0, 30), (640, 480, 0)])
def test_handshake_rejects_zero_fields(width, height, fps):
    with pytest.raises(ProtocolViolation):
        SessionHandshake(width, height, fps).validate()


def test_handshake_respects_frame_limit():
    with pytest.raises(ProtocolViolation):
        SessionHandshake(100, 100, 30).validate(max_frame_bytes=100 * 100 * 3 - 1)
    SessionHandshake(100, 100, 30).validate(max_frame_bytes=100 * 100 * 3)


def test_frame_length_mismatch_closes_with_error_before_render():
    display = RecordingDisplay()
    data = handshake_bytes(100, 50) + pack_frame_header(100 * 50 * 3 + 1) + bytes(100 * 50 * 3 + 1)

    async def main():
        conn, _ = connection_from_bytes(data)
        result = await ReceiverSession(conn, display).run()
        return conn, result

    conn, result = asyncio.run(main())
    assert result.outcome is SessionOutcome.ERROR
    assert "protocol violation" in result.reason
    assert display.frames == []
    assert display.closed == 1
    assert conn.closed


def test_zero_byte_read_at_frame_boundary_is_normal_close():
    display = RecordingDisplay()
    frame = bytes(range(24))
    data = handshake_bytes(4, 2) + pack_frame_header(24) + frame

    async def main():
        conn, _ = connection_from_bytes(data)
        session = ReceiverSession(conn, display)
        result = await session.run()
        return session, result

    session, result = asyncio.run(main())
    assert result.outcome is SessionOutcome.NORMAL
    assert result.reason == "peer closed"
    assert result.frames == 1
    assert result.handshake == SessionHandshake(4, 2, 30)
    assert display.frames == [(frame, 4, 2)]
    assert session.state is SessionState.CLOSED


def test_close_before_handshake_is_normal():
    display = RecordingDisplay()

    async def main():
        conn, _ = connection_from_bytes(b"")
        return await ReceiverSession(conn, display).run()

    result = asyncio.run(main())
    assert result.ok
    assert result.reason == "closed before handshake"
    assert display.opened == []
    assert display.closed == 0


def test_truncated_frame_is_error():
    display = RecordingDisplay()
    data = handshake_bytes(4, 2) + pack_frame_header(24) + bytes(10)

    async def main():
        conn, _ = connection_from_bytes(data)
        return await ReceiverSession(conn, display).run()

    result = asyncio.run(main())
    assert result.outcome is SessionOutcome.ERROR
    assert "connection lost" in result.reason
    assert display.frames == []


def test_oversized_handshake_is_rejected():
    display = RecordingDisplay()

    async def main():
        conn, _ = connection_from_bytes(handshake_bytes(1000, 1000))
        return await ReceiverSession(conn, display, max_frame_bytes=1000).run()

    result = asyncio.run(main())
    assert result.outcome is SessionOutcome.ERROR
    assert display.opened == []


def test_stalled_sender_times_out():
    async def main():
        conn, _ = connection_from_bytes(handshake_bytes(4, 2) + pack_frame_header(24) + bytes(5), eof=False)
        return await ReceiverSession(conn, RecordingDisplay(), frame_timeout_s=0.1, poll_s=0.02).run()

    result = asyncio.run(main())
    assert result.outcome is SessionOutcome.ERROR
    assert result.reason.startswith("timeout")


def test_display_failure_ends_session_with_error():
    def explode(data, width, height):
        raise RuntimeError("display gone")

    async def main():
        conn, _ = connection_from_bytes(handshake_bytes(4, 2) + pack_frame_header(24) + bytes(24))
        return await ReceiverSession(conn, CallbackDisplay(explode)).run()

    result = asyncio.run(main())
    assert result.outcome is SessionOutcome.ERROR
    assert "display gone" in result.reason


def test_sender_writes_handshake_then_frames():
    capture = SolidCapture(4, 2)

    async def main():
        conn, writer = connection_from_bytes(b"", eof=False)
        result = await SenderSession(conn, capture, fps=1000, max_frames=3).run()
        return result, bytes(writer.written)

    result, wire = asyncio.run(main())
    assert result.ok
    assert result.reason == "completed"
    assert result.frames == 3
    assert wire[:12] == handshake_bytes(4, 2, 1000)

    offset = 12
    for i in range(1, 4):
        assert unpack_frame_header(wire[offset : offset + 4]) == 24
        assert wire[offset + 4 : offset + 28] == bytes([i]) * 24
        offset += 28
    assert offset == len(wire)


def test_sender_rejects_wrong_size_capture():
    async def main():
        conn, writer = connection_from_bytes(b"", eof=False)
        result = await SenderSession(conn, SolidCapture(4, 2, size=23), fps=1000, max_frames=1).run()
        return result, bytes(writer.written)

    result, wire = asyncio.run(main())
    assert result.outcome is SessionOutcome.ERROR
    # Only the handshake made it out
    assert wire == handshake_bytes(4, 2, 1000)


def test_sender_peer_gone_is_error():
    async def main():
        conn = Connection(TrickleReader(), MemoryWriter(fail_after=1), peer=("10.0.0.2", 8081))
        return await SenderSession(conn, SolidCapture(4, 2), fps=1000, max_frames=5).run()

    result = asyncio.run(main())
    assert result.outcome is SessionOutcome.ERROR
    assert result.frames == 0
    assert "connection lost" in result.reason


def test_sender_stops_on_shutdown():
    async def main():
        conn, _ = connection_from_bytes(b"", eof=False)
        session = SenderSession(conn, SolidCapture(4, 2), fps=5)
        asyncio.get_running_loop().call_later(0.3, session.token.cancel)
        return conn, await session.run()

    conn, result = asyncio.run(main())
    assert result.ok
    assert result.reason == "shutdown"
    assert conn.closed


def test_sender_and_receiver_over_trickling_pipe():
    display = RecordingDisplay()
    capture = SolidCapture(8, 4)

    async def main():
        sender_conn, receiver_conn = connection_pair()
        receiver = asyncio.create_task(ReceiverSession(receiver_conn, display).run())
        sent = await SenderSession(sender_conn, capture, fps=1000, max_frames=5).run()
        return sent, await receiver

    sent, received = asyncio.run(main())
    assert sent.ok and received.ok
    assert received.reason == "peer closed"
    assert [f[0][0] for f in display.frames] == [1, 2, 3, 4, 5]
    assert all(f[1:] == (8, 4) for f in display.frames)


def test_end_to_end_over_loopback_tcp():
    rendered = []

    async def main():
        service = ReceiverService(
            lambda: CallbackDisplay(lambda data, w, h: rendered.append((len(data), w, h))),
            host="127.0.0.1",
            port=0,
            advertise=False,
            accept_poll_s=0.05,
        )
        async with service:
            capture = PatternCapture(640, 480)
            sent = await stream_to("127.0.0.1", service.bound_port, capture, fps=30, max_frames=1)
            # Let the receiver notice the close and record its result
            for _ in range(100):
                if service.results:
                    break
                await asyncio.sleep(0.02)
        return sent, service.results

    sent, results = asyncio.run(main())
    assert sent.ok
    assert rendered == [(640 * 480 * 3, 640, 480)]
    assert len(results) == 1
    assert results[0].ok
    assert results[0].handshake == SessionHandshake(640, 480, 30)
