"""
Tests de la sesión MJPEG: formato de cada parte, pares acquire/release,
ritmo entre frames y salida por cliente cerrado o por falla de la cámara.
"""

import time
from unittest.mock import MagicMock

import pytest

from conftest import FakeCamera
from stream import (
    STREAM_CONTENT_TYPE,
    STREAM_PART_BOUNDARY,
    LiveCounter,
    StreamState,
    VideoStream,
    part_header,
)


async def take(agen, n: int) -> list[bytes]:
    out = []
    for _ in range(n):
        out.append(await agen.__anext__())
    return out


class TestWireFormat:
    def test_content_type(self):
        assert STREAM_CONTENT_TYPE == (
            "multipart/x-mixed-replace;boundary=123456789000000000000987654321"
        )

    def test_part_boundary_and_header(self):
        assert STREAM_PART_BOUNDARY == b"\r\n--123456789000000000000987654321\r\n"
        assert part_header(1234) == b"Content-Type: image/jpeg\r\nContent-Length: 1234\r\n\r\n"

    @pytest.mark.asyncio
    async def test_frame_is_three_chunks(self, fake_camera):
        video = VideoStream(fake_camera, frame_interval=0)
        agen = video.session().chunks()

        boundary, header, data = await take(agen, 3)
        await agen.aclose()

        assert boundary == STREAM_PART_BOUNDARY
        assert header == part_header(200)
        assert data == bytes([1]) * 200


class TestStreamSession:
    @pytest.mark.asyncio
    async def test_camera_fails_on_third_frame(self):
        camera = FakeCamera(fail_at=3)
        video = VideoStream(camera, frame_interval=0)
        video.clients.decrement = MagicMock(wraps=video.clients.decrement)
        session = video.session()

        chunks = [c async for c in session.chunks()]

        assert len(chunks) == 6
        assert session.frame_count == 2
        assert camera.acquired == 3
        assert camera.released == 2
        assert camera.outstanding == 0
        assert session.exit_state is StreamState.UPSTREAM_FAILED
        assert session.state is StreamState.TERMINATED
        video.clients.decrement.assert_called_once()
        assert video.client_count() == 0

    @pytest.mark.asyncio
    async def test_upstream_down_from_the_start(self):
        camera = FakeCamera(fail_at=1)
        video = VideoStream(camera, frame_interval=0)
        session = video.session()

        assert [c async for c in session.chunks()] == []
        assert session.exit_state is StreamState.UPSTREAM_FAILED
        assert camera.released == 0
        assert video.client_count() == 0

    @pytest.mark.asyncio
    async def test_client_closed_mid_frame_releases_frame(self, fake_camera):
        video = VideoStream(fake_camera, frame_interval=0)
        session = video.session()
        agen = session.chunks()

        await take(agen, 4)  # frame 1 completo + boundary del 2
        assert session.state is StreamState.STREAMING
        assert video.client_count() == 1
        assert fake_camera.outstanding == 1

        await agen.aclose()

        assert session.exit_state is StreamState.CLIENT_CLOSED
        assert session.state is StreamState.TERMINATED
        assert fake_camera.outstanding == 0
        assert fake_camera.released == 2
        assert video.client_count() == 0

    @pytest.mark.asyncio
    async def test_release_before_next_acquire(self, fake_camera):
        # FakeCamera levanta AssertionError si hay acquire sin release previo
        video = VideoStream(fake_camera, frame_interval=0)
        agen = video.session().chunks()
        await take(agen, 3 * 5)
        await agen.aclose()
        assert fake_camera.acquired == 5
        assert fake_camera.released == 5

    @pytest.mark.asyncio
    async def test_pacing_between_frames(self, fake_camera):
        interval = 0.05
        video = VideoStream(fake_camera, frame_interval=interval)
        agen = video.session().chunks()

        emitted = []
        for _ in range(4):
            await take(agen, 3)
            emitted.append(time.monotonic())
        await agen.aclose()

        gaps = [b - a for a, b in zip(emitted, emitted[1:])]
        assert all(gap >= interval - 0.005 for gap in gaps), gaps

    @pytest.mark.asyncio
    async def test_concurrent_sessions_share_counter(self):
        video = VideoStream(FakeCamera(), frame_interval=0)
        other = VideoStream(FakeCamera(), frame_interval=0)
        other.clients = video.clients

        a = video.session().chunks()
        b = other.session().chunks()
        await a.__anext__()
        await b.__anext__()
        assert video.client_count() == 2

        await a.aclose()
        assert video.client_count() == 1
        await b.aclose()
        assert video.client_count() == 0


class TestVideoStream:
    def test_start_stop_and_active(self, fake_camera):
        video = VideoStream(fake_camera)
        assert not video.streaming
        video.start()
        assert video.streaming
        assert not video.is_active()
        video.clients.increment()
        assert video.is_active()
        video.stop()
        assert not video.is_active()

    def test_fps(self, fake_camera):
        video = VideoStream(fake_camera)
        assert video.fps() == 0.0
        video._frame_times.extend([10.0, 10.1, 10.2, 10.3, 10.4])
        assert video.fps() == pytest.approx(10.0)

    def test_record_frame_counts_throughput(self, fake_camera):
        throughput = MagicMock()
        video = VideoStream(fake_camera, throughput=throughput)
        video.record_frame(500)
        assert video.frame_count == 1
        throughput.add_tx.assert_called_once_with(500)


def test_live_counter():
    counter = LiveCounter()
    assert counter.increment() == 1
    assert counter.increment() == 2
    assert counter.decrement() == 1
    assert counter.value == 1
