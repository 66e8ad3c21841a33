"""
Tests de la cámara alimentada por upload y del parser multipart.
"""

import threading
import time

import pytest

from camera import MultipartFrameParser, PushCamera
from errors import UpstreamUnavailable

JPEG = b"\xff\xd8" + b"\x10" * 300 + b"\xff\xd9"


def part(jpeg: bytes, boundary: bytes = b"--frame") -> bytes:
    return boundary + b"\r\nContent-Type: image/jpeg\r\nContent-Length: %d\r\n\r\n" % len(jpeg) + jpeg + b"\r\n"


class TestPushCamera:
    def test_acquire_without_frames_fails(self):
        camera = PushCamera(timeout=0.05)
        with pytest.raises(UpstreamUnavailable):
            camera.acquire()

    def test_acquire_returns_latest_frame(self):
        camera = PushCamera(timeout=0.5)
        camera.publish(b"viejo")
        seq = camera.publish(JPEG)

        frame = camera.acquire()

        assert frame.data == JPEG
        assert frame.length == len(JPEG)
        assert frame.seq == seq == 2
        camera.release(frame)

    def test_acquire_waits_for_publish(self):
        camera = PushCamera(timeout=2.0)
        timer = threading.Timer(0.05, camera.publish, args=(JPEG,))
        timer.start()
        try:
            frame = camera.acquire()
        finally:
            timer.join()
        assert frame.data == JPEG
        camera.release(frame)

    def test_pool_exhausted_without_release(self):
        camera = PushCamera(fb_count=1, timeout=0.05)
        camera.publish(JPEG)
        frame = camera.acquire()

        with pytest.raises(UpstreamUnavailable):
            camera.acquire()

        camera.release(frame)
        camera.release(camera.acquire())

    def test_stale_frame_fails(self):
        camera = PushCamera(timeout=0.05, max_age=0.01)
        camera.publish(JPEG)
        time.sleep(0.03)
        with pytest.raises(UpstreamUnavailable):
            camera.acquire()
        # el buffer vuelve al pool aunque el acquire falle
        camera.publish(JPEG)
        camera.release(camera.acquire())
        camera.release(camera.acquire())

    def test_double_release_is_ignored(self):
        camera = PushCamera(fb_count=1, timeout=0.5)
        camera.publish(JPEG)
        frame = camera.acquire()
        camera.release(frame)
        camera.release(frame)
        assert frame.released


class TestMultipartFrameParser:
    def test_frame_needs_next_boundary(self):
        parser = MultipartFrameParser()
        assert parser.feed(part(JPEG)) == []
        assert parser.feed(b"--frame\r\n") == [JPEG]

    def test_split_chunks(self):
        parser = MultipartFrameParser()
        stream = part(JPEG) + part(JPEG[::-1]) + b"--frame"
        frames = []
        for i in range(0, len(stream), 37):
            frames.extend(parser.feed(stream[i : i + 37]))
        assert frames == [JPEG, JPEG[::-1]]

    def test_tiny_parts_are_dropped(self):
        parser = MultipartFrameParser()
        assert parser.feed(part(b"corto") + b"--frame") == []

    def test_custom_boundary(self):
        parser = MultipartFrameParser(b"--abc")
        assert parser.feed(part(JPEG, b"--abc") + b"--abc") == [JPEG]
