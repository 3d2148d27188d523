import asyncio

import httpx
import pytest

from telecare.services.video_service import VideoRoomError, VideoRoomService, sanitize_room_name


def make_service(handler, api_key="daily_key"):
    return VideoRoomService(
        api_key=api_key, base_url="https://video.test/v1", transport=httpx.MockTransport(handler)
    )


def test_sanitize_room_name():
    assert sanitize_room_name("Emergency_12 Room") == "emergency-12-room"


def test_existing_room_is_reused():
    def handler(request):
        assert request.method == "GET"
        return httpx.Response(200, json={"name": "consultation-1", "url": "https://x.daily.co/consultation-1"})

    url = asyncio.run(make_service(handler).create_room("consultation-1"))
    assert url == "https://x.daily.co/consultation-1"


def test_missing_room_is_created():
    created = {}

    def handler(request):
        if request.method == "GET":
            return httpx.Response(404, json={"error": "not-found"})
        created["body"] = request.content
        return httpx.Response(200, json={"name": "consultation-2", "url": "https://x.daily.co/consultation-2"})

    url = asyncio.run(make_service(handler).create_room("consultation-2"))
    assert url.endswith("/consultation-2")
    assert b'"name":"consultation-2"' in created["body"].replace(b" ", b"")


def test_provider_error_raises():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(404)
        return httpx.Response(500, text="boom")

    with pytest.raises(VideoRoomError):
        asyncio.run(make_service(handler).create_room("room"))


def test_unconfigured_provider_raises():
    with pytest.raises(VideoRoomError):
        asyncio.run(make_service(lambda request: httpx.Response(200), api_key=None).create_room("room"))
