"""Shared fixtures for RoleOut tests."""

import json
import struct
import sys
import zlib
from pathlib import Path

import httpx
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from roleout.services.png_metadata.chunks import PNG_SIGNATURE, build_chunk
from roleout.services.png_metadata.metadata_handler import encode
from roleout.services.sillytavern_client import SillyTavernClient


def make_png(width: int = 1, height: int = 1, extra_chunks: bytes = b"") -> bytes:
    """Build a small valid RGB PNG: signature + IHDR + IDAT (+ extras) + IEND."""
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    # Each scanline: filter byte 0 followed by RGB pixels
    raw = b"".join(b"\x00" + b"\xff\x80\x00" * width for _ in range(height))
    return (
        PNG_SIGNATURE
        + build_chunk("IHDR", ihdr)
        + build_chunk("IDAT", zlib.compress(raw))
        + extra_chunks
        + build_chunk("IEND", b"")
    )


@pytest.fixture
def minimal_png() -> bytes:
    return make_png()


@pytest.fixture
def png_factory():
    return make_png


class FakeTavern:
    """In-memory SillyTavern server for httpx.MockTransport."""

    def __init__(self):
        self.characters = [
            {"name": "Nova", "avatar": "Nova.png", "data": {"alternate_greetings": ["Hi"]}},
            {"name": "Rex", "avatar": "Rex.png"},
            {"name": "Broken", "avatar": "Broken.png"},
        ]
        self.chats = [
            {"file_name": "Nova - 2024-01-01@12h00m", "avatar": "Nova.png", "chat_items": 4},
            {"file_name": "Nova - 2024-02-01@09h30m", "avatar": "Nova.png", "chat_items": 2},
            {"file_name": "Rex - 2024-03-01@18h15m", "avatar": "Rex.png", "chat_items": 9},
        ]
        self.settings = {
            "power_user": {
                "personas": {"1700000000-me.png": "Me", "alt.png": "Alt"},
                "persona_descriptions": {"1700000000-me.png": {"description": "Just me", "title": "Captain"}},
                "default_persona": "1700000000-me.png",
            }
        }
        self.failing_avatars = {"Broken.png"}
        self.failing_chats = set()
        self.requests = []

    def paths(self, path: str) -> list:
        return [r.url.path for r in self.requests if r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/csrf-token":
            return httpx.Response(200, json={"token": "tok-123"})

        if path == "/api/characters/export":
            avatar = body.get("avatar_url")
            if avatar in self.failing_avatars or avatar not in [c["avatar"] for c in self.characters]:
                return httpx.Response(500)
            character = next(c for c in self.characters if c["avatar"] == avatar)
            if body.get("format") == "json":
                return httpx.Response(200, content=json.dumps(character).encode("utf-8"))
            return httpx.Response(200, content=make_png(extra_chunks=encode_chara(character)))

        if path == "/api/chats/export":
            if body.get("file") in self.failing_chats:
                return httpx.Response(200, json={"error": True, "message": "Chat file not found"})
            header = json.dumps({"user_name": "Me", "character_name": body.get("file")})
            return httpx.Response(200, json={"result": header + "\n"})

        if path.startswith("/User Avatars/"):
            name = path[len("/User Avatars/"):]
            if name not in self.settings["power_user"]["personas"]:
                return httpx.Response(404)
            return httpx.Response(200, content=make_png())

        if path == "/api/characters/all":
            return httpx.Response(200, json=self.characters)

        if path == "/api/chats/recent":
            return httpx.Response(200, json=self.chats)

        if path == "/api/settings/get":
            return httpx.Response(200, json={"settings": json.dumps(self.settings)})

        return httpx.Response(404)


def encode_chara(character: dict) -> bytes:
    return encode("chara", {"spec": "chara_card_v2", "data": character})


def make_client(tavern: FakeTavern, **kwargs) -> SillyTavernClient:
    return SillyTavernClient(
        base_url="http://tavern.test",
        transport=httpx.MockTransport(tavern.handle),
        **kwargs
    )


@pytest.fixture
def tavern() -> FakeTavern:
    return FakeTavern()
