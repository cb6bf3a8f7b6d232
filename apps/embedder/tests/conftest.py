"""Shared fixtures and zip builders for the embedder test suite."""

import io
import zipfile
from pathlib import Path
from typing import Union

import pytest

APP_MANIFEST = "Manifest-Version: 1.0\r\nMain-Class: app.Main\r\n\r\n"
AGENT_MANIFEST = "Manifest-Version: 1.0\r\nPremain-Class: agt.Boot\r\n\r\n"

Entries = dict[str, Union[bytes, str]]


def zip_bytes(entries: Entries, prefix: bytes = b"") -> bytes:
    buffer = io.BytesIO()
    buffer.write(prefix)
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def build_zip(path: Path, entries: Entries, prefix: bytes = b"") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(zip_bytes(entries, prefix))
    return path


def read_zip(path: Path) -> dict[str, bytes]:
    with zipfile.ZipFile(path) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


@pytest.fixture
def app_archive(tmp_path) -> Path:
    return build_zip(tmp_path / "target" / "app.jar", {
        "META-INF/MANIFEST.MF": APP_MANIFEST,
        "app/Main.class": b"main-class-bytes",
    })


@pytest.fixture
def agent_archive(tmp_path) -> Path:
    return build_zip(tmp_path / "deps" / "agent.jar", {
        "META-INF/": b"",
        "META-INF/MANIFEST.MF": AGENT_MANIFEST,
        "agt/": b"",
        "agt/Boot.class": b"boot-class-bytes",
    })
