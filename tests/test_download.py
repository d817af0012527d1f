"""Tests for file downloads and the check-file logic."""

import errno
import io
import os
import tarfile
from unittest.mock import MagicMock

import pytest
import requests

from llamaedge_run.download import (
    USER_AGENT,
    check_file_path,
    download_file,
    extract_tarball,
    fetch_text,
    make_session,
    mark_complete,
    needs_download,
)
from llamaedge_run.errors import SetupError


def fake_session(chunks=None, status_error=None, text=""):
    """A session whose get() returns a canned streaming response."""
    response = MagicMock()
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    response.headers = {"Content-Length": str(sum(len(c) for c in chunks or []))}
    response.iter_content.return_value = iter(chunks or [])
    response.text = text
    if status_error is not None:
        response.raise_for_status.side_effect = status_error

    session = MagicMock()
    session.get.return_value = response
    return session


class TestCheckFile:
    """Test deciding whether weights must be downloaded."""

    def test_check_file_path(self, tmp_path):
        assert check_file_path(tmp_path / "model-Q4_0.gguf") == tmp_path / "model-Q4_0.gguf.chk"

    def test_missing_weights(self, tmp_path):
        assert needs_download(tmp_path / "model.gguf")

    def test_missing_check_file(self, tmp_path):
        weights = tmp_path / "model.gguf"
        weights.write_bytes(b"partial")
        assert needs_download(weights)

    def test_complete_download(self, tmp_path):
        weights = tmp_path / "model.gguf"
        weights.write_bytes(b"GGUF")
        mark_complete(weights)
        assert not needs_download(weights)

    def test_weights_newer_than_check_file(self, tmp_path):
        weights = tmp_path / "model.gguf"
        weights.write_bytes(b"GGUF")
        chk = mark_complete(weights)

        stamp = chk.stat().st_mtime
        os.utime(weights, (stamp + 10, stamp + 10))
        assert needs_download(weights)


class TestDownloadFile:
    """Test streaming downloads."""

    def test_session_user_agent(self):
        assert make_session().headers["User-Agent"] == USER_AGENT

    def test_writes_chunks_and_renames(self, tmp_path):
        dest = tmp_path / "llama-chat.wasm"
        session = fake_session([b"\x00asm", b"rest"])

        assert download_file("https://example.com/llama-chat.wasm", dest, session) == dest

        assert dest.read_bytes() == b"\x00asmrest"
        assert not (tmp_path / "llama-chat.wasm.part").exists()
        args, kwargs = session.get.call_args
        assert args[0] == "https://example.com/llama-chat.wasm"
        assert kwargs["stream"] is True

    def test_http_error(self, tmp_path):
        dest = tmp_path / "model.gguf"
        session = fake_session(status_error=requests.HTTPError("404 Not Found"))

        with pytest.raises(SetupError, match="404"):
            download_file("https://example.com/model.gguf", dest, session)
        assert not dest.exists()

    def test_connection_drop_removes_partial_file(self, tmp_path):
        dest = tmp_path / "model.gguf"
        session = fake_session([b"data"])

        def broken_stream(chunk_size):
            yield b"data"
            raise requests.ConnectionError("connection reset")

        session.get.return_value.iter_content.side_effect = broken_stream

        with pytest.raises(SetupError):
            download_file("https://example.com/model.gguf", dest, session)
        assert not dest.exists()
        assert not (tmp_path / "model.gguf.part").exists()

    def test_write_error_removes_partial_file(self, tmp_path):
        dest = tmp_path / "model.gguf"
        session = fake_session()

        def disk_full(chunk_size):
            yield b"data"
            raise OSError(errno.ENOSPC, "No space left on device")

        session.get.return_value.iter_content.side_effect = disk_full

        with pytest.raises(SetupError, match="Failed to write"):
            download_file("https://example.com/model.gguf", dest, session)
        assert not dest.exists()
        assert not (tmp_path / "model.gguf.part").exists()

    def test_ctrl_c_removes_partial_file(self, tmp_path):
        dest = tmp_path / "model.gguf"
        session = fake_session()

        def interrupted(chunk_size):
            yield b"data"
            raise KeyboardInterrupt

        session.get.return_value.iter_content.side_effect = interrupted

        with pytest.raises(KeyboardInterrupt):
            download_file("https://example.com/model.gguf", dest, session)
        assert not (tmp_path / "model.gguf.part").exists()

    def test_fetch_text(self):
        session = fake_session(text="#!/bin/bash\n")
        assert fetch_text("https://example.com/install.sh", session) == "#!/bin/bash\n"

    def test_fetch_text_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("offline")
        with pytest.raises(SetupError, match="install.sh"):
            fetch_text("https://example.com/install.sh", session)


class TestExtractTarball:
    """Test unpacking the chatbot web app."""

    def test_extracts_and_removes_archive(self, tmp_path):
        archive = tmp_path / "chatbot-ui.tar.gz"
        content = b"<html></html>"
        with tarfile.open(archive, "w:gz") as tar:
            info = tarfile.TarInfo("chatbot-ui/index.html")
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))

        extract_tarball(archive)

        assert (tmp_path / "chatbot-ui" / "index.html").read_bytes() == content
        assert not archive.exists()

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "chatbot-ui.tar.gz"
        archive.write_bytes(b"not a tarball")

        with pytest.raises(SetupError):
            extract_tarball(archive)
