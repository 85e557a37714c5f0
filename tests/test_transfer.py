"""Tests for the upload/download wire format."""

import json

import pytest

from conftest import parse_multipart
from pyputer.transfer import (
    BINARY_CONTENT_TYPE,
    TEXT_CONTENT_TYPE,
    download_cookie_header,
    download_form,
    encode_write_request,
    new_boundary,
    write_stream,
)


class TestEncodeWriteRequest:
    """Tests for encode_write_request."""

    @pytest.fixture
    def encoded(self):
        return encode_write_request(
            b"hello world",
            destination="/alice/docs",
            name="notes.txt",
            operation_id="op-1",
            boundary="XBOUNDARY",
        )

    def test_part_order(self, encoded):
        names = [name for name, _, _ in parse_multipart(encoded.body, encoded.content_type)]
        assert names == [
            "operation_id",
            "socket_id",
            "original_client_socket_id",
            "fileinfo",
            "operation",
            "file",
        ]

    def test_body_framing(self, encoded):
        assert encoded.body.startswith(b"--XBOUNDARY\r\n")
        assert encoded.body.endswith(b"--XBOUNDARY--\r\n")
        assert encoded.content_type == "multipart/form-data; boundary=XBOUNDARY"

    def test_field_values(self, encoded):
        fields = {n: p for n, _, p in parse_multipart(encoded.body, encoded.content_type)}
        assert fields["operation_id"] == b"op-1"
        assert fields["socket_id"] == b"undefined"
        assert fields["original_client_socket_id"] == b"undefined"
        assert fields["file"] == b"hello world"

    def test_fileinfo_and_operation(self, encoded):
        fields = {n: p for n, _, p in parse_multipart(encoded.body, encoded.content_type)}
        assert json.loads(fields["fileinfo"]) == {
            "name": "notes.txt",
            "type": BINARY_CONTENT_TYPE,
            "size": 11,
        }
        assert json.loads(fields["operation"]) == {
            "op": "write",
            "dedupe_name": False,
            "overwrite": True,
            "operation_id": "op-1",
            "path": "/alice/docs",
            "name": "notes.txt",
            "item_upload_id": 0,
        }
        assert encoded.operation == json.loads(fields["operation"])

    def test_file_part_headers(self):
        encoded = encode_write_request(
            b"x", "/alice", 'a"b.txt', content_type=TEXT_CONTENT_TYPE
        )
        _, headers, _ = parse_multipart(encoded.body, encoded.content_type)[-1]
        assert headers["content-type"] == TEXT_CONTENT_TYPE
        assert 'filename="a%22b.txt"' in headers["content-disposition"]

    def test_empty_payload(self):
        encoded = encode_write_request(b"", "/alice", "empty.txt")
        assert encoded.fileinfo["size"] == 0
        fields = {n: p for n, _, p in parse_multipart(encoded.body, encoded.content_type)}
        assert fields["file"] == b""

    def test_random_ids(self):
        first = encode_write_request(b"", "/alice", "a")
        second = encode_write_request(b"", "/alice", "a")
        assert first.operation_id != second.operation_id
        assert first.boundary != second.boundary
        assert new_boundary() != new_boundary()


class TestDownloadRequest:
    def test_form(self):
        assert download_form("tok") == {"anti_csrf": "tok"}

    def test_cookie(self):
        assert download_cookie_header("bearer") == "puter_auth_token=bearer"


class TestWriteStream:
    """Tests for write_stream."""

    def test_writes_chunks(self, temp_dir):
        target = temp_dir / "nested" / "out.bin"
        written = write_stream([b"ab", b"", b"cd"], target)
        assert written == 4
        assert target.read_bytes() == b"abcd"

    def test_refuses_existing_without_overwrite(self, temp_dir):
        target = temp_dir / "out.bin"
        target.write_bytes(b"old")
        with pytest.raises(FileExistsError):
            write_stream([b"new"], target)
        assert target.read_bytes() == b"old"

    def test_overwrite_replaces(self, temp_dir):
        target = temp_dir / "out.bin"
        target.write_bytes(b"old content")
        write_stream([b"new"], target, overwrite=True)
        assert target.read_bytes() == b"new"
