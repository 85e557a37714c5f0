"""Shared fixtures: an in-memory Puter server behind httpx.MockTransport."""

import json
import posixpath
import re
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs

import httpx
import pytest

from pyputer.api import PuterClient
from pyputer.config import SessionContext

T0 = 1_700_000_000


def _not_found(path: str) -> httpx.Response:
    return httpx.Response(
        404,
        json={
            "error": {
                "code": "subject_does_not_exist",
                "message": f"{path} does not exist",
            }
        },
    )


def parse_multipart(body: bytes, content_type: str) -> list[tuple[str, dict, bytes]]:
    """Split a multipart body into (field name, headers, payload), in order."""
    boundary = content_type.split("boundary=", 1)[1].encode()
    parts = []
    for segment in body.split(b"--" + boundary)[1:]:
        if segment.startswith(b"--"):
            break
        head, _, payload = segment[2:].partition(b"\r\n\r\n")
        headers = {}
        for line in head.decode().split("\r\n"):
            key, _, value = line.partition(": ")
            headers[key.lower()] = value
        name = re.search(r'name="([^"]+)"', headers["content-disposition"]).group(1)
        parts.append((name, headers, payload[:-2]))
    return parts


class FakePuterServer:
    """Minimal stateful imitation of the Puter filesystem API."""

    def __init__(self, username: str = "alice"):
        self.username = username
        self.now = T0
        self.used = 0
        self.capacity = 10 * 1024 * 1024
        self.files: dict[str, dict] = {}
        self.dirs: set[str] = {"/", f"/{username}", f"/{username}/Trash"}
        self.requests: list[tuple[str, str]] = []
        self.batch_bodies: list[list[tuple[str, dict, bytes]]] = []
        self.reject_writes: set[str] = set()
        self.reject_downloads: set[str] = set()
        self.csrf_outages = 0
        self.readdir_payload: Optional[object] = None
        self._counter = 0

    # Test helpers

    def _uid(self) -> str:
        self._counter += 1
        return f"uid-{self._counter:04d}"

    def add_file(self, path: str, content: bytes = b"", modified: Optional[int] = None) -> dict:
        parent = posixpath.dirname(path)
        self._make_dirs(parent)
        record = {
            "content": content,
            "modified": self.now if modified is None else modified,
            "uid": self._uid(),
        }
        self.files[path] = record
        return record

    def _make_dirs(self, path: str) -> None:
        while path not in self.dirs:
            self.dirs.add(path)
            path = posixpath.dirname(path)

    def _entry(self, path: str) -> dict:
        if path in self.files:
            record = self.files[path]
            return {
                "name": posixpath.basename(path),
                "path": path,
                "is_dir": False,
                "size": len(record["content"]),
                "modified": record["modified"],
                "created": record["modified"],
                "uid": record["uid"],
                "id": record["uid"],
                "writable": True,
                "owner": {"username": self.username},
            }
        return {
            "name": posixpath.basename(path) or "/",
            "path": path,
            "is_dir": True,
            "size": 0,
            "modified": T0,
            "uid": f"dir:{path}",
            "writable": True,
        }

    def _find(self, source: str) -> Optional[str]:
        if source in self.files or source in self.dirs:
            return source
        for path, record in self.files.items():
            if record["uid"] == source:
                return path
        if source.startswith("dir:") and source[4:] in self.dirs:
            return source[4:]
        return None

    def calls(self, endpoint: str) -> int:
        return sum(1 for _, path in self.requests if path == endpoint)

    # Request dispatch

    def handle(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path
        self.requests.append((request.method, endpoint))
        handler = getattr(self, "_" + endpoint.strip("/").replace("-", "_"), None)
        if handler is None:
            return httpx.Response(404, json={"error": {"message": "no such endpoint"}})
        return handler(request)

    def _body(self, request: httpx.Request) -> dict:
        return json.loads(request.content or b"{}")

    def _whoami(self, request):
        return httpx.Response(200, json={"username": self.username, "uuid": "u-1"})

    def _df(self, request):
        return httpx.Response(200, json={"used": self.used, "capacity": self.capacity})

    def _stat(self, request):
        path = self._body(request)["path"]
        if path not in self.files and path not in self.dirs:
            return _not_found(path)
        return httpx.Response(200, json=self._entry(path))

    def _readdir(self, request):
        if self.readdir_payload is not None:
            return httpx.Response(200, json=self.readdir_payload)
        path = self._body(request)["path"].rstrip("/") or "/"
        if path not in self.dirs:
            return _not_found(path)
        children = sorted(
            p
            for p in list(self.files) + list(self.dirs)
            if p != path and posixpath.dirname(p) == path
        )
        return httpx.Response(200, json=[self._entry(p) for p in children])

    def _mkdir(self, request):
        body = self._body(request)
        path = body["path"]
        parent = posixpath.dirname(path)
        if parent not in self.dirs and not body.get("create_missing_parents"):
            return _not_found(parent)
        self._make_dirs(path)
        return httpx.Response(200, json=self._entry(path))

    def _move(self, request):
        body = self._body(request)
        source = self._find(body["source"])
        if source is None:
            return _not_found(body["source"])
        name = body.get("new_name") or posixpath.basename(source)
        target = posixpath.join(body["destination"], name)
        if source in self.files:
            self.files[target] = self.files.pop(source)
        else:
            self.dirs.discard(source)
            self.dirs.add(target)
        return httpx.Response(200, json={"moved": self._entry(target)})

    def _rename(self, request):
        body = self._body(request)
        source = self._find(body["uid"])
        if source is None:
            return _not_found(body["uid"])
        target = posixpath.join(posixpath.dirname(source), body["new_name"])
        self.files[target] = self.files.pop(source)
        return httpx.Response(200, json=self._entry(target))

    def _copy(self, request):
        body = self._body(request)
        source = body["source"]
        if source not in self.files:
            return _not_found(source)
        target = posixpath.join(body["destination"], posixpath.basename(source))
        self.add_file(target, self.files[source]["content"])
        return httpx.Response(200, json=[{"copied": self._entry(target)}])

    def _delete(self, request):
        body = self._body(request)
        for path in body["paths"]:
            prefix = path.rstrip("/") + "/"
            self.files = {p: r for p, r in self.files.items() if not p.startswith(prefix)}
            self.dirs = {d for d in self.dirs if not d.startswith(prefix)}
            if not body.get("descendants_only"):
                self.files.pop(path, None)
                self.dirs.discard(path)
        return httpx.Response(200, json={})

    def _read(self, request):
        path = request.url.params["file"]
        if path not in self.files:
            return _not_found(path)
        return httpx.Response(200, content=self.files[path]["content"])

    def _get_anticsrf_token(self, request):
        if self.csrf_outages:
            self.csrf_outages -= 1
            return httpx.Response(200, json={})
        return httpx.Response(200, json={"token": "csrf-token"})

    def _down(self, request):
        form = parse_qs(request.content.decode())
        if form.get("anti_csrf") != ["csrf-token"]:
            return httpx.Response(403, json={"error": {"message": "bad csrf token"}})
        if "puter_auth_token=" not in request.headers.get("cookie", ""):
            return httpx.Response(401, json={"error": {"message": "no session"}})
        path = request.url.params["path"]
        if path not in self.files:
            return _not_found(path)
        if path in self.reject_downloads:
            return httpx.Response(500, json={"error": {"message": "read failed"}})
        return httpx.Response(200, content=self.files[path]["content"])

    def _batch(self, request):
        parts = parse_multipart(request.content, request.headers["content-type"])
        self.batch_bodies.append(parts)
        fields = {name: payload for name, _, payload in parts}
        operation = json.loads(fields["operation"])
        target = posixpath.join(operation["path"], operation["name"])
        if target in self.reject_writes:
            return httpx.Response(500, text="write refused")
        if operation["path"] not in self.dirs:
            return httpx.Response(400, text="destination does not exist")
        record = self.files.get(target)
        if record and operation["overwrite"]:
            record["content"] = fields["file"]
            record["modified"] = self.now
        else:
            self.add_file(target, fields["file"])
        return httpx.Response(200, json={"results": [self._entry(target)]})


@pytest.fixture
def server():
    """Provide a fresh fake Puter server."""
    return FakePuterServer()


@pytest.fixture
def client(server):
    """Provide a PuterClient talking to the fake server."""
    puter = PuterClient(
        auth_token="test-token",
        api_url="https://api.puter.test",
        base_url="https://puter.test",
        max_retries=0,
        retry_delay=0,
        transport=httpx.MockTransport(server.handle),
    )
    yield puter
    puter.close()


@pytest.fixture
def session(server):
    """Session of the fake server's user."""
    return SessionContext(username=server.username, cwd=f"/{server.username}")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
