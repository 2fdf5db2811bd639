"""
Pytest configuration: shared fixtures for the storage, app and server tests.
"""

import http.client
import io
import ssl
import threading
import time

import pytest
from werkzeug.datastructures import FileStorage
from werkzeug.test import encode_multipart

from dropzone.app import create_app
from dropzone.config import ServerConfig
from dropzone.relay import MessageRelay
from dropzone.server import bind_server
from dropzone.storage import STAGING_DIR_NAME, StorageSink


class RecordingRelay(MessageRelay):
    """Relay that remembers what it was asked to print."""

    def __init__(self):
        super().__init__(stream=io.StringIO())
        self.messages = []
        self.files = []

    def deliver(self, message):
        self.messages.append(message)
        super().deliver(message)

    def file_stored(self, stored, sender=None):
        self.files.append(stored)
        super().file_stored(stored, sender=sender)


def public_files(upload_root):
    """Names visible in the upload root, staging directory excluded."""
    return sorted(p.name for p in upload_root.iterdir() if p.name != STAGING_DIR_NAME)

def staging_files(upload_root):
    staging = upload_root / STAGING_DIR_NAME
    if not staging.exists():
        return []
    return sorted(p.name for p in staging.iterdir())

def wait_for(predicate, timeout=10.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()

def multipart_file(filename, data, field="file"):
    """Return (content_type, body) for a multipart upload of one file."""
    boundary, body = encode_multipart(
        {field: FileStorage(io.BytesIO(data), filename=filename, content_type="application/octet-stream")}
    )
    return f"multipart/form-data; boundary={boundary}", body

def http_post(server, path, body, headers=None, tls=False, timeout=30):
    host, port = server.listen_address
    if tls:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        conn = http.client.HTTPSConnection(host, port, timeout=timeout, context=context)
    else:
        conn = http.client.HTTPConnection(host, port, timeout=timeout)
    try:
        conn.request("POST", path, body=body, headers={"Accept": "application/json", **(headers or {})})
        resp = conn.getresponse()
        return resp.status, resp.read()
    finally:
        conn.close()


@pytest.fixture
def upload_root(tmp_path):
    return tmp_path / "dropzone-uploads"

@pytest.fixture
def config(upload_root):
    return ServerConfig(
        port=0,
        host="127.0.0.1",
        upload_root=upload_root,
        tls_enabled=False,
        idle_timeout=5,
        handshake_timeout=2,
    )

@pytest.fixture
def sink(upload_root):
    return StorageSink(upload_root)

@pytest.fixture
def relay():
    return RecordingRelay()

@pytest.fixture
def app(config, sink, relay):
    app = create_app(config, sink=sink, relay=relay)
    app.config["TESTING"] = True
    return app

@pytest.fixture
def client(app):
    return app.test_client()

@pytest.fixture
def serve(relay):
    """Start live servers on a background thread; shut them down afterwards."""
    running = []

    def _serve(config):
        app = create_app(config, relay=relay)
        server = bind_server(config, app)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        running.append((server, thread))
        return server

    yield _serve

    for server, thread in running:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)

@pytest.fixture
def dev_cert(tmp_path):
    """Throwaway self-signed certificate and key for TLS tests."""
    pytest.importorskip("cryptography")
    from werkzeug.serving import make_ssl_devcert

    cert_file, key_file = make_ssl_devcert(str(tmp_path / "dev"), host="localhost")
    return cert_file, key_file
