import logging
from enum import Enum
from urllib.parse import unquote

from flask import (
    Flask,
    Request,
    Response,
    abort,
    jsonify,
    make_response,
    redirect,
    render_template_string,
    request,
    url_for,
)
from werkzeug.exceptions import (
    ClientDisconnected,
    MethodNotAllowed,
    RequestEntityTooLarge,
    UnsupportedMediaType,
)

from .assets import FAVICON_SVG, INDEX_HTML
from .config import ServerConfig
from .errors import EncodingError, MalformedRequestError, StorageError
from .relay import Message, MessageRelay
from .storage import StorageSink, StoredFile, UploadSession, format_bytes

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
FORM_MIMETYPES = ("multipart/form-data", "application/x-www-form-urlencoded")

# ----------------------------
# Request classification
# ----------------------------

class RequestKind(Enum):
    UPLOAD = "upload"
    MESSAGE = "message"
    STATIC = "static"
    UNRECOGNIZED = "unrecognized"


ROUTES: dict[str, tuple[RequestKind, frozenset[str]]] = {
    "/": (RequestKind.STATIC, frozenset({"GET", "HEAD"})),
    "/favicon.svg": (RequestKind.STATIC, frozenset({"GET", "HEAD"})),
    "/upload": (RequestKind.UPLOAD, frozenset({"POST"})),
    "/message": (RequestKind.MESSAGE, frozenset({"POST"})),
}

def classify(method: str, path: str) -> RequestKind:
    route = ROUTES.get(path)
    if route is None or method.upper() not in route[1]:
        return RequestKind.UNRECOGNIZED
    return route[0]

# ----------------------------
# Streaming request
# ----------------------------

class UploadRequest(Request):
    """
    Request whose multipart file parts are written straight into a StorageSink.

    Set ``sink`` before touching ``files``; every part then gets its own
    UploadSession instead of werkzeug's spooled temporary file.
    """

    sink: StorageSink | None = None

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.upload_sessions: list[UploadSession] = []

    def begin_upload(self, sink: StorageSink, filename: str) -> UploadSession:
        session = sink.begin_upload(filename, client=self.remote_addr)
        self.upload_sessions.append(session)
        return session

    def _get_file_stream(self, total_content_length, content_type, filename=None, content_length=None):
        if self.sink is None or not filename:
            return super()._get_file_stream(total_content_length, content_type, filename, content_length)
        return self.begin_upload(self.sink, filename)

# ----------------------------
# Responses
# ----------------------------

def wants_json_response() -> bool:
    """True unless the client looks like a browser posting a plain form."""
    if request.args.get("json") in ("1", "true", "yes"):
        return True

    accept = request.headers.get("Accept", "")
    xrw = request.headers.get("X-Requested-With", "")

    if "application/json" in accept:
        return True
    if xrw.lower() == "xmlhttprequest":
        return True
    if "text/html" not in accept:
        return True
    return False

def error_response(message: str, status: int) -> Response:
    if wants_json_response():
        return make_response(jsonify({"ok": False, "error": message}), status)
    return make_response(message, status)

def upload_success_response(stored: list[StoredFile]):
    payload = {
        "ok": True,
        "files": [{"saved_as": f.name, "size_bytes": f.size} for f in stored],
    }
    if wants_json_response():
        return jsonify(payload), 201
    return redirect(url_for("dispatch"))

def read_text_body(limit: int) -> str:
    if request.content_length is not None and request.content_length > limit:
        raise RequestEntityTooLarge()

    chunks = []
    total = 0
    for chunk in iter(lambda: request.stream.read(CHUNK_SIZE), b""):
        total += len(chunk)
        if total > limit:
            raise RequestEntityTooLarge()
        chunks.append(chunk)

    try:
        return b"".join(chunks).decode("utf-8")
    except UnicodeDecodeError as e:
        raise EncodingError("Message is not valid UTF-8 text") from e

def _require_boundary() -> None:
    if request.mimetype == "multipart/form-data" and not request.mimetype_params.get("boundary"):
        raise MalformedRequestError("Missing multipart boundary")

# ----------------------------
# Flask app
# ----------------------------

def create_app(
    config: ServerConfig,
    sink: StorageSink | None = None,
    relay: MessageRelay | None = None,
) -> Flask:
    app = Flask(__name__)
    app.request_class = UploadRequest
    app.config["UPLOAD_FOLDER"] = str(config.upload_root)
    app.config["MAX_CONTENT_LENGTH"] = config.max_upload_bytes

    sink = sink if sink is not None else StorageSink(config.upload_root)
    relay = relay if relay is not None else MessageRelay()
    app.extensions["dropzone"] = {"config": config, "sink": sink, "relay": relay}

    def handle_upload():
        if request.mimetype == "multipart/form-data":
            _require_boundary()
            request.sink = sink
            # Parsing the form streams every file part into its own session.
            sessions = [
                f.stream
                for _, f in request.files.items(multi=True)
                if isinstance(f.stream, UploadSession)
            ]
            if not sessions:
                raise MalformedRequestError("No file selected")
        else:
            # Raw upload: client sends bytes, name via query string or header
            raw_name = request.args.get("filename") or unquote(request.headers.get("X-Filename", ""))
            if not raw_name:
                raise MalformedRequestError("Missing filename (use ?filename=... or X-Filename)")
            session = request.begin_upload(sink, raw_name)
            for chunk in iter(lambda: request.stream.read(CHUNK_SIZE), b""):
                sink.write_chunk(session, chunk)
            sessions = [session]

        stored = []
        for session in sessions:
            stored.append(sink.finalize(session))
            relay.file_stored(stored[-1], sender=request.remote_addr)
        return upload_success_response(stored)

    def handle_message():
        if request.mimetype in FORM_MIMETYPES:
            _require_boundary()
            text = request.form.get("message")
            if text is None:
                raise MalformedRequestError("Missing 'message' field")
            if len(text.encode("utf-8")) > config.max_message_bytes:
                raise RequestEntityTooLarge()
        elif request.mimetype in ("text/plain", ""):
            text = read_text_body(config.max_message_bytes)
        else:
            raise UnsupportedMediaType()

        text = text.strip()
        if not text:
            raise MalformedRequestError("Empty message")

        relay.deliver(Message(text=text, sender=request.remote_addr))
        if wants_json_response():
            return jsonify({"ok": True})
        return redirect(url_for("dispatch"))

    def handle_static():
        if request.path == "/favicon.svg":
            return Response(FAVICON_SVG, mimetype="image/svg+xml")
        return render_template_string(
            INDEX_HTML,
            max_message_bytes=config.max_message_bytes,
            max_upload=format_bytes(config.max_upload_bytes) if config.max_upload_bytes else None,
        )

    def handle_unrecognized():
        route = ROUTES.get(request.path)
        if route is not None:
            raise MethodNotAllowed(valid_methods=sorted(route[1]))
        abort(404)

    handlers = {
        RequestKind.UPLOAD: handle_upload,
        RequestKind.MESSAGE: handle_message,
        RequestKind.STATIC: handle_static,
        RequestKind.UNRECOGNIZED: handle_unrecognized,
    }
    missing = set(RequestKind) - handlers.keys()
    if missing:
        raise RuntimeError(f"No handler for request kinds: {sorted(k.value for k in missing)}")

    methods = ["GET", "POST", "PUT", "PATCH", "DELETE"]

    @app.route("/", defaults={"path": ""}, methods=methods, endpoint="dispatch")
    @app.route("/<path:path>", methods=methods, endpoint="dispatch")
    def dispatch(path):
        return handlers[classify(request.method, request.path)]()

    @app.errorhandler(MalformedRequestError)
    def on_malformed(e):
        logger.warning("Rejected request from %s: %s", request.remote_addr, e)
        return error_response(str(e), 400)

    @app.errorhandler(EncodingError)
    def on_bad_encoding(e):
        logger.warning("Rejected message from %s: %s", request.remote_addr, e)
        return error_response(str(e), 400)

    @app.errorhandler(StorageError)
    def on_storage_error(e):
        logger.error("Upload from %s failed: %s", request.remote_addr, e)
        return error_response("Could not store the upload", 500)

    @app.errorhandler(ClientDisconnected)
    @app.errorhandler(TimeoutError)
    def on_disconnect(e):
        logger.warning("Client %s disconnected before the request was complete", request.remote_addr)
        return error_response("Incomplete request body", 400)

    @app.errorhandler(RequestEntityTooLarge)
    def on_too_large(e):
        logger.warning("Rejected oversized request from %s to %s", request.remote_addr, request.path)
        return error_response("Request body too large", 413)

    @app.after_request
    def add_headers(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        if response.status_code >= 400:
            # The body may not have been read; don't reuse the connection.
            response.headers["Connection"] = "close"
        return response

    @app.teardown_request
    def abort_unfinished_uploads(exc):
        for session in request.upload_sessions:
            sink.abort(session)

    return app
