class DropzoneError(Exception):
    """Base class for all dropzone errors."""


# ----------------------------
# Startup (fatal)
# ----------------------------

class BindError(DropzoneError):
    """The listening socket could not be bound (port in use, permission denied)."""

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(f"Cannot listen on {host}:{port}: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class CertificateError(DropzoneError):
    """TLS certificate or key is missing, unreadable or malformed."""


# ----------------------------
# Per request (contained)
# ----------------------------

class StorageError(DropzoneError):
    """Writing an upload to disk failed."""


class MalformedRequestError(DropzoneError):
    """The request cannot be understood (bad multipart body, missing filename...)."""


class EncodingError(DropzoneError):
    """A message body is not valid UTF-8 text."""
