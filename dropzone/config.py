"""
Server configuration.

A single immutable ServerConfig is built at startup from the command line and
the environment, then handed to every component.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
UPLOAD_DIR_NAME = "dropzone-uploads"

DEFAULT_CERT_FILE = "cert.crt"
DEFAULT_KEY_FILE = "cert.key"

DEFAULT_MAX_MESSAGE_BYTES = 64 * 1024
DEFAULT_IDLE_TIMEOUT = 120.0
DEFAULT_HANDSHAKE_TIMEOUT = 10.0

ENV_CERT_PATH = "DROPZONE_CERT_PATH"
ENV_CERT_KEY_PATH = "DROPZONE_CERT_KEY_PATH"
ENV_MAX_BODY_SIZE = "DROPZONE_MAX_BODY_SIZE"
ENV_MAX_MESSAGE_SIZE = "DROPZONE_MAX_MESSAGE_SIZE"


def _env_int(environ: Mapping[str, str], name: str) -> int | None:
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be a whole number of bytes, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class ServerConfig:
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    upload_root: Path = Path(UPLOAD_DIR_NAME)
    tls_enabled: bool = False
    cert_path: Path | None = None
    key_path: Path | None = None
    max_upload_bytes: int | None = None
    max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT

    @property
    def scheme(self) -> str:
        return "https" if self.tls_enabled else "http"

    @classmethod
    def from_env(
        cls,
        port: int = DEFAULT_PORT,
        no_tls: bool = False,
        flat: bool = False,
        environ: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> "ServerConfig":
        """
        Build the config the way the CLI does.

        TLS is on unless --no-tls is given. Certificate paths come from
        DROPZONE_CERT_PATH / DROPZONE_CERT_KEY_PATH and default to ./cert.crt
        and ./cert.key. Whether they exist is checked when the server starts.
        """
        environ = os.environ if environ is None else environ
        cwd = Path.cwd() if cwd is None else cwd

        upload_root = cwd if flat else cwd / UPLOAD_DIR_NAME

        tls_enabled = not no_tls
        cert_path = key_path = None
        if tls_enabled:
            cert_env = environ.get(ENV_CERT_PATH)
            key_env = environ.get(ENV_CERT_KEY_PATH)
            cert_path = Path(cert_env) if cert_env else cwd / DEFAULT_CERT_FILE
            key_path = Path(key_env) if key_env else cwd / DEFAULT_KEY_FILE

        max_message = _env_int(environ, ENV_MAX_MESSAGE_SIZE) or DEFAULT_MAX_MESSAGE_BYTES

        return cls(
            port=port,
            upload_root=upload_root,
            tls_enabled=tls_enabled,
            cert_path=cert_path,
            key_path=key_path,
            max_upload_bytes=_env_int(environ, ENV_MAX_BODY_SIZE),
            max_message_bytes=max_message,
        )
