"""
Config Query Server

Read-only HTTP(S) access to remote configuration and secret objects for
local processes.

Endpoints:
- GET /config?appname=&type=configmap|secret&domain=
- GET /configmap?appname=&domain=   (legacy, type defaults to configmap)

Every response uses the envelope {"code", "msg", "body"}.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from appsd.config import AppsdConfig
from appsd.errors import SUCCESS_CODE, SUCCESS_MESSAGE, AppsdError, ErrorKind, FileIOFailure
from appsd.models import ResourceType
from appsd.store_client import ConfigStoreClient, load_object, object_data

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 10.0


def envelope(code: Any, msg: str, body: Any = None) -> Dict[str, Any]:
    return {"code": code, "msg": msg, "body": body}


def _b64_text(value: str) -> Optional[str]:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None


def format_configmaps(raw_objects: List[str]) -> List[Dict[str, str]]:
    """Data map of each configuration object.

    Objects with an empty ``data`` contribute their ``binaryData``, decoded.

    Raises:
        AppsdError: FormatFailure when there is nothing to return
    """
    if not raw_objects:
        raise AppsdError(ErrorKind.FORMAT_FAILURE, "no configuration object found")

    body = []
    for raw in raw_objects:
        obj = load_object(raw)
        data = object_data(obj)
        if not data:
            data = {}
            for key, value in object_data(obj, "binaryData").items():
                decoded = _b64_text(value)
                data[key] = value if decoded is None else decoded
        body.append(data)
    return body


def format_secrets(raw_objects: List[str], domain: str = "") -> List[Dict[str, str]]:
    """One map per secret, values base64-decoded when they decode to text.

    Raises:
        AppsdError: CertEmpty when a domain query matched nothing
    """
    if not raw_objects and domain:
        raise AppsdError(ErrorKind.CERT_EMPTY, f"no certificate for domain {domain}")

    body = []
    for raw in raw_objects:
        secret = {}
        for key, value in object_data(load_object(raw)).items():
            decoded = _b64_text(value)
            secret[key] = value if decoded is None else decoded
        body.append(secret)
    return body


def create_app(store: ConfigStoreClient) -> FastAPI:
    app = FastAPI(title="appsd config query API", docs_url=None, redoc_url=None, openapi_url=None)

    @app.exception_handler(AppsdError)
    async def appsd_error_handler(request: Request, exc: AppsdError):
        err = exc.http
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=err.status, content=envelope(err.code, err.message))

    def _query(request: Request, default_type: str = "") -> Dict[str, Any]:
        if request.method != "GET":
            raise AppsdError(ErrorKind.REQUEST_METHOD, f"method {request.method} not allowed")

        params = request.query_params
        app_name = params.get("appname", "")
        domain = params.get("domain", "")
        resource_type = params.get("type", "") or default_type
        if not resource_type or (not app_name and not domain):
            raise AppsdError(ErrorKind.INVALID_PARAMETER, "type and one of appname or domain are required")

        if resource_type == ResourceType.CONFIGMAP.value:
            body = format_configmaps(store.query(resource_type, app_name, domain))
        elif resource_type == ResourceType.SECRET.value:
            body = format_secrets(store.query(resource_type, app_name, domain), domain)
        else:
            raise AppsdError(ErrorKind.FORMAT_FAILURE, f"unsupported type {resource_type!r}")

        return envelope(SUCCESS_CODE, SUCCESS_MESSAGE, body)

    methods = ["GET", "POST", "PUT", "PATCH", "DELETE"]

    @app.api_route("/config", methods=methods)
    def config(request: Request) -> Dict[str, Any]:
        return _query(request)

    @app.api_route("/configmap", methods=methods)
    def configmap(request: Request) -> Dict[str, Any]:
        return _query(request, default_type=ResourceType.CONFIGMAP.value)

    return app


class ConfigQueryServer:
    """uvicorn server running on its own thread"""

    def __init__(self, app: FastAPI, cfg: AppsdConfig):
        self.cfg = cfg
        ssl: Dict[str, Any] = {}
        if cfg.tls_enabled:
            for path in (cfg.cert_file, cfg.key_file):
                if not path.is_file():
                    raise FileIOFailure(f"TLS material not found: {path}")
            ssl = {"ssl_certfile": str(cfg.cert_file), "ssl_keyfile": str(cfg.key_file)}

        config = uvicorn.Config(
            app,
            host=cfg.server,
            port=cfg.port,
            log_level=cfg.log_level.lower(),
            timeout_graceful_shutdown=int(cfg.shutdown_grace),
            **ssl,
        )
        self._server = uvicorn.Server(config)
        self._thread: Optional[threading.Thread] = None
        self.exit_code: Optional[int] = None

    @property
    def url(self) -> str:
        scheme = "https" if self.cfg.tls_enabled else "http"
        return f"{scheme}://{self.cfg.server}:{self.cfg.port}"

    def start(self, timeout: float = STARTUP_TIMEOUT) -> None:
        """Start serving; raise when the listener does not come up"""
        self._thread = threading.Thread(target=self._serve, name="appsd-http", daemon=True)
        self._thread.start()

        # uvicorn exits the thread on bind failure without setting started
        waited = 0.0
        while not self._server.started:
            if not self._thread.is_alive() or waited >= timeout:
                self._server.should_exit = True
                raise RuntimeError(
                    f"config query server failed to listen on {self.cfg.server}:{self.cfg.port} (exit code {self.exit_code})"
                )
            self._thread.join(0.05)
            waited += 0.05
        logger.info(f"Config query server listening on {self.url}")

    def _serve(self) -> None:
        # uvicorn raises SystemExit on bind or certificate failure; start() reports it
        try:
            self._server.run()
        except SystemExit as e:
            self.exit_code = e.code if isinstance(e.code, int) else 1
            logger.error(f"Config query server exited during startup (code {self.exit_code})")

    def stop(self) -> None:
        if self._thread is None:
            return
        self._server.should_exit = True
        self._thread.join(timeout=self.cfg.shutdown_grace + 1.0)
        if self._thread.is_alive():
            logger.warning("Config query server did not stop within the grace period")
        else:
            logger.info("Config query server stopped")
        self._thread = None
