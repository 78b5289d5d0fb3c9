"""
Error taxonomy for appsd.

Every failure inside the agent is raised as an ``AppsdError`` carrying an
``ErrorKind``. The HTTP layer maps kinds onto the response envelope through
``HTTP_ERRORS``; the dispatcher only logs them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class ErrorKind(str, Enum):
    """Kinds of failures"""
    INVALID_PARAMETER = "InvalidParameter"
    REMOTE_QUERY_FAILURE = "RemoteQueryFailure"
    DECODE_FAILURE = "DecodeFailure"
    FORMAT_FAILURE = "FormatFailure"
    PROCESS_NOT_FOUND = "ProcessNotFound"
    SPAWN_FAILURE = "SpawnFailure"
    SIGNAL_FAILURE = "SignalFailure"
    FILE_IO_FAILURE = "FileIOFailure"
    # HTTP only
    REQUEST_METHOD = "RequestMethod"
    CERT_EMPTY = "CertEmpty"


@dataclass(frozen=True)
class HTTPError:
    """HTTP status, envelope code and envelope message of an error kind"""
    status: int
    code: str
    message: str


SUCCESS_CODE = 1000
SUCCESS_MESSAGE = "success"

HTTP_ERRORS: Dict[ErrorKind, HTTPError] = {
    ErrorKind.INVALID_PARAMETER: HTTPError(400, "1002", "Invalid parameter"),
    ErrorKind.CERT_EMPTY: HTTPError(403, "1112", "Domain has no cert"),
    ErrorKind.REQUEST_METHOD: HTTPError(405, "1113", "Request method error"),
    ErrorKind.REMOTE_QUERY_FAILURE: HTTPError(500, "1001", "Internal server error"),
    ErrorKind.DECODE_FAILURE: HTTPError(500, "1107", "Json unmarshal error"),
    ErrorKind.FORMAT_FAILURE: HTTPError(500, "1108", "Format http response error"),
}

# Kinds that never originate from a request are still internal errors to a caller.
_INTERNAL = HTTP_ERRORS[ErrorKind.REMOTE_QUERY_FAILURE]


class AppsdError(Exception):
    """
    Base error of the agent

    Example:
        raise AppsdError(ErrorKind.PROCESS_NOT_FOUND, "no process runs /usr/bin/foo")
    """

    def __init__(self, kind: ErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}")

    @property
    def http(self) -> HTTPError:
        return HTTP_ERRORS.get(self.kind, _INTERNAL)


class ProcessNotFound(AppsdError):
    def __init__(self, message: str):
        super().__init__(ErrorKind.PROCESS_NOT_FOUND, message)


class SpawnFailure(AppsdError):
    def __init__(self, message: str):
        super().__init__(ErrorKind.SPAWN_FAILURE, message)


class SignalFailure(AppsdError):
    def __init__(self, message: str):
        super().__init__(ErrorKind.SIGNAL_FAILURE, message)


class FileIOFailure(AppsdError):
    def __init__(self, message: str):
        super().__init__(ErrorKind.FILE_IO_FAILURE, message)


class DecodeFailure(AppsdError):
    def __init__(self, message: str):
        super().__init__(ErrorKind.DECODE_FAILURE, message)


class RemoteQueryFailure(AppsdError):
    def __init__(self, message: str):
        super().__init__(ErrorKind.REMOTE_QUERY_FAILURE, message)
