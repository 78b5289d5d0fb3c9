"""
appsd data models

- WorkloadDescriptor: remote-issued description of a native application instance
- AppCommand: normalised executable path, arguments and environment
- OperationKey: identity of one reconcilable unit
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Operation(str, Enum):
    """Lifecycle operation carried by a message"""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    QUERY = "query"
    RESPONSE = "response"


class ResourceType(str, Enum):
    """Remote object types served by the metadata authority"""
    CONFIGMAP = "configmap"
    SECRET = "secret"


# Labels the control plane puts on configuration objects
LABEL_CONFIG_TYPE = "configType"
CONFIG_TYPE_NATIVE = "native"

LABEL_VERSION = "version"


class WorkloadDescriptor(BaseModel):
    """Native application instance as declared by the control plane"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    namespace: Optional[str] = None
    name: Optional[str] = None
    app_name: str = Field(alias="app", min_length=1)
    path: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    envs: List[str] = Field(default_factory=list)
    token: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    action: Optional[str] = None

    @field_validator("envs", mode="before")
    @classmethod
    def _normalise_envs(cls, value: Any) -> Any:
        # Accept {"NAME": "value"} as well as ["NAME=value"]
        if isinstance(value, dict):
            return [f"{k}={v}" for k, v in value.items()]
        if value is None:
            return []
        return value

    @field_validator("args", mode="before")
    @classmethod
    def _normalise_args(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        return value

    @property
    def version_token(self) -> Optional[str]:
        """Explicit token field, else the ``version`` label, else none"""
        return self.token or self.labels.get(LABEL_VERSION) or None

    def to_command(self) -> "AppCommand":
        return AppCommand(
            app_name=self.app_name,
            path=self.path or "",
            args=list(self.args),
            envs=list(self.envs),
        )


@dataclass
class AppCommand:
    """Native app start command: absolute executable path, arguments, environment"""
    app_name: str
    path: str
    args: List[str] = field(default_factory=list)
    envs: List[str] = field(default_factory=list)

    @property
    def arg_string(self) -> str:
        return " ".join(self.args)

    @property
    def name(self) -> str:
        """Application name, falling back to the executable's basename"""
        if self.app_name:
            return self.app_name
        return PurePosixPath(self.path).name


def is_executable(path: str) -> bool:
    """True if *path* is absolute and resolves to an executable file"""
    if not path or not PurePosixPath(path).is_absolute():
        return False
    return shutil.which(path) is not None


def generate_command(argv: List[str]) -> Optional[AppCommand]:
    """
    Build an AppCommand from a raw argv

    Entries before the first absolute executable are environment entries,
    entries after it are arguments. Returns None when no executable is found.

    Example:
        >>> generate_command(["LANG=C", "/bin/echo", "hi"])
        AppCommand(app_name='echo', path='/bin/echo', args=['hi'], envs=['LANG=C'])
    """
    if not argv:
        return None
    for index, arg in enumerate(argv):
        if is_executable(arg):
            return AppCommand(
                app_name=PurePosixPath(arg).name,
                path=arg,
                args=list(argv[index + 1:]),
                envs=list(argv[:index]),
            )
    return None


@dataclass(frozen=True)
class OperationKey:
    """Composite identity (namespace, instance name, application name)"""
    namespace: str
    name: str
    app: str

    @classmethod
    def for_command(cls, namespace: str, command: AppCommand) -> "OperationKey":
        """Path-derived key for raw commands: executable path + argument string"""
        return cls(namespace=namespace, name=command.path, app=command.arg_string)

    def __str__(self) -> str:
        return f"{self.namespace}:{self.name}:{self.app}"


Content = Union[Dict[str, Any], List[Any], str, bytes, None]
