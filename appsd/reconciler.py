"""Configuration reconciliation for native applications.

Decides whether the on-disk configuration of an application matches the
remote source of truth, replaces it when it diverges and (re)starts the
process through the active backend.

Decision table for an update:

    remote  local  equal   action
    no      no     -       fail: no configuration available
    no      yes    -       keep local file, restart
    yes     no     -       create file, restart
    yes     yes    yes     no write, restart
    yes     yes    no      backup, write, backend reload, restart
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from appsd import fileutil
from appsd.backend.base import ProcessBackend
from appsd.errors import FileIOFailure
from appsd.models import AppCommand, ResourceType
from appsd.store_client import ConfigStoreClient, load_object, object_data, select_native

logger = logging.getLogger(__name__)


class ConfigAction(str, Enum):
    CREATED = "created"
    UNCHANGED = "unchanged"
    REPLACED = "replaced"
    LOCAL_ONLY = "local_only"
    ABSENT = "absent"


@dataclass
class ReconcileResult:
    app_name: str
    action: ConfigAction
    conf_file: Path
    backup_file: Optional[Path] = None
    started: bool = False


def render_config(obj: dict, app_name: str) -> str:
    """File content carried by a configuration object.

    The ``<app>.conf`` entry if present, else the only entry, else all
    entries as sorted ``key=value`` lines. ``binaryData`` is used, base64
    decoded, when ``data`` is empty.
    """
    data = object_data(obj)
    if not data:
        data = {}
        for key, value in object_data(obj, "binaryData").items():
            try:
                data[key] = base64.b64decode(value, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                data[key] = value

    file_key = f"{app_name}{fileutil.CONF_SUFFIX}"
    if file_key in data:
        return data[file_key]
    if len(data) == 1:
        return next(iter(data.values()))
    return "".join(f"{k}={data[k]}\n" for k in sorted(data))


class ConfigReconciler:
    """Converge local configuration and process state to remote intent"""

    def __init__(self, store: ConfigStoreClient, backend: ProcessBackend, conf_dir: Path):
        self.store = store
        self.backend = backend
        self.conf_dir = conf_dir

    def remote_config(self, app_name: str) -> Optional[str]:
        """Remote configuration content, or None when the store has none"""
        raw_objects = self.store.query(ResourceType.CONFIGMAP.value, app_name)
        obj = select_native([load_object(raw) for raw in raw_objects])
        if obj is None:
            return None
        return render_config(obj, app_name)

    def sync_config(self, app_name: str) -> ReconcileResult:
        """Bring the local file in line with the remote object (no process action)"""
        path = fileutil.conf_path(self.conf_dir, app_name)
        remote = self.remote_config(app_name)
        local_exists = fileutil.check_file_exists(path)

        if remote is None:
            action = ConfigAction.LOCAL_ONLY if local_exists else ConfigAction.ABSENT
            return ReconcileResult(app_name, action, path)

        if not local_exists:
            fileutil.write_file_atomic(path, remote)
            logger.info(f"Created {path} from remote configuration")
            return ReconcileResult(app_name, ConfigAction.CREATED, path)

        if fileutil.contents_equal(fileutil.read_file(path), remote):
            logger.debug(f"{path} matches remote configuration")
            return ReconcileResult(app_name, ConfigAction.UNCHANGED, path)

        backup = fileutil.backup_file(path)
        fileutil.write_file_atomic(path, remote)
        logger.info(f"Replaced {path} with remote configuration")
        return ReconcileResult(app_name, ConfigAction.REPLACED, path, backup_file=backup)

    def reconcile_update(self, command: AppCommand) -> ReconcileResult:
        """Apply an update: sync configuration, reload if it changed, restart."""
        result = self.sync_config(command.name)
        if result.action is ConfigAction.ABSENT:
            raise FileIOFailure(f"no configuration available for {command.name}")
        if result.action is ConfigAction.REPLACED:
            self.backend.reload(command)

        self.restart(command)
        result.started = True
        return result

    def reconcile_insert(self, command: AppCommand) -> ReconcileResult:
        """Apply an insert: materialise remote configuration if any, then start.

        An application without any configuration is started as is. A process
        already running is left alone unless its configuration was replaced.
        """
        result = self.sync_config(command.name)
        if result.action is ConfigAction.REPLACED:
            self.backend.reload(command)
            self.restart(command)
            result.started = True
            return result

        if self.backend.find(command) is not None:
            logger.info(f"{command.name} is already running, nothing to start")
            return result

        self.backend.start(command)
        result.started = True
        return result

    def restart(self, command: AppCommand) -> None:
        """Stop the application if it is running, then start it"""
        if self.backend.find(command) is not None:
            logger.info(f"Stopping {command.name} before restart")
            self.backend.stop(command)
        self.backend.start(command)
