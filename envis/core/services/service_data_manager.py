"""
Service-data manager: CRUD and activation of ServiceData records.

Layout::

    {root}/envs/{env_id}/{type}/{version}/service.json

The folder holding ``service.json`` is also the instance's data folder:
default configuration files, database data directories, pid files and
logs of the running daemon all live there.  Deleting the ServiceData
removes the folder.
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from envis.core.config.app_config import AppConfigStore
from envis.core.errors import AlreadyExistsError, EnvisError, EnvisIOError, NotFoundError
from envis.core.models.base import sort_key
from envis.core.models.service import ServiceData, ServiceDataStatus, ServiceStatus, ServiceType
from envis.core.persistence.atomic import read_json, write_json
from envis.core.services import env_tables
from envis.core.services.installers.registry import InstallerRegistry
from envis.core.services.lifecycle import LifecycleDispatcher
from envis.core.services.metadata import MetadataContext, build_default_metadata

logger = logging.getLogger(__name__)

SERVICE_FILE = "service.json"
ENVIRONMENT_FILE = "environment.json"

# fields an update may touch; type and version are fixed at creation
_UPDATABLE = ("name", "status", "sort", "metadata")


class ServiceDataManager:
    def __init__(
        self,
        config: AppConfigStore,
        lifecycles: LifecycleDispatcher,
        installers: InstallerRegistry,
    ) -> None:
        self.config = config
        self.lifecycles = lifecycles
        self.installers = installers
        self._lock = threading.RLock()

    # ── Paths ───────────────────────────────────────────────────

    def env_dir(self, env_id: str) -> Path:
        return self.config.envs_folder / env_id

    def data_dir(self, env_id: str, service_data: ServiceData) -> Path:
        return self.env_dir(env_id) / service_data.service_type.dir_name / service_data.version

    def _record_path(self, env_id: str, service_data: ServiceData) -> Path:
        return self.data_dir(env_id, service_data) / SERVICE_FILE

    # ── Queries ─────────────────────────────────────────────────

    def get_environment_all_service_datas(self, env_id: str) -> list[ServiceData]:
        """Every ServiceData of ``env_id``; unreadable records are logged and skipped."""
        env_dir = self.env_dir(env_id)
        if not env_dir.is_dir():
            return []

        records: list[ServiceData] = []
        for record in sorted(env_dir.glob(f"*/*/{SERVICE_FILE}")):
            try:
                records.append(ServiceData.model_validate(read_json(record)))
            except (json.JSONDecodeError, ValidationError, OSError) as e:
                logger.warning("Skipping unreadable service record %s: %s", record, e)
        records.sort(key=sort_key)
        return records

    def get_service_data(self, env_id: str, service_data_id: str) -> ServiceData:
        for record in self.get_environment_all_service_datas(env_id):
            if record.id == service_data_id:
                return record
        raise NotFoundError(f"Service data '{service_data_id}' not found in environment {env_id}")

    def find_service_data(
        self,
        env_id: str,
        ref: str,
        version: str | None = None,
    ) -> ServiceData:
        """Look up by id, then by type tag (and version), then by name.

        Raises:
            NotFoundError: Nothing matches.
            EnvisError: A type or name matches several versions and none was given.
        """
        records = self.get_environment_all_service_datas(env_id)
        for record in records:
            if record.id == ref:
                return record

        matches = [
            r for r in records
            if (r.service_type.value == ref.lower() or r.name == ref)
            and (version is None or r.version == version)
        ]
        if not matches:
            suffix = f" {version}" if version else ""
            raise NotFoundError(f"No service '{ref}{suffix}' in this environment")
        if len(matches) > 1:
            versions = ", ".join(m.version for m in matches)
            raise EnvisError(f"'{ref}' is ambiguous ({versions}); give a version")
        return matches[0]

    # ── CRUD ────────────────────────────────────────────────────

    def create_service_data(
        self,
        env_id: str,
        service_type: ServiceType,
        version: str,
        name: str | None = None,
    ) -> ServiceData:
        """Create and persist a ServiceData with default metadata.

        Raises:
            NotFoundError: The environment does not exist.
            AlreadyExistsError: This (type, version) already exists in the environment.
        """
        with self._lock:
            if not (self.env_dir(env_id) / ENVIRONMENT_FILE).is_file():
                raise NotFoundError(f"Environment {env_id} not found")

            existing = self.get_environment_all_service_datas(env_id)
            sd = ServiceData(
                name=name or service_type.default_name,
                type=service_type,
                version=version,
            )
            if self._record_path(env_id, sd).exists():
                raise AlreadyExistsError(
                    f"{service_type.default_name} {version} already exists in this environment"
                )
            sorts = [r.sort for r in existing if r.sort is not None]
            sd.sort = (min(sorts) - 1) if sorts else 0

            maven_home = None
            if service_type == ServiceType.JAVA:
                maven_home = self.installers.get(ServiceType.JAVA).maven_home
            ctx = MetadataContext(
                sd,
                data_dir=self.data_dir(env_id, sd),
                install_dir=env_tables.install_dir(self.config.services_folder, service_type, version),
                maven_home=maven_home,
            )
            sd.metadata = build_default_metadata(ctx)
            self.save_service_data(env_id, sd)
            logger.info("Created %s %s (%s) in %s", sd.name, version, sd.id, env_id)
            return sd

    def save_service_data(self, env_id: str, service_data: ServiceData) -> None:
        path = self._record_path(env_id, service_data)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            write_json(path, service_data.to_json_dict())
        except OSError as e:
            raise EnvisIOError(f"Cannot save {path}: {e}") from e
        logger.debug("Saved %s", path)

    def update_service_data(self, env_id: str, service_data: ServiceData, **changes: Any) -> ServiceData:
        """Change name, status, sort or metadata; type and version are locked.

        Raises:
            EnvisError: An attempt to change a locked or unknown field.
        """
        bad = sorted(set(changes) - set(_UPDATABLE))
        if bad:
            raise EnvisError(f"Cannot update {', '.join(bad)} of a service data")
        with self._lock:
            current = self.get_service_data(env_id, service_data.id)
            for field, value in changes.items():
                if field == "status":
                    value = ServiceDataStatus(value)
                setattr(current, field, value)
            current.touch()
            self.save_service_data(env_id, current)
            return current

    def set_metadata(
        self,
        env_id: str,
        service_data: ServiceData,
        key: str,
        value: Any,
        password: str | None = None,
    ) -> ServiceData:
        """Store one metadata entry; an active service is re-applied.

        The old values are undone and the new ones applied inside one
        shell transaction, so every rc file is written once.
        """
        with self._lock:
            previous = service_data.model_copy(deep=True)
            service_data.metadata = dict(service_data.metadata or {})
            service_data.metadata[key] = value
            if service_data.is_active:
                lifecycle = self.lifecycles.for_type(service_data.service_type)
                with self.lifecycles.shell.transaction():
                    lifecycle.deactivate(env_id, previous, password)
                    lifecycle.activate(env_id, service_data, password)
            service_data.touch()
            self.save_service_data(env_id, service_data)
            return service_data

    def delete_service_data(self, env_id: str, service_data: ServiceData) -> None:
        folder = self.data_dir(env_id, service_data)
        with self._lock:
            if not folder.exists():
                raise NotFoundError(f"{service_data.name} {service_data.version} not found in {env_id}")
            try:
                shutil.rmtree(folder)
            except OSError as e:
                raise EnvisIOError(f"Cannot delete {folder}: {e}") from e
            type_dir = folder.parent
            if type_dir.is_dir() and not any(type_dir.iterdir()):
                type_dir.rmdir()
        logger.info("Deleted %s %s from %s", service_data.name, service_data.version, env_id)

    # ── Activation ──────────────────────────────────────────────

    def activate_service_data(
        self,
        env_id: str,
        service_data: ServiceData,
        password: str | None = None,
    ) -> ServiceData:
        lifecycle = self.lifecycles.for_type(service_data.service_type)
        with self._lock:
            lifecycle.activate(env_id, service_data, password)
            service_data.status = ServiceDataStatus.ACTIVE
            service_data.touch()
            self.save_service_data(env_id, service_data)
        logger.info("Activated %s %s", service_data.name, service_data.version)
        return service_data

    def deactivate_service_data(
        self,
        env_id: str,
        service_data: ServiceData,
        password: str | None = None,
    ) -> ServiceData:
        lifecycle = self.lifecycles.for_type(service_data.service_type)
        with self._lock:
            lifecycle.deactivate(env_id, service_data, password)
            service_data.status = ServiceDataStatus.INACTIVE
            service_data.touch()
            self.save_service_data(env_id, service_data)
        logger.info("Deactivated %s %s", service_data.name, service_data.version)
        return service_data

    # ── Installer-backed operations ─────────────────────────────

    def initialize_service_data(self, env_id: str, service_data: ServiceData, **options: Any) -> ServiceData:
        """Run the type's initialise step and merge the metadata it returns."""
        installer = self.installers.get(service_data.service_type)
        updates = installer.initialize(service_data, self.data_dir(env_id, service_data), **options)
        with self._lock:
            service_data.metadata = {**(service_data.metadata or {}), **updates}
            service_data.touch()
            self.save_service_data(env_id, service_data)
        return service_data

    def start_service(self, env_id: str, service_data: ServiceData) -> dict[str, Any]:
        installer = self.installers.get(service_data.service_type)
        return installer.start(service_data, self.data_dir(env_id, service_data))

    def stop_service(self, env_id: str, service_data: ServiceData) -> bool:
        installer = self.installers.get(service_data.service_type)
        return installer.stop(service_data, self.data_dir(env_id, service_data))

    def restart_service(self, env_id: str, service_data: ServiceData) -> dict[str, Any]:
        installer = self.installers.get(service_data.service_type)
        return installer.restart(service_data, self.data_dir(env_id, service_data))

    def service_status(self, env_id: str, service_data: ServiceData) -> ServiceStatus:
        if service_data.service_type not in self.installers:
            return ServiceStatus.UNKNOWN
        installer = self.installers.get(service_data.service_type)
        return installer.status(service_data, self.data_dir(env_id, service_data))
