"""
Environment manager: CRUD of environments and whole-environment activation.

Each environment lives at ``{root}/envs/{id}/environment.json``; its
service-data records sit in sub-folders of the same directory.

Activating an environment rewrites the shell block from scratch: the
block is cleared, the optional greeting is written, and then (through
``activate_environment_and_services``) every service-data that was
active when the environment was last used is re-applied.
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from pathlib import Path

from pydantic import ValidationError

from envis.core.config.app_config import AppConfigStore
from envis.core.errors import AlreadyExistsError, EnvisError, EnvisIOError, NotFoundError
from envis.core.models.base import sort_key
from envis.core.models.environment import Environment, EnvironmentStatus
from envis.core.models.service import ServiceData, ServiceDataStatus
from envis.core.persistence.atomic import read_json, write_json
from envis.core.services.service_data_manager import ENVIRONMENT_FILE, ServiceDataManager
from envis.core.shell.writer import ShellBlockWriter

logger = logging.getLogger(__name__)


class EnvironmentManager:
    def __init__(
        self,
        config: AppConfigStore,
        shell: ShellBlockWriter,
        service_datas: ServiceDataManager,
    ) -> None:
        self.config = config
        self.shell = shell
        self.service_datas = service_datas
        self._lock = threading.RLock()

    def _record_path(self, env_id: str) -> Path:
        return self.config.envs_folder / env_id / ENVIRONMENT_FILE

    # ── Queries ─────────────────────────────────────────────────

    def get_all_environments(self) -> list[Environment]:
        envs_folder = self.config.envs_folder
        if not envs_folder.is_dir():
            return []

        environments: list[Environment] = []
        for record in sorted(envs_folder.glob(f"*/{ENVIRONMENT_FILE}")):
            try:
                environments.append(Environment.model_validate(read_json(record)))
            except (json.JSONDecodeError, ValidationError, OSError) as e:
                logger.warning("Skipping unreadable environment %s: %s", record, e)
        environments.sort(key=sort_key)
        return environments

    def get_environment(self, env_id: str) -> Environment:
        path = self._record_path(env_id)
        if not path.is_file():
            raise NotFoundError(f"Environment '{env_id}' not found")
        try:
            return Environment.model_validate(read_json(path))
        except (json.JSONDecodeError, ValidationError) as e:
            raise EnvisIOError(f"Cannot read {path}: {e}") from e

    def find_environment(self, name_or_id: str) -> Environment:
        """Resolve by id first, then by exact name."""
        environments = self.get_all_environments()
        for env in environments:
            if env.id == name_or_id:
                return env
        for env in environments:
            if env.name == name_or_id:
                return env
        raise NotFoundError(f"Environment '{name_or_id}' not found")

    def active_environments(self) -> list[Environment]:
        return [env for env in self.get_all_environments() if env.is_active]

    # ── CRUD ────────────────────────────────────────────────────

    def create_environment(self, name: str, is_default: bool = False) -> Environment:
        """Create an environment; names must be unique.

        Raises:
            EnvisError: Empty name.
            AlreadyExistsError: Another environment already uses ``name``.
        """
        name = name.strip()
        if not name:
            raise EnvisError("Environment name must not be empty")
        with self._lock:
            existing = self.get_all_environments()
            if any(env.name == name for env in existing):
                raise AlreadyExistsError(f"Environment '{name}' already exists")
            sorts = [env.sort for env in existing if env.sort is not None]
            env = Environment(
                name=name,
                is_default=is_default or None,
                sort=(max(sorts) + 1) if sorts else 0,
            )
            self.save_environment(env)
        logger.info("Created environment %s (%s)", env.name, env.id)
        return env

    def save_environment(self, env: Environment) -> None:
        path = self._record_path(env.id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            write_json(path, env.to_json_dict())
        except OSError as e:
            raise EnvisIOError(f"Cannot save {path}: {e}") from e

    def rename_environment(self, env: Environment, name: str) -> Environment:
        name = name.strip()
        if not name:
            raise EnvisError("Environment name must not be empty")
        with self._lock:
            if any(other.name == name and other.id != env.id for other in self.get_all_environments()):
                raise AlreadyExistsError(f"Environment '{name}' already exists")
            env.name = name
            env.touch()
            self.save_environment(env)
        return env

    def delete_environment(self, env: Environment, password: str | None = None) -> None:
        """Remove the environment folder, deactivating it first if it is active."""
        with self._lock:
            if env.is_active:
                self.deactivate_environment_and_services(env, password)
            folder = self.config.envs_folder / env.id
            if not folder.is_dir():
                raise NotFoundError(f"Environment '{env.id}' not found")
            try:
                shutil.rmtree(folder)
            except OSError as e:
                raise EnvisIOError(f"Cannot delete {folder}: {e}") from e
        logger.info("Deleted environment %s (%s)", env.name, env.id)

    # ── Activation ──────────────────────────────────────────────

    def activate_environment(self, env: Environment) -> Environment:
        """Clear the shell block, write the greeting if enabled, mark active."""
        show_greeting = self.config.get().show_environment_name_on_terminal_open
        with self._lock:
            with self.shell.transaction():
                self.shell.clear_block_content()
                if show_greeting:
                    self.shell.add_echo_environment(env.name, env.id)
            env.status = EnvironmentStatus.ACTIVE
            env.touch()
            self.save_environment(env)
        logger.info("Activated environment %s", env.name)
        return env

    def deactivate_environment(self, env: Environment) -> Environment:
        with self._lock:
            self.shell.clear_block_content()
            env.status = EnvironmentStatus.INACTIVE
            env.touch()
            self.save_environment(env)
        logger.info("Deactivated environment %s", env.name)
        return env

    def activate_environment_and_services(
        self,
        env: Environment,
        password: str | None = None,
    ) -> list[ServiceData]:
        """Activate ``env`` and re-apply its previously active services.

        With ``deactivate_other_environments_on_activate`` set, every other
        active environment (and its services' hosts entries) is deactivated
        first.  Returns the services that were activated.
        """
        config = self.config.get()
        with self._lock:
            if config.deactivate_other_environments_on_activate:
                for other in self.active_environments():
                    if other.id != env.id:
                        self._deactivate_services(other, password)
                        self.deactivate_environment(other)

            self.activate_environment(env)
            activated = []
            for sd in self.service_datas.get_environment_all_service_datas(env.id):
                if sd.status != ServiceDataStatus.ACTIVE:
                    continue
                self.service_datas.activate_service_data(env.id, sd, password)
                activated.append(sd)
            self.remember_active(env.id)
        return activated

    def deactivate_environment_and_services(
        self,
        env: Environment,
        password: str | None = None,
    ) -> Environment:
        """Undo every active service, then clear the block.

        Service statuses are kept so the next activation restores them.
        """
        with self._lock:
            self._deactivate_services(env, password)
            self.deactivate_environment(env)
            self.remember_active()
        return env

    def _deactivate_services(self, env: Environment, password: str | None) -> None:
        # statuses stay Active so the next activation restores the same set
        for sd in self.service_datas.get_environment_all_service_datas(env.id):
            if sd.status == ServiceDataStatus.ACTIVE:
                self.service_datas.lifecycles.for_type(sd.service_type).deactivate(env.id, sd, password)

    def remember_active(self, latest: str | None = None) -> list[str]:
        """Record the active ids, most recently activated first."""
        active = [env.id for env in self.active_environments()]
        previous = self.config.get().last_used_environment_ids
        ordered = [latest] if latest in active else []
        for env_id in [*previous, *active]:
            if env_id in active and env_id not in ordered:
                ordered.append(env_id)
        self.config.record_used_environments(ordered)
        return ordered

    # ── Start-up ────────────────────────────────────────────────

    def restore_last_used(self, password: str | None = None) -> list[Environment]:
        """Re-activate ``last_used_environment_ids`` when auto-activation is on.

        Missing ids and activation failures are logged and skipped.
        """
        config = self.config.get()
        if not config.auto_activate_last_used_environment_on_app_start:
            return []
        restored = []
        # oldest first, so the most recent one ends up at the front again
        for env_id in reversed(config.last_used_environment_ids):
            try:
                env = self.get_environment(env_id)
                if env.is_active:
                    continue
                self.activate_environment_and_services(env, password)
                restored.append(env)
            except EnvisError as e:
                logger.warning("Could not restore environment %s: %s", env_id, e)
        return restored
