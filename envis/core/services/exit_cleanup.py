"""
Exit cleanup: what happens to the shell state when envis is told to quit.
"""

from __future__ import annotations

import logging

from envis.core.config.app_config import AppConfigStore
from envis.core.errors import EnvisError
from envis.core.services.environment_manager import EnvironmentManager
from envis.core.shell.writer import ShellBlockWriter

logger = logging.getLogger(__name__)


def run_exit_cleanup(
    config: AppConfigStore,
    environments: EnvironmentManager,
    shell: ShellBlockWriter,
) -> bool:
    """Remember the active environments, then tear them down if configured.

    The active ids are always written to ``last_used_environment_ids``.
    With ``stop_all_services_on_exit`` off nothing else happens and False
    is returned.  Otherwise each active environment is deactivated (a
    failure is logged and the sweep continues), the shell block is cleared
    and True is returned.
    """
    active = environments.active_environments()
    remembered = environments.remember_active()

    if not config.get().stop_all_services_on_exit:
        logger.debug("stop_all_services_on_exit is off, leaving %d environment(s) active", len(active))
        return False

    for env in active:
        try:
            environments.deactivate_environment_and_services(env)
        except EnvisError as e:
            logger.error("Failed to deactivate %s on exit: %s", env.name, e)

    # deactivation rewrote last_used; restore the ids active at exit
    config.record_used_environments(remembered)
    shell.clear_block_content()
    logger.info("Exit cleanup finished for %d environment(s)", len(active))
    return True
