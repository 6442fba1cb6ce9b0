# fleet_engine/infrastructure/nginx.py
"""nginx control adapter."""

import logging

from fleet_engine.core.capabilities import EdgeRouterController
from fleet_engine.infrastructure.shell import CommandRunner, run_command

logger = logging.getLogger(__name__)


class NginxController(EdgeRouterController):

    def __init__(self, nginx_bin: str = "nginx", runner: CommandRunner = run_command):
        self.nginx_bin = nginx_bin
        self._run = runner

    def test(self) -> None:
        self._run([self.nginx_bin, "-t", "-q"])

    def reload(self) -> None:
        # SIGHUP: workers finish in-flight requests
        self._run([self.nginx_bin, "-s", "reload"])
        logger.info("[nginx] reloaded")
