# fleet_engine/infrastructure/certbot.py
"""certbot-backed certificate authority using the webroot challenge."""

import logging
from pathlib import Path

from fleet_engine.core.capabilities import CertificateAuthority
from fleet_engine.core.errors import CertificateError, CommandError
from fleet_engine.infrastructure.shell import CommandRunner, run_command

logger = logging.getLogger(__name__)


# Failures that will not go away by asking again
_PERMANENT_MARKERS = (
    "unauthorized",
    "nxdomain",
    "dns problem",
    "rejectedidentifier",
    "caa record",
    "invalid email",
)


def is_transient_failure(output: str) -> bool:
    lowered = output.lower()
    return not any(marker in lowered for marker in _PERMANENT_MARKERS)


class CertbotAuthority(CertificateAuthority):

    def __init__(
        self,
        email: str,
        webroot: Path,
        certbot_bin: str = "certbot",
        runner: CommandRunner = run_command,
        timeout: int = 300,
    ):
        self.email = email
        self.webroot = Path(webroot)
        self.certbot_bin = certbot_bin
        self._run = runner
        self.timeout = timeout

    def issue(self, hostname: str, *, renew: bool = False) -> None:
        self.webroot.mkdir(parents=True, exist_ok=True)
        args = [
            self.certbot_bin, "certonly",
            "--webroot", "-w", str(self.webroot),
            "-d", hostname,
            "--cert-name", hostname,
            "--email", self.email,
            "--agree-tos",
            "--non-interactive",
            "--keep-until-expiring",
        ]
        if renew:
            args.append("--force-renewal")

        logger.info(f"[certbot] {'renewing' if renew else 'issuing'} {hostname}")
        try:
            self._run(args, timeout=self.timeout)
        except CommandError as e:
            output = f"{e.stderr}\n{e.stdout}".strip()
            last_line = output.splitlines()[-1] if output else str(e)
            raise CertificateError(
                hostname,
                last_line,
                retryable=is_transient_failure(output),
            ) from e
