"""Unit, site and build-default templates."""

from .kinds import KIND_DEFAULTS, FRONTEND_DEFAULTS, KindDefaults
from .nginx import ACME_SERVER_TEMPLATE, SITE_HEADER, PLAIN_SERVER_TEMPLATE, TLS_SERVER_TEMPLATE
from .render import render_template
from .systemd import UNIT_TEMPLATE


__all__ = [
    "KIND_DEFAULTS",
    "FRONTEND_DEFAULTS",
    "KindDefaults",
    "ACME_SERVER_TEMPLATE",
    "SITE_HEADER",
    "PLAIN_SERVER_TEMPLATE",
    "TLS_SERVER_TEMPLATE",
    "UNIT_TEMPLATE",
    "render_template",
]
