# fleet_engine/domain/templates/kinds.py
"""Build, start and migrate defaults per service kind."""

from dataclasses import dataclass
from typing import Dict, Tuple

from fleet_engine.manifest.schema import ServiceKind


@dataclass(frozen=True)
class KindDefaults:
    build_commands: Tuple[str, ...]
    start_command: str
    migrate_command: str

    def start_for(self, name: str) -> str:
        return self.start_command.format(name=name)

    def migrate_for(self, name: str) -> str:
        return self.migrate_command.format(name=name)


# {name} is the service name; manifest overrides are used verbatim.
# Relative executables resolve against the service working directory.
KIND_DEFAULTS: Dict[ServiceKind, KindDefaults] = {
    ServiceKind.COMPILED_BINARY: KindDefaults(
        build_commands=("make build",),
        start_command="bin/{name}",
        migrate_command="bin/{name} migrate",
    ),
    ServiceKind.INTERPRETED_RUNTIME: KindDefaults(
        build_commands=(
            "python3 -m venv .venv",
            ".venv/bin/pip install -r requirements.txt",
        ),
        start_command=".venv/bin/python main.py",
        migrate_command=".venv/bin/alembic upgrade head",
    ),
}


FRONTEND_DEFAULTS = KindDefaults(
    build_commands=("npm ci", "npm run build"),
    start_command="npm run start",
    migrate_command="",
)
