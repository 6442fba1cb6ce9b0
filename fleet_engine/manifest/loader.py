"""Manifest loading from JSON or YAML files."""

import json
import logging
from pathlib import Path

import yaml

from fleet_engine.core.errors import ValidationError
from fleet_engine.manifest.schema import FleetManifest
from fleet_engine.manifest.validator import validate

logger = logging.getLogger(__name__)


def load_manifest(path: Path) -> FleetManifest:
    """Read and validate a manifest file. A fresh load per run."""
    path = Path(path)
    if not path.is_file():
        raise ValidationError("$", f"manifest file {path} not found")

    text = path.read_text(encoding="utf-8")

    try:
        if path.suffix == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValidationError("$", f"cannot parse {path.name}: {e}")

    manifest = validate(raw)
    logger.info(f"[manifest] loaded {path} with {len(manifest.services)} service(s)")
    return manifest
