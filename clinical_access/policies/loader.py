"""YAML policy template catalogue loader with integrity hash."""

import hashlib
from pathlib import Path
from typing import Any

import yaml

from clinical_access.policies.config import parse_policy_config
from clinical_access.policies.models import PolicyEffect, PolicyType

TEMPLATES_DIR = Path(__file__).parent / "templates"
DEFAULT_CATALOGUE = "policy-templates.yaml"


def compute_catalogue_hash(content: str) -> str:
    """Compute SHA256 hash of the raw catalogue text."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _check_template(entry: dict[str, Any]) -> dict[str, Any]:
    policy_type = PolicyType(entry["policy_type"])
    effects = [PolicyEffect(e) for e in entry.get("available_effects", [])]
    if not effects:
        raise ValueError(f"Template {policy_type.value} lists no effects")
    # Examples must be usable as-is
    parse_policy_config(policy_type, entry.get("example_configuration"))
    return {
        "policy_type": policy_type,
        "display_name": entry.get("display_name", policy_type.value),
        "description": entry.get("description", ""),
        "available_effects": effects,
        "default_priority": int(entry.get("default_priority", 0)),
        "example_configuration": entry.get("example_configuration", {}),
    }


def load_catalogue(
    filename: str = DEFAULT_CATALOGUE,
    templates_dir: Path | None = None,
) -> tuple[dict[str, Any], str]:
    """Load and check a template catalogue.

    Args:
        filename: Catalogue file name
        templates_dir: Directory holding catalogues (defaults to the bundled one)

    Returns:
        Tuple of (catalogue dict with checked ``templates``, SHA256 hash)

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the YAML is invalid
        ValueError: If a template is inconsistent
    """
    filepath = (templates_dir or TEMPLATES_DIR) / filename
    if not filepath.exists():
        raise FileNotFoundError(f"Template catalogue not found: {filepath}")

    content = filepath.read_text(encoding="utf-8")
    catalogue = yaml.safe_load(content) or {}
    catalogue["templates"] = [_check_template(t) for t in catalogue.get("templates", [])]
    return catalogue, compute_catalogue_hash(content)


class TemplateCatalogue:
    """Catalogue loader that reads the file once."""

    def __init__(self, templates_dir: Path | None = None, filename: str = DEFAULT_CATALOGUE) -> None:
        self.templates_dir = templates_dir or TEMPLATES_DIR
        self.filename = filename
        self._catalogue: dict[str, Any] | None = None
        self._hash: str | None = None

    def _load(self) -> None:
        self._catalogue, self._hash = load_catalogue(self.filename, self.templates_dir)

    @property
    def templates(self) -> list[dict[str, Any]]:
        if self._catalogue is None:
            self._load()
        return self._catalogue["templates"]  # type: ignore[index]

    @property
    def catalogue_hash(self) -> str:
        if self._hash is None:
            self._load()
        return self._hash  # type: ignore[return-value]

    @property
    def version(self) -> str:
        if self._catalogue is None:
            self._load()
        return str(self._catalogue.get("version", "unknown"))  # type: ignore[union-attr]

    def get(self, policy_type: PolicyType) -> dict[str, Any] | None:
        """Template for one policy type, if the catalogue has it."""
        for template in self.templates:
            if template["policy_type"] == policy_type:
                return template
        return None

    def default_priority(self, policy_type: PolicyType) -> int:
        template = self.get(policy_type)
        return template["default_priority"] if template else 0


template_catalogue = TemplateCatalogue()
