"""
Script Templates

Shell scripts shipped in reshard/templates with %%NAME%% placeholders.
Rendering is a flat string substitution; a placeholder with no value is an
error rather than an empty string in a script that runs as root.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

_PLACEHOLDER = re.compile(r"%%([A-Z][A-Z0-9_]*)%%")


class TemplateError(Exception):
    pass


class ScriptTemplate:
    """An immutable, loaded script template."""

    def __init__(self, name: str, text: str):
        self._name = name
        self._text = text

    @property
    def name(self) -> str:
        return self._name

    @property
    def variables(self) -> set:
        return set(_PLACEHOLDER.findall(self._text))

    def render(self, values: Mapping[str, str]) -> str:
        missing = sorted(v for v in self.variables if values.get(v) is None)
        if missing:
            raise TemplateError(
                f"template {self._name} missing values for: {', '.join(missing)}"
            )

        return _PLACEHOLDER.sub(lambda m: str(values[m.group(1)]), self._text)

    def __repr__(self):
        return f"<ScriptTemplate {self._name}>"


def template_load(name: str, template_dir: Optional[Path] = None) -> ScriptTemplate:
    """
    Load a template by file name.

    Raises:
        TemplateError: If the file cannot be read
    """
    path = (template_dir or TEMPLATE_DIR) / name
    try:
        text = path.read_text()
    except OSError as e:
        raise TemplateError(f"loading template {name}: {e}") from e

    logger.debug(f"Loaded script template {name} ({len(text)} bytes)")
    return ScriptTemplate(name, text)


def load_templates(names, prefix: str = "", template_dir: Optional[Path] = None) -> Dict[str, ScriptTemplate]:
    """Load several templates, keyed by their short name."""
    return {
        name: template_load(f"{prefix}{name}.sh", template_dir)
        for name in names
    }
