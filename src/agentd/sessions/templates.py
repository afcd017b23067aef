import getpass
import logging
import os
import platform
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from agentd.errors import CorruptRecord, TemplateNotFound
from common.fileio import load_yaml
from common.text_template import render_template

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".yaml", ".yml")


@dataclass(frozen=True)
class AgentTemplate:
    name: str
    path: Path
    system_prompt: str = ""
    description: str | None = None
    model: str | None = None
    tools: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()


def normalize_template_name(name: str) -> str:
    name = name.strip()
    if name.startswith("@"):
        name = name[1:]
    for suffix in TEMPLATE_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def host_variables(root_path: str | Path | None = None) -> dict[str, str]:
    """Variables available to system prompts as ${name}."""
    try:
        user = getpass.getuser()
    except Exception:
        user = os.environ.get("USER", "unknown")
    variables = {f"env.{key}": value for key, value in os.environ.items()}
    variables.update(
        {
            "os.platform": platform.system().lower(),
            "os.release": platform.release(),
            "os.arch": platform.machine(),
            "os.hostname": socket.gethostname(),
            "os.user": user,
            "os.home": str(Path.home()),
        }
    )
    if root_path is not None:
        variables["root_path"] = str(root_path)
    return variables


def _parse_template(name: str, path: Path, data: Any) -> AgentTemplate:
    if not isinstance(data, dict):
        raise CorruptRecord(f"Template {path} is not a mapping")
    metadata = data.get("metadata") or {}
    spec = data.get("spec") or {}
    if not isinstance(metadata, dict) or not isinstance(spec, dict):
        raise CorruptRecord(f"Template {path} has invalid metadata/spec sections")

    return AgentTemplate(
        name=name,
        path=path,
        system_prompt=str(spec.get("systemPrompt") or ""),
        description=metadata.get("description"),
        model=metadata.get("model"),
        tools=tuple(str(t) for t in metadata.get("tools") or ()),
        labels=tuple(str(label) for label in metadata.get("labels") or ()),
    )


class TemplateRegistry:
    def __init__(self, templates_dir: str | Path, root_path: str | Path | None = None):
        self.templates_dir = Path(templates_dir)
        self.root_path = Path(root_path) if root_path is not None else None

    def _path_for(self, name: str) -> Path | None:
        for suffix in TEMPLATE_SUFFIXES:
            candidate = self.templates_dir / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def get(self, name: str) -> AgentTemplate:
        name = normalize_template_name(name)
        path = self._path_for(name)
        if path is None:
            raise TemplateNotFound(f"Agent template '{name}' not found in {self.templates_dir}")
        try:
            data = load_yaml(path)
        except yaml.YAMLError as e:
            raise CorruptRecord(f"Template {path} is not valid YAML: {e}") from e
        return _parse_template(name, path, data)

    def list(self) -> list[AgentTemplate]:
        if not self.templates_dir.exists():
            logger.warning(f"Templates directory not found: {self.templates_dir}")
            return []
        templates: list[AgentTemplate] = []
        for path in sorted(self.templates_dir.iterdir()):
            if path.suffix not in TEMPLATE_SUFFIXES or path.name.startswith("README"):
                continue
            try:
                templates.append(self.get(path.stem))
            except CorruptRecord as e:
                logger.warning(f"Skipping template {path.name}: {e}")
        return templates

    def render_system_prompt(self, template: AgentTemplate) -> str:
        return render_template(
            template.system_prompt,
            variables=host_variables(self.root_path),
            cwd=os.getcwd(),
        )
