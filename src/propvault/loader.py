"""
Initial load from a folder of environment directories:

    root/
      production/
        env.properties
        app-properties.properties
      staging/
        env.properties

Environments and files are read in sorted name order; that order is kept
on every property (`environment_order`, `file_order`, `line_order`).
A file that cannot be read is logged and skipped, the scan carries on.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List

from pydantic import BaseModel, Field

from .codec.text import parse, to_properties
from .core.property import Property

logger = logging.getLogger(__name__)

SUFFIX = ".properties"

# file stem -> component
COMPONENT_FILES: Dict[str, str] = {
    "env": "env",
    "app-properties": "app",
    "mail": "mail",
    "mylist-app": "mylist-app",
    "mylist-env": "mylist-env",
    "url": "url",
    "f4batch": "f4batch",
    "fax-properties": "fax",
    "gsearch": "gsearch",
    "monitoring-env": "monitoring-env",
}
_FILES_BY_COMPONENT = {component: stem for stem, component in COMPONENT_FILES.items()}


def component_for_file(filename: str) -> str:
    stem = filename[: -len(SUFFIX)] if filename.endswith(SUFFIX) else filename
    return COMPONENT_FILES.get(stem, stem)


def filename_for_component(component: str) -> str:
    return f"{_FILES_BY_COMPONENT.get(component, component)}{SUFFIX}"


class SourceFile(BaseModel):
    name: str
    path: str
    content: str
    file_order: int


class EnvironmentFolder(BaseModel):
    environment: str
    environment_order: int
    files: List[SourceFile] = Field(default_factory=list)


class ScanSummary(BaseModel):
    environments: List[str] = Field(default_factory=list)
    total_files: int = 0
    total_properties: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _read(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.error("failed to read %s: %s", path, exc)
        return None


def scan_folder(root: str | Path) -> List[EnvironmentFolder]:
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"{root} is not a directory")

    folders: List[EnvironmentFolder] = []
    skipped: List[str] = []
    for env_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        files: List[SourceFile] = []
        for path in sorted(env_dir.iterdir()):
            if not (path.is_file() and path.name.endswith(SUFFIX)):
                continue
            content = _read(path)
            if content is None:
                continue
            files.append(
                SourceFile(
                    name=path.name,
                    path=f"{env_dir.name}/{path.name}",
                    content=content,
                    file_order=len(files),
                )
            )
        if not files:
            skipped.append(env_dir.name)
            continue
        folders.append(
            EnvironmentFolder(
                environment=env_dir.name,
                environment_order=len(folders),
                files=files,
            )
        )
        logger.debug("%s: %d properties files", env_dir.name, len(files))

    if skipped:
        logger.warning("skipped directories without properties files: %s", skipped)
    return folders


def validate_folder(folders: Iterable[EnvironmentFolder]) -> ScanSummary:
    summary = ScanSummary()
    for folder in folders:
        summary.environments.append(folder.environment)
        if not folder.files:
            summary.errors.append(
                f"Environment '{folder.environment}' has no properties files"
            )
        summary.total_files += len(folder.files)
        summary.total_properties += sum(len(parse(f.content)) for f in folder.files)
    if not summary.environments:
        summary.errors.append("No environment folders found")
    return summary


def folders_to_properties(folders: Iterable[EnvironmentFolder]) -> List[Property]:
    """
    Flatten scanned folders into properties. Within one environment the
    first property with a given id wins; later ones are logged and dropped.
    """
    properties: List[Property] = []
    for folder in sorted(folders, key=lambda f: f.environment_order):
        seen: Dict[str, str] = {}
        for source in sorted(folder.files, key=lambda f: f.file_order):
            loaded = to_properties(
                parse(source.content),
                folder.environment,
                component_for_file(source.name),
                environment_order=folder.environment_order,
                file_order=source.file_order,
            )
            for prop in loaded:
                if prop.id in seen:
                    logger.warning(
                        "%s: key %r already loaded from %s, dropped",
                        source.path,
                        prop.key,
                        seen[prop.id],
                    )
                    continue
                seen[prop.id] = source.path
                properties.append(prop)
    return properties


def load_folder(root: str | Path) -> List[Property]:
    folders = scan_folder(root)
    summary = validate_folder(folders)
    for error in summary.errors:
        logger.error("folder validation: %s", error)
    logger.info(
        "scanned %d environments, %d files, %d properties",
        len(summary.environments),
        summary.total_files,
        summary.total_properties,
    )
    return folders_to_properties(folders)
