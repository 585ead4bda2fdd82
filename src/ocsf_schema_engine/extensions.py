import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from ocsf_schema_engine.exceptions import (
    GraphIntegrityError,
    ParseError,
    SchemaException,
)
from ocsf_schema_engine.jsonish import (
    JObject,
    json_type_from_value,
    read_json_object_file,
)

logger = logging.getLogger(__name__)

EXTENSION_MANIFEST = "extension.json"
VERSION_MANIFEST = "version.json"


@dataclass(frozen=True)
class Extension:
    name: str
    uid: int
    path: Path
    version: Optional[str] = None
    caption: Optional[str] = None
    description: Optional[str] = None
    is_platform_extension: bool = False

    def to_json(self) -> JObject:
        return {
            "uid": self.uid,
            "name": self.name,
            "platform_extension?": self.is_platform_extension,
            "caption": self.caption,
            "description": self.description,
            "version": self.version,
            "path": str(self.path),
        }


def find_manifest(directory: Path) -> Optional[Path]:
    """
    Return the manifest marking directory as an extension, if any. A "version.json"
    declaring both "name" and "uid" is checked first (a schema's own version.json
    declares neither); otherwise an "extension.json" marks an extension.
    """
    version_manifest = directory / VERSION_MANIFEST
    if version_manifest.is_file():
        try:
            info = read_json_object_file(version_manifest)
        except ParseError as e:
            logger.warning(
                "Ignoring unreadable version file %s: %s", version_manifest, e
            )
        else:
            if "name" in info and "uid" in info:
                return version_manifest
    extension_manifest = directory / EXTENSION_MANIFEST
    if extension_manifest.is_file():
        return extension_manifest
    return None


def read_extension(
    manifest: Path,
    is_platform_extension: bool = False,
    schema_version: Optional[str] = None,
) -> Extension:
    info = read_json_object_file(manifest)

    uid = info.get("uid")
    name = info.get("name")
    if not isinstance(uid, int) or isinstance(uid, bool):
        t = json_type_from_value(uid)
        raise SchemaException(
            f'The extension "uid" must be an integer but got {t}: {manifest}'
        )
    if not isinstance(name, str) or not name:
        t = json_type_from_value(name)
        raise SchemaException(
            f'The extension "name" must be a non-empty string but got {t}: {manifest}'
        )
    if "/" in name:
        raise SchemaException(f'The extension "name" must not contain "/": {manifest}')

    version = info.get("version")
    if version is None:
        # an extension without its own version follows the schema
        version = schema_version

    return Extension(
        name=name,
        uid=uid,
        path=manifest.parent,
        version=version,
        caption=info.get("caption"),
        description=info.get("description"),
        is_platform_extension=is_platform_extension,
    )


def locate_extensions(
    home: Path,
    paths: Iterable[Path],
    is_platform_extension: bool = False,
    schema_version: Optional[str] = None,
) -> list[Extension]:
    """
    Discover extensions in each of paths. A path that does not exist as given is
    taken relative to home. A directory with a manifest is one extension and is not
    searched further; other directories are searched recursively. Invalid paths are
    logged and skipped. The result holds each extension directory once, in discovery
    order.
    """
    manifests: dict[Path, Path] = {}
    for path in paths:
        path = Path(path)
        candidate = (path if path.exists() else home / path).resolve()
        if candidate.is_file() and candidate.name in (
            EXTENSION_MANIFEST,
            VERSION_MANIFEST,
        ):
            manifest = find_manifest(candidate.parent)
            if manifest:
                manifests.setdefault(candidate.parent, manifest)
                continue
        if candidate.is_dir():
            _search(candidate, manifests)
        else:
            logger.warning("Ignoring invalid extension path: %s", candidate)

    extensions = []
    for directory, manifest in manifests.items():
        extension = read_extension(manifest, is_platform_extension, schema_version)
        if is_platform_extension:
            logger.info(
                'Found platform extension "%s" in directory: %s',
                extension.name,
                directory,
            )
        else:
            logger.info(
                'Found extension "%s" in directory: %s', extension.name, directory
            )
        extensions.append(extension)
    return extensions


def _search(directory: Path, manifests: dict[Path, Path]) -> None:
    manifest = find_manifest(directory)
    if manifest:
        manifests.setdefault(directory, manifest)
        return
    for child in sorted(directory.iterdir()):
        if child.is_dir():
            _search(child, manifests)


def validate_extensions(extensions: list[Extension]) -> None:
    """Extension names and uids must be unique among everything being compiled."""
    by_uid: dict[int, Extension] = {}
    by_name: dict[str, Extension] = {}
    for extension in extensions:
        if extension.uid in by_uid:
            other = by_uid[extension.uid]
            raise GraphIntegrityError(
                f'Collision of extension uid {extension.uid}: extension'
                f' "{extension.name}" at {extension.path} and extension'
                f' "{other.name}" at {other.path}'
            )
        if extension.name in by_name:
            other = by_name[extension.name]
            raise GraphIntegrityError(
                f'Collision of extension name "{extension.name}": {extension.path}'
                f" and {other.path}"
            )
        by_uid[extension.uid] = extension
        by_name[extension.name] = extension
