import logging
import os
from copy import deepcopy
from enum import Enum
from pathlib import Path

from ocsf_schema_engine.diagnostics import Diagnostics
from ocsf_schema_engine.exceptions import DuplicateDefinitionError, SchemaException
from ocsf_schema_engine.includes import IncludeResolver, PathResolver
from ocsf_schema_engine.jsonish import FragmentLoader, JObject, json_type_from_value

logger = logging.getLogger(__name__)


class DuplicatePolicy(Enum):
    """What to do when two files in one scan define the same name."""

    ERROR = "error"
    WARN = "warn"  # warn, and the file found later in the walk wins


class ItemScanner:
    """
    Reads structured items (classes, objects, profiles) of one schema or extension
    directory. Each file is loaded, its includes are expanded, and it is stamped with
    its file origin in "_origin".
    """

    def __init__(
        self,
        loader: FragmentLoader,
        include_resolver: IncludeResolver,
        path_resolver: PathResolver,
        diagnostics: Diagnostics,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.ERROR,
        context: str = "base schema",
    ) -> None:
        self.loader = loader
        self.include_resolver = include_resolver
        self.path_resolver = path_resolver
        self.diagnostics = diagnostics
        self.duplicate_policy = duplicate_policy
        self.context = context

    def read_structured_items(self, base_path: Path, kind: str) -> JObject:
        """
        Read items found in the `kind` directory under `base_path`, recursively, and
        return them keyed by their "name".
        """
        items = {}
        for file_path, obj in self._read_files(base_path, kind):
            name = obj.get("name")
            # "No value" covers a missing key, JSON null, and empty values
            if not name:
                raise SchemaException(
                    f'The "name" value in {kind} file must have a value: {file_path}'
                )
            if not isinstance(name, str):
                raise SchemaException(
                    f'The "name" value in {kind} file must be a string,'
                    f" but got {json_type_from_value(name)}: {file_path}"
                )
            self._add(items, name, obj, f'{self.context} {kind} "{name}"', file_path)
        return items

    def read_patchable_structured_items(
        self, base_path: Path, kind: str
    ) -> tuple[JObject, JObject]:
        """
        Read extension items found in the `kind` directory under `base_path`. Returns
        a tuple of new items keyed by name and patches keyed by the name of the item
        they patch.
        """
        items = {}
        patches = {}
        for file_path, obj in self._read_files(base_path, kind):
            # A patch either has "extends" and no "name" (the common case), or has
            # "name" and "extends" with the same value.
            name = obj.get("name")
            extends = obj.get("extends")
            if not name and not extends:
                raise SchemaException(
                    f'Extension {kind} file does not have a "name" or "extends"'
                    f" value: {file_path}"
                )
            if name and not isinstance(name, str):
                raise SchemaException(
                    f'The "name" value in extension {kind} file must be a string,'
                    f" but got {json_type_from_value(name)}: {file_path}"
                )
            if extends and not isinstance(extends, str):
                raise SchemaException(
                    f'The "extends" value in extension {kind} file must be a'
                    f" string, but got {json_type_from_value(extends)}: {file_path}"
                )

            if not name or name == extends:
                context = f'{self.context} {kind} patch "{extends}"'
                self._add(patches, extends, obj, context, file_path)
            else:
                context = f'{self.context} {kind} "{name}"'
                self._add(items, name, obj, context, file_path)
        return items, patches

    def _read_files(self, base_path: Path, kind: str):
        item_path = base_path / kind
        for dir_path, dir_names, file_names in os.walk(item_path):
            # sort in place so the walk order, and thus "last wins", is stable
            dir_names.sort()
            for file_name in sorted(file_names):
                if not file_name.endswith(".json"):
                    continue
                file_path = Path(dir_path, file_name)
                obj = deepcopy(self.loader.read(file_path))
                self.include_resolver.resolve_includes(
                    obj,
                    f'{self.context} {kind} file "{file_path.name}"',
                    self.path_resolver,
                    origin=file_path,
                )
                obj["_origin"] = str(file_path)
                yield file_path, obj

    def _add(
        self, items: JObject, name: str, obj: JObject, context: str, file_path: Path
    ) -> None:
        if name in items:
            existing = items[name]
            message = (
                f'Collision of name in {context}: caption "{obj.get("caption", "")}"'
                f' collides with caption "{existing.get("caption", "")}" from'
                f" {existing.get('_origin')}, file: {file_path}"
            )
            if self.duplicate_policy is DuplicatePolicy.ERROR:
                raise DuplicateDefinitionError(message)
            self.diagnostics.warning("%s; the later definition wins", message)
        items[name] = obj
