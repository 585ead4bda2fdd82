import logging
from copy import deepcopy
from pathlib import Path
from typing import Callable, Optional, TypeAlias

from ocsf_schema_engine.diagnostics import Diagnostics
from ocsf_schema_engine.exceptions import (
    GraphIntegrityError,
    ParseError,
    SchemaException,
    UnresolvedReferenceError,
)
from ocsf_schema_engine.jsonish import FragmentLoader, JObject, json_type_from_value
from ocsf_schema_engine.utils import deep_merge

logger = logging.getLogger(__name__)

PathResolver: TypeAlias = Callable[[str], Path]


def schema_path_resolver(schema_path: Path) -> PathResolver:
    """Include paths of the base schema are relative to the schema directory."""

    def resolve(file_name: str) -> Path:
        return schema_path / file_name

    return resolve


def extension_path_resolver(extension_path: Path, schema_path: Path) -> PathResolver:
    """
    Include paths of an extension are relative to the extension directory, falling
    back to the schema directory.
    """

    def resolve(file_name: str) -> Path:
        path = extension_path / file_name
        if path.is_file():
            return path
        path = schema_path / file_name
        if path.is_file():
            return path
        raise FileNotFoundError(
            f'"$include" {file_name} not found in extension directory'
            f" {extension_path} or schema directory {schema_path}"
        )

    return resolve


class IncludeResolver:
    """
    Expands "$include" directives. Two forms are supported, and both merge the same
    way: the included content is the base and what the including item already defines
    wins.

    An include directly under "attributes" pulls in the "attributes" of another file,
    typically a profile:
    {
       "name": "foo",
       "attributes": {
          "$include": ["profiles/bar.json", "profiles/baz.json"],
          "qux": {...}
       }
    }

    An include inside one attribute merges the whole included file into that
    attribute, typically a shared enum:
    {
       "attributes": {
          "baz_id": {"$include": "enums/baz.json", "requirement": "required"}
       }
    }

    Either value may be a single path or a list of paths. Lists are applied left to
    right, so the first file fills gaps first and later files only fill what is still
    missing. Included files may themselves contain "$include", which is expanded before
    merging.
    """

    def __init__(self, loader: FragmentLoader, diagnostics: Diagnostics) -> None:
        self.loader = loader
        self.diagnostics = diagnostics

    def resolve_includes(
        self,
        item: JObject,
        context: str,
        path_resolver: PathResolver,
        origin: Optional[Path] = None,
    ) -> JObject:
        stack = (origin.resolve(),) if origin else ()
        self._resolve(item, context, path_resolver, stack)
        return item

    def _resolve(
        self,
        item: JObject,
        context: str,
        path_resolver: PathResolver,
        stack: tuple[Path, ...],
    ) -> None:
        attributes = item.get("attributes")
        if not isinstance(attributes, dict):
            return

        if "$include" in attributes:
            sub_context = f"{context} attributes.$include"
            include_value = attributes.pop("$include")
            for file_name in self._include_file_names(include_value, sub_context):
                included = self._read_include(
                    file_name, sub_context, path_resolver, stack
                )
                if included is not None:
                    self._merge_attributes_include(item, included, sub_context)

        # attributes may have been replaced by the merge above
        attributes = item["attributes"]
        for attribute_name, attribute in list(attributes.items()):
            if isinstance(attribute, dict) and "$include" in attribute:
                sub_context = f"{context} attributes.{attribute_name}.$include"
                include_value = attribute.pop("$include")
                merged = attribute
                for file_name in self._include_file_names(include_value, sub_context):
                    included = self._read_include(
                        file_name, sub_context, path_resolver, stack
                    )
                    if included is not None:
                        included.pop("attributes", None)
                        deep_merge(included, merged)
                        merged = included
                attributes[attribute_name] = merged

    @staticmethod
    def _include_file_names(include_value, context: str) -> list[str]:
        if isinstance(include_value, str):
            return [include_value]
        if isinstance(include_value, list) and all(
            isinstance(v, str) for v in include_value
        ):
            return include_value
        raise SchemaException(
            f"Illegal {context} value type: expected string or array of strings, but"
            f" got {json_type_from_value(include_value)}"
        )

    def _read_include(
        self,
        file_name: str,
        context: str,
        path_resolver: PathResolver,
        stack: tuple[Path, ...],
    ) -> Optional[JObject]:
        try:
            path = path_resolver(file_name).resolve()
            fragment = self.loader.read(path)
        except (OSError, ParseError) as e:
            self.diagnostics.unresolved_reference(
                UnresolvedReferenceError(
                    f'{context} "{file_name}" cannot be included; using local'
                    f" definition as-is: {e}"
                )
            )
            return None

        if path in stack:
            chain = " -> ".join(str(p) for p in stack + (path,))
            raise GraphIntegrityError(f"Cyclic $include detected in {context}: {chain}")

        logger.debug("%s: including %s", context, path)
        included = deepcopy(fragment)
        self._resolve(
            included, f'include "{file_name}"', path_resolver, stack + (path,)
        )
        return included

    def _merge_attributes_include(
        self, item: JObject, included: JObject, context: str
    ) -> None:
        if "attributes" not in included:
            self.diagnostics.warning(
                "%s: include file suspiciously has no attributes", context
            )
            return

        attributes = included["attributes"]
        if included.get("meta") == "profile":
            if "name" not in included:
                raise SchemaException(f'Profile "name" is missing in {context}')
            profile_name = included["name"]
            for attribute in attributes.values():
                if isinstance(attribute, dict) and "profile" not in attribute:
                    attribute["profile"] = profile_name

        # The item's own attributes win over the included ones
        for attribute_name, attribute in item["attributes"].items():
            base = attributes.get(attribute_name)
            if isinstance(base, dict) and isinstance(attribute, dict):
                deep_merge(base, attribute)
            else:
                attributes[attribute_name] = attribute

        item["attributes"] = attributes
