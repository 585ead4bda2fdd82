import json
import logging
from pathlib import Path
from typing import Any, Optional, TypeAlias

from ocsf_schema_engine.cache import FragmentCache, MISSING
from ocsf_schema_engine.exceptions import ParseError

logger = logging.getLogger(__name__)

# Type aliases for JSON-compatible types. See https://json.org.
# These are circular, and Python is OK with that.

# JValue is type alias for types compatible with JSON values.
JValue: TypeAlias = "JObject | JArray | str | int | float | bool | None"
# JObject is a type alias for dictionary compatible with a JSON object.
JObject: TypeAlias = dict[str, JValue]
# JArray is a type alias for types compatible with a JSON array.
JArray: TypeAlias = list[JValue] | tuple[JValue]


def json_type_from_value(value: Any) -> str:
    """
    Return JSON type for a Python value. See https://json.org.
    This is intended for error messages.
    """
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    # bool is a subclass of int, so check it first
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return "number (int)"
    if isinstance(value, float):
        return "number (float)"
    if value is None:
        return "null"
    return f"non-JSON type: {type(value).__name__}"


def read_json_object_file(path: Path) -> JObject:
    """
    Read a schema file that must contain a JSON object. Missing or unreadable files
    raise the usual OSError subclasses; malformed content raises ParseError.
    """
    with open(path, encoding="utf-8") as f:
        try:
            v = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError(f"Schema file is not valid JSON ({e}): {path}") from e
    if not isinstance(v, dict):
        t = json_type_from_value(v)
        raise ParseError(
            f"Schema file contains a JSON {t} value, but should contain an object:"
            f" {path}"
        )
    return v


def pretty_json_encode(v: Any) -> str:
    return json.dumps(v, indent=4, sort_keys=True)


def apply_annotations(fragment: JObject, path: Optional[Path] = None) -> None:
    """
    Remove the top-level "annotations" of a fragment and apply them to each of its
    attributes as defaults. Fields already defined by an attribute are kept.
    """
    annotations = fragment.pop("annotations", None)
    if not annotations:
        return
    if not isinstance(annotations, dict):
        raise ParseError(
            f'The "annotations" value must be an object, but got'
            f" {json_type_from_value(annotations)}: {path}"
        )
    attributes = fragment.get("attributes")
    if not isinstance(attributes, dict):
        return
    for attribute in attributes.values():
        if isinstance(attribute, dict):
            for key, value in annotations.items():
                if key not in attribute:
                    attribute[key] = value


class FragmentLoader:
    """
    Reads schema fragments through a FragmentCache. Fragments returned by read are
    shared with the cache, so callers must copy them before modifying.
    """

    def __init__(self, cache: FragmentCache) -> None:
        self.cache = cache

    def read(self, path: Path) -> JObject:
        key = path.resolve()
        fragment = self.cache.get(key)
        if fragment is not MISSING:
            return fragment

        logger.debug("Reading schema file: %s", key)
        fragment = read_json_object_file(key)
        apply_annotations(fragment, key)
        return self.cache.put(key, fragment)
