from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, Optional

from ocsf_schema_engine.exceptions import SchemaException
from ocsf_schema_engine.jsonish import JObject


def deep_merge(dest: dict, source: dict) -> None:
    """
    In-place merge a source dictionary into a destination dictionary, modifying the
    destination dictionary. Values from source win.

    Note: this merge does not merge lists or deep merge dictionaries inside lists. List
    values are simply overwritten.
    """
    if isinstance(dest, dict) and isinstance(source, dict):
        for source_key, source_value in source.items():
            if source_key in dest:
                dest_value = dest[source_key]
                if isinstance(dest_value, dict) and isinstance(source_value, dict):
                    deep_merge(dest_value, source_value)
                else:
                    dest[source_key] = source_value
            else:
                dest[source_key] = source_value


def put_non_none(d: dict, k: Any, v: Any) -> None:
    if v is not None:
        d[k] = v


def merge_profiles(*profile_lists: Optional[Iterable[str]]) -> list[str]:
    """
    Concatenate profile lists, dropping repeats while keeping the first occurrence.
    Missing (None) lists are skipped.
    """
    merged: list[str] = []
    for profiles in profile_lists:
        if profiles:
            for profile in profiles:
                if profile not in merged:
                    merged.append(profile)
    return merged


def is_hidden_class(cls_name: str, cls: JObject) -> bool:
    return cls_name != "base_event" and "uid" not in cls


def is_hidden_object(obj_name: str) -> bool:
    # extension objects are keyed "ext/_name"
    return obj_name.rsplit("/", 1)[-1].startswith("_")


def extension_scoped_category_uid(extension_uid: int, category_uid: int) -> int:
    """Return an extension-specific category UID."""
    assert category_uid < 100, (
        f"category_uid {category_uid} should be less than 100"
        " (not yet extension UID scoped)"
    )
    return extension_uid * 100 + category_uid


def class_category_uid(extension_uid: Optional[int], category_uid: int) -> int:
    """
    Return the category UID used to scope the UID of a class. Extension classes in a
    base schema category are scoped by their extension; categories of an extension
    are already scoped.
    """
    if extension_uid is None or category_uid >= 100:
        return category_uid
    return extension_scoped_category_uid(extension_uid, category_uid)


def category_scoped_class_uid(category_uid: int, cls_uid: int) -> int:
    """Return a category-specific class UID."""
    assert cls_uid < 1000, (
        f"class UID {cls_uid} should be less than 1000 (not yet category UID scoped)"
    )
    return category_uid * 1000 + cls_uid


def class_uid_scoped_type_uid(cls_uid: int, type_uid: int) -> int:
    """Return a class-specific type UID."""
    assert type_uid < 100, (
        f"type_uid {type_uid} should be less than 100 (not class UID scoped)"
    )
    return cls_uid * 100 + type_uid


def quote_string(s: Optional[str]) -> Optional[str]:
    if s:
        return f'"{s}"'
    return None


def requirement_to_rank(requirement: Optional[str]) -> int:
    if requirement == "required":
        return 3
    if requirement == "recommended":
        return 2
    if requirement == "optional":
        return 1
    if requirement == "reserved" or requirement is None:
        return 0
    raise SchemaException(f'Unknown requirement: "{requirement}"')


def freeze(value: Any) -> Any:
    """Return a read-only copy of a JSON value: dicts become mapping proxies, lists
    become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze, producing plain JSON-encodable dicts and lists."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value
