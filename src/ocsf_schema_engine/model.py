"""
Immutable records of a compiled schema. Values read from schema files that have no
dedicated field are kept, read-only, in each record's extras.
"""

import dataclasses
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Optional

from ocsf_schema_engine.jsonish import JObject
from ocsf_schema_engine.utils import freeze, thaw


def _empty() -> Mapping:
    return MappingProxyType({})


def _split(data: JObject, json_fields: dict[str, str]) -> tuple[dict, Mapping]:
    """Split JSON data into constructor keyword arguments and a frozen extras bag."""
    kwargs = {}
    extras = {}
    for key, value in data.items():
        if key in json_fields:
            kwargs[json_fields[key]] = freeze(value)
        else:
            extras[key] = value
    return kwargs, freeze(extras)


def _to_json(record, json_fields: dict[str, str]) -> JObject:
    data = {}
    for key, field_name in json_fields.items():
        value = getattr(record, field_name)
        if value is not None:
            data[key] = thaw(value)
    data.update(thaw(record.extras))
    return data


@dataclass(frozen=True)
class Attribute:
    name: str
    type: Optional[str] = None
    object_type: Optional[str] = None
    requirement: Optional[str] = None
    caption: Optional[str] = None
    description: Optional[str] = None
    enum: Optional[Mapping[str, Any]] = None
    is_array: Optional[bool] = None
    profile: Optional[str] = None
    group: Optional[str] = None
    deprecated: Optional[Mapping[str, Any]] = None
    observable: Optional[int] = None
    range: Optional[tuple] = None
    max_len: Optional[int] = None
    regex: Optional[str] = None
    sibling: Optional[str] = None
    type_name: Optional[str] = None
    object_name: Optional[str] = None
    extension: Optional[str] = None
    extension_id: Optional[int] = None
    source: Optional[str] = None
    source_patched: Optional[str] = None
    extras: Mapping[str, Any] = field(default_factory=_empty)

    JSON_FIELDS = {
        "type": "type",
        "object_type": "object_type",
        "requirement": "requirement",
        "caption": "caption",
        "description": "description",
        "enum": "enum",
        "is_array": "is_array",
        "profile": "profile",
        "group": "group",
        "@deprecated": "deprecated",
        "observable": "observable",
        "range": "range",
        "max_len": "max_len",
        "regex": "regex",
        "sibling": "sibling",
        "type_name": "type_name",
        "object_name": "object_name",
        "extension": "extension",
        "extension_id": "extension_id",
        "_source": "source",
        "_source_patched": "source_patched",
    }

    @classmethod
    def from_json(cls, name: str, data: JObject) -> "Attribute":
        kwargs, extras = _split(data, cls.JSON_FIELDS)
        return cls(name=name, extras=extras, **kwargs)

    def to_json(self) -> JObject:
        return _to_json(self, self.JSON_FIELDS)

    @property
    def is_object(self) -> bool:
        return self.type == "object_t"


def _attributes_from_json(attributes: Optional[JObject]) -> Mapping[str, Attribute]:
    return MappingProxyType(
        {
            name: Attribute.from_json(name, detail)
            for name, detail in (attributes or {}).items()
            if isinstance(detail, dict)
        }
    )


def _attributes_to_json(attributes: Mapping[str, Attribute]) -> JObject:
    return {name: attribute.to_json() for name, attribute in attributes.items()}


@dataclass(frozen=True)
class Entity:
    """A resolved class or object."""

    key: str
    name: str
    kind: str
    caption: Optional[str] = None
    description: Optional[str] = None
    extends: Optional[str] = None
    extension: Optional[str] = None
    extension_id: Optional[int] = None
    uid: Optional[int] = None
    category: Optional[str] = None
    category_uid: Optional[int] = None
    category_name: Optional[str] = None
    profiles: tuple[str, ...] = ()
    attributes: Mapping[str, Attribute] = field(default_factory=_empty)
    deprecated: Optional[Mapping[str, Any]] = None
    observable: Optional[int] = None
    observables: Optional[Mapping[str, int]] = None
    observable_inherited: Optional[bool] = None
    patched_by: tuple[str, ...] = ()
    origin: Optional[str] = None
    extras: Mapping[str, Any] = field(default_factory=_empty)

    JSON_FIELDS = {
        "caption": "caption",
        "description": "description",
        "extends": "extends",
        "extension": "extension",
        "extension_id": "extension_id",
        "uid": "uid",
        "category": "category",
        "category_uid": "category_uid",
        "category_name": "category_name",
        "@deprecated": "deprecated",
        "observable": "observable",
        "observables": "observables",
        "observable_inherited?": "observable_inherited",
        "_origin": "origin",
    }

    @classmethod
    def from_json(cls, key: str, kind: str, data: JObject) -> "Entity":
        data = dict(data)
        attributes = data.pop("attributes", None)
        profiles = data.pop("profiles", None) or ()
        patched_by = data.pop("_patched_by", None) or ()
        data.pop("_resolved", None)
        name = data.pop("name", None) or key.rsplit("/", 1)[-1]
        kwargs, extras = _split(data, cls.JSON_FIELDS)
        return cls(
            key=key,
            name=name,
            kind=kind,
            profiles=tuple(profiles),
            attributes=_attributes_from_json(attributes),
            patched_by=tuple(patched_by),
            extras=extras,
            **kwargs,
        )

    def to_json(self) -> JObject:
        data = {"name": self.name}
        data.update(_to_json(self, self.JSON_FIELDS))
        if self.profiles:
            data["profiles"] = list(self.profiles)
        if self.patched_by:
            data["_patched_by"] = list(self.patched_by)
        data["attributes"] = _attributes_to_json(self.attributes)
        return data

    def with_profiles(self, profiles: Optional[Iterable[str]]) -> "Entity":
        """
        Return this entity as seen with the given profiles selected: attributes that
        belong to a profile not in profiles are left out. None selects every profile.
        """
        if profiles is None:
            return self
        selected = set(profiles)
        attributes = {
            name: attribute
            for name, attribute in self.attributes.items()
            if attribute.profile is None or attribute.profile in selected
        }
        return dataclasses.replace(
            self,
            attributes=MappingProxyType(attributes),
            profiles=tuple(p for p in self.profiles if p in selected),
        )

    @property
    def is_deprecated(self) -> bool:
        return bool(self.deprecated)


@dataclass(frozen=True)
class Category:
    key: str
    name: str
    uid: Optional[int] = None
    caption: Optional[str] = None
    description: Optional[str] = None
    extension: Optional[str] = None
    extension_id: Optional[int] = None
    extras: Mapping[str, Any] = field(default_factory=_empty)

    JSON_FIELDS = {
        "uid": "uid",
        "caption": "caption",
        "description": "description",
        "extension": "extension",
        "extension_id": "extension_id",
    }

    @classmethod
    def from_json(cls, key: str, data: JObject) -> "Category":
        data = dict(data)
        name = data.pop("name", None) or key.rsplit("/", 1)[-1]
        kwargs, extras = _split(data, cls.JSON_FIELDS)
        return cls(key=key, name=name, extras=extras, **kwargs)

    def to_json(self) -> JObject:
        data = {"name": self.name}
        data.update(_to_json(self, self.JSON_FIELDS))
        return data


@dataclass(frozen=True)
class Profile:
    key: str
    name: str
    caption: Optional[str] = None
    description: Optional[str] = None
    extension: Optional[str] = None
    extension_id: Optional[int] = None
    attributes: Mapping[str, Attribute] = field(default_factory=_empty)
    extras: Mapping[str, Any] = field(default_factory=_empty)

    JSON_FIELDS = {
        "caption": "caption",
        "description": "description",
        "extension": "extension",
        "extension_id": "extension_id",
    }

    @classmethod
    def from_json(cls, key: str, data: JObject) -> "Profile":
        data = dict(data)
        attributes = data.pop("attributes", None)
        name = data.pop("name", None) or key.rsplit("/", 1)[-1]
        kwargs, extras = _split(data, cls.JSON_FIELDS)
        return cls(
            key=key,
            name=name,
            attributes=_attributes_from_json(attributes),
            extras=extras,
            **kwargs,
        )

    def to_json(self) -> JObject:
        data = {"name": self.name}
        data.update(_to_json(self, self.JSON_FIELDS))
        data["attributes"] = _attributes_to_json(self.attributes)
        return data


@dataclass(frozen=True)
class Dictionary:
    attributes: Mapping[str, Attribute] = field(default_factory=_empty)
    types: Mapping[str, Attribute] = field(default_factory=_empty)
    extras: Mapping[str, Any] = field(default_factory=_empty)

    @classmethod
    def from_json(cls, data: JObject) -> "Dictionary":
        data = dict(data)
        attributes = data.pop("attributes", None)
        types = data.pop("types", None) or {}
        return cls(
            attributes=_attributes_from_json(attributes),
            types=_attributes_from_json(types.get("attributes")),
            extras=freeze(data),
        )

    def to_json(self) -> JObject:
        data = thaw(self.extras)
        data["attributes"] = _attributes_to_json(self.attributes)
        data["types"] = {"attributes": _attributes_to_json(self.types)}
        return data


@dataclass(frozen=True)
class Link:
    """
    One reference to a schema item. The group is "common" for the "base_event" class,
    otherwise "class" or "object"; type is the key of the referencing item.
    """

    group: str
    type: str
    caption: str
    extension: Optional[str] = None
    deprecated: bool = False
    attribute_keys: tuple[str, ...] = ()

    def to_json(self) -> JObject:
        data = {"group": self.group, "type": self.type, "caption": self.caption}
        if self.extension:
            data["extension"] = self.extension
        if self.deprecated:
            data["deprecated?"] = True
        if self.attribute_keys:
            data["attribute_keys"] = list(self.attribute_keys)
        return data
