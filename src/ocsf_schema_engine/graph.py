import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Optional

from ocsf_schema_engine.extensions import Extension
from ocsf_schema_engine.jsonish import JObject
from ocsf_schema_engine.model import (
    Attribute,
    Category,
    Dictionary,
    Entity,
    Link,
    Profile,
)
from ocsf_schema_engine.scoping import to_extension_scoped_name
from ocsf_schema_engine.utils import thaw

logger = logging.getLogger(__name__)

COMPILE_VERSION = 1


def _filter_by_extension(
    items: Mapping, extensions: Optional[Iterable[str]]
) -> Mapping:
    """Keep base schema items and the items of the named extensions."""
    if extensions is None:
        return items
    selected = set(extensions)
    return MappingProxyType(
        {
            key: item
            for key, item in items.items()
            if item.extension is None or item.extension in selected
        }
    )


class SchemaGraph:
    """
    A compiled schema. Every container exposed here is read-only, so a graph can be
    shared by any number of threads. A recompile builds a new graph instead of changing
    this one.

    Classes, objects, categories, and profiles are keyed by their compiled key: the
    plain name for the base schema and "ext/name" for extension items.
    """

    def __init__(
        self,
        version: str,
        classes: Mapping[str, Entity],
        objects: Mapping[str, Entity],
        dictionary: Dictionary,
        categories: Mapping[str, Category],
        profiles: Mapping[str, Profile],
        extensions: Mapping[str, Extension],
        all_classes: Mapping[str, Mapping],
        all_objects: Mapping[str, Mapping],
        object_links: Mapping[str, tuple[Link, ...]],
        attribute_links: Mapping[str, tuple[Link, ...]],
        profile_links: Mapping[str, tuple[Link, ...]],
    ) -> None:
        self._version = version
        self._classes = MappingProxyType(dict(classes))
        self._objects = MappingProxyType(dict(objects))
        self._dictionary = dictionary
        self._categories = MappingProxyType(dict(categories))
        self._profiles = MappingProxyType(dict(profiles))
        self._extensions = MappingProxyType(dict(extensions))
        self._all_classes = MappingProxyType(dict(all_classes))
        self._all_objects = MappingProxyType(dict(all_objects))
        self._object_links = MappingProxyType(dict(object_links))
        self._attribute_links = MappingProxyType(dict(attribute_links))
        self._profile_links = MappingProxyType(dict(profile_links))
        self._classes_by_uid = MappingProxyType(
            {cls.uid: cls for cls in self._classes.values() if cls.uid is not None}
        )

    @property
    def version(self) -> str:
        return self._version

    @property
    def base_event(self) -> Entity:
        return self._classes["base_event"]

    def classes(
        self, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Entity]:
        return _filter_by_extension(self._classes, extensions)

    def get_class(
        self, name: str, extension: Optional[str] = None
    ) -> Optional[Entity]:
        return self._classes.get(to_extension_scoped_name(name, extension))

    def find_class(self, uid: int) -> Optional[Entity]:
        return self._classes_by_uid.get(uid)

    def objects(
        self, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Entity]:
        return _filter_by_extension(self._objects, extensions)

    def get_object(
        self, name: str, extension: Optional[str] = None
    ) -> Optional[Entity]:
        return self._objects.get(to_extension_scoped_name(name, extension))

    @property
    def all_classes(self) -> Mapping[str, Mapping]:
        """Every class, including hidden ones, with just its place in the hierarchy."""
        return self._all_classes

    @property
    def all_objects(self) -> Mapping[str, Mapping]:
        """Every object, including hidden ones, with just its place in the hierarchy."""
        return self._all_objects

    def categories(
        self, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Category]:
        return _filter_by_extension(self._categories, extensions)

    def get_category(
        self, name: str, extension: Optional[str] = None
    ) -> Optional[Category]:
        return self._categories.get(to_extension_scoped_name(name, extension))

    def category_classes(
        self, key: str, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Entity]:
        return MappingProxyType(
            {
                cls_key: cls
                for cls_key, cls in self.classes(extensions).items()
                if cls.category == key
            }
        )

    @property
    def dictionary(self) -> Dictionary:
        return self._dictionary

    @property
    def data_types(self) -> Mapping[str, Attribute]:
        return self._dictionary.types

    def profiles(
        self, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Profile]:
        return _filter_by_extension(self._profiles, extensions)

    def get_profile(
        self, name: str, extension: Optional[str] = None
    ) -> Optional[Profile]:
        return self._profiles.get(to_extension_scoped_name(name, extension))

    @property
    def extensions(self) -> Mapping[str, Extension]:
        return self._extensions

    def referenced_by(self, object_key: str) -> tuple[Link, ...]:
        """Classes and objects with attributes of the object type object_key."""
        return self._object_links.get(object_key, ())

    def attribute_used_by(self, name: str) -> tuple[Link, ...]:
        """Classes and objects using the dictionary attribute name."""
        return self._attribute_links.get(name, ())

    def profile_used_by(self, key: str) -> tuple[Link, ...]:
        return self._profile_links.get(key, ())

    def to_json(self) -> JObject:
        return {
            "categories": {k: v.to_json() for k, v in self._categories.items()},
            "dictionary": self._dictionary.to_json(),
            "classes": {k: v.to_json() for k, v in self._classes.items()},
            "objects": {k: v.to_json() for k, v in self._objects.items()},
            "profiles": {k: v.to_json() for k, v in self._profiles.items()},
            "extensions": {k: v.to_json() for k, v in self._extensions.items()},
            "all_classes": thaw(self._all_classes),
            "all_objects": thaw(self._all_objects),
            "links": {
                "objects": _links_to_json(self._object_links),
                "attributes": _links_to_json(self._attribute_links),
                "profiles": _links_to_json(self._profile_links),
            },
            "version": self._version,
            "compile_version": COMPILE_VERSION,
        }


def _links_to_json(links: Mapping[str, tuple[Link, ...]]) -> JObject:
    return {key: [link.to_json() for link in values] for key, values in links.items()}
