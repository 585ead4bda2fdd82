import logging
from copy import deepcopy
from typing import Optional

from ocsf_schema_engine.diagnostics import Diagnostics
from ocsf_schema_engine.exceptions import DuplicateDefinitionError, GraphIntegrityError
from ocsf_schema_engine.extensions import Extension
from ocsf_schema_engine.graph import SchemaGraph
from ocsf_schema_engine.inheritance import InheritanceResolver
from ocsf_schema_engine.jsonish import JObject
from ocsf_schema_engine.model import Category, Dictionary, Entity, Link, Profile
from ocsf_schema_engine.scoping import find_scoped
from ocsf_schema_engine.utils import (
    category_scoped_class_uid,
    class_category_uid,
    class_uid_scoped_type_uid,
    deep_merge,
    freeze,
    is_hidden_class,
    is_hidden_object,
    merge_profiles,
)

logger = logging.getLogger(__name__)


class SchemaGraphBuilder:
    """
    Turns the raw, include-resolved items of a schema and its extensions into a
    SchemaGraph. Classes and objects are keyed by compiled key ("ext/name" for
    extension items), as are categories and profiles.
    """

    def __init__(
        self,
        version: str,
        categories: JObject,
        dictionary: JObject,
        classes: JObject,
        objects: JObject,
        profiles: JObject,
        extensions: list[Extension],
        diagnostics: Diagnostics,
    ) -> None:
        self.version = version
        self.extensions = extensions
        self.diagnostics = diagnostics
        self._categories: JObject = categories.get("attributes") or {}
        self._dictionary: JObject = dictionary
        self._raw_classes: JObject = classes
        self._raw_objects: JObject = objects
        self._profiles: JObject = profiles
        self._classes: JObject = {}
        self._objects: JObject = {}
        # Observable type_id values, used to detect collisions and to build the
        # "observable" object's type_id enum
        self._observable_type_id_dict: JObject = {}
        # Slices of the hierarchies taken before removing hidden items
        self._all_classes: JObject = {}
        self._all_objects: JObject = {}

    def build(self) -> SchemaGraph:
        self._validate_prerequisites()

        # Observables are collected before "extends" is flattened, otherwise inherited
        # markers would be counted once per child.
        self._observables_from_dictionary()
        self._observables_from_items(self._raw_classes, "Class")
        self._observables_from_items(self._raw_objects, "Object")

        self._classes = InheritanceResolver(
            self._raw_classes, "class", self.diagnostics
        ).resolve_all()
        self._objects = InheritanceResolver(
            self._raw_objects, "object", self.diagnostics
        ).resolve_all()
        self._remove_hidden_items()

        self._enrich_dictionary()
        self._enrich_classes()
        self._update_observable_enum()

        self._validate_profiles(self._classes, "class")
        self._validate_profiles(self._objects, "object")
        self._consolidate_profiles(self._objects, "object")
        self._consolidate_profiles(self._classes, "class")
        self._add_datetime_siblings()

        self._verify_attributes(self._classes, "class")
        self._verify_attributes(self._objects, "object")
        self._ensure_attributes_have_requirement()

        self._finish_item_attributes(self._classes, "class")
        self._finish_item_attributes(self._objects, "object")
        self._finish_item_attributes(self._profiles, "profile")

        return self._create_graph()

    def _validate_prerequisites(self) -> None:
        if not isinstance(self._dictionary, dict) or not isinstance(
            self._dictionary.get("attributes"), dict
        ):
            raise GraphIntegrityError(
                "Schema dictionary is missing or has no attributes"
            )
        if "base_event" not in self._raw_classes:
            raise GraphIntegrityError('Schema has not defined a "base_event" class')
        self._dictionary.setdefault("types", {}).setdefault("attributes", {})

    def _dictionary_attributes(self) -> JObject:
        return self._dictionary["attributes"]

    def _dictionary_types(self) -> JObject:
        return self._dictionary["types"]["attributes"]

    # Observables

    def _add_observable(
        self, type_id, caption: str, description: str, kind: str, context: str
    ) -> None:
        key = str(type_id)
        if key in self._observable_type_id_dict:
            entry = self._observable_type_id_dict[key]
            raise DuplicateDefinitionError(
                f"Collision of observable type_id {key} between {context} and"
                f' "{entry["caption"]}": {entry["description"]}'
            )
        self._observable_type_id_dict[key] = {
            "caption": caption,
            "description": f"Observable by {kind}.<br>{description}",
        }

    def _observables_from_dictionary(self) -> None:
        for kind, items in (
            ("Dictionary Type", self._dictionary_types()),
            ("Dictionary Attribute", self._dictionary_attributes()),
        ):
            for key, detail in items.items():
                if "observable" in detail:
                    caption = detail.get("caption", key)
                    self._add_observable(
                        detail["observable"],
                        caption,
                        detail.get("description", caption),
                        kind,
                        f'{kind} "{key}"',
                    )

    def _observables_from_items(self, items: JObject, kind: str) -> None:
        # kind is title-case: "Class" or "Object"
        for key, item in items.items():
            caption = self._find_caption(items, key)
            if kind == "Object" and "observable" in item:
                self._add_observable(
                    item["observable"],
                    caption,
                    item.get("description", caption),
                    "Object",
                    f'Object "{key}"',
                )
            for attribute_name, attribute in (item.get("attributes") or {}).items():
                if isinstance(attribute, dict) and "observable" in attribute:
                    self._add_observable(
                        attribute["observable"],
                        f"{caption} {kind}: {attribute_name}",
                        f'{kind}-specific attribute "{attribute_name}" for the'
                        f" {caption} {kind}.",
                        f"{kind}-Specific Attribute",
                        f'{kind} "{key}" attribute "{attribute_name}"',
                    )
            for attribute_path, type_id in (item.get("observables") or {}).items():
                self._add_observable(
                    type_id,
                    f"{caption} {kind}: {attribute_path}",
                    f'{kind}-specific attribute "{attribute_path}" for the'
                    f" {caption} {kind}.",
                    f"{kind}-Specific Attribute",
                    f'{kind} "{key}" observables path "{attribute_path}"',
                )

    @staticmethod
    def _find_caption(items: JObject, key: str) -> str:
        """Caption of a raw item, looking up its ancestors when it has none."""
        seen = set()
        current_key: Optional[str] = key
        while current_key and current_key not in seen:
            seen.add(current_key)
            item = items[current_key]
            if "caption" in item:
                return item["caption"]
            current_key = find_scoped(items, item.get("extends"), item.get("extension"))
        return key

    def _update_observable_enum(self) -> None:
        if "observable" not in self._objects:
            if self._observable_type_id_dict:
                self.diagnostics.warning(
                    'Schema defines observables but no "observable" object; skipping'
                    " the observable type_id enumeration"
                )
            return
        observable = self._objects["observable"]
        enum = (
            observable.setdefault("attributes", {})
            .setdefault("type_id", {})
            .setdefault("enum", {})
        )
        for type_id, detail in self._observable_type_id_dict.items():
            if type_id in enum:
                raise DuplicateDefinitionError(
                    f"Collision of observable type_id {type_id} ({detail['caption']})"
                    ' with the "observable" object type_id enum'
                )
            enum[type_id] = detail

    # Hierarchy

    def _remove_hidden_items(self) -> None:
        for key, cls in self._classes.items():
            self._all_classes[key] = self._hierarchy_slice(
                cls, is_hidden_class(key, cls)
            )
        for key, obj in self._objects.items():
            self._all_objects[key] = self._hierarchy_slice(obj, is_hidden_object(key))

        self._classes = {
            key: cls
            for key, cls in self._classes.items()
            if not is_hidden_class(key, cls)
        }
        self._objects = {
            key: obj for key, obj in self._objects.items() if not is_hidden_object(key)
        }

    @staticmethod
    def _hierarchy_slice(item: JObject, hidden: bool) -> JObject:
        item_slice = {}
        for k in ("name", "caption", "extends", "extension"):
            if k in item:
                item_slice[k] = item[k]
        item_slice["hidden?"] = hidden
        return item_slice

    # Dictionary

    def _enrich_dictionary(self) -> None:
        """
        Dictionary attributes whose type is not a dictionary type refer to objects:
        these become "object_t" attributes with an "object_type". Also adds the
        "type_name" and "object_name" captions and the datetime siblings.
        """
        types = self._dictionary_types()
        for attribute_name, attribute in self._dictionary_attributes().items():
            attribute_type = attribute.get("type")
            if attribute_type is None:
                self.diagnostics.warning(
                    '%s does not define "type"',
                    self._dictionary_context(attribute_name, attribute),
                )
                continue
            if attribute_type in types:
                attribute["type_name"] = types[attribute_type].get("caption", "")
                continue

            if attribute_type == "object_t":
                object_name = attribute.get("object_type")
            else:
                object_name = attribute_type
            object_key = find_scoped(
                self._objects, object_name, attribute.get("extension")
            )
            if object_key is None:
                self.diagnostics.warning(
                    '%s uses undefined type or object "%s"',
                    self._dictionary_context(attribute_name, attribute),
                    object_name,
                )
                continue
            attribute["type"] = "object_t"
            attribute["object_type"] = object_key
            attribute["object_name"] = self._objects[object_key].get("caption", "")

        if self._is_datetime_enabled():
            logger.info(
                'Datetime siblings of "timestamp_t" attributes will be added because'
                ' the schema defines the "datetime" profile and the "datetime_t" and'
                ' "timestamp_t" dictionary types.'
            )
            attributes = self._dictionary_attributes()
            additions = {}
            for attribute_name, attribute in attributes.items():
                if attribute.get("type") == "timestamp_t":
                    sibling = deepcopy(attribute)
                    sibling["type"] = "datetime_t"
                    sibling["type_name"] = types["datetime_t"].get(
                        "caption", "Datetime"
                    )
                    additions[self._datetime_attribute_name(attribute_name)] = sibling
            for name, sibling in additions.items():
                attributes.setdefault(name, sibling)

    def _is_datetime_enabled(self) -> bool:
        types = self._dictionary_types()
        return (
            "datetime" in self._profiles
            and "datetime_t" in types
            and "timestamp_t" in types
        )

    @staticmethod
    def _datetime_attribute_name(timestamp_name: str) -> str:
        return f"{timestamp_name}_dt"

    @staticmethod
    def _dictionary_context(attribute_name: str, attribute: JObject) -> str:
        if "extension" in attribute:
            return (
                f'Dictionary attribute "{attribute_name}" from extension'
                f' "{attribute["extension"]}"'
            )
        return f'Dictionary attribute "{attribute_name}"'

    # Classes

    def _enrich_classes(self) -> None:
        for key, cls in self._classes.items():
            attributes = cls.setdefault("attributes", {})
            caption = cls.get("caption", "UNKNOWN")

            category_name = cls.get("category")
            category_key = find_scoped(
                self._categories, category_name, cls.get("extension")
            )
            category = self._categories.get(category_key) if category_key else None
            if category:
                cls["category"] = category_key
                cls["category_name"] = category.get("caption")
                category_uid = category.get("uid", 0)
            else:
                category_uid = 0

            cls_uid = self._class_uid(key, cls, category_uid)
            cls["uid"] = cls_uid

            self._add_type_uid(key, cls, cls_uid, caption)

            cls_uid_attribute = attributes.setdefault("class_uid", {})
            cls_uid_attribute["enum"] = {
                str(cls_uid): {
                    "caption": caption,
                    "description": cls.get("description", ""),
                }
            }
            cls_uid_attribute.setdefault("_source", key)
            attributes.setdefault("class_name", {})["description"] = (
                "The event class name, as defined by class_uid value:"
                f" <code>{caption}</code>."
            )

            if category:
                cls["category_uid"] = category_uid
                category_uid_attribute = attributes.setdefault("category_uid", {})
                # Leaf classes only list their own category
                category_uid_attribute["enum"] = {str(category_uid): deepcopy(category)}
                category_uid_attribute.setdefault("_source", key)
                attributes.setdefault("category_name", {})["description"] = (
                    "The event category name, as defined by category_uid value:"
                    f" <code>{category.get('caption', '')}</code>."
                )
            elif category_name == "other":
                logger.info('Class "%s" uses special undefined category "other"', key)
                cls["category_uid"] = 0
            elif category_name is None:
                if key != "base_event":
                    self.diagnostics.warning('Class "%s" has no category', key)
            else:
                self.diagnostics.warning(
                    'Class "%s" has undefined category "%s"', key, category_name
                )

    def _class_uid(self, key: str, cls: JObject, category_uid: int) -> int:
        local_uid = cls.get("uid", 0)
        if not isinstance(local_uid, int) or not 0 <= local_uid < 1000:
            self.diagnostics.error(
                'Class "%s" has invalid "uid" %r; expected an integer from 0 to 999',
                key,
                local_uid,
            )
            local_uid = 0
        return category_scoped_class_uid(
            class_category_uid(cls.get("extension_id"), category_uid), local_uid
        )

    def _add_type_uid(self, key: str, cls: JObject, cls_uid: int, caption: str) -> None:
        attributes = cls["attributes"]
        event_id = attributes.get("activity_id") or attributes.get("disposition_id")
        type_uid_enum = {}
        if event_id and event_id.get("enum"):
            for enum_key, enum_value in event_id["enum"].items():
                try:
                    activity_id = int(enum_key)
                except ValueError:
                    self.diagnostics.warning(
                        'Class "%s" has non-numeric activity enum value "%s"',
                        key,
                        enum_key,
                    )
                    continue
                if not 0 <= activity_id < 100:
                    self.diagnostics.warning(
                        'Class "%s" activity enum value %d is out of range',
                        key,
                        activity_id,
                    )
                    continue
                entry = deepcopy(enum_value)
                enum_caption = enum_value.get("caption", "<unknown>")
                entry["caption"] = f"{caption}: {enum_caption}"
                type_uid_enum[str(class_uid_scoped_type_uid(cls_uid, activity_id))] = (
                    entry
                )
        else:
            self.diagnostics.warning(
                'Class "%s" has neither an "activity_id" nor a "disposition_id" enum',
                key,
            )
        type_uid_enum[str(class_uid_scoped_type_uid(cls_uid, 0))] = {
            "caption": f"{caption}: Unknown"
        }
        type_uid_attribute = attributes.setdefault("type_uid", {})
        type_uid_attribute["enum"] = type_uid_enum
        type_uid_attribute.setdefault("_source", key)

    # Profiles

    def _validate_profiles(self, items: JObject, kind: str) -> None:
        for key, item in items.items():
            for profile in item.get("profiles") or []:
                if profile not in self._profiles:
                    self.diagnostics.warning(
                        'Undefined profile "%s" used in %s "%s"', profile, kind, key
                    )
            for attribute_name, attribute in item.get("attributes", {}).items():
                profile = attribute.get("profile")
                if profile and profile not in self._profiles:
                    self.diagnostics.warning(
                        'Undefined profile "%s" used in %s "%s" attribute "%s"',
                        profile,
                        kind,
                        key,
                        attribute_name,
                    )

    def _consolidate_profiles(self, items: JObject, kind: str) -> None:
        """
        Add to each item the profiles of every object reachable through its object
        type attributes.
        """
        for key, item in items.items():
            profiles_dict: dict[str, Optional[list[str]]] = {}
            if kind == "class":
                for attribute_name, attribute in item.get("attributes", {}).items():
                    object_type = self._find_object_type(attribute_name, attribute)
                    if object_type:
                        self._gather_profiles(object_type, profiles_dict)
            else:
                profiles_dict[key] = None
                for attribute_name, attribute in item.get("attributes", {}).items():
                    object_type = self._find_object_type(attribute_name, attribute)
                    if object_type:
                        self._gather_profiles(object_type, profiles_dict)

            profiles = merge_profiles(item.get("profiles"), *profiles_dict.values())
            if profiles != (item.get("profiles") or []):
                logger.debug(
                    'Consolidated profiles of %s "%s": %s', kind, key, profiles
                )
            if profiles:
                item["profiles"] = profiles

    def _gather_profiles(
        self, object_key: str, profiles_dict: dict[str, Optional[list[str]]]
    ) -> None:
        if object_key in profiles_dict or object_key not in self._objects:
            return
        obj = self._objects[object_key]
        profiles_dict[object_key] = obj.get("profiles")
        for attribute_name, attribute in obj.get("attributes", {}).items():
            object_type = self._find_object_type(attribute_name, attribute)
            if object_type:
                self._gather_profiles(object_type, profiles_dict)

    def _find_object_type(
        self, attribute_name: str, attribute: JObject
    ) -> Optional[str]:
        """Object type of a class or object attribute not yet merged with the
        dictionary, or None for dictionary types."""
        if attribute.get("object_type"):
            return find_scoped(
                self._objects,
                attribute["object_type"],
                self._attribute_extension(attribute, {}),
            )
        dictionary_attribute = self._dictionary_attributes().get(attribute_name)
        if dictionary_attribute:
            return dictionary_attribute.get("object_type")
        return None

    def _add_datetime_siblings(self) -> None:
        if not self._is_datetime_enabled():
            return
        dictionary_attributes = self._dictionary_attributes()
        for items in (self._classes, self._objects):
            for item in items.values():
                attributes = item.setdefault("attributes", {})
                additions: JObject = {}
                for attribute_name, attribute in attributes.items():
                    attribute_type = attribute.get("type") or dictionary_attributes.get(
                        attribute_name, {}
                    ).get("type")
                    dt_name = self._datetime_attribute_name(attribute_name)
                    if attribute_type == "timestamp_t" and dt_name not in attributes:
                        dt_attribute = deepcopy(attribute)
                        dt_attribute.pop("type", None)
                        dt_attribute["profile"] = "datetime"
                        dt_attribute["requirement"] = "optional"
                        additions[dt_name] = dt_attribute
                if additions:
                    attributes.update(additions)
                    item["profiles"] = merge_profiles(
                        item.get("profiles"), ["datetime"]
                    )

    # Attributes

    def _verify_attributes(self, items: JObject, kind: str) -> None:
        dictionary_attributes = self._dictionary_attributes()
        for key, item in items.items():
            if item.get("@deprecated"):
                logger.info('%s "%s" is deprecated', kind.capitalize(), key)
            for attribute_name, attribute in item.get("attributes", {}).items():
                dictionary_attribute = dictionary_attributes.get(attribute_name)
                if dictionary_attribute is None:
                    self.diagnostics.warning(
                        '%s "%s" uses undefined attribute "%s"',
                        kind.capitalize(),
                        key,
                        attribute_name,
                    )
                    continue
                if dictionary_attribute.get("@deprecated") and not item.get(
                    "@deprecated"
                ):
                    logger.info(
                        '%s "%s" uses deprecated attribute "%s"',
                        kind.capitalize(),
                        key,
                        attribute_name,
                    )
                if "description" not in attribute:
                    description = dictionary_attribute.get("description", "")
                    if "See specific usage" in description:
                        self.diagnostics.warning(
                            'Please update the "description" of %s "%s" attribute'
                            ' "%s": "%s"',
                            kind,
                            key,
                            attribute_name,
                            description,
                        )

    def _ensure_attributes_have_requirement(self) -> None:
        missing_requirements: list[str] = []
        for items, kind in (
            (self._profiles, "profile"),
            (self._classes, "class"),
            (self._objects, "object"),
        ):
            for key, item in items.items():
                fixed = []
                for attribute_name, attribute in item.get("attributes", {}).items():
                    if attribute.get("requirement") is None:
                        attribute["requirement"] = "optional"
                        fixed.append(f'"{attribute_name}"')
                if fixed:
                    missing_requirements.append(
                        f'{kind} "{key}" attribute(s): {", ".join(sorted(fixed))}'
                    )
        if missing_requirements:
            missing_requirements.sort()
            self.diagnostics.warning(
                'The following attributes do not have a "requirement" property and a'
                ' value of "optional" will be used:\n    %s',
                "\n    ".join(missing_requirements),
            )

    def _finish_item_attributes(self, items: JObject, kind: str) -> None:
        """Merge each attribute over a copy of its dictionary attribute."""
        dictionary_attributes = self._dictionary_attributes()
        for key, item in items.items():
            new_attributes = {}
            for attribute_name, attribute in item.get("attributes", {}).items():
                if attribute_name in dictionary_attributes:
                    new_attribute = deepcopy(dictionary_attributes[attribute_name])
                    deep_merge(new_attribute, attribute)
                else:
                    # already reported; kept as authored
                    new_attribute = attribute
                if attribute.get("object_type"):
                    self._scope_object_type(new_attribute, attribute, item)
                new_attributes[attribute_name] = new_attribute
            item["attributes"] = new_attributes

    @staticmethod
    def _attribute_extension(attribute: JObject, item: JObject) -> Optional[str]:
        """Extension of the item that introduced the attribute."""
        source = attribute.get("_source")
        if source:
            return source.split("/", 1)[0] if "/" in source else None
        return attribute.get("extension") or item.get("extension")

    def _scope_object_type(
        self, new_attribute: JObject, attribute: JObject, item: JObject
    ) -> None:
        """An object type named in an extension item means that extension's object
        when it has one."""
        object_key = find_scoped(
            self._objects,
            attribute["object_type"],
            self._attribute_extension(attribute, item),
        )
        if object_key is None:
            return
        new_attribute["type"] = "object_t"
        new_attribute["object_type"] = object_key
        new_attribute["object_name"] = self._objects[object_key].get("caption", "")

    # Graph

    @staticmethod
    def _make_link(group: str, key: str, item: JObject) -> JObject:
        link: JObject = {
            "group": group,
            "type": key,
            "caption": item.get("caption", "*No name*"),
            "extension": item.get("extension"),
            "deprecated": bool(item.get("@deprecated")),
        }
        return link

    def _build_links(self) -> tuple[dict, dict, dict]:
        object_links: dict[str, dict[str, JObject]] = {}
        attribute_links: dict[str, list[JObject]] = {}
        profile_links: dict[str, list[JObject]] = {}
        for kind, items in (("class", self._classes), ("object", self._objects)):
            for key, item in items.items():
                group = "common" if kind == "class" and key == "base_event" else kind
                link = self._make_link(group, key, item)
                for attribute_name, attribute in item["attributes"].items():
                    attribute_links.setdefault(attribute_name, []).append(link)
                    if attribute.get("type") != "object_t":
                        continue
                    object_type = attribute.get("object_type")
                    # Group by group and type, merging attribute_keys
                    grouped = object_links.setdefault(object_type, {})
                    group_key = f"{group}:{key}"
                    if group_key in grouped:
                        attribute_keys = grouped[group_key]["attribute_keys"]
                        if attribute_name not in attribute_keys:
                            attribute_keys.append(attribute_name)
                    else:
                        grouped[group_key] = dict(link, attribute_keys=[attribute_name])
                for profile in item.get("profiles") or []:
                    profile_links.setdefault(profile, []).append(link)

        def to_links(values: list[JObject]) -> tuple[Link, ...]:
            return tuple(
                Link(
                    group=v["group"],
                    type=v["type"],
                    caption=v["caption"],
                    extension=v["extension"],
                    deprecated=v["deprecated"],
                    attribute_keys=tuple(v.get("attribute_keys", ())),
                )
                for v in values
            )

        return (
            {k: to_links(list(v.values())) for k, v in object_links.items()},
            {k: to_links(v) for k, v in attribute_links.items()},
            {k: to_links(v) for k, v in profile_links.items()},
        )

    def _create_graph(self) -> SchemaGraph:
        object_links, attribute_links, profile_links = self._build_links()
        return SchemaGraph(
            version=self.version,
            classes={
                key: Entity.from_json(key, "class", cls)
                for key, cls in self._classes.items()
            },
            objects={
                key: Entity.from_json(key, "object", obj)
                for key, obj in self._objects.items()
            },
            dictionary=Dictionary.from_json(self._dictionary),
            categories={
                key: Category.from_json(key, category)
                for key, category in self._categories.items()
            },
            profiles={
                key: Profile.from_json(key, profile)
                for key, profile in self._profiles.items()
            },
            extensions={extension.name: extension for extension in self.extensions},
            all_classes={k: freeze(v) for k, v in self._all_classes.items()},
            all_objects={k: freeze(v) for k, v in self._all_objects.items()},
            object_links=object_links,
            attribute_links=attribute_links,
            profile_links=profile_links,
        )
