import logging
from copy import deepcopy
from typing import Optional

from ocsf_schema_engine.diagnostics import Diagnostics
from ocsf_schema_engine.exceptions import GraphIntegrityError, UnresolvedReferenceError
from ocsf_schema_engine.jsonish import JObject
from ocsf_schema_engine.utils import deep_merge, merge_profiles

logger = logging.getLogger(__name__)

# Keys describing where an item itself comes from. A child never takes these from its
# parent.
NON_INHERITED_KEYS = ("extension", "extension_id", "_origin", "_patched_by")


class InheritanceResolver:
    """
    Flattens "extends" chains of one kind of item (classes or objects). Items are keyed
    by their compiled key: "ext/name" for extension items, "name" for the base schema.

    A parent is resolved before its children and each item is resolved once. An item
    whose parent cannot be found keeps its own definition, and the problem is logged
    once as an unresolved reference. A cycle raises GraphIntegrityError.

    Each attribute of a resolved item carries its provenance in "_source": the key of
    the item that first introduced it in the hierarchy.
    """

    def __init__(self, items: JObject, kind: str, diagnostics: Diagnostics) -> None:
        self.items = items
        self.kind = kind
        self.diagnostics = diagnostics
        self._resolved: dict[str, JObject] = {}
        self._resolving: list[str] = []

    def resolve_all(self) -> JObject:
        return {key: self.resolve(key) for key in self.items}

    def find_parent(self, key: str, item: JObject) -> Optional[str]:
        """
        Return the key of the parent of item, or None. The lookup order is:
          1. the item's own extension, when "extends" is unqualified
          2. the named extension, when "extends" is qualified as "ext/name"
          3. the base schema
        """
        parent_name = item.get("extends")
        if not parent_name:
            return None

        extension = item.get("extension")
        if extension and "/" not in parent_name:
            scoped = f"{extension}/{parent_name}"
            # an extension item named like its base schema parent would otherwise find
            # itself
            if scoped != key and scoped in self.items:
                return scoped

        if "/" in parent_name:
            return parent_name if parent_name in self.items else None

        if parent_name in self.items:
            return parent_name
        return None

    def resolve(self, key: str) -> JObject:
        if key in self._resolved:
            return self._resolved[key]

        if key in self._resolving:
            chain = " -> ".join(self._resolving[self._resolving.index(key) :] + [key])
            raise GraphIntegrityError(f"Cyclic {self.kind} extends chain: {chain}")

        item = self.items[key]
        parent_name = item.get("extends")
        if item.get("_resolved"):
            # already flattened by an earlier pass; deletions must not be undone
            resolved = deepcopy(item)
        elif not parent_name:
            resolved = self._with_own_provenance(key, item)
        else:
            parent_key = self.find_parent(key, item)
            if parent_key is None:
                self.diagnostics.unresolved_reference(
                    UnresolvedReferenceError(
                        f'{self.kind} "{key}" extends undefined {self.kind}'
                        f' "{parent_name}"; using its own definition'
                    )
                )
                resolved = self._with_own_provenance(key, item)
            else:
                self._resolving.append(key)
                try:
                    parent = self.resolve(parent_key)
                finally:
                    self._resolving.pop()
                logger.debug(
                    'Resolving %s "%s" extends "%s"', self.kind, key, parent_key
                )
                resolved = self._merge(key, parent, item)
            resolved["_resolved"] = True

        self._resolved[key] = resolved
        return resolved

    @staticmethod
    def _with_own_provenance(key: str, item: JObject) -> JObject:
        new_item = deepcopy(item)
        attributes = new_item.get("attributes") or {}
        new_item["attributes"] = {
            name: attribute
            for name, attribute in attributes.items()
            if attribute is not None
        }
        for attribute in new_item["attributes"].values():
            if isinstance(attribute, dict):
                attribute.setdefault("_source", key)
        return new_item

    def _merge(self, key: str, parent: JObject, item: JObject) -> JObject:
        new_item = deepcopy(parent)
        for k in NON_INHERITED_KEYS:
            new_item.pop(k, None)
        attributes = new_item.pop("attributes", None) or {}

        for source_key, source_value in item.items():
            if source_key == "attributes":
                continue
            if source_key == "profiles":
                new_item["profiles"] = merge_profiles(
                    parent.get("profiles"), source_value
                )
            elif source_key == "observables" and isinstance(
                new_item.get("observables"), dict
            ):
                if isinstance(source_value, dict):
                    deep_merge(new_item["observables"], deepcopy(source_value))
            else:
                new_item[source_key] = deepcopy(source_value)

        for attribute_name, attribute in (item.get("attributes") or {}).items():
            inherited = attributes.get(attribute_name)
            if isinstance(inherited, dict) and isinstance(attribute, dict):
                # field-by-field override, keeping the ancestor's provenance
                source = inherited.get("_source")
                deep_merge(inherited, deepcopy(attribute))
                if source is not None:
                    inherited["_source"] = source
            elif isinstance(attribute, dict):
                new_attribute = deepcopy(attribute)
                new_attribute.setdefault("_source", key)
                attributes[attribute_name] = new_attribute
            else:
                # null deletes the inherited attribute
                attributes[attribute_name] = attribute

        new_item["attributes"] = {
            name: attribute
            for name, attribute in attributes.items()
            if attribute is not None
        }
        if self.kind == "object":
            # true when the observable marker comes from the parent
            if "observable" in item:
                new_item["observable_inherited?"] = False
            elif "observable" in parent:
                new_item["observable_inherited?"] = True
        return new_item
