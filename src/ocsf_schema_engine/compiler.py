import logging
from concurrent.futures import ThreadPoolExecutor
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, TypeAlias

from ocsf_schema_engine.builder import SchemaGraphBuilder
from ocsf_schema_engine.cache import FragmentCache
from ocsf_schema_engine.diagnostics import Diagnostics
from ocsf_schema_engine.exceptions import (
    DuplicateDefinitionError,
    GraphIntegrityError,
    SchemaException,
    UnresolvedReferenceError,
)
from ocsf_schema_engine.extensions import (
    Extension,
    locate_extensions,
    validate_extensions,
)
from ocsf_schema_engine.graph import SchemaGraph
from ocsf_schema_engine.includes import (
    IncludeResolver,
    extension_path_resolver,
    schema_path_resolver,
)
from ocsf_schema_engine.jsonish import FragmentLoader, JObject, pretty_json_encode
from ocsf_schema_engine.scanner import DuplicatePolicy, ItemScanner
from ocsf_schema_engine.utils import (
    deep_merge,
    extension_scoped_category_uid,
    merge_profiles,
    put_non_none,
    quote_string,
    requirement_to_rank,
)

logger = logging.getLogger(__name__)


@dataclass
class ExtensionContent:
    """Raw items read from one extension directory."""

    extension: Extension
    categories: JObject
    classes: JObject
    class_patches: JObject
    objects: JObject
    object_patches: JObject
    dictionary: JObject
    profiles: JObject


# Patches keyed by the name of the item they patch. A list, since different
# extensions can patch the same item.
PatchDict: TypeAlias = dict[str, list[JObject]]


class SchemaCompiler:
    """
    Compiles a schema directory, plus any extensions, into a SchemaGraph. A compiler
    instance compiles once; create a new one to compile again.
    """

    def __init__(
        self,
        schema_path: Path,
        ignore_platform_extensions: bool = False,
        extensions_paths: Optional[list[Path]] = None,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.ERROR,
        cache: Optional[FragmentCache] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.schema_path: Path = Path(schema_path)
        self.ignore_platform_extensions: bool = ignore_platform_extensions
        self.extensions_paths: list[Path] = [Path(p) for p in extensions_paths or []]
        self.duplicate_policy: DuplicatePolicy = duplicate_policy
        self.cache: FragmentCache = cache if cache is not None else FragmentCache()
        self.max_workers: Optional[int] = max_workers
        self.diagnostics = Diagnostics()

        logger.info("Schema path: %s", self.schema_path)
        if self.ignore_platform_extensions:
            logger.info(
                "Ignoring platform extensions (if any) at path: %s",
                self.schema_path / "extensions",
            )
        else:
            logger.info(
                "Including platform extensions (if any) at path: %s",
                self.schema_path / "extensions",
            )
        if self.extensions_paths:
            logger.info(
                "Including extensions path(s): %s",
                ", ".join(map(str, self.extensions_paths)),
            )
        if self.duplicate_policy is DuplicatePolicy.WARN:
            logger.info("Duplicate names will be reported as warnings (last one wins)")

        self._is_compiled: bool = False
        self._version: str = "0.0.0"
        self._categories: JObject = {}
        self._dictionary: JObject = {}
        self._classes: JObject = {}
        self._class_patches: PatchDict = {}
        self._objects: JObject = {}
        self._object_patches: PatchDict = {}
        # Base schema profiles keyed by name, extension profiles by "ext/name"
        self._profiles: JObject = {}
        self._extensions: list[Extension] = []

    def compile(self) -> SchemaGraph:
        if self._is_compiled:
            raise SchemaException(
                "Schema already compiled (compile can only be run once)"
            )
        self._is_compiled = True

        logger.info("Compiling schema")

        if not self.schema_path.is_dir():
            raise FileNotFoundError(f"Schema path does not exist: {self.schema_path}")

        self.cache.init()
        try:
            loader = FragmentLoader(self.cache)
            include_resolver = IncludeResolver(loader, self.diagnostics)
            self._read_version(loader)
            self._categories = self._read_required(loader, "categories.json")
            self._dictionary = self._read_required(loader, "dictionary.json")
            self._extensions = self._locate_extensions()

            base_scanner = ItemScanner(
                loader,
                include_resolver,
                schema_path_resolver(self.schema_path),
                self.diagnostics,
                self.duplicate_policy,
            )
            # Base schema directories and extensions are independent until their
            # items are merged, so they are read in parallel.
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                classes_future = executor.submit(
                    base_scanner.read_structured_items, self.schema_path, "events"
                )
                objects_future = executor.submit(
                    base_scanner.read_structured_items, self.schema_path, "objects"
                )
                profiles_future = executor.submit(
                    base_scanner.read_structured_items, self.schema_path, "profiles"
                )
                extension_futures = [
                    executor.submit(
                        self._read_extension, extension, loader, include_resolver
                    )
                    for extension in self._extensions
                ]
                self._classes = classes_future.result()
                self._objects = objects_future.result()
                self._profiles = profiles_future.result()
                contents = [future.result() for future in extension_futures]

            for content in contents:
                self._enrich_extension_items(content)
                self._fix_extension_profile_uses(content)
            for content in contents:
                self._merge_extension(content)

            self._resolve_patches(self._classes, self._class_patches, "class")
            self._resolve_patches(self._objects, self._object_patches, "object")

            graph = SchemaGraphBuilder(
                version=self._version,
                categories=self._categories,
                dictionary=self._dictionary,
                classes=self._classes,
                objects=self._objects,
                profiles=self._profiles,
                extensions=self._extensions,
                diagnostics=self.diagnostics,
            ).build()
        finally:
            self.cache.clear()

        self.diagnostics.log_summary()
        logger.info("Compiled schema base version: %s", self._version)
        if self._extensions:
            logger.info(
                "Compiled schema includes the following extension(s):\n%s",
                pretty_json_encode({e.name: e.to_json() for e in self._extensions}),
            )
        return graph

    def _read_version(self, loader: FragmentLoader) -> None:
        version_path = self.schema_path / "version.json"
        try:
            obj = loader.read(version_path)
        except FileNotFoundError:
            self.diagnostics.warning(
                "Schema version file does not exist (is this a schema directory?): %s;"
                ' using version "%s"',
                version_path,
                self._version,
            )
            return
        if "version" in obj:
            self._version = obj["version"]
        else:
            self.diagnostics.warning(
                'The "version" key is missing in the schema version file: %s',
                version_path,
            )

    def _read_required(self, loader: FragmentLoader, file_name: str) -> JObject:
        path = self.schema_path / file_name
        try:
            return deepcopy(loader.read(path))
        except FileNotFoundError as e:
            raise GraphIntegrityError(
                f"Required schema file does not exist: {path}"
            ) from e

    @staticmethod
    def _read_optional(loader: FragmentLoader, path: Path) -> JObject:
        if path.is_file():
            return deepcopy(loader.read(path))
        return {}

    def _locate_extensions(self) -> list[Extension]:
        extensions: list[Extension] = []
        if not self.ignore_platform_extensions:
            platform_path = self.schema_path / "extensions"
            if platform_path.is_dir():
                extensions.extend(
                    locate_extensions(
                        self.schema_path,
                        [platform_path],
                        is_platform_extension=True,
                        schema_version=self._version,
                    )
                )
        if self.extensions_paths:
            found = {e.path for e in extensions}
            for extension in locate_extensions(
                self.schema_path, self.extensions_paths, schema_version=self._version
            ):
                if extension.path not in found:
                    found.add(extension.path)
                    extensions.append(extension)
        validate_extensions(extensions)
        return extensions

    def _read_extension(
        self,
        extension: Extension,
        loader: FragmentLoader,
        include_resolver: IncludeResolver,
    ) -> ExtensionContent:
        logger.info(
            'Reading extension "%s" from directory: %s', extension.name, extension.path
        )
        scanner = ItemScanner(
            loader,
            include_resolver,
            extension_path_resolver(extension.path, self.schema_path),
            self.diagnostics,
            self.duplicate_policy,
            context=f'extension "{extension.name}"',
        )
        classes, class_patches = scanner.read_patchable_structured_items(
            extension.path, "events"
        )
        objects, object_patches = scanner.read_patchable_structured_items(
            extension.path, "objects"
        )
        return ExtensionContent(
            extension=extension,
            categories=self._read_optional(loader, extension.path / "categories.json"),
            classes=classes,
            class_patches=class_patches,
            objects=objects,
            object_patches=object_patches,
            dictionary=self._read_optional(loader, extension.path / "dictionary.json"),
            profiles=scanner.read_structured_items(extension.path, "profiles"),
        )

    @staticmethod
    def _enrich_extension_items(content: ExtensionContent) -> None:
        extension = content.extension
        try:
            for category in content.categories.setdefault("attributes", {}).values():
                category["uid"] = extension_scoped_category_uid(
                    extension.uid, category["uid"]
                )
                category["extension"] = extension.name
                category["extension_id"] = extension.uid
        except KeyError as e:
            raise SchemaException(
                f'Malformed category in extension "{extension.name}" - missing {e}'
            ) from e

        dictionary = content.dictionary
        stamped = [
            content.classes,
            content.class_patches,
            content.objects,
            content.object_patches,
            content.profiles,
            dictionary.setdefault("attributes", {}),
            dictionary.setdefault("types", {}).setdefault("attributes", {}),
        ]
        for items in stamped:
            for item in items.values():
                item["extension"] = extension.name
                item["extension_id"] = extension.uid

    def _fix_extension_profile_uses(self, content: ExtensionContent) -> None:
        """
        An extension refers to its own profiles by their plain name. In the compiled
        schema extension profiles are keyed "ext/name", so those references are
        rewritten.
        """
        extension = content.extension
        for items in (
            content.classes,
            content.class_patches,
            content.objects,
            content.object_patches,
        ):
            for item in items.values():
                if item.get("profiles"):
                    item["profiles"] = [
                        self._fix_extension_profile(content, p)
                        for p in item["profiles"]
                    ]
                for attribute in (item.get("attributes") or {}).values():
                    if isinstance(attribute, dict) and attribute.get("profile"):
                        attribute["profile"] = self._fix_extension_profile(
                            content, attribute["profile"]
                        )
        logger.debug('Fixed profile references of extension "%s"', extension.name)

    @staticmethod
    def _fix_extension_profile(content: ExtensionContent, profile_name: str) -> str:
        if "/" not in profile_name and profile_name in content.profiles:
            return f"{content.extension.name}/{profile_name}"
        return profile_name

    def _merge_extension(self, content: ExtensionContent) -> None:
        extension = content.extension
        categories = self._categories.setdefault("attributes", {})
        for name, category in content.categories.get("attributes", {}).items():
            categories[f"{extension.name}/{name}"] = category

        for name, cls in content.classes.items():
            self._classes[f"{extension.name}/{name}"] = cls
        for name, obj in content.objects.items():
            self._objects[f"{extension.name}/{name}"] = obj
        for name, profile in content.profiles.items():
            self._profiles[f"{extension.name}/{name}"] = profile

        for name, patch in content.class_patches.items():
            self._class_patches.setdefault(name, []).append(patch)
        for name, patch in content.object_patches.items():
            self._object_patches.setdefault(name, []).append(patch)

        self._merge_dictionary(content)

    def _merge_dictionary(self, content: ExtensionContent) -> None:
        """
        Merge an extension's dictionary into the dictionary built so far. New
        attributes and types are added. An existing attribute is merged only if the
        change is safe: no type or object type change and no relaxed requirement.
        Modifying a type, or an attribute added by another extension, is a collision.
        """
        extension = content.extension
        base_attributes = self._dictionary.setdefault("attributes", {})
        for name, ext_attribute in content.dictionary.get("attributes", {}).items():
            base_attribute = base_attributes.get(name)
            if not base_attribute:
                base_attributes[name] = ext_attribute
                continue

            context = f'Extension "{extension.name}" dictionary attribute "{name}"'
            if "extension" in base_attribute:
                raise DuplicateDefinitionError(
                    f"Collision: {context} collides with attribute from extension"
                    f' "{base_attribute["extension"]}"; extensions are not allowed to'
                    " modify each other as the results are non-deterministic"
                )
            if "type" in ext_attribute and ext_attribute["type"] != base_attribute.get(
                "type"
            ):
                raise SchemaException(
                    f'{context} attempted to make unsafe type change; "'
                    f'{ext_attribute["type"]}" overwriting existing'
                    f' "{base_attribute.get("type")}"'
                )
            if "object_type" in ext_attribute and ext_attribute[
                "object_type"
            ] != base_attribute.get("object_type"):
                raise SchemaException(
                    f"{context} attempted to make unsafe object type change;"
                    f' "{ext_attribute["object_type"]}" overwriting existing'
                    f' "{base_attribute.get("object_type")}"'
                )
            ext_req = ext_attribute.get("requirement")
            base_req = base_attribute.get("requirement")
            if ext_req is not None and requirement_to_rank(
                ext_req
            ) < requirement_to_rank(base_req):
                raise SchemaException(
                    f"{context} attempted to make unsafe requirement change with"
                    f" {quote_string(ext_req)} reducing existing requirement of"
                    f" {quote_string(base_req)}"
                )
            logger.info("%s is safely merging over existing attribute", context)
            # the merged attribute still belongs to the base schema
            ext_attribute = dict(ext_attribute)
            ext_attribute.pop("extension", None)
            ext_attribute.pop("extension_id", None)
            deep_merge(base_attribute, ext_attribute)

        base_types = self._dictionary.setdefault("types", {}).setdefault(
            "attributes", {}
        )
        ext_types = content.dictionary.get("types", {}).get("attributes", {})
        for name, ext_type in ext_types.items():
            if name in base_types:
                base_type = base_types[name]
                if "extension" in base_type:
                    base_desc = f'extension "{base_type["extension"]}"'
                else:
                    base_desc = "base schema"
                raise DuplicateDefinitionError(
                    f'Collision: extension "{extension.name}" dictionary type "{name}"'
                    f" is trying to overwrite {base_desc} type; modifying dictionary"
                    " types is not supported"
                )
            base_types[name] = ext_type

    def _resolve_patches(self, items: JObject, patches: PatchDict, kind: str) -> None:
        for patch_name, patch_list in patches.items():
            for patch in patch_list:
                context = (
                    f'extension "{patch["extension"]}" {kind} patch "{patch_name}"'
                )
                base = items.get(patch_name)
                if base is None:
                    self.diagnostics.unresolved_reference(
                        UnresolvedReferenceError(
                            f'{context} attempted to patch undefined {kind}'
                            f' "{patch_name}"; patch skipped'
                        )
                    )
                    continue
                if "extension" in base:
                    raise SchemaException(
                        f"Illegal patch attempt: {context} attempted to patch"
                        f' "{patch_name}" from extension "{base["extension"]}";'
                        " extensions are not allowed to patch each other as the"
                        " results are non-deterministic"
                    )
                logger.info(
                    'Patch: %s is patching "%s" from base schema', context, patch_name
                )

                if patch.get("profiles"):
                    base["profiles"] = merge_profiles(
                        base.get("profiles"), patch["profiles"]
                    )
                patch_key = f'{patch["extension"]}/{patch_name}'
                base_attributes = base.setdefault("attributes", {})
                patch_attributes = patch.get("attributes") or {}
                for attribute_name, attribute in patch_attributes.items():
                    if isinstance(attribute, dict):
                        attribute = dict(attribute, _source_patched=patch_key)
                    existing = base_attributes.get(attribute_name)
                    if isinstance(existing, dict) and isinstance(attribute, dict):
                        deep_merge(existing, attribute)
                    else:
                        base_attributes[attribute_name] = attribute

                put_non_none(base, "observable", patch.get("observable"))
                put_non_none(base, "observables", patch.get("observables"))
                put_non_none(base, "references", patch.get("references"))
                put_non_none(base, "associations", patch.get("associations"))
                if "constraints" in patch:
                    if patch["constraints"]:
                        base["constraints"] = patch["constraints"]
                    else:
                        # an empty constraints list removes the base constraints
                        base.pop("constraints", None)

                patched_by = base.setdefault("_patched_by", [])
                patched_by.append(patch["extension"])
                patched_by.sort()
