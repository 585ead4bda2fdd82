import logging
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from time import perf_counter
from typing import Optional

from ocsf_schema_engine.compiler import SchemaCompiler
from ocsf_schema_engine.exceptions import SchemaException
from ocsf_schema_engine.extensions import Extension
from ocsf_schema_engine.graph import SchemaGraph
from ocsf_schema_engine.jsonish import JObject
from ocsf_schema_engine.model import (
    Attribute,
    Category,
    Dictionary,
    Entity,
    Link,
    Profile,
)
from ocsf_schema_engine.scanner import DuplicatePolicy

logger = logging.getLogger(__name__)


class SchemaRepository:
    """
    Holds the current SchemaGraph of a process and rebuilds it on request.

    Reloads are serialized. A reload compiles a complete new graph and then replaces
    the current one with a single assignment, so readers see either the old graph or
    the new one. If compilation fails, the current graph stays in place and the error
    is raised to the caller.
    """

    def __init__(
        self,
        schema_path: Path,
        extensions_paths: Optional[list[Path]] = None,
        ignore_platform_extensions: bool = False,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.ERROR,
        max_workers: Optional[int] = None,
    ) -> None:
        self.schema_path = Path(schema_path)
        self.extensions_paths = extensions_paths
        self.ignore_platform_extensions = ignore_platform_extensions
        self.duplicate_policy = duplicate_policy
        self.max_workers = max_workers
        self._reload_lock = threading.Lock()
        self._graph: Optional[SchemaGraph] = None

    def load(self) -> SchemaGraph:
        return self.reload()

    def reload(
        self,
        schema_path: Optional[Path] = None,
        extensions_paths: Optional[list[Path]] = None,
    ) -> SchemaGraph:
        """
        Compile the schema and install the result. Passing schema_path or
        extensions_paths changes what later reloads compile, once this one succeeds.
        """
        with self._reload_lock:
            path = Path(schema_path) if schema_path else self.schema_path
            ext_paths = (
                extensions_paths
                if extensions_paths is not None
                else self.extensions_paths
            )
            logger.info("Loading schema from %s", path)
            start_seconds = perf_counter()
            try:
                graph = SchemaCompiler(
                    path,
                    ignore_platform_extensions=self.ignore_platform_extensions,
                    extensions_paths=ext_paths,
                    duplicate_policy=self.duplicate_policy,
                    max_workers=self.max_workers,
                ).compile()
            except (SchemaException, OSError):
                if self._graph is None:
                    logger.error("Schema load failed; no schema is installed")
                else:
                    logger.error(
                        "Schema reload failed; keeping schema version %s",
                        self._graph.version,
                    )
                raise
            self._graph = graph
            self.schema_path = path
            self.extensions_paths = ext_paths
            logger.info(
                "Schema version %s loaded in %.3f seconds",
                graph.version,
                perf_counter() - start_seconds,
            )
            return graph

    @property
    def is_loaded(self) -> bool:
        return self._graph is not None

    @property
    def graph(self) -> SchemaGraph:
        graph = self._graph
        if graph is None:
            raise SchemaException("No schema has been loaded")
        return graph

    def version(self) -> str:
        return self.graph.version

    def base_event(self) -> Entity:
        return self.graph.base_event

    def classes(
        self, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Entity]:
        return self.graph.classes(extensions)

    def get_class(
        self, name: str, extension: Optional[str] = None
    ) -> Optional[Entity]:
        return self.graph.get_class(name, extension)

    def find_class(self, uid: int) -> Optional[Entity]:
        return self.graph.find_class(uid)

    def objects(
        self, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Entity]:
        return self.graph.objects(extensions)

    def get_object(
        self, name: str, extension: Optional[str] = None
    ) -> Optional[Entity]:
        return self.graph.get_object(name, extension)

    def categories(
        self, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Category]:
        return self.graph.categories(extensions)

    def get_category(
        self, name: str, extension: Optional[str] = None
    ) -> Optional[Category]:
        return self.graph.get_category(name, extension)

    def category_classes(
        self, key: str, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Entity]:
        return self.graph.category_classes(key, extensions)

    def all_classes(self) -> Mapping[str, Mapping]:
        """Every class, including hidden ones, with just its place in the hierarchy."""
        return self.graph.all_classes

    def all_objects(self) -> Mapping[str, Mapping]:
        return self.graph.all_objects

    def dictionary(self) -> Dictionary:
        return self.graph.dictionary

    def data_types(self) -> Mapping[str, Attribute]:
        return self.graph.data_types

    def profiles(
        self, extensions: Optional[Iterable[str]] = None
    ) -> Mapping[str, Profile]:
        return self.graph.profiles(extensions)

    def get_profile(
        self, name: str, extension: Optional[str] = None
    ) -> Optional[Profile]:
        return self.graph.get_profile(name, extension)

    def extensions(self) -> Mapping[str, Extension]:
        return self.graph.extensions

    def referenced_by(self, object_key: str) -> tuple[Link, ...]:
        return self.graph.referenced_by(object_key)

    def attribute_used_by(self, name: str) -> tuple[Link, ...]:
        return self.graph.attribute_used_by(name)

    def profile_used_by(self, key: str) -> tuple[Link, ...]:
        return self.graph.profile_used_by(key)

    def to_json(self) -> JObject:
        return self.graph.to_json()
