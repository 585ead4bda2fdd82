class SchemaException(Exception):
    """Base class of all errors raised while compiling or querying a schema."""


class ParseError(SchemaException):
    """A schema file is not well-formed JSON or does not hold a JSON object."""


class UnresolvedReferenceError(SchemaException):
    """
    An "extends" parent, "$include" target, or patch target cannot be found.

    These are tolerated during compilation: they are logged and counted, and the
    affected item keeps its local definition.
    """


class DuplicateDefinitionError(SchemaException):
    """Two definitions claim the same name or identifier."""


class GraphIntegrityError(SchemaException):
    """
    The schema cannot form a valid graph, for example when the dictionary or the
    "base_event" class is missing, or when an "extends" or "$include" chain is cyclic.
    """
