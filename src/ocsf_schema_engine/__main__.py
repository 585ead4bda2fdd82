import json
import logging
import os
from argparse import ArgumentParser
from pathlib import Path
from sys import stderr
from time import perf_counter

from ocsf_schema_engine import __version__
from ocsf_schema_engine.compiler import SchemaCompiler
from ocsf_schema_engine.scanner import DuplicatePolicy

logger = logging.getLogger(__name__)


def _env_paths(name: str) -> list[Path]:
    value = os.environ.get(name)
    if not value:
        return []
    return [Path(p) for p in value.split(os.pathsep) if p]


def main():
    default_schema_dir = os.environ.get("SCHEMA_DIR")
    parser = ArgumentParser(
        description=f"Open Cybersecurity Schema Framework Schema Engine, version"
        f" {__version__}. Resolve an OCSF schema directory structure, including"
        " extensions, into a single JSON object written to standard output. Logs are"
        " written to standard error.",
    )
    parser.add_argument(
        "path",
        type=Path,
        nargs="?" if default_schema_dir else None,
        default=Path(default_schema_dir) if default_schema_dir else None,
        help="path to an OCSF schema directory; default: SCHEMA_DIR environment"
        " variable",
    )
    parser.add_argument(
        "-i",
        "--ignore-platform-extensions",
        action="store_true",
        default=False,
        help="ignore platform extensions (if any); these are in an extensions directory"
        " under the schema directory; default: %(default)s",
    )
    parser.add_argument(
        "-e",
        "--extensions-path",
        action="append",
        type=Path,
        metavar="PATH",
        dest="extensions_paths",
        help="optional path to a directory containing one or more OCSF schema"
        " extensions; can be repeated; default: SCHEMA_EXTENSION environment variable"
        f" (paths separated by {os.pathsep!r})",
    )
    parser.add_argument(
        "--duplicates",
        choices=[policy.value for policy in DuplicatePolicy],
        default=DuplicatePolicy.ERROR.value,
        help="what to do when two files define the same name: fail, or warn and use"
        " the later file; default: %(default)s",
    )
    parser.add_argument(
        "--workers",
        type=int,
        metavar="N",
        default=None,
        help="number of threads reading schema directories; default: Python's thread"
        " pool default",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        default="INFO",
        help="set log level; logs are written to standard error; default: %(default)s",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version="%(prog)s " + __version__,
    )

    args = parser.parse_args()
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")

    logging.basicConfig(
        format="%(levelname)s: %(message)s",
        style="%",
        stream=stderr,
        level=args.log_level,
    )

    extensions_paths = args.extensions_paths
    if extensions_paths is None:
        extensions_paths = _env_paths("SCHEMA_EXTENSION")

    start_seconds = perf_counter()

    compiler = SchemaCompiler(
        args.path,
        ignore_platform_extensions=args.ignore_platform_extensions,
        extensions_paths=extensions_paths,
        duplicate_policy=DuplicatePolicy(args.duplicates),
        max_workers=args.workers,
    )
    graph = compiler.compile()

    duration = perf_counter() - start_seconds
    logger.info("Schema compilation took %.3f seconds", duration)

    print(json.dumps(graph.to_json()))


if __name__ == "__main__":
    main()
