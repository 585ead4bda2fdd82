from typing import Optional


def to_extension_scoped_name(name: str, extension: Optional[str]) -> str:
    if extension:
        return f"{extension}/{name}"
    return name


def find_scoped(
    items: dict, name: Optional[str], extension: Optional[str] = None
) -> Optional[str]:
    """
    Find the key of the item that name refers to when used from inside extension.
    An unqualified name used by an extension first matches that extension's own item,
    then a base schema item. Returns None when nothing matches.
    """
    if not name:
        return None
    if extension and "/" not in name:
        scoped = f"{extension}/{name}"
        if scoped in items:
            return scoped
    if name in items:
        return name
    return None
