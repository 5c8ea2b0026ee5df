from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar

from app.models import ObjectRecord

SEPARATOR = "/"
SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


@dataclass
class Folder:
    name: str
    children: list["Folder | File"] = field(default_factory=list)

    type: ClassVar[str] = "folder"


@dataclass
class File:
    name: str
    key: str
    size: int
    last_modified: datetime
    download_url: str

    type: ClassVar[str] = "file"


Node = Folder | File


def _child_folder(level: list[Node], name: str) -> Folder | None:
    # A file never absorbs a folder segment, so a same-named file and folder
    # end up as siblings and both keys stay reconstructible.
    return next((node for node in level if isinstance(node, Folder) and node.name == name), None)


def build_tree(records: Iterable[ObjectRecord]) -> list[Node]:
    """Nest a flat listing into folders by splitting keys on ``/``.

    Children keep the order in which they were first seen. Duplicate keys keep
    the first record. A key ending in ``/`` (a folder placeholder object) gets
    a file leaf with an empty name so its path still rebuilds to the key.
    """
    root: list[Node] = []
    seen: set[str] = set()
    for record in records:
        if record.key in seen:
            continue
        seen.add(record.key)

        *folders, leaf = record.key.split(SEPARATOR)
        level = root
        for name in folders:
            folder = _child_folder(level, name)
            if folder is None:
                folder = Folder(name=name)
                level.append(folder)
            level = folder.children

        level.append(
            File(
                name=leaf,
                key=record.key,
                size=record.size,
                last_modified=record.last_modified,
                download_url=record.download_url,
            )
        )
    return root


def iter_files(nodes: Iterable[Node], parent: str | None = None) -> Iterator[tuple[str, File]]:
    """Yield ``(path, file)`` where path joins every ancestor name with ``/``."""
    for node in nodes:
        path = node.name if parent is None else f"{parent}{SEPARATOR}{node.name}"
        if isinstance(node, Folder):
            yield from iter_files(node.children, path)
        else:
            yield path, node


def tree_to_dict(nodes: Iterable[Node]) -> list[dict]:
    out = []
    for node in nodes:
        if isinstance(node, Folder):
            out.append({"name": node.name, "type": node.type, "children": tree_to_dict(node.children)})
        else:
            out.append(
                {
                    "name": node.name,
                    "type": node.type,
                    "key": node.key,
                    "size": node.size,
                    "lastModified": node.last_modified.isoformat(),
                    "downloadUrl": node.download_url,
                }
            )
    return out


def filter_records(records: Iterable[ObjectRecord], query: str = "") -> list[ObjectRecord]:
    needle = query.strip().lower()
    if not needle:
        return list(records)
    return [record for record in records if needle in record.key.lower()]


def sort_records(records: Iterable[ObjectRecord]) -> list[ObjectRecord]:
    return sorted(records, key=lambda record: record.key)


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    exponent = 0
    while value >= 1024 and exponent < len(SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {SIZE_UNITS[exponent]}"
