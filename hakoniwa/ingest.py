"""
Turning archives, directories, file selections, single files, and web
addresses into projects. Every function here either returns a complete
project or raises `IngestionError`, in which case nothing was created.
"""

from collections.abc import Iterable
import logging
from pathlib import Path
from urllib.parse import urlsplit
import zipfile
import zlib

from .path import normalize
from .project import new_id, Project, ProjectKind
from .tree import normalize_tree


__all__ = (
    'ingest',
    'ingest_archive',
    'ingest_directory',
    'ingest_file',
    'ingest_selection',
    'ingest_url',
    'IngestionError',
)

logger = logging.getLogger('hakoniwa.ingest')


class IngestionError(ValueError):
    """An import that cannot produce a project."""


def _project_from_raw(
    raw: 'dict[str, bytes]', name: str, description: str
) -> Project:
    tree = normalize_tree(raw)
    if not tree.files:
        raise IngestionError(f'"{name}" contains no usable files')
    return Project(
        id=new_id(),
        name=name,
        kind=tree.kind,
        description=description,
        entry=tree.entry,
        files=tree.files,
    )


def ingest_archive(path: 'str | Path') -> Project:
    path = Path(path)
    raw: 'dict[str, bytes]' = {}
    try:
        with zipfile.ZipFile(path) as archive:
            for info in archive.infolist():
                if info.is_dir() or info.filename.endswith('/'):
                    continue
                raw[normalize(info.filename)] = archive.read(info)
    except (
        zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error,
        OSError, EOFError, RuntimeError, NotImplementedError,
    ) as x:
        logger.error('unable to read archive "%s": %s', path, x)
        raise IngestionError(f'invalid zip archive "{path.name}"') from x

    if not raw:
        raise IngestionError(f'empty zip archive "{path.name}"')

    name = path.name[:-4] if path.name.lower().endswith('.zip') else path.name
    return _project_from_raw(raw, name, 'Imported via ZIP')


def ingest_directory(path: 'str | Path') -> Project:
    # Keys include the directory's own name, just like a directory picker's
    # relative paths, so that normalization un-nests it again.
    root = Path(path)
    if not root.is_dir():
        raise IngestionError(f'"{root}" is not a directory')

    raw: 'dict[str, bytes]' = {}
    pending = [root]
    while pending:
        directory = pending.pop()
        for item in directory.iterdir():
            if item.is_symlink():
                logger.debug('skipping symbolic link "%s"', item)
            elif item.is_dir():
                pending.append(item)
            elif item.is_file():
                key = f'{root.name}/{item.relative_to(root).as_posix()}'
                raw[key] = item.read_bytes()

    if not raw:
        raise IngestionError(f'directory "{root}" contains no files')
    return _project_from_raw(raw, root.name, 'Imported Folder')


def ingest_selection(
    selection: 'Iterable[tuple[None | str, str, bytes]]',
) -> Project:
    """
    Import a file selection. Each item is the file's relative path (or
    `None` when the picker did not provide one), its bare name, and its
    content. Files without relative path are treated as a flat list.
    """
    raw: 'dict[str, bytes]' = {}
    name = 'Imported Folder'
    for index, (relative_path, filename, content) in enumerate(selection):
        if index == 0 and relative_path:
            parts = normalize(relative_path).split('/')
            if len(parts) > 1:
                name = parts[0]
        raw[normalize(relative_path or filename)] = content

    if not raw:
        raise IngestionError('empty file selection')
    return _project_from_raw(raw, name, 'Imported Folder')


def ingest_file(path: 'str | Path') -> Project:
    path = Path(path)
    try:
        content = path.read_bytes()
    except OSError as x:
        raise IngestionError(f'unable to read "{path}"') from x

    return Project(
        id=new_id(),
        name=path.name,
        kind=ProjectKind.EMBEDDED_DOCUMENT,
        description='Single File',
        entry=path.name,
        files={path.name: content},
    )


def ingest_url(url: str, name: 'None | str' = None) -> Project:
    parts = urlsplit(url.strip())
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        raise IngestionError(f'"{url}" is not a web address')

    return Project(
        id=new_id(),
        name=name or parts.netloc,
        kind=ProjectKind.EXTERNAL_REFERENCE,
        description='External Link',
        external_url=url.strip(),
    )


def ingest(source: 'str | Path') -> Project:
    if isinstance(source, str) and source.startswith(('http://', 'https://')):
        return ingest_url(source)

    path = Path(source)
    if path.is_dir():
        return ingest_directory(path)
    if path.suffix.lower() == '.zip':
        return ingest_archive(path)
    if path.is_file():
        return ingest_file(path)
    raise IngestionError(f'"{source}" does not exist')
