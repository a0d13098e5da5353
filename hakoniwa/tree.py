from collections.abc import Mapping
import logging
import re
from typing import NamedTuple

from .path import normalize
from .project import FileTree, ProjectKind


__all__ = ('find_entry', 'is_junk', 'normalize_tree', 'NormalizedTree')

logger = logging.getLogger('hakoniwa.tree')


_JUNK_DIRECTORIES = frozenset(['__MACOSX'])
_JUNK_FILES = frozenset(['.DS_Store', 'desktop.ini', 'Thumbs.db'])

_MARKUP = re.compile(r'\.html?$', re.IGNORECASE)


class NormalizedTree(NamedTuple):
    files: FileTree
    entry: str

    @property
    def kind(self) -> ProjectKind:
        if self.entry:
            return ProjectKind.EMBEDDED_DOCUMENT
        return ProjectKind.RAW_SNIPPET


def is_junk(path: str) -> bool:
    """Determine whether the path names operating system or archiver litter."""
    *directories, name = path.split('/')
    return (
        any(directory in _JUNK_DIRECTORIES for directory in directories)
        or name in _JUNK_FILES
        or name.startswith('._')
    )


def _has_parent_segment(path: str) -> bool:
    return '..' in path.split('/')


def find_entry(paths: 'list[str]') -> str:
    if 'index.html' in paths:
        return 'index.html'
    if 'index.htm' in paths:
        return 'index.htm'

    candidates = sorted(
        (path for path in paths if _MARKUP.search(path)),
        key=lambda p: (p.count('/'), p),
    )
    return candidates[0] if candidates else ''


def normalize_tree(raw: 'Mapping[str, bytes]') -> NormalizedTree:
    """
    Clean up an uploaded file collection. This function drops platform junk
    unless that would leave no files at all, strips a single enclosing
    directory shared by all files, and determines the entry document.
    """
    files = {}
    for key, content in raw.items():
        path = normalize(key)
        if path == '' or path.endswith('/') or _has_parent_segment(path):
            logger.debug('skipping unusable path "%s"', key)
            continue
        files[path] = content

    clean = {path: content for path, content in files.items() if not is_junk(path)}
    if clean:
        files = clean
    elif files:
        logger.debug('all %d files look like junk; keeping them anyway', len(files))

    split_paths = [path.split('/') for path in files]
    if split_paths and all(len(parts) > 1 for parts in split_paths):
        root = split_paths[0][0]
        if all(parts[0] == root for parts in split_paths):
            logger.debug('un-nesting common directory "%s"', root)
            files = {path[len(root) + 1:]: content for path, content in files.items()}

    entry = find_entry(list(files))
    logger.debug('normalized %d files with entry "%s"', len(files), entry)
    return NormalizedTree(files, entry)
