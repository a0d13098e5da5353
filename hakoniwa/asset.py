import base64
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
import logging
import secrets
import threading
from typing import NamedTuple
from urllib.parse import quote

from .path import strip_extension
from .project import FileTree
from .rewrite import (
    MODULE_PREFIX, rewrite_imports, rewrite_style_urls, strip_style_imports
)
from .transform import (
    apply_transform, needs_transform, Transformer, TransformFailed, Transpiled
)


__all__ = (
    'ADDRESS_SCHEME',
    'AssetHandle',
    'AssetPipeline',
    'AssetSession',
    'build_module_map',
    'FileKind',
    'mime_type',
    'PipelineResult',
)

logger = logging.getLogger('hakoniwa.asset')


BASE_STYLE = 'html, body, #root { height: 100%; margin: 0; } '

_MIME_TYPES = {
    '.html': 'text/html',
    '.htm': 'text/html',
    '.js': 'text/javascript',
    '.mjs': 'text/javascript',
    '.jsx': 'text/javascript',
    '.ts': 'text/javascript',
    '.tsx': 'text/javascript',
    '.css': 'text/css',
    '.json': 'application/json',
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.svg': 'image/svg+xml',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
}

_INDEX_FILES = ('index.js', 'index.jsx', 'index.ts', 'index.tsx')


def _extension(path: str) -> str:
    name = path.rpartition('/')[2]
    dot = name.rfind('.')
    return name[dot:].lower() if dot > 0 else ''


def mime_type(path: str) -> str:
    return _MIME_TYPES.get(_extension(path), 'application/octet-stream')


class FileKind(Enum):
    MARKUP = 'markup'
    SCRIPT = 'script'
    STYLESHEET = 'stylesheet'
    BINARY = 'binary'

    @classmethod
    def of(cls, path: str) -> 'FileKind':
        match _extension(path):
            case '.html' | '.htm':
                return cls.MARKUP
            case '.js' | '.mjs' | '.jsx' | '.ts' | '.tsx':
                return cls.SCRIPT
            case '.css':
                return cls.STYLESHEET
            case _:
                return cls.BINARY


# --------------------------------------------------------------------------------------


ADDRESS_SCHEME = 'hakoniwa:'


@dataclass(frozen=True)
class AssetHandle:
    """A reference to one file's bytes that is valid for one session only."""
    path: str
    address: str
    token: str
    mime: str


class AssetSession:
    """
    The handles for one assembled document. A handle's address combines the
    session's token with the file's path, so that no two sessions share
    addresses. The bytes behind the handles are kept once per file, and the
    document turns them into object addresses when it starts. Closing the
    session revokes all handles.
    """

    def __init__(self) -> None:
        self._token = secrets.token_hex(8)
        self._handles: 'dict[str, AssetHandle]' = {}
        self._contents: 'dict[str, bytes]' = {}
        self._lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        state = 'closed' if self._closed else f'{len(self._handles)} handles'
        return f'<hakoniwa-session {self._token} {state}>'

    @property
    def token(self) -> str:
        return self._token

    @property
    def prefix(self) -> str:
        return f'{ADDRESS_SCHEME}{self._token}/'

    @property
    def closed(self) -> bool:
        return self._closed

    def allocate(self, path: str, content: bytes, mime: str) -> AssetHandle:
        handle = AssetHandle(path, self.prefix + quote(path, safe='/'), self._token, mime)
        with self._lock:
            if self._closed:
                raise ValueError(f'session {self._token} is closed')
            self._handles[path] = handle
            self._contents[path] = content
        return handle

    def addresses(self) -> 'dict[str, str]':
        with self._lock:
            return {path: handle.address for path, handle in self._handles.items()}

    def read(self, path: str) -> bytes:
        if self._closed:
            raise KeyError(f'session {self._token} is closed')
        return self._contents[path]

    def table(self) -> 'dict[str, dict[str, str]]':
        """Encode every file once, keyed by path, for embedding in a document."""
        with self._lock:
            return {
                path: {
                    'type': handle.mime,
                    'data': base64.b64encode(self._contents[path]).decode('ascii'),
                }
                for path, handle in sorted(self._handles.items())
            }

    def __contains__(self, path: str) -> bool:
        return path in self._handles

    def __getitem__(self, path: str) -> AssetHandle:
        if self._closed:
            raise KeyError(f'session {self._token} is closed')
        return self._handles[path]

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._handles.clear()
            self._contents.clear()


# --------------------------------------------------------------------------------------


def build_module_map(
    handles: 'Mapping[str, str]',
    fallbacks: 'None | Mapping[str, str]' = None,
    prefix: str = MODULE_PREFIX,
) -> 'dict[str, str]':
    """
    Derive the module map from the handle table. Every file is reachable by
    its exact path, its path without extension, and, if it is a directory's
    index module, the directory. Exact paths win over the other two.
    Fallbacks fill in bare specifiers not provided by the project.
    """
    aliases: 'dict[str, str]' = {}
    for path, address in sorted(handles.items()):
        bare = strip_extension(path)
        if bare != path:
            aliases[prefix + bare] = address
        directory, _, name = path.rpartition('/')
        if directory and name in _INDEX_FILES:
            aliases[prefix + directory] = address

    imports = dict(aliases)
    for path, address in handles.items():
        imports[prefix + path] = address
    for specifier, url in (fallbacks or {}).items():
        imports.setdefault(specifier, url)
    return dict(sorted(imports.items()))


class PipelineResult(NamedTuple):
    handles: 'dict[str, str]'
    module_map: 'dict[str, str]'
    stylesheet: str


class AssetPipeline:
    """
    Turn every file but the entry into something the frame can load. Scripts
    and other files become handles, whereas stylesheets are merged into one
    global stylesheet. Per-file steps run concurrently. All handles exist
    before stylesheets are rewritten, since stylesheets refer to other files.
    """

    def __init__(
        self,
        files: FileTree,
        entry: str,
        *,
        transformer: 'None | Transformer' = None,
        fallbacks: 'None | Mapping[str, str]' = None,
        prefix: str = MODULE_PREFIX,
        max_workers: 'None | int' = None,
    ) -> None:
        self._files = files
        self._entry = entry
        self._transformer = transformer
        self._fallbacks = fallbacks
        self._prefix = prefix
        self._max_workers = max_workers
        self._kinds = {
            path: FileKind.of(path) for path in sorted(files) if path != entry
        }

    def __repr__(self) -> str:
        return f'<hakoniwa-pipeline {len(self._kinds)} files>'

    @property
    def kinds(self) -> 'dict[str, FileKind]':
        return dict(self._kinds)

    # ----------------------------------------------------------------------------------

    def run(self, session: AssetSession) -> PipelineResult:
        loadable = [path for path, kind in self._kinds.items()
                    if kind is not FileKind.STYLESHEET]
        stylesheets = [path for path, kind in self._kinds.items()
                       if kind is FileKind.STYLESHEET]

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            for handle in executor.map(lambda p: self.handle_file(session, p), loadable):
                logger.debug('allocated handle for "%s"', handle.path)

            handles = session.addresses()
            styles = list(executor.map(
                lambda p: self.process_stylesheet(p, handles), stylesheets))

        stylesheet = BASE_STYLE + ''.join(
            f'\n/* {path} */\n{css}' for path, css in zip(stylesheets, styles))
        module_map = build_module_map(handles, self._fallbacks, self._prefix)
        return PipelineResult(handles, module_map, stylesheet)

    def handle_file(self, session: AssetSession, path: str) -> AssetHandle:
        content = self._files[path]
        if self._kinds[path] is FileKind.SCRIPT:
            return session.allocate(path, self.process_script(path, content), 'text/javascript')
        return session.allocate(path, content, mime_type(path))

    def process_script(self, path: str, content: bytes) -> bytes:
        code = content.decode('utf8', errors='replace')
        code = strip_style_imports(code)
        code = rewrite_imports(code, path, self._prefix)

        if self._transformer is not None and needs_transform(path):
            match apply_transform(self._transformer, code, path):
                case Transpiled(code=transpiled):
                    code = transpiled
                case TransformFailed(error=error):
                    logger.warning(
                        'transpiling "%s" failed, using code as is: %s', path, error)

        return code.encode('utf8')

    def process_stylesheet(self, path: str, handles: 'Mapping[str, str]') -> str:
        css = self._files[path].decode('utf8', errors='replace')
        return rewrite_style_urls(css, path, handles)
