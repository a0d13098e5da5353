from collections.abc import Mapping
from dataclasses import dataclass, field
import html
import json
import logging
import re
import secrets
import threading
from typing import Any, NamedTuple, Self

from .asset import AssetPipeline, AssetSession
from .config import HostConfig
from .project import FileTree, Project, ProjectKind, ProjectSettings
from .rewrite import rewrite_markup
from .transform import Transformer


__all__ = (
    'Assembly',
    'DocumentAssembler',
    'ProjectRunner',
    'read_bundle',
    'read_module_map',
    'resolve_credential',
    'ShimConfig',
)

logger = logging.getLogger('hakoniwa.assembler')


# The runtime initialization block. It runs synchronously before any module
# script, so that the environment exists when the project's code starts.

_BOOT_OPEN = """\
<script>
(function (config) {
  'use strict';
  function post(message) {
    try { window.parent.postMessage(message, '*'); } catch (e) {}
  }
"""

_ENVIRONMENT = """\
  window.API_KEY = config.credential;
  window.process = window.process || {};
  window.process.env = window.process.env || {};
  window.process.env.API_KEY = config.credential;
  if (!config.credential) {
    console.warn('[hakoniwa] No credential configured, API calls may fail.');
  }
"""

_CONSOLE = """\
  function format(args) {
    return Array.prototype.map.call(args, function (value) {
      try {
        return typeof value === 'object' ? JSON.stringify(value) : String(value);
      } catch (e) {
        return String(value);
      }
    }).join(' ');
  }
  function forward(severity, args, stack) {
    var message = {
      kind: 'log', severity: severity, message: format(args), timestamp: Date.now()
    };
    if (stack) message.stack = String(stack);
    post(message);
  }
  ['log', 'info', 'warn', 'error', 'debug'].forEach(function (method) {
    var original = console[method];
    var severity = method === 'log' ? 'info' : method;
    console[method] = function () {
      var quiet = method === 'warn' && config.stylingRuntime
        && typeof arguments[0] === 'string'
        && arguments[0].indexOf(config.stylingRuntime) >= 0;
      if (quiet) return;
      forward(severity, arguments);
      if (original) original.apply(console, arguments);
    };
  });
"""

_ERRORS = """\
  window.addEventListener('error', function (event) {
    var where = event.lineno ? ' (Line ' + event.lineno + ')' : '';
    forward('error', [String(event.message) + where], event.error && event.error.stack);
  });
  window.addEventListener('unhandledrejection', function (event) {
    var reason = event.reason;
    forward('error', ['Unhandled rejection: ' + String(reason)], reason && reason.stack);
  });
"""

_STORAGE = """\
  var pending = new Map();
  var counter = 0;
  window.addEventListener('message', function (event) {
    var data = event.data;
    if (!data || data.kind !== 'storage-response' || !pending.has(data.id)) return;
    var request = pending.get(data.id);
    pending.delete(data.id);
    if (request.timer) clearTimeout(request.timer);
    if (!data.success) {
      request.reject(new Error(data.error || 'storage request failed'));
    } else if ('value' in data) {
      request.resolve(data.value);
    } else if ('keys' in data) {
      request.resolve(data.keys);
    } else if ('data' in data) {
      request.resolve(data.data);
    } else {
      request.resolve(undefined);
    }
  });
  function request(action, key, value) {
    return new Promise(function (resolve, reject) {
      var id = config.channel + ':' + (++counter);
      var timer = null;
      if (config.timeout > 0) {
        timer = setTimeout(function () {
          pending.delete(id);
          reject(new Error('storage request "' + action + '" timed out'));
        }, config.timeout);
      }
      pending.set(id, { resolve: resolve, reject: reject, timer: timer });
      var message = { kind: 'storage', id: id, action: action };
      if (key !== undefined) message.key = key;
      if (value !== undefined) message.value = value;
      post(message);
    });
  }
  window.hakoniwa = Object.freeze({
    storage: Object.freeze({
      get: function (key) { return request('get', key); },
      set: function (key, value) { return request('set', key, value); },
      remove: function (key) { return request('remove', key); },
      clear: function () { return request('clear'); },
      keys: function () { return request('keys'); },
      getAll: function () { return request('getAll'); }
    })
  });
"""

_BOOT_CLOSE = """\
})(@CONFIG@);
</script>
"""

# Turns the embedded file table into object addresses, then installs the
# import map and the stylesheet. Handle addresses in markup are swapped for
# object addresses as the parser inserts elements, which happens before
# scripts among them are prepared.

_INSTALLER = r"""<script>
(function (bundle) {
  'use strict';
  var urls = {};
  Object.keys(bundle.files).forEach(function (path) {
    var file = bundle.files[path];
    var binary = atob(file.data);
    var bytes = new Uint8Array(binary.length);
    for (var i = 0; i < binary.length; i++) bytes[i] = binary.charCodeAt(i);
    urls[path] = URL.createObjectURL(new Blob([bytes], { type: file.type }));
  });
  var handle = new RegExp(bundle.prefix + '[\\w.~%/-]+', 'g');
  function resolve(text) {
    return text.replace(handle, function (address) {
      return urls[decodeURIComponent(address.slice(bundle.prefix.length))] || address;
    });
  }

  var imports = {};
  Object.keys(bundle.imports).forEach(function (specifier) {
    imports[specifier] = resolve(bundle.imports[specifier]);
  });
  var map = document.createElement('script');
  map.type = 'importmap';
  map.textContent = JSON.stringify({ imports: imports });
  document.head.appendChild(map);

  var style = document.createElement('style');
  style.textContent = resolve(bundle.stylesheet);
  document.head.appendChild(style);

  function fix(element) {
    ['src', 'href', 'action'].forEach(function (name) {
      var value = element.getAttribute(name);
      if (value && value.indexOf(bundle.prefix) === 0) {
        element.setAttribute(name, resolve(value));
      }
    });
  }
  new MutationObserver(function (records) {
    records.forEach(function (record) {
      record.addedNodes.forEach(function (node) {
        if (node.nodeType !== 1) return;
        fix(node);
        node.querySelectorAll('[src], [href], [action]').forEach(fix);
      });
    });
  }).observe(document.documentElement, { childList: true, subtree: true });

  window.addEventListener('pagehide', function () {
    Object.keys(urls).forEach(function (path) { URL.revokeObjectURL(urls[path]); });
  });
})(JSON.parse(document.getElementById('hakoniwa-bundle').textContent));
</script>
"""

_DIAGNOSTIC = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Debug</title>
<style>
body{background:#0f172a;color:#fff;font-family:sans-serif;padding:20px;}
.card{background:#1e293b;padding:20px;border-radius:8px;}
ul{list-style:none;padding:0;}
li{padding:8px;border-bottom:1px solid #334155;}
</style>
</head>
<body>
<div class="card">
<h2>No Entry Point Found</h2>
<p>Could not locate index.html. Loaded files:</p>
<ul>
@FILES@
</ul>
</div>
</body>
</html>
"""

_HEAD = re.compile(r'<head\b[^>]*>', re.IGNORECASE)
_HTML = re.compile(r'<html\b[^>]*>', re.IGNORECASE)
_BUNDLE = re.compile(
    r'<script type="application/json" id="hakoniwa-bundle">(.*?)</script>', re.DOTALL)


def script_json(value: object) -> str:
    """Serialize the value as JSON that cannot end the enclosing element."""
    return json.dumps(value, sort_keys=True).replace('<', '\\u003c')


def resolve_credential(override: 'None | str', host_default: 'None | str') -> str:
    return override or host_default or ''


# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class ShimConfig:
    """
    The configuration materialized in a document's initialization block.
    Each document gets its own copy, nothing is shared between documents.
    """
    credential: str = ''
    inject_console: bool = True
    bridge_timeout_ms: int = 30_000
    styling_runtime: str = ''
    fallbacks: 'Mapping[str, str]' = field(default_factory=dict)
    channel: str = field(default_factory=lambda: secrets.token_hex(4))

    @classmethod
    def for_project(cls, settings: ProjectSettings, host: HostConfig) -> Self:
        return cls(
            credential=resolve_credential(settings.credential, host.credential),
            inject_console=settings.inject_console and host.inject_console,
            bridge_timeout_ms=host.bridge_timeout_ms,
            styling_runtime=host.styling_runtime,
            fallbacks=host.module_fallbacks(),
        )

    def runtime_bindings(self) -> 'dict[str, Any]':
        return {
            'credential': self.credential,
            'channel': self.channel,
            'timeout': self.bridge_timeout_ms,
            'stylingRuntime': self.styling_runtime,
        }


class Assembly(NamedTuple):
    document: str
    module_map: 'dict[str, str]'
    session: AssetSession


class DocumentAssembler:
    """Combine a file tree into a single document for a sandboxed frame."""

    def __init__(
        self,
        config: ShimConfig,
        *,
        transformer: 'None | Transformer' = None,
        max_workers: 'None | int' = None,
    ) -> None:
        self._config = config
        self._transformer = transformer
        self._max_workers = max_workers

    def assemble(self, files: FileTree, entry: str) -> Assembly:
        session = AssetSession()
        if not entry or entry not in files:
            logger.info('no entry document among %d files', len(files))
            return Assembly(self.emit_diagnostic(files), {}, session)

        pipeline = AssetPipeline(
            files,
            entry,
            transformer=self._transformer,
            fallbacks=self._config.fallbacks,
            max_workers=self._max_workers,
        )
        result = pipeline.run(session)

        markup = files[entry].decode('utf8', errors='replace')
        markup = rewrite_markup(markup, entry, result.handles)
        bundle = {
            'prefix': session.prefix,
            'files': session.table(),
            'imports': result.module_map,
            'stylesheet': result.stylesheet,
        }
        head = ''.join(self.emit_head(bundle))
        logger.debug(
            'assembled "%s" with %d handles and %d module map entries',
            entry, len(result.handles), len(result.module_map))
        return Assembly(inject_head(markup, head), result.module_map, session)

    # ----------------------------------------------------------------------------------

    def emit_head(self, bundle: 'Mapping[str, Any]') -> 'list[str]':
        config = self._config
        parts = ['<meta charset="UTF-8">\n', _BOOT_OPEN, _ENVIRONMENT]
        if config.inject_console:
            parts.extend((_CONSOLE, _ERRORS))
        parts.append(_STORAGE)
        parts.append(_BOOT_CLOSE.replace('@CONFIG@', script_json(config.runtime_bindings())))

        # The file table appears once. Everything else refers to it by handle.
        parts.append('<script type="application/json" id="hakoniwa-bundle">')
        parts.append(script_json(dict(bundle)))
        parts.append('</script>\n')
        parts.append(_INSTALLER)
        if config.styling_runtime:
            parts.append(f'<script src="{html.escape(config.styling_runtime)}"></script>\n')
        return parts

    @staticmethod
    def emit_diagnostic(files: 'Mapping[str, bytes]') -> str:
        items = '\n'.join(f'<li>{html.escape(path)}</li>' for path in sorted(files))
        return _DIAGNOSTIC.replace('@FILES@', items)


def inject_head(markup: str, head: str) -> str:
    if (match := _HEAD.search(markup)) is not None:
        return markup[:match.end()] + head + markup[match.end():]
    if (match := _HTML.search(markup)) is not None:
        return markup[:match.end()] + f'<head>{head}</head>' + markup[match.end():]
    return f'<head>{head}</head>{markup}'


def read_bundle(document: str) -> 'dict[str, Any]':
    """Recover the embedded file table and module map from an assembled document."""
    match = _BUNDLE.search(document)
    if match is None:
        return {}
    return json.loads(match[1])


def read_module_map(document: str) -> 'dict[str, str]':
    return read_bundle(document).get('imports', {})


# --------------------------------------------------------------------------------------


class ProjectRunner:
    """
    Execution sessions for one project. Every refresh assembles a fresh
    document and revokes the handles of the previous one. Refreshes are not
    cancelled by later ones; whichever completes last is current.
    """

    def __init__(
        self,
        project: Project,
        host: HostConfig,
        *,
        transformer: 'None | Transformer' = None,
    ) -> None:
        self._project = project
        self._host = host
        self._transformer = transformer
        self._lock = threading.Lock()
        self._current: 'None | Assembly' = None

    def __repr__(self) -> str:
        return f'<hakoniwa-runner {self._project.name}>'

    @property
    def current(self) -> 'None | Assembly':
        return self._current

    def refresh(self) -> Assembly:
        project = self._project
        if project.kind is ProjectKind.EXTERNAL_REFERENCE:
            raise ValueError(
                f'project "{project.name}" refers to {project.external_url}, '
                'which opens in a browser')

        config = ShimConfig.for_project(project.settings, self._host)
        assembly = DocumentAssembler(
            config, transformer=self._transformer
        ).assemble(project.files, project.entry)

        with self._lock:
            previous, self._current = self._current, assembly
        if previous is not None:
            previous.session.close()
        return assembly

    def close(self) -> None:
        with self._lock:
            current, self._current = self._current, None
        if current is not None:
            current.session.close()
