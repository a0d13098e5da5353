"""
The host's half of the message bridge between an assembled document and its
host. Documents send two kinds of messages:

  * `{"kind": "log", "severity", "message", "timestamp", "stack"?}` is
    one-way. The host appends a log entry and never replies.
  * `{"kind": "storage", "id", "action", "key"?, "value"?}` asks the host to
    perform a storage action against the project's key-value storage. The
    host replies with `{"kind": "storage-response", "id", "success", ...}`,
    carrying `value`, `keys`, `data`, or `error` depending on the action and
    outcome. The `id` echoes the request's, which lets the document match
    responses to requests when several are outstanding.

No fault while handling a message escapes the host. Storage faults turn into
error responses and logging faults into warnings.
"""

from collections.abc import Mapping
import json
import logging
from typing import Any, Callable, TYPE_CHECKING

from .project import LogEntry, now_millis, Severity

if TYPE_CHECKING:
    from .store import ProjectStorage, ProjectStore


__all__ = ('BridgeHost', 'STORAGE_ACTIONS')

logger = logging.getLogger('hakoniwa.bridge')


STORAGE_ACTIONS = ('get', 'set', 'remove', 'clear', 'keys', 'getAll')


class BridgeHost:
    """The message handler for one project's running document."""

    def __init__(
        self,
        project_id: str,
        store: 'ProjectStore',
        *,
        on_log: 'None | Callable[[LogEntry], None]' = None,
    ) -> None:
        self._project_id = project_id
        self._store = store
        self._on_log = on_log

    def __repr__(self) -> str:
        return f'<hakoniwa-bridge {self._project_id}>'

    def handle_json(self, text: 'str | bytes') -> 'None | str':
        try:
            message = json.loads(text)
        except ValueError:
            logger.warning('ignoring malformed bridge message for %s', self._project_id)
            return None
        response = self.handle(message)
        return None if response is None else json.dumps(response)

    def handle(self, message: object) -> 'None | dict[str, Any]':
        if not isinstance(message, Mapping):
            return None
        match message.get('kind'):
            case 'log':
                self.handle_log(message)
                return None
            case 'storage':
                return self.handle_storage(message)
            case kind:
                logger.debug('ignoring bridge message of kind %r', kind)
                return None

    # ----------------------------------------------------------------------------------

    def handle_log(self, message: 'Mapping[str, Any]') -> None:
        try:
            timestamp = message.get('timestamp')
            stack = message.get('stack')
            entry = LogEntry(
                project_id=self._project_id,
                severity=Severity.parse(message.get('severity')),
                message=str(message.get('message', '')),
                timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else now_millis(),
                stack=None if stack is None else str(stack),
            )
            self._store.append_log(entry)
            if self._on_log is not None:
                self._on_log(entry)
        except Exception as x:
            logger.warning('unable to record log entry for %s: %s', self._project_id, x)

    def handle_storage(self, message: 'Mapping[str, Any]') -> 'dict[str, Any]':
        response: 'dict[str, Any]' = {'kind': 'storage-response'}
        if 'id' in message:
            response['id'] = message['id']

        try:
            response.update(self.perform(
                self._store.storage(self._project_id),
                message.get('action'),
                message.get('key'),
                message.get('value'),
            ))
            response['success'] = True
        except Exception as x:
            logger.warning('storage request for %s failed: %s', self._project_id, x)
            response['success'] = False
            response['error'] = str(x)
        return response

    @staticmethod
    def perform(
        storage: 'ProjectStorage', action: object, key: object, value: object
    ) -> 'dict[str, Any]':
        if action in ('get', 'set', 'remove') and not isinstance(key, str):
            raise ValueError(f'storage action "{action}" requires a string key')

        match action:
            case 'get':
                return {'value': storage.get(key)}  # type: ignore[arg-type]
            case 'set':
                storage.set(key, value)  # type: ignore[arg-type]
                return {}
            case 'remove':
                storage.remove(key)  # type: ignore[arg-type]
                return {}
            case 'clear':
                storage.clear()
                return {}
            case 'keys':
                return {'keys': storage.keys()}
            case 'getAll':
                return {'data': storage.get_all()}
            case _:
                raise ValueError(f'unknown storage action "{action}"')
