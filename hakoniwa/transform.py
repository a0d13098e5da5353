"""
The port to an external transpiler for TypeScript and JSX. Transpilation is
best effort: `apply_transform()` never raises but returns either the
transpiled code or the reason for failure, and the caller decides on the
fallback.
"""

from dataclasses import dataclass
import logging
from typing import Protocol

import requests


__all__ = (
    'apply_transform',
    'HttpTransformer',
    'needs_transform',
    'TransformError',
    'TransformFailed',
    'Transformer',
    'Transpiled',
)

logger = logging.getLogger('hakoniwa.transform')


_TYPED_EXTENSIONS = ('.ts', '.tsx', '.jsx')

HEADERS = {
    'user-agent': 'Hakoniwa (static web project runner)',
    'accept': 'application/json',
}


class TransformError(Exception):
    """A transpiler's failure to process a file."""


class Transformer(Protocol):
    def transform(self, code: str, filename: str) -> str:
        ...


def needs_transform(path: str) -> bool:
    return path.lower().endswith(_TYPED_EXTENSIONS)


class HttpTransformer:
    """
    A transpiler reached over HTTP. The service receives the code, the file
    name, and the syntax extensions to strip, and responds with the code as
    JSON.
    """

    def __init__(self, endpoint: str, timeout: float = 10.0) -> None:
        self._endpoint = endpoint
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(HEADERS)

    def __repr__(self) -> str:
        return f'<hakoniwa-transformer {self._endpoint}>'

    def transform(self, code: str, filename: str) -> str:
        payload = {
            'code': code,
            'filename': filename,
            'loaders': ['typescript', 'react'],
        }
        try:
            response = self._session.post(
                self._endpoint, json=payload, timeout=self._timeout)
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as x:
            raise TransformError(f'transpiler request for "{filename}" failed: {x}') from x
        except ValueError as x:
            raise TransformError(f'transpiler sent malformed JSON for "{filename}"') from x

        if not isinstance(result, dict) or not isinstance(result.get('code'), str):
            raise TransformError(f'transpiler response for "{filename}" has no code')
        return result['code']

    def close(self) -> None:
        self._session.close()


@dataclass(frozen=True)
class Transpiled:
    code: str


@dataclass(frozen=True)
class TransformFailed:
    error: Exception


def apply_transform(
    transformer: Transformer, code: str, filename: str
) -> 'Transpiled | TransformFailed':
    logger.debug('transpiling "%s"', filename)
    try:
        return Transpiled(transformer.transform(code, filename))
    except Exception as x:
        return TransformFailed(x)
