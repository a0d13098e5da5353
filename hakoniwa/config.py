from collections.abc import Mapping
from dataclasses import dataclass, fields
import logging
from pathlib import Path
import tomllib
from typing import Any, NamedTuple, Self

from packaging.version import InvalidVersion, Version


__all__ = ('ConfigError', 'DEFAULT_LIBRARIES', 'HostConfig', 'Library', 'pin_libraries')

logger = logging.getLogger('hakoniwa.config')


CDN = 'https://esm.sh'
STYLING_RUNTIME = 'https://cdn.tailwindcss.com'


class ConfigError(ValueError):
    """A malformed configuration file or value."""


class Library(NamedTuple):
    """
    A shared runtime library that embedded code imports by bare specifier
    but that is not part of the project's files.
    """
    specifier: str
    package: str
    version: str
    subpath: str = ''

    @property
    def url(self) -> str:
        return f'{CDN}/{self.package}@{self.version}{self.subpath}'


DEFAULT_LIBRARIES = (
    Library('react', 'react', '18.2.0'),
    Library('react-dom', 'react-dom', '18.2.0', '/client'),
    Library('react-dom/client', 'react-dom', '18.2.0', '/client'),
    Library('lucide-react', 'lucide-react', '0.263.1'),
)


def pin_libraries(
    libraries: 'tuple[Library, ...]', pins: 'Mapping[str, object]'
) -> 'tuple[Library, ...]':
    """
    Apply version pins to the libraries. A pin names a package, which may be
    used by several specifiers. Pins for packages without specifier add a
    specifier with the package's name.
    """
    result = list(libraries)
    for package, version in pins.items():
        if not isinstance(version, str):
            raise ConfigError(f'version of library "{package}" is not a string')
        try:
            Version(version)
        except InvalidVersion as x:
            raise ConfigError(f'library "{package}" has invalid version "{version}"') from x

        matched = False
        for index, library in enumerate(result):
            if library.package == package:
                result[index] = library._replace(version=version)
                matched = True
        if not matched:
            result.append(Library(package, package, version))
    return tuple(result)


@dataclass
class HostConfig:
    """The host's settings that apply to every project."""
    credential: str = ''
    inject_console: bool = True
    transformer: 'None | str' = None
    transform_timeout: float = 10.0
    bridge_timeout_ms: int = 30_000
    styling_runtime: str = STYLING_RUNTIME
    libraries: 'tuple[Library, ...]' = DEFAULT_LIBRARIES

    def module_fallbacks(self) -> 'dict[str, str]':
        return {library.specifier: library.url for library in self.libraries}

    @classmethod
    def from_toml(cls, path: 'str | Path') -> Self:
        path = Path(path)
        try:
            with open(path, mode='rb') as file:
                data = tomllib.load(file)
        except tomllib.TOMLDecodeError as x:
            raise ConfigError(f'malformed configuration "{path}": {x}') from x

        if path.name == 'pyproject.toml':
            table = data.get('tool', {}).get('hakoniwa', {})
        else:
            table = data.get('hakoniwa', {})
        logger.debug('loaded configuration from "%s"', path)
        return cls.from_mapping(table)

    @classmethod
    def from_mapping(cls, table: 'Mapping[str, Any]') -> Self:
        config = cls()
        known = {f.name: f for f in fields(cls) if f.name != 'libraries'}
        for key, value in table.items():
            name = key.replace('-', '_')
            if name == 'libraries':
                if not isinstance(value, Mapping):
                    raise ConfigError('libraries must be a table of version pins')
                config.libraries = pin_libraries(config.libraries, value)
                continue
            if name not in known:
                raise ConfigError(f'unknown configuration key "{key}"')

            expected = type(getattr(config, name))
            if name == 'transformer':
                expected = str
            elif name == 'transform_timeout' and type(value) is int:
                value = float(value)
            if not isinstance(value, expected) or (
                expected is int and isinstance(value, bool)
            ):
                raise ConfigError(
                    f'configuration key "{key}" must be {expected.__name__}')
            setattr(config, name, value)
        return config
