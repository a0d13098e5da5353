from pathlib import Path
import tempfile

from .console import Console
from hakoniwa.config import ConfigError, DEFAULT_LIBRARIES, HostConfig, Library, pin_libraries
from hakoniwa.transform import needs_transform


def test_default_config(console: Console) -> None:
    config = HostConfig()
    console.assert_eq(config.credential, '')
    console.assert_eq(config.inject_console, True)
    console.assert_eq(config.transformer, None)
    console.assert_eq(config.module_fallbacks(), {
        'react': 'https://esm.sh/react@18.2.0',
        'react-dom': 'https://esm.sh/react-dom@18.2.0/client',
        'react-dom/client': 'https://esm.sh/react-dom@18.2.0/client',
        'lucide-react': 'https://esm.sh/lucide-react@0.263.1',
    })


def test_pin_libraries(console: Console) -> None:
    libraries = pin_libraries(DEFAULT_LIBRARIES, {'react-dom': '18.3.1', 'three': '0.160.0'})
    by_specifier = {library.specifier: library for library in libraries}
    console.assert_eq(by_specifier['react'].version, '18.2.0')
    console.assert_eq(by_specifier['react-dom'].url, 'https://esm.sh/react-dom@18.3.1/client')
    console.assert_eq(by_specifier['react-dom/client'].version, '18.3.1')
    console.assert_eq(by_specifier['three'], Library('three', 'three', '0.160.0'))

    for pins in ({'react': 'latest'}, {'react': 18}):
        with console.assert_raises(ConfigError):
            pin_libraries(DEFAULT_LIBRARIES, pins)


def test_config_from_toml(console: Console) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / 'hakoniwa.toml'
        path.write_text(
            '[hakoniwa]\n'
            'credential = "from-file"\n'
            'inject-console = false\n'
            'transformer = "http://localhost:8787/transform"\n'
            'transform_timeout = 3\n'
            'bridge_timeout_ms = 0\n'
            '\n'
            '[hakoniwa.libraries]\n'
            'react = "18.3.1"\n'
        )
        config = HostConfig.from_toml(path)
        console.assert_eq(config.credential, 'from-file')
        console.assert_eq(config.inject_console, False)
        console.assert_eq(config.transformer, 'http://localhost:8787/transform')
        console.assert_eq(config.transform_timeout, 3.0)
        console.assert_eq(config.bridge_timeout_ms, 0)
        console.assert_eq(config.module_fallbacks()['react'], 'https://esm.sh/react@18.3.1')

        pyproject = Path(tmp) / 'pyproject.toml'
        pyproject.write_text('[tool.hakoniwa]\ncredential = "nested"\n')
        console.assert_eq(HostConfig.from_toml(pyproject).credential, 'nested')


def test_bad_config(console: Console) -> None:
    for table in (
        {'colour': 'blue'},
        {'inject_console': 'yes'},
        {'bridge_timeout_ms': True},
        {'transformer': 42},
        {'libraries': ['react']},
    ):
        with console.assert_raises(ConfigError):
            HostConfig.from_mapping(table)

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / 'broken.toml'
        path.write_text('[hakoniwa\n')
        with console.assert_raises(ConfigError):
            HostConfig.from_toml(path)


def test_needs_transform(console: Console) -> None:
    for path, expected in (
        ('App.tsx', True),
        ('lib/util.ts', True),
        ('View.JSX', True),
        ('main.js', False),
        ('types.d.mts', False),
    ):
        console.assert_eq(needs_transform(path), expected)
