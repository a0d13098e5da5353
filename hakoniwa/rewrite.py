"""
Rewriting of relative references in scripts, stylesheets, and markup. All
three rewriters share the same rule: a relative reference is replaced by its
resolved form, whereas anything else passes through. A reference that does
not resolve to a known file is left alone, so it fails inside the frame.
"""

from collections.abc import Mapping
import re

from .path import dirname, is_external, resolve


__all__ = (
    'MODULE_PREFIX',
    'rewrite_imports',
    'rewrite_markup',
    'rewrite_style_urls',
    'strip_style_imports',
)


MODULE_PREFIX = 'app/'

_IMPORT: re.Pattern[str] = re.compile(
    r"""
        (?P<head> \b (?: import | export ) \s+
                  (?: [\w\s{},*$]*? \s* from \s* )?
                  (?P<quote> ['"] ) )
        (?P<specifier> [^'"\n]+ )
        (?P=quote)
    """,
    re.VERBOSE)

_STYLE_IMPORT = re.compile(r"""import\s+(['"])[^'"\n]*\.css\1[ \t]*;?""")

_STYLE_URL = re.compile(r"""url\(\s*(['"]?)(.*?)\1\s*\)""", re.IGNORECASE)

_ATTRIBUTE = re.compile(
    r"""(?<![\w-])(src|href|action)=(["']?)([^"'>\s]+)\2""", re.IGNORECASE)

# A page may refer to the compiled script, whereas the tree only has the source.
_SOURCE_EXTENSIONS = ('.tsx', '.jsx', '.ts')


def strip_style_imports(code: str) -> str:
    """Remove side-effect imports of stylesheets, which are hoisted separately."""
    return _STYLE_IMPORT.sub('', code)


def rewrite_imports(code: str, path: str, prefix: str = MODULE_PREFIX) -> str:
    """
    Rewrite the relative module specifiers of static import and export
    statements into logical specifiers, i.e., the prefix followed by the
    resolved path. The module map then serves all files through one flat
    namespace, no matter how deeply they were nested.
    """
    directory = dirname(path)

    def replace(match: 're.Match[str]') -> str:
        specifier = match['specifier']
        if not specifier.startswith('.'):
            return match[0]
        resolved = resolve(directory, specifier)
        return f"{match['head']}{prefix}{resolved}{match['quote']}"

    return _IMPORT.sub(replace, code)


def rewrite_style_urls(css: str, path: str, handles: 'Mapping[str, str]') -> str:
    directory = dirname(path)

    def replace(match: 're.Match[str]') -> str:
        ref = match[2].strip().strip('\'"')
        if not ref or is_external(ref):
            return match[0]
        address = handles.get(resolve(directory, ref))
        return match[0] if address is None else f"url('{address}')"

    return _STYLE_URL.sub(replace, css)


def rewrite_markup(markup: str, path: str, handles: 'Mapping[str, str]') -> str:
    directory = dirname(path)

    def replace(match: 're.Match[str]') -> str:
        attribute, value = match[1], match[3]
        if is_external(value):
            return match[0]

        resolved = resolve(directory, value)
        address = handles.get(resolved)
        if address is None and resolved.endswith('.js'):
            for extension in _SOURCE_EXTENSIONS:
                address = handles.get(resolved[:-3] + extension)
                if address is not None:
                    break
        return match[0] if address is None else f'{attribute}="{address}"'

    return _ATTRIBUTE.sub(replace, markup)
