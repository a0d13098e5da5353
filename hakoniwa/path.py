"""
Path algebra for file trees that only exist as dictionary keys. All paths use
forward slashes, are relative to the project root, and never start with `./`
or `/`.
"""

import re


__all__ = ('dirname', 'is_external', 'normalize', 'resolve', 'strip_extension')


_LEADING_JUNK = re.compile(r'^(?:\./|/)+')

_EXTERNAL = re.compile(
    r'^(?:(?:https?|data|blob|mailto|javascript|tel):|//|#)', re.IGNORECASE)

_EXTENSION = re.compile(r'\.[^/.]+$')


def normalize(path: str) -> str:
    return _LEADING_JUNK.sub('', path.replace('\\', '/'))


def dirname(path: str) -> str:
    segments = normalize(path).split('/')
    return '/'.join(segments[:-1]) if len(segments) > 1 else ''


def is_external(ref: str) -> bool:
    """
    Determine whether the reference must pass through unchanged, i.e., carries
    a scheme, is protocol-relative, or only names a fragment.
    """
    return _EXTERNAL.match(ref.strip()) is not None


def strip_extension(path: str) -> str:
    return _EXTENSION.sub('', path)


def resolve(base_dir: str, ref: str) -> str:
    """
    Resolve the reference against the base directory. References with a
    scheme and fragment-only references are returned verbatim. Root-relative
    references are normalized. Relative references are applied segment by
    segment to the base directory, with a `..` at the root being a no-op.
    This function never raises.
    """
    if is_external(ref):
        return ref

    target = ref.split('?', 1)[0].split('#', 1)[0]
    if target.startswith('/'):
        return normalize(target)

    stack = [part for part in base_dir.split('/') if part and part != '.']
    for part in target.replace('\\', '/').split('/'):
        if not part or part == '.':
            continue
        if part == '..':
            if stack:
                stack.pop()
        else:
            stack.append(part)
    return '/'.join(stack)
