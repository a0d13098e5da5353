import base64
from collections.abc import Mapping
from pathlib import Path
import sys
from typing import Any
from urllib.parse import unquote

from hakoniwa.assembler import read_bundle


def decoded_size(bundle: 'Mapping[str, Any]', address: str) -> 'None | int':
    prefix = bundle.get('prefix', '')
    if not prefix or not address.startswith(prefix):
        return None
    entry = bundle['files'][unquote(address[len(prefix):])]
    return len(base64.b64decode(entry['data']))


if __name__ == '__main__':
    if len(sys.argv) != 2:
        print('Usage: python -m hakoniwa.debug <path-to-document>')
        sys.exit(1)

    document = Path(sys.argv[1])
    if document.suffix not in ('.html', '.htm'):
        print(f'Error: document "{document}" does not appear to be HTML')
        sys.exit(1)

    try:
        bundle = read_bundle(document.read_text('utf8'))
    except Exception as x:
        print(f'Error: unable to load module map ({x})')
        sys.exit(1)

    module_map = bundle.get('imports', {})
    if not module_map:
        print(f'document "{document}" has no module map')

    files = bundle.get('files', {})
    total = sum(len(entry['data']) for entry in files.values())
    print(f'document "{document}" embeds {len(files)} files in {total} base64 characters')

    for specifier, address in module_map.items():
        try:
            size = decoded_size(bundle, address)
        except Exception as x:
            print(f'Error: module "{specifier}" has malformed address ({x})')
            continue
        if size is None:
            print(f'module "{specifier}" is external: {address}')
        else:
            print(f'module "{specifier}" has {size} bytes')
