from .console import Console
from hakoniwa.asset import (
    AssetPipeline, AssetSession, BASE_STYLE, build_module_map, FileKind, mime_type
)
from hakoniwa.transform import TransformError


class RecordingTransformer:
    def __init__(self) -> None:
        self.calls: 'list[str]' = []

    def transform(self, code: str, filename: str) -> str:
        self.calls.append(filename)
        return f'/* transpiled {filename} */\n{code}'


class BrokenTransformer:
    def transform(self, code: str, filename: str) -> str:
        raise TransformError(f'cannot parse {filename}')


FILES = {
    'index.html': b'<script type="module" src="src/main.tsx"></script>',
    'src/main.tsx': b"import './main.css';\nimport { helper } from './utils/helper';\n",
    'src/app.js': b"import a from './utils/helper';\nimport b from './utils/helper.js';\n",
    'src/utils/helper.js': b'export const helper = 1;',
    'src/widgets/index.ts': b'export {};',
    'src/main.css': b'.hero { background: url(../img/bg.png); }',
    'css/base.css': b'body { background: url(../img/missing.png); }',
    'img/bg.png': b'\x89PNG\r\n',
}


def test_file_kinds(console: Console) -> None:
    for path, kind, mime in (
        ('index.html', FileKind.MARKUP, 'text/html'),
        ('about.HTM', FileKind.MARKUP, 'text/html'),
        ('src/App.tsx', FileKind.SCRIPT, 'text/javascript'),
        ('lib/x.mjs', FileKind.SCRIPT, 'text/javascript'),
        ('style.css', FileKind.STYLESHEET, 'text/css'),
        ('data.json', FileKind.BINARY, 'application/json'),
        ('img/a.jpeg', FileKind.BINARY, 'image/jpeg'),
        ('LICENSE', FileKind.BINARY, 'application/octet-stream'),
        ('.env', FileKind.BINARY, 'application/octet-stream'),
    ):
        console.assert_eq(FileKind.of(path), kind)
        console.assert_eq(mime_type(path), mime)


def test_session_handles(console: Console) -> None:
    one, two = AssetSession(), AssetSession()
    first = one.allocate('img/a.png', b'abc', 'image/png')
    second = two.allocate('img/a.png', b'abc', 'image/png')

    console.assert_eq(first.address, f'hakoniwa:{one.token}/img/a.png')
    console.assert_op('ne', first.address, second.address)
    console.assert_eq(one.read('img/a.png'), b'abc')
    console.assert_eq(one.table(), {'img/a.png': {'type': 'image/png', 'data': 'YWJj'}})

    spaced = one.allocate('img/my logo (1).png', b'', 'image/png')
    console.assert_eq(spaced.address, f'hakoniwa:{one.token}/img/my%20logo%20%281%29.png')
    console.assert_in('img/a.png', one)
    console.assert_eq(one['img/a.png'], first)

    one.close()
    console.assert_true(one.closed)
    console.assert_eq(one.addresses(), {})
    console.assert_eq(one.table(), {})
    with console.assert_raises(ValueError):
        one.allocate('img/b.png', b'', 'image/png')
    with console.assert_raises(KeyError):
        one['img/a.png']
    with console.assert_raises(KeyError):
        one.read('img/a.png')


def test_build_module_map(console: Console) -> None:
    handles = {
        'src/App.tsx': 'data:app',
        'src/utils/index.js': 'data:utils',
        'src/utils.js': 'data:flat-utils',
        'README': 'data:readme',
    }
    module_map = build_module_map(handles, {'react': 'https://esm.sh/react', 'app/README': 'x'})
    console.assert_eq(module_map, {
        'app/README': 'data:readme',
        'app/src/App': 'data:app',
        'app/src/App.tsx': 'data:app',
        'app/src/utils': 'data:utils',
        'app/src/utils.js': 'data:flat-utils',
        'app/src/utils/index': 'data:utils',
        'app/src/utils/index.js': 'data:utils',
        'react': 'https://esm.sh/react',
    })


def test_pipeline(console: Console) -> None:
    transformer = RecordingTransformer()
    pipeline = AssetPipeline(
        FILES, 'index.html', transformer=transformer, fallbacks={'react': 'cdn:react'})
    session = AssetSession()
    result = pipeline.run(session)

    console.assert_eq(sorted(result.handles), [
        'img/bg.png', 'src/app.js', 'src/main.tsx',
        'src/utils/helper.js', 'src/widgets/index.ts',
    ])
    console.assert_eq(pipeline.kinds['src/main.css'], FileKind.STYLESHEET)
    console.assert_eq(sorted(transformer.calls), ['src/main.tsx', 'src/widgets/index.ts'])

    main = session.read('src/main.tsx').decode('utf8')
    console.assert_eq(main, (
        '/* transpiled src/main.tsx */\n'
        "\nimport { helper } from 'app/src/utils/helper';\n"
    ))

    # Both imports of the helper, with and without extension, hit one handle.
    app = session.read('src/app.js').decode('utf8')
    console.assert_in("from 'app/src/utils/helper';", app)
    console.assert_in("from 'app/src/utils/helper.js';", app)
    helper = result.handles['src/utils/helper.js']
    console.assert_eq(result.module_map['app/src/utils/helper'], helper)
    console.assert_eq(result.module_map['app/src/utils/helper.js'], helper)
    console.assert_eq(result.module_map['app/src/widgets'], result.handles['src/widgets/index.ts'])
    console.assert_eq(result.module_map['react'], 'cdn:react')

    console.assert_true(result.stylesheet.startswith(BASE_STYLE))
    console.assert_in(
        f"/* src/main.css */\n.hero {{ background: url('{result.handles['img/bg.png']}'); }}",
        result.stylesheet)
    console.assert_in(
        '/* css/base.css */\nbody { background: url(../img/missing.png); }',
        result.stylesheet)
    console.assert_true(
        result.stylesheet.index('css/base.css') < result.stylesheet.index('src/main.css'))


def test_pipeline_degrades_on_transform_failure(console: Console) -> None:
    files = {'index.html': b'', 'App.jsx': b"import x from './x';\nexport default <div/>;"}
    session = AssetSession()
    AssetPipeline(files, 'index.html', transformer=BrokenTransformer()).run(session)
    console.assert_eq(
        session.read('App.jsx'),
        b"import x from 'app/x';\nexport default <div/>;",
    )


def test_pipeline_without_transformer(console: Console) -> None:
    files = {'index.html': b'', 'a.ts': b'let x: number = 1;'}
    session = AssetSession()
    result = AssetPipeline(files, 'index.html').run(session)
    console.assert_eq(session.read('a.ts'), b'let x: number = 1;')
    console.assert_eq(result.stylesheet, BASE_STYLE)
