from pathlib import Path
import tempfile
import zipfile

from .console import Console
from hakoniwa.ingest import (
    ingest, ingest_archive, ingest_directory, ingest_file, ingest_selection,
    ingest_url, IngestionError
)
from hakoniwa.project import ProjectKind
from hakoniwa.tree import find_entry, is_junk, normalize_tree


def test_unnest_common_directory(console: Console) -> None:
    tree = normalize_tree({
        'proj/index.html': b'<html></html>',
        'proj/app.js': b'console.log(1)',
    })
    console.assert_eq(sorted(tree.files), ['app.js', 'index.html'])
    console.assert_eq(tree.entry, 'index.html')
    console.assert_eq(tree.kind, ProjectKind.EMBEDDED_DOCUMENT)


def test_no_unnesting_of_top_level_files(console: Console) -> None:
    tree = normalize_tree({
        'proj/app.js': b'',
        'index.html': b'',
    })
    console.assert_eq(sorted(tree.files), ['index.html', 'proj/app.js'])

    tree = normalize_tree({'site/index.html': b''})
    console.assert_eq(list(tree.files), ['index.html'])


def test_junk_filtering(console: Console) -> None:
    for path, expected in (
        ('__MACOSX/proj/._index.html', True),
        ('proj/.DS_Store', True),
        ('proj/Thumbs.db', True),
        ('desktop.ini', True),
        ('proj/._app.js', True),
        ('proj/index.html', False),
        ('proj/macosx/notes.txt', False),
    ):
        console.assert_eq(is_junk(path), expected)

    tree = normalize_tree({
        'proj/index.html': b'',
        'proj/.DS_Store': b'',
        '__MACOSX/proj/._index.html': b'',
    })
    console.assert_eq(list(tree.files), ['index.html'])


def test_junk_filtering_fails_open(console: Console) -> None:
    tree = normalize_tree({'.DS_Store': b'x', 'Thumbs.db': b'y'})
    console.assert_eq(sorted(tree.files), ['.DS_Store', 'Thumbs.db'])
    console.assert_eq(tree.entry, '')
    console.assert_eq(tree.kind, ProjectKind.RAW_SNIPPET)


def test_parent_segments_are_dropped(console: Console) -> None:
    tree = normalize_tree({'../etc/passwd': b'', 'a/../../b.js': b'', 'index.html': b''})
    console.assert_eq(list(tree.files), ['index.html'])


def test_entry_detection(console: Console) -> None:
    for paths, expected in (
        (['a.html', 'index.html', 'index.htm'], 'index.html'),
        (['a.html', 'index.htm'], 'index.htm'),
        (['docs/b.html', 'z.HTML', 'a/b/c.htm'], 'z.HTML'),
        (['docs/b.html', 'docs/a.html', 'src/a.htm'], 'docs/a.html'),
        (['src/index.html', 'main.js'], 'src/index.html'),
        (['app.js', 'style.css'], ''),
    ):
        console.assert_eq(find_entry(paths), expected)


def test_ingest_archive(console: Console) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / 'demo.zip'
        with zipfile.ZipFile(path, mode='w') as archive:
            archive.writestr('demo/', '')
            archive.writestr('demo/index.html', '<h1>hi</h1>')
            archive.writestr('demo/src/main.js', 'export default 1;')
            archive.writestr('__MACOSX/demo/._index.html', 'junk')

        project = ingest_archive(path)
        console.assert_eq(project.name, 'demo')
        console.assert_eq(project.kind, ProjectKind.EMBEDDED_DOCUMENT)
        console.assert_eq(project.entry, 'index.html')
        console.assert_eq(sorted(project.files), ['index.html', 'src/main.js'])
        console.assert_eq(project.files['src/main.js'], b'export default 1;')


def corrupt_payload(data: bytes) -> bytes:
    # The single entry's compressed bytes follow its 30 byte local header and name.
    start = 30 + len(b'index.html')
    return data[:start] + bytes(b ^ 0xff for b in data[start:start + 10]) + data[start + 10:]


def patch_central(data: bytes, offset: int, value: int) -> bytes:
    # Overwrite a two byte field of the central directory header.
    index = data.rindex(b'PK\x01\x02') + offset
    return data[:index] + value.to_bytes(2, 'little') + data[index + 2:]


def test_ingest_bad_archives(console: Console) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        corrupt = Path(tmp) / 'corrupt.zip'
        corrupt.write_bytes(b'this is not a zip archive')
        with console.assert_raises(IngestionError):
            ingest_archive(corrupt)

        empty = Path(tmp) / 'empty.zip'
        with zipfile.ZipFile(empty, mode='w') as archive:
            archive.writestr('nothing/', '')
        with console.assert_raises(IngestionError):
            ingest_archive(empty)

        for label, patch in (
            ('deflate', corrupt_payload),
            ('encrypted', lambda data: patch_central(data, 8, 0x01)),
            ('method', lambda data: patch_central(data, 10, 99)),
        ):
            damaged = Path(tmp) / f'{label}.zip'
            with zipfile.ZipFile(damaged, mode='w', compression=zipfile.ZIP_DEFLATED) as archive:
                archive.writestr('index.html', '<p>' + 'grass ' * 500 + '</p>')
            damaged.write_bytes(patch(damaged.read_bytes()))
            with console.assert_raises(IngestionError):
                ingest_archive(damaged)


def test_ingest_directory_and_file(console: Console) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp) / 'game'
        (root / 'js').mkdir(parents=True)
        (root / 'play.html').write_text('<script src="js/game.js"></script>')
        (root / 'js' / 'game.js').write_text('let score = 0;')
        (root / 'js' / 'loop').symlink_to(root, target_is_directory=True)

        project = ingest_directory(root)
        console.assert_eq(project.name, 'game')
        console.assert_eq(project.entry, 'play.html')
        console.assert_eq(sorted(project.files), ['js/game.js', 'play.html'])

        single = ingest_file(root / 'js' / 'game.js')
        console.assert_eq(single.kind, ProjectKind.EMBEDDED_DOCUMENT)
        console.assert_eq(single.entry, 'game.js')
        console.assert_eq(list(single.files), ['game.js'])

        console.assert_eq(ingest(root).name, 'game')

        (Path(tmp) / 'void').mkdir()
        with console.assert_raises(IngestionError):
            ingest_directory(Path(tmp) / 'void')
        with console.assert_raises(IngestionError):
            ingest(Path(tmp) / 'missing.txt')


def test_ingest_selection(console: Console) -> None:
    project = ingest_selection([
        ('site/index.html', 'index.html', b'<p>'),
        ('site/css/main.css', 'main.css', b'body {}'),
    ])
    console.assert_eq(project.name, 'site')
    console.assert_eq(sorted(project.files), ['css/main.css', 'index.html'])

    flat = ingest_selection([
        (None, 'notes.txt', b'a'),
        (None, 'script.js', b'b'),
    ])
    console.assert_eq(flat.name, 'Imported Folder')
    console.assert_eq(flat.kind, ProjectKind.RAW_SNIPPET)
    console.assert_eq(flat.entry, '')

    with console.assert_raises(IngestionError):
        ingest_selection([])


def test_ingest_url(console: Console) -> None:
    project = ingest_url('https://example.com/app')
    console.assert_eq(project.kind, ProjectKind.EXTERNAL_REFERENCE)
    console.assert_eq(project.external_url, 'https://example.com/app')
    console.assert_eq(project.name, 'example.com')
    console.assert_eq(project.files, {})

    for bad in ('ftp://example.com', 'example.com', 'https://'):
        with console.assert_raises(IngestionError):
            ingest_url(bad)
