#!.venv/bin/python

# mypy: disallow_any_expr = false

from dataclasses import dataclass
from importlib import import_module
from pathlib import Path
import subprocess
import shutil
import sys
import zipfile

from test.console import Console


# ======================================================================================


FIXTURE = {
    'index.html': (
        '<!DOCTYPE html>\n<html>\n<head><title>Garden</title></head>\n<body>\n'
        '<div id="root"></div>\n<img src="img/leaf.svg">\n'
        '<script type="module" src="src/main.js"></script>\n'
        '</body>\n</html>\n'
    ),
    'src/main.js': (
        "import './main.css';\n"
        "import { grow } from './plant/grow.js';\n"
        "import React from 'react';\n"
        "grow(document.getElementById('root'));\n"
    ),
    'src/plant/grow.js': 'export function grow(node) { node.textContent = "🌱"; }\n',
    'src/main.css': '#root { background: url(../img/leaf.svg) no-repeat; }\n',
    'img/leaf.svg': '<svg xmlns="http://www.w3.org/2000/svg"></svg>\n',
}


@dataclass
class Options:
    test_runner: str
    console: Console
    module_name: str = ''
    verbose: bool = False

    def make_verbose(self) -> None:
        self.verbose = True
        self.console.verbose = True

    def test_command(self) -> list[str]:
        command = [sys.executable, self.test_runner]
        if self.verbose:
            command.append('-v')
        return command


def run_tests(options: Options) -> int:
    console = options.console
    console.info("Getting started with Hakoniwa's test suite...")
    console.detail(f'Running "{sys.executable}"')
    console.detail(f' - Python {sys.version}')

    try:
        import hakoniwa
        from hakoniwa.assembler import read_bundle
        from hakoniwa.debug import decoded_size
    except ImportError:
        console.error('Unable to import hakoniwa')
        sys.exit(1)

    console.detail(f'Testing hakoniwa {hakoniwa.__version__}')

    cwd = Path('.').absolute()
    tmpdir = cwd / 'tmp'

    shutil.rmtree(tmpdir, ignore_errors=True)
    tmpdir.mkdir()

    # ----------------------------------------------------------------------------------

    console.info('Running unit tests...')

    for module in (
        'test.test_path',
        'test.test_project',
        'test.test_tree',
        'test.test_rewrite',
        'test.test_config',
        'test.test_asset',
        'test.test_assembler',
        'test.test_bridge',
    ):
        console.detail(f'╭──── {module}')
        subprocess.run([*options.test_command(), 'run-test-module', module], check=True)
        console.detail('╰─╼')

    # ----------------------------------------------------------------------------------

    console.info('Writing garden project as directory and zip archive...')

    garden = tmpdir / 'garden'
    for path, content in FIXTURE.items():
        target = garden / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding='utf8')
    (garden / '.DS_Store').write_bytes(b'\0')

    with zipfile.ZipFile(tmpdir / 'garden.zip', mode='w') as archive:
        for path, content in FIXTURE.items():
            archive.writestr(f'garden/{path}', content)
        archive.writestr('__MACOSX/garden/._index.html', b'\0')
    console.detail('Created tmp/garden and tmp/garden.zip')

    # ----------------------------------------------------------------------------------

    console.info('Assembling garden from directory and archive...')

    documents = []
    for index, source in enumerate(('garden', 'garden.zip', 'garden'), start=1):
        output = tmpdir / f'garden{index}.html'
        subprocess.run([
                sys.executable,
                '-m', 'hakoniwa',
                '--credential', 'runtest',
                '-o', str(output),
                str(tmpdir / source),
            ],
            check=True
        )
        documents.append(output.read_text('utf8'))
        console.detail(f'Created tmp/garden{index}.html from tmp/{source}')

    # ----------------------------------------------------------------------------------

    console.info('Comparing module maps of assembled gardens...')

    bundles = [read_bundle(document) for document in documents]
    module_maps = [bundle['imports'] for bundle in bundles]
    keys = [sorted(module_map) for module_map in module_maps]

    mismatch = False
    for index in (1, 2):
        if keys[0] != keys[index]:
            console.detail(
                f'tmp/garden1.html and tmp/garden{index + 1}.html map different modules')
            mismatch = True
    if module_maps[0] == module_maps[2]:
        console.detail('tmp/garden1.html and tmp/garden3.html share handle addresses')
        mismatch = True
    if mismatch:
        console.error('Repeated assembly of the same project is not consistent!')
        sys.exit(1)

    console.detail(f'All three gardens map the same {len(keys[0])} modules')

    # ----------------------------------------------------------------------------------

    console.info('Comparing inlined files to originals...')

    err_count = 0
    for specifier, path in (
        ('app/src/plant/grow.js', 'src/plant/grow.js'),
        ('app/src/main.js', 'src/main.js'),
    ):
        size = decoded_size(bundles[0], module_maps[0][specifier])
        if size is None:
            console.detail(f'Module "{specifier}" is not inlined')
            err_count += 1
            continue

        original = len(FIXTURE[path].encode('utf8'))
        if path == 'src/main.js':
            # The stylesheet import is hoisted and the relative import rewritten.
            original -= len("import './main.css';")
            original += len('app/src/plant/grow.js') - len('./plant/grow.js')
        if size == original:
            console.detail(f'Module "{specifier}" has the expected {size} bytes')
        else:
            console.detail(f'Module "{specifier}" has {size} instead of {original} bytes')
            err_count += 1

    if 'react' not in module_maps[0]:
        console.detail('Module map lacks the react fallback')
        err_count += 1
    if '"credential": "runtest"' not in documents[0]:
        console.detail('Document lacks the command line credential')
        err_count += 1

    if err_count > 0:
        console.error('Inlining of project files is broken!')
        raise SystemExit(1)

    # ----------------------------------------------------------------------------------

    console.info('Summarizing module map with hakoniwa.debug...')
    subprocess.run([
            sys.executable,
            '-m', 'hakoniwa.debug',
            str(tmpdir / 'garden1.html'),
        ],
        check=True
    )

    # ----------------------------------------------------------------------------------

    console.success('W00t! All tests passed!')

    shutil.rmtree(tmpdir)
    return 0

# ======================================================================================

def run_module_test(options: Options) -> int:
    console = options.console
    module = import_module(options.module_name)

    errors = 0
    for key in dir(module):
        if not key.startswith('test_'):
            continue
        value = getattr(module, key)
        if not callable(value):
            continue

        console.detail(f'├─ {value.__name__}')
        with console.new_prefix('│   '):
            try:
                value(options.console)
            except Exception as x:
                console.exception(x)
                errors += 1

    return bool(errors + console.failed_assertions)

# --------------------------------------------------------------------------------------

if __name__ == '__main__':
    options = Options(sys.argv[0], Console(sys.stdout))
    console = options.console

    try:
        fn = run_tests
        for arg in sys.argv[1:]:
            if arg == '-v':
                options.make_verbose()
            elif arg == 'run-test-module':
                fn = run_module_test
            elif fn == run_module_test and options.module_name == '':
                options.module_name = arg
            else:
                raise SystemExit(f'unrecognized command line argument "{arg}"')

        if fn == run_module_test and options.module_name == '':
            raise SystemExit('can\'t "run-test-module" without module name')

        sys.exit(fn(options))

    except SystemExit as x:
        code = x.code
        if isinstance(code, str):
            console.error(code)
            code = 1
        sys.exit(code)

    except subprocess.CalledProcessError as x:
        cmd = list(x.cmd)
        console.info(
            f'command "{" ".join(cmd)}" failed with exit status {x.returncode}')
        sys.exit(1)

    except Exception as x:
        console.exception(x)
        sys.exit(1)
