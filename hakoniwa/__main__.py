from argparse import ArgumentParser, HelpFormatter, RawTextHelpFormatter
from contextlib import nullcontext
from dataclasses import dataclass
import logging
import os
import sys
from textwrap import dedent
import traceback
from typing import IO, TYPE_CHECKING

from .assembler import ProjectRunner
from .config import HostConfig
from .ingest import ingest
from .project import ProjectKind
from .transform import HttpTransformer

if TYPE_CHECKING:
    from contextlib import AbstractContextManager


def parser() -> ArgumentParser:
    try:
        width = min(os.get_terminal_size()[0], 70)
    except OSError:
        width = 70

    def width_limited_formatter(prog: str) -> HelpFormatter:
        return RawTextHelpFormatter(prog, width=width)

    parser = ArgumentParser('hakoniwa',
        description=dedent("""
            Combine a static web project into a single, self-contained HTML
            document that runs inside a sandboxed frame.

            Hakoniwa accepts a zip archive, a directory, or a single file. It
            detects the entry document, rewrites relative references in
            scripts, stylesheets, and markup, and embeds all other files
            once. When the document starts, it turns them into object
            addresses that a generated import map resolves. Projects
            without HTML entry document produce a diagnostic page listing
            their files.

            TypeScript and JSX require a transpiler, which Hakoniwa reaches
            over HTTP. Without one, such files are included as is.
        """),
        formatter_class=width_limited_formatter)
    parser.add_argument(
        '-c', '--config',
        metavar='FILENAME',
        help='read host configuration from this TOML file')
    parser.add_argument(
        '--credential',
        metavar='VALUE',
        help='expose this credential to the document as\nAPI_KEY')
    parser.add_argument(
        '--no-console',
        action='store_true',
        help="don't forward the document's console output")
    parser.add_argument(
        '-o', '--output',
        metavar='FILENAME',
        help='write document to this file')
    parser.add_argument(
        '-t', '--transformer',
        metavar='URL',
        help='transpile TypeScript and JSX with this service')
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='enable verbose output')
    parser.add_argument(
        'source',
        metavar='SOURCE',
        help='zip archive, directory, or file to assemble')
    return parser


@dataclass
class ToolOptions:
    config: 'None | str' = None
    credential: 'None | str' = None
    no_console: bool = False
    output: 'None | str' = None
    transformer: 'None | str' = None
    verbose: bool = False
    source: str = ''


def load_config(options: ToolOptions) -> HostConfig:
    config = HostConfig() if options.config is None else HostConfig.from_toml(options.config)
    if options.credential is not None:
        config.credential = options.credential
    if options.no_console:
        config.inject_console = False
    if options.transformer is not None:
        config.transformer = options.transformer
    return config


def main() -> None:
    options = parser().parse_args(namespace=ToolOptions())
    logging.basicConfig(
        level=logging.DEBUG if options.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        config = load_config(options)
        project = ingest(options.source)
        if project.kind is ProjectKind.EXTERNAL_REFERENCE:
            print(f'{project.name} is an external page: {project.external_url}')
            return

        transformer = None
        if config.transformer is not None:
            transformer = HttpTransformer(config.transformer, config.transform_timeout)

        runner = ProjectRunner(project, config, transformer=transformer)
        document = runner.refresh().document

        context: 'AbstractContextManager[IO[str]]'
        if options.output is None:
            context = nullcontext(sys.stdout)
        else:
            context = open(options.output, mode='w', encoding='utf8')
        with context as output:
            output.write(document)
        runner.close()
        if transformer is not None:
            transformer.close()
    except Exception as x:
        if options.verbose:
            traceback.print_exception(x)
        else:
            print(f'Error: {x}')
        sys.exit(1)


if __name__ == '__main__':
    main()
