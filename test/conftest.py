from collections.abc import Iterator
import sys

import pytest

from .console import Console


@pytest.fixture
def console() -> 'Iterator[Console]':
    # The console records failed assertions instead of raising, so check them
    # once the test is done.
    console = Console(sys.stdout, verbose=True)
    yield console
    if console.failed_assertions:
        pytest.fail(f'{console.failed_assertions} console assertion(s) failed')
