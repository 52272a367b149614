import shutil
import tempfile
from pathlib import Path

import pytest


@pytest.fixture
def socket_path():
    """A short socket path; pytest's tmp_path can exceed the Unix socket limit."""
    directory = tempfile.mkdtemp(prefix="af-")
    try:
        yield str(Path(directory) / "w.sock")
    finally:
        shutil.rmtree(directory, ignore_errors=True)
