# Copyright 2026 Canonical Ltd.
# See LICENSE file for licensing details.

"""A collection of utility functions that are used by the replica bootstrap."""

import os
import shutil
import tempfile
from pathlib import Path


def render_file(path: Path, content: str, mode: int) -> None:
    """Atomically replace a file with the given content.

    The content is written to a temporary file in the same directory and
    then moved over the destination, so a reader sees either the old or the
    new file, never a partial one.

    Args:
        path: the path to the file.
        content: the data to be written to the file.
        mode: access permission mask applied to the
          file using chmod (e.g. 0o600).
    """
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as file:
            file.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def recreate_directory(path: Path, mode: int) -> None:
    """Make sure a directory exists and is empty.

    Args:
        path: the directory to recreate.
        mode: access permission mask applied to the
          directory using chmod (e.g. 0o700).
    """
    path.mkdir(parents=True, exist_ok=True)
    # The directory itself may be a mount point, so only its contents are removed.
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
    os.chmod(path, mode)
