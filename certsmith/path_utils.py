import logging
import os
import pathlib
import tempfile
from urllib.parse import urlparse, unquote

from .errors import io_failure

log = logging.getLogger(__name__)

def _norm(p: pathlib.Path) -> pathlib.Path:
    return p.expanduser().resolve(strict=False)

def parse_file_uri(uri_or_path: str) -> pathlib.Path:
    if uri_or_path.startswith("file://"):
        parsed = urlparse(uri_or_path)
        return pathlib.Path(unquote(parsed.path or ""))
    return pathlib.Path(uri_or_path)

def resolve_path(path_like: str | os.PathLike[str]) -> pathlib.Path:
    return _norm(parse_file_uri(os.fspath(path_like)))

def ensure_dir(path: pathlib.Path, mode: int | None = None) -> pathlib.Path:
    """Create ``path`` and its parents; an existing directory is not an error."""
    existed = path.is_dir()
    try:
        path.mkdir(parents=True, exist_ok=True)
        if mode is not None and not existed:
            os.chmod(path, mode)
    except OSError as exc:
        raise io_failure(path, exc, "mkdir") from exc
    return path

def write_file(path: pathlib.Path, data: bytes, mode: int) -> pathlib.Path:
    """Atomically replace ``path`` with ``data`` and apply ``mode``.

    The staging file is created owner-only (mkstemp) so secret bytes are never
    readable by others in transit. Replacing instead of rewriting in place
    keeps re-runs working over read-only outputs of a previous run.
    """
    try:
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as exc:
        raise io_failure(path, exc, "write") from exc
    try:
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, path)
        except OSError as exc:
            raise io_failure(path, exc, "write") from exc
    finally:
        if os.path.exists(tmp):
            try:
                os.unlink(tmp)
            except OSError as exc:
                log.warning("Could not remove staging file %s: %s", tmp, exc)
    return path

def publish_file(src: pathlib.Path, dest: pathlib.Path, mode: int) -> pathlib.Path:
    """Copy ``src`` to ``dest`` and reapply ``mode``; copies never inherit permissions."""
    try:
        data = src.read_bytes()
    except OSError as exc:
        raise io_failure(src, exc, "read") from exc
    return write_file(dest, data, mode)

def file_mode(path: pathlib.Path) -> int:
    return path.stat().st_mode & 0o777
