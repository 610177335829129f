from __future__ import annotations
import logging
from typing import Optional

class S3FlattenError(Exception): pass
class PathParseError(S3FlattenError): pass
class PrefixOverlapError(S3FlattenError): pass
class BucketRegionError(S3FlattenError): pass
class ListError(S3FlattenError): pass

class ObjectError(S3FlattenError):
    """Failure tied to one source key."""
    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key

class KeyMappingError(ObjectError): pass
class CopyError(ObjectError): pass

def setup_logging(level: int = logging.INFO, logfile: str | None = None) -> None:
    """Configure the root logger once per run: stderr, plus logfile if given. DEBUG adds per-copy lines."""
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):  # avoid duplicate handlers
        root.removeHandler(h)
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    stream = logging.StreamHandler()
    stream.setFormatter(fmt)
    root.addHandler(stream)
    if logfile:
        fh = logging.FileHandler(logfile)
        fh.setFormatter(fmt)
        root.addHandler(fh)
