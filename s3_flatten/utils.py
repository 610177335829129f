from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict
from urllib.parse import unquote, urlsplit
import yaml

from .errors import KeyMappingError, PathParseError, PrefixOverlapError

S3_SCHEME = "s3"
SEP = "/"


def read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@dataclass(frozen=True)
class S3Path:
    bucket: str
    prefix: str

    def __str__(self) -> str:
        return f"{S3_SCHEME}://{self.bucket}/{self.prefix}"


def normalize_prefix(prefix: str) -> str:
    """
    Strip leading separators and make sure a non-empty prefix ends with one.
    The bucket root stays "" so it still lists every key.
    """
    prefix = prefix.lstrip(SEP)
    if prefix and not prefix.endswith(SEP):
        prefix += SEP
    return prefix


def parse_s3_path(uri: str) -> S3Path:
    try:
        u = urlsplit(uri)
    except ValueError as e:
        raise PathParseError(f"Failed to parse as S3 path: {uri}") from e
    if u.scheme != S3_SCHEME:
        raise PathParseError(f"S3 path should start with `s3://`: {uri}")
    if not u.netloc:
        raise PathParseError(f"S3 path has no bucket: {uri}")
    return S3Path(bucket=u.netloc, prefix=normalize_prefix(unquote(u.path)))


def check_paths(src: S3Path, dst: S3Path) -> None:
    """Reject a destination that lives under the source (same bucket)."""
    if src.bucket == dst.bucket and dst.prefix.startswith(src.prefix):
        raise PrefixOverlapError(
            f"Destination path must not be located under source path: {dst} is under {src}"
        )


def gen_dst_key(src_key: str, src_prefix: str, dst_prefix: str, delimiter: str) -> str:
    """
    Map a source key to its flat destination key.
    'a/b/c.txt' with src_prefix 'a/', dst_prefix 'x/' and '-' -> 'x/b-c.txt'.
    """
    if not src_key.startswith(src_prefix):
        raise KeyMappingError(
            f"Key {src_key!r} does not start with source prefix {src_prefix!r}",
            key=src_key,
        )
    return dst_prefix + src_key[len(src_prefix):].replace(SEP, delimiter)
