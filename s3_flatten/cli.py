# cli.py
from __future__ import annotations

import logging
from typing import Optional

import typer

from .core import get_s3_client_for_bucket
from .errors import S3FlattenError, ObjectError, setup_logging
from .flatten import DEFAULT_CONCURRENCY, DEFAULT_DELIMITER, STAT_INTERVAL, flatten_prefix
from .utils import check_paths, parse_s3_path, read_yaml

app = typer.Typer(
    add_completion=False,
    help="Copy objects under an S3 prefix into flat keys under another prefix.",
    context_settings={"help_option_names": ["-h", "--help"]},
)

log = logging.getLogger("s3_flatten.cli")

DEFAULT_CONFIG = "config/config.yaml"

# ---------------- Helpers ----------------
def _load_cfg(config_path: Optional[str]) -> dict:
    """
    Load the YAML config (`aws:` and `flatten:` sections) if present, otherwise
    return {}. A missing or empty file is not an error.
    """
    path = config_path or DEFAULT_CONFIG
    try:
        cfg = read_yaml(path)
    except FileNotFoundError:
        return {}
    if not cfg:
        return {}
    return cfg

def _client_from_cfg(cfg: dict, profile: Optional[str], region: Optional[str], bucket: str, concurrency: int):
    """
    Resolve AWS auth/region with priority:
    CLI flags -> ENV (handled inside boto3) -> YAML -> source bucket's region.
    """
    aws = (cfg.get("aws") or {}) if cfg else {}
    return get_s3_client_for_bucket(
        bucket,
        region_name=region or aws.get("region"),
        aws_profile=profile or aws.get("profile"),
        aws_access_key_id=aws.get("access_key_id"),
        aws_secret_access_key=aws.get("secret_access_key"),
        retries_max_attempts=aws.get("retries_max_attempts", 8),
        retries_mode=aws.get("retries_mode", "standard"),
        connect_timeout=aws.get("connect_timeout", 10),
        read_timeout=aws.get("read_timeout", 60),
        max_pool_connections=aws.get("max_pool_connections", concurrency),
    )

def _pick(cli_value, cfg: dict, name: str, default):
    """CLI flag -> YAML -> default."""
    if cli_value is not None:
        return cli_value
    return cfg.get(name, default)

# ---------------- FLATTEN ----------------
@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def flatten(
    source: str = typer.Argument(..., metavar="SRC", help="Source S3 URI (e.g. s3://src-bucket/path/to/src/)"),
    target: str = typer.Argument(..., metavar="DST", help="Destination S3 URI (e.g. s3://dest-bucket/path/to/dest/)"),
    delimiter: Optional[str] = typer.Option(None, "--delimiter", "-d", help="Delimiter to replace '/' with to flatten path [default: -]"),
    suffix: Optional[str] = typer.Option(None, "--suffix", "-s", help="Copy only objects whose key ends with this suffix"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", min=1, help="Number of parallel copy workers [default: 128]"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
    progress: bool = typer.Option(False, "--progress", help="Show progress bar"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan only; do not copy anything"),
    stat_interval: Optional[float] = typer.Option(None, "--stat-interval", min=0.1, help="Seconds between throughput log lines [default: 10]"),
    profile: Optional[str] = typer.Option(None, "--profile", help="AWS profile name"),
    region: Optional[str] = typer.Option(None, "--region", help="AWS region (default: source bucket's region)"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to YAML config"),
):
    """
    Copy every object under SRC to DST, replacing '/' in the part of the key
    below SRC with the delimiter.
    """
    setup_logging(level=logging.DEBUG if verbose else logging.INFO)

    cfg = _load_cfg(config)
    fcfg = (cfg.get("flatten") or {}) if cfg else {}

    delimiter_val = _pick(delimiter, fcfg, "delimiter", DEFAULT_DELIMITER)
    suffix_val = _pick(suffix, fcfg, "suffix", "")
    if suffix_val is None:
        suffix_val = ""
    concurrency_val = int(_pick(concurrency, fcfg, "concurrency", DEFAULT_CONCURRENCY))
    progress_val = progress or bool(fcfg.get("progress", False))
    dry_run_val = dry_run or bool(fcfg.get("dry_run", False))
    interval_val = float(_pick(stat_interval, fcfg, "stat_interval", STAT_INTERVAL))
    if concurrency_val < 1:
        raise typer.BadParameter("concurrency must be >= 1", param_hint="--concurrency")
    if interval_val <= 0:
        raise typer.BadParameter("stat interval must be > 0", param_hint="--stat-interval")
    if not isinstance(delimiter_val, str):
        raise typer.BadParameter("delimiter must be a string", param_hint="--delimiter")
    if not isinstance(suffix_val, str):
        raise typer.BadParameter("suffix must be a string", param_hint="--suffix")

    try:
        src = parse_s3_path(source)
        dst = parse_s3_path(target)
        check_paths(src, dst)
        s3 = _client_from_cfg(cfg, profile, region, src.bucket, concurrency_val)
        res = flatten_prefix(
            s3,
            src,
            dst,
            delimiter=delimiter_val,
            suffix=suffix_val,
            concurrency=concurrency_val,
            progress=progress_val,
            dry_run=dry_run_val,
            stat_interval=interval_val,
        )
    except ObjectError as e:
        log.error("Failed on key %s: %s", e.key, e)
        raise typer.Exit(code=1)
    except S3FlattenError as e:
        log.error("%s", e)
        raise typer.Exit(code=1)

    typer.echo(
        f"Flattened. Copied: {res['copied']}, Listed: {res['stats']['listed']}, "
        f"Elapsed: {res['stats']['elapsed']:.1f}s, Dry-run: {res['stats']['dry_run']}"
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
