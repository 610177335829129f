from __future__ import annotations
import logging
from typing import Iterator, Optional
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BucketRegionError, CopyError, ListError

log = logging.getLogger(__name__)

# HeadBucket needs some region to sign with before the bucket's own is known.
BOOTSTRAP_REGION = "us-east-1"


def get_s3_client(
    aws_profile: Optional[str] = None,
    aws_access_key_id: Optional[str] = None,
    aws_secret_access_key: Optional[str] = None,
    region_name: Optional[str] = None,
    retries_max_attempts: int = 8,
    retries_mode: str = "standard",
    connect_timeout: int = 10,
    read_timeout: int = 60,
    max_pool_connections: int = 128,
):
    """
    Create a boto3 S3 client with retries and timeouts applied.
    The connection pool should be at least as large as the number of copy workers.
    """
    cfg = Config(
        retries={"max_attempts": retries_max_attempts, "mode": retries_mode},
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        max_pool_connections=max_pool_connections,
    )
    if aws_profile:
        session = boto3.Session(profile_name=aws_profile, region_name=region_name)
    else:
        session = boto3.Session(
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=region_name,
        )
    return session.client("s3", config=cfg)


def get_bucket_region(s3_client, bucket: str) -> str:
    """
    Return the region a bucket lives in, read from the x-amz-bucket-region header.
    S3 sends that header on redirects and 403s too, so only a missing bucket fails.
    """
    try:
        resp = s3_client.head_bucket(Bucket=bucket)
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in {"404", "NoSuchBucket", "NotFound"}:
            raise BucketRegionError(f"unable to find bucket's region: {bucket}") from e
        resp = e.response
    except BotoCoreError as e:
        raise BucketRegionError(f"unable to find bucket's region: {bucket}: {e}") from e
    headers = (resp.get("ResponseMetadata") or {}).get("HTTPHeaders") or {}
    region = headers.get("x-amz-bucket-region")
    if not region:
        raise BucketRegionError(f"unable to find bucket's region: {bucket}")
    log.debug("Bucket %s region: %s", bucket, region)
    return region


def get_s3_client_for_bucket(bucket: str, region_name: Optional[str] = None, **client_kwargs):
    """
    Build a client for `bucket`. With no explicit region, look up the bucket's
    region first and re-create the client there.
    """
    if region_name:
        return get_s3_client(region_name=region_name, **client_kwargs)
    probe = get_s3_client(region_name=BOOTSTRAP_REGION, **client_kwargs)
    region = get_bucket_region(probe, bucket)
    return get_s3_client(region_name=region, **client_kwargs)


def list_objects(s3_client, bucket: str, prefix: str = "", suffix: str = "") -> Iterator[str]:
    """
    Yield object keys under prefix that end with suffix, one page at a time.
    A failed page fetch raises ListError; nothing is retried here.
    """
    paginator = s3_client.get_paginator("list_objects_v2")
    try:
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get("Contents", []) or []:
                key = obj.get("Key")
                if not key:
                    continue
                if key.endswith(suffix):
                    yield key
    except (ClientError, BotoCoreError) as e:
        raise ListError(f"Failed to list s3://{bucket}/{prefix}: {e}") from e


def copy_object(s3_client, source_bucket: str, source_key: str, target_bucket: str, target_key: str) -> None:
    """Server-side copy of a single object."""
    try:
        s3_client.copy_object(
            CopySource={"Bucket": source_bucket, "Key": source_key},
            Bucket=target_bucket,
            Key=target_key,
        )
    except (ClientError, BotoCoreError) as e:
        raise CopyError(
            f"s3://{source_bucket}/{source_key} -> s3://{target_bucket}/{target_key}: {e}",
            key=source_key,
        ) from e
