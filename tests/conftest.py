"""Shared fixtures: an in-memory stand-in for the boto3 S3 client."""

from __future__ import annotations

import logging
import threading

import pytest
from botocore.exceptions import ClientError


def client_error(code: str, operation: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


class FakePaginator:
    def __init__(self, client: "FakeS3Client"):
        self.client = client

    def paginate(self, Bucket, Prefix=""):
        c = self.client
        c.list_calls.append((Bucket, Prefix))
        keys = [k for k in c.objects.get(Bucket, []) if not c.respect_prefix or k.startswith(Prefix)]
        pages = [keys[i : i + c.page_size] for i in range(0, len(keys), c.page_size)] or [[]]
        for n, page in enumerate(pages):
            if c.list_error_at == n:
                raise client_error("InternalError", "ListObjectsV2", "We encountered an internal error")
            if page:
                yield {"Contents": [{"Key": k} for k in page], "KeyCount": len(page)}
            else:
                yield {"KeyCount": 0}


class FakeS3Client:
    """Just enough of the S3 client for listing and server-side copies."""

    def __init__(
        self,
        objects=None,
        page_size: int = 1000,
        fail_keys=(),
        list_error_at=None,
        respect_prefix: bool = True,
        gate: threading.Event = None,
    ):
        self.objects = {b: list(keys) for b, keys in (objects or {}).items()}
        self.page_size = page_size
        self.fail_keys = set(fail_keys)
        self.list_error_at = list_error_at
        self.respect_prefix = respect_prefix
        self.gate = gate
        self.list_calls = []
        self.copied = []
        self._lock = threading.Lock()

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def copy_object(self, CopySource, Bucket, Key):
        if self.gate is not None:
            self.gate.wait()
        if CopySource["Key"] in self.fail_keys:
            raise client_error("AccessDenied", "CopyObject", "Access Denied")
        with self._lock:
            self.copied.append((CopySource["Bucket"], CopySource["Key"], Bucket, Key))
            self.objects.setdefault(Bucket, []).append(Key)
        return {"CopyObjectResult": {}}


@pytest.fixture
def fake_s3():
    return FakeS3Client


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """setup_logging() rewires the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
