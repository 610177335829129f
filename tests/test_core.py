"""Tests for s3_flatten/core.py — mocked S3 client."""

from __future__ import annotations

from unittest.mock import MagicMock, call, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from s3_flatten.core import (
    BOOTSTRAP_REGION,
    copy_object,
    get_bucket_region,
    get_s3_client,
    get_s3_client_for_bucket,
    list_objects,
)
from s3_flatten.errors import BucketRegionError, CopyError, ListError


def _client_error(code, op, headers=None):
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPHeaders": headers or {}},
        },
        op,
    )


class TestListObjects:
    def test_lists_all_under_prefix(self, fake_s3):
        s3 = fake_s3({"b1": ["a/1.txt", "a/b/2.txt", "z/3.txt"]})
        assert list(list_objects(s3, "b1", prefix="a/")) == ["a/1.txt", "a/b/2.txt"]
        assert s3.list_calls == [("b1", "a/")]

    def test_suffix_filter(self, fake_s3):
        s3 = fake_s3({"b1": ["a/1.txt", "a/2.log", "a/c/3.log"]})
        assert list(list_objects(s3, "b1", prefix="a/", suffix=".log")) == ["a/2.log", "a/c/3.log"]

    def test_across_pages(self, fake_s3):
        keys = [f"a/{i:04d}" for i in range(25)]
        s3 = fake_s3({"b1": keys}, page_size=10)
        assert list(list_objects(s3, "b1", prefix="a/")) == keys

    def test_empty_listing(self, fake_s3):
        s3 = fake_s3({"b1": []})
        assert list(list_objects(s3, "b1", prefix="a/")) == []

    def test_page_failure_raises_list_error(self, fake_s3):
        s3 = fake_s3({"b1": [f"a/{i}" for i in range(15)]}, page_size=10, list_error_at=1)
        it = list_objects(s3, "b1", prefix="a/")
        first_page = [next(it) for _ in range(10)]
        assert len(first_page) == 10
        with pytest.raises(ListError) as ei:
            next(it)
        assert isinstance(ei.value.__cause__, ClientError)

    def test_is_lazy(self):
        s3 = MagicMock()
        s3.get_paginator.return_value.paginate.return_value = iter([])
        gen = list_objects(s3, "b1", prefix="a/")
        s3.get_paginator.assert_not_called()
        assert list(gen) == []
        s3.get_paginator.assert_called_once_with("list_objects_v2")

    def test_skips_entries_without_key(self):
        s3 = MagicMock()
        s3.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "a/1"}, {}, {"Key": ""}, {"Key": "a/2"}]}
        ]
        assert list(list_objects(s3, "b1", prefix="a/")) == ["a/1", "a/2"]


class TestCopyObject:
    def test_calls_copy_object(self):
        s3 = MagicMock()
        copy_object(s3, "b1", "a/b/2.txt", "b2", "x/b-2.txt")
        s3.copy_object.assert_called_once_with(
            CopySource={"Bucket": "b1", "Key": "a/b/2.txt"},
            Bucket="b2",
            Key="x/b-2.txt",
        )

    def test_client_error_becomes_copy_error(self):
        s3 = MagicMock()
        s3.copy_object.side_effect = _client_error("AccessDenied", "CopyObject")
        with pytest.raises(CopyError) as ei:
            copy_object(s3, "b1", "a/1.txt", "b2", "x/1.txt")
        assert ei.value.key == "a/1.txt"
        assert "AccessDenied" in str(ei.value)
        assert isinstance(ei.value.__cause__, ClientError)

    def test_connection_error_becomes_copy_error(self):
        s3 = MagicMock()
        s3.copy_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.example")
        with pytest.raises(CopyError):
            copy_object(s3, "b1", "a/1.txt", "b2", "x/1.txt")


class TestBucketRegion:
    def test_from_head_bucket(self):
        s3 = MagicMock()
        s3.head_bucket.return_value = {
            "ResponseMetadata": {"HTTPHeaders": {"x-amz-bucket-region": "eu-west-1"}}
        }
        assert get_bucket_region(s3, "b1") == "eu-west-1"
        s3.head_bucket.assert_called_once_with(Bucket="b1")

    def test_from_redirect(self):
        s3 = MagicMock()
        s3.head_bucket.side_effect = _client_error(
            "301", "HeadBucket", {"x-amz-bucket-region": "ap-northeast-1"}
        )
        assert get_bucket_region(s3, "b1") == "ap-northeast-1"

    def test_from_forbidden(self):
        s3 = MagicMock()
        s3.head_bucket.side_effect = _client_error("403", "HeadBucket", {"x-amz-bucket-region": "us-west-2"})
        assert get_bucket_region(s3, "b1") == "us-west-2"

    def test_missing_bucket(self):
        s3 = MagicMock()
        s3.head_bucket.side_effect = _client_error("404", "HeadBucket")
        with pytest.raises(BucketRegionError):
            get_bucket_region(s3, "nope")

    def test_no_region_header(self):
        s3 = MagicMock()
        s3.head_bucket.return_value = {"ResponseMetadata": {"HTTPHeaders": {}}}
        with pytest.raises(BucketRegionError):
            get_bucket_region(s3, "b1")


class TestClientFactory:
    def test_profile_session(self):
        with patch("s3_flatten.core.boto3.Session") as session_cls:
            get_s3_client(aws_profile="dev", region_name="eu-west-1", max_pool_connections=32)
        session_cls.assert_called_once_with(profile_name="dev", region_name="eu-west-1")
        _, kwargs = session_cls.return_value.client.call_args
        assert kwargs["config"].max_pool_connections == 32
        assert kwargs["config"].retries == {"max_attempts": 8, "mode": "standard"}

    def test_key_session(self):
        with patch("s3_flatten.core.boto3.Session") as session_cls:
            get_s3_client(aws_access_key_id="AK", aws_secret_access_key="SK")
        session_cls.assert_called_once_with(
            aws_access_key_id="AK", aws_secret_access_key="SK", region_name=None
        )

    def test_for_bucket_with_region(self):
        with patch("s3_flatten.core.get_s3_client") as factory, patch(
            "s3_flatten.core.get_bucket_region"
        ) as region:
            client = get_s3_client_for_bucket("b1", region_name="us-east-2", aws_profile="dev")
        factory.assert_called_once_with(region_name="us-east-2", aws_profile="dev")
        region.assert_not_called()
        assert client is factory.return_value

    def test_for_bucket_detects_region(self):
        with patch("s3_flatten.core.get_s3_client") as factory, patch(
            "s3_flatten.core.get_bucket_region", return_value="eu-central-1"
        ) as region:
            get_s3_client_for_bucket("b1")
        assert factory.call_args_list == [
            call(region_name=BOOTSTRAP_REGION),
            call(region_name="eu-central-1"),
        ]
        region.assert_called_once_with(factory.return_value, "b1")
