from s3_flatten.core import get_s3_client_for_bucket
from s3_flatten.utils import check_paths, parse_s3_path
from s3_flatten.flatten import flatten_prefix

if __name__ == "__main__":
    src = parse_s3_path("s3://my-source/logs/2024/")
    dst = parse_s3_path("s3://my-target/flat/")
    check_paths(src, dst)

    s3 = get_s3_client_for_bucket(src.bucket, max_pool_connections=64)
    res = flatten_prefix(
        s3,
        src,
        dst,
        delimiter="_",
        suffix=".json",
        concurrency=64,
        progress=True,
    )
    print("Copied:", res["copied"], "Elapsed:", round(res["stats"]["elapsed"], 1), "s")
