from typing import Any, Dict, Iterator, List, Optional, Tuple
from botocore.exceptions import ClientError
from botocore.client import Config
from datetime import tzinfo
import fnmatch
import boto3
import os

from .retention import ObjectDescriptor

# Error codes returned by legal-hold lookups on buckets or objects that have
# no Object Lock configuration at all.
NO_LOCK_ERROR_CODES = (
    "InvalidRequest",
    "NoSuchObjectLockConfiguration",
    "ObjectLockConfigurationNotFoundError",
    "NotImplemented",
)


def create_s3_client(cfg: Dict[str, Any]):
    backblaze_cfg = cfg.get("backblaze", {})
    endpoint = os.getenv(
        "BACKBLAZE_ENDPOINT",
        backblaze_cfg.get("endpoint", "s3.us-east-005.backblazeb2.com"),
    )
    region = os.getenv("BACKBLAZE_REGION", backblaze_cfg.get("region", "us-east-005"))
    access_key = os.getenv(
        "BACKBLAZE_ACCESS_KEY_ID", backblaze_cfg.get("access_key_id")
    )
    secret_key = os.getenv(
        "BACKBLAZE_SECRET_ACCESS_KEY", backblaze_cfg.get("secret_access_key")
    )
    bucket_name = os.getenv("BACKBLAZE_BUCKET", backblaze_cfg.get("bucket"))
    if not all([access_key, secret_key]):
        print("Missing Backblaze credentials (env or config)")
        raise SystemExit(1)
    endpoint_url = endpoint if endpoint.startswith("http") else f"https://{endpoint}"
    s3 = boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        config=Config(
            signature_version="s3v4",
            s3={"addressing_style": "virtual"},
            retries={"max_attempts": 5, "mode": "standard"},
            request_checksum_calculation="when_required",
            response_checksum_validation="when_required",
        ),
        region_name=region,
    )
    return s3, bucket_name


def list_buckets(s3: Any) -> List[str]:
    try:
        resp = s3.list_buckets()
        names = [b.get("Name", "") for b in resp.get("Buckets", [])]
        return [n for n in names if n]
    except ClientError as err:
        print(f"Failed to list buckets: {err}")
        return []


def has_legal_hold(s3: Any, bucket: str, key: str) -> bool:
    try:
        resp = s3.get_object_legal_hold(Bucket=bucket, Key=key)
    except ClientError as err:
        code = (err.response.get("Error", {}) or {}).get("Code", "")
        if code in NO_LOCK_ERROR_CODES:
            return False
        raise
    return (resp.get("LegalHold", {}) or {}).get("Status") == "ON"


def list_object_page(
    s3: Any,
    bucket: str,
    prefix: str = "",
    pattern: str = "*",
    cursor: Optional[str] = None,
    page_size: int = 1000,
    tz: Optional[tzinfo] = None,
    inspect_locks: bool = False,
) -> Tuple[List[ObjectDescriptor], Optional[str]]:
    params: Dict[str, Any] = {"Bucket": bucket, "MaxKeys": page_size}
    if prefix:
        params["Prefix"] = prefix
    if cursor:
        params["ContinuationToken"] = cursor
    resp = s3.list_objects_v2(**params)

    page: List[ObjectDescriptor] = []
    for obj in resp.get("Contents", []) or []:
        key = obj["Key"]
        if not fnmatch.fnmatchcase(key, pattern):
            continue
        last_modified = obj["LastModified"]
        if tz is not None:
            last_modified = last_modified.astimezone(tz)
        locked = has_legal_hold(s3, bucket, key) if inspect_locks else False
        page.append(
            ObjectDescriptor(
                name=key,
                last_modified=last_modified,
                size=int(obj.get("Size", 0) or 0),
                locked=locked,
            )
        )

    next_cursor = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
    return page, next_cursor


def iter_object_pages(
    s3: Any,
    bucket: str,
    prefix: str = "",
    pattern: str = "*",
    page_size: int = 1000,
    tz: Optional[tzinfo] = None,
    inspect_locks: bool = False,
) -> Iterator[List[ObjectDescriptor]]:
    cursor: Optional[str] = None
    while True:
        page, cursor = list_object_page(
            s3,
            bucket,
            prefix=prefix,
            pattern=pattern,
            cursor=cursor,
            page_size=page_size,
            tz=tz,
            inspect_locks=inspect_locks,
        )
        yield page
        if not cursor:
            return


def release_legal_hold(s3: Any, bucket: str, key: str) -> None:
    s3.put_object_legal_hold(
        Bucket=bucket, Key=key, LegalHold={"Status": "OFF"}
    )
    print(f"Legal hold released: s3://{bucket}/{key}")


def delete_backup(
    s3: Any,
    bucket: str,
    obj: ObjectDescriptor,
    break_locks: bool = True,
    bypass_governance: bool = False,
) -> None:
    if break_locks and (obj.locked or has_legal_hold(s3, bucket, obj.name)):
        release_legal_hold(s3, bucket, obj.name)
    params: Dict[str, Any] = {"Bucket": bucket, "Key": obj.name}
    if bypass_governance:
        params["BypassGovernanceRetention"] = True
    s3.delete_object(**params)
    print(f"Delete: s3://{bucket}/{obj.name}")
