"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import pytest
from botocore.exceptions import ClientError

from gfsprune.retention import ObjectDescriptor


# Wednesday; the week anchor is Sunday 2024-05-12 00:00 UTC.
NOW = datetime(2024, 5, 15, 13, 47, 31, 123456, tzinfo=timezone.utc)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_obj(name: str, last_modified: datetime, size: int = 100) -> ObjectDescriptor:
    return ObjectDescriptor(name=name, last_modified=last_modified, size=size)


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3:
    """In-memory stand-in for the handful of S3 calls the pruner makes."""

    def __init__(
        self,
        objects: Iterable[Dict[str, Any]] = (),
        legal_holds: Iterable[str] = (),
        fail_delete: Iterable[str] = (),
        fail_list: bool = False,
    ) -> None:
        self.objects: Dict[str, Dict[str, Any]] = {o["Key"]: o for o in objects}
        self.legal_holds = set(legal_holds)
        self.fail_delete = set(fail_delete)
        self.fail_list = fail_list
        self.list_calls: List[Optional[str]] = []
        self.deleted: List[str] = []
        self.delete_kwargs: List[Dict[str, Any]] = []
        self.released: List[str] = []

    def list_objects_v2(
        self,
        Bucket: str,
        MaxKeys: int = 1000,
        Prefix: str = "",
        ContinuationToken: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.list_calls.append(ContinuationToken)
        if self.fail_list:
            raise _client_error("AccessDenied", "ListObjectsV2")
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken) if ContinuationToken else 0
        chunk = keys[start : start + MaxKeys]
        resp: Dict[str, Any] = {"IsTruncated": start + MaxKeys < len(keys)}
        if chunk:
            resp["Contents"] = [self.objects[k] for k in chunk]
        if resp["IsTruncated"]:
            resp["NextContinuationToken"] = str(start + MaxKeys)
        return resp

    def get_object_legal_hold(self, Bucket: str, Key: str) -> Dict[str, Any]:
        if Key in self.legal_holds:
            return {"LegalHold": {"Status": "ON"}}
        raise _client_error("InvalidRequest", "GetObjectLegalHold")

    def put_object_legal_hold(self, Bucket: str, Key: str, LegalHold: Dict[str, str]) -> Dict[str, Any]:
        assert LegalHold == {"Status": "OFF"}
        self.legal_holds.discard(Key)
        self.released.append(Key)
        return {}

    def delete_object(self, Bucket: str, Key: str, **kwargs: Any) -> Dict[str, Any]:
        if Key in self.fail_delete:
            raise _client_error("AccessDenied", "DeleteObject")
        if Key in self.legal_holds:
            raise _client_error("AccessDenied", "DeleteObject")
        self.objects.pop(Key, None)
        self.deleted.append(Key)
        self.delete_kwargs.append(kwargs)
        return {}

    def list_buckets(self) -> Dict[str, Any]:
        return {"Buckets": [{"Name": "backups"}, {"Name": "archive"}]}


def s3_obj(key: str, last_modified: datetime, size: int = 100) -> Dict[str, Any]:
    return {"Key": key, "LastModified": last_modified, "Size": size}


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def backup_objects() -> List[Dict[str, Any]]:
    """Backups matching the 14-day daily / 4-week Sunday policy scenario."""
    return [
        s3_obj("db/2024-05-10.sql.gz", utc(2024, 5, 10, 3), 1000),
        s3_obj("db/2024-04-25.sql.gz", utc(2024, 4, 25, 3), 2000),
        s3_obj("db/2024-04-21.sql.gz", utc(2024, 4, 21, 3), 3000),
        s3_obj("db/2024-04-02.sql.gz", utc(2024, 4, 2, 3), 4000),
        s3_obj("db/notes.txt", utc(2024, 1, 1, 3), 5),
    ]
