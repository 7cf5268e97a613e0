"""S3-compatible object storage session using boto3."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from remote_ops._capabilities import (
    AclPermission,
    Attributes,
    AttributesFind,
    CapabilityTable,
    Copy,
    Lister,
    UrlSign,
)
from remote_ops._errors import (
    AlreadyExists,
    BackendUnavailable,
    ExceptionMapper,
    NotFound,
    PermissionDenied,
    ProtocolError,
    RemoteOpsError,
)
from remote_ops._models import Entry, EntryAttributes, container_of, is_container, key_of
from remote_ops._path import DELIMITER
from remote_ops._region import Region, RegionResolver
from remote_ops._session import Session
from remote_ops.backends._objects import CopyDeleteMove, ObjectStoreDelete, merge_listing

if TYPE_CHECKING:
    from collections.abc import Iterator

    from remote_ops._callbacks import ProgressListener
    from remote_ops._models import Acl
    from remote_ops._region import RegionCache

log = logging.getLogger(__name__)

_DEFAULT_REGION = "us-east-1"

_PRESIGN_METHODS = {
    "GET": "get_object",
    "HEAD": "head_object",
    "PUT": "put_object",
    "DELETE": "delete_object",
}

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NoSuchBucket", "NotFound"})
_DENIED_CODES = frozenset({"403", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"})
_EXISTS_CODES = frozenset({"BucketAlreadyExists", "BucketAlreadyOwnedByYou"})


def _millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _etag(value: str | None) -> str | None:
    return value.strip('"') if value else None


class S3ExceptionMapper(ExceptionMapper):
    """Classify botocore errors by S3 error code."""

    def map(self, exc: Exception, message: str, path: Optional[str]) -> RemoteOpsError:
        from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

        if isinstance(exc, ClientError):
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return NotFound(message, path=path, backend=self.backend)
            if code in _DENIED_CODES:
                return PermissionDenied(f"{message}: {code}", path=path, backend=self.backend)
            if code in _EXISTS_CODES:
                return AlreadyExists(message, path=path, backend=self.backend)
            return ProtocolError(f"{message}: {exc}", path=path, backend=self.backend)
        if isinstance(exc, NoCredentialsError):
            return PermissionDenied(f"{message}: {exc}", path=path, backend=self.backend)
        if isinstance(exc, EndpointConnectionError):
            return BackendUnavailable(f"{message}: {exc}", path=path, backend=self.backend)
        if isinstance(exc, OSError):
            return self.map_os_error(exc, message, path)
        return ProtocolError(f"{message}: {exc}", path=path, backend=self.backend)


# region: capabilities


class S3Delete(ObjectStoreDelete):
    def __init__(self, session: S3Session) -> None:
        super().__init__(session.mapper, session.regions)
        self._session = session

    def delete_container(self, container: Entry) -> None:
        with self._session.regional(container) as client:
            client.delete_bucket(Bucket=container.name)

    def delete_object(self, entry: Entry) -> None:
        with self._session.regional(entry) as client:
            client.delete_object(Bucket=self._session.bucket(entry), Key=key_of(entry))


class S3Copy(Copy):
    """Server-side ``CopyObject``; a placeholder copy creates the target placeholder."""

    def __init__(self, session: S3Session) -> None:
        self._session = session

    def copy(self, source: Entry, target: Entry) -> None:
        with self._session.mapper.errors("Cannot copy {name}", source), self._session.regional(target) as client:
            client.copy_object(
                Bucket=self._session.bucket(target),
                Key=key_of(target),
                CopySource={"Bucket": self._session.bucket(source), "Key": key_of(source)},
            )


class S3Attributes(Attributes):
    def __init__(self, session: S3Session) -> None:
        self._session = session

    def find(self, entry: Entry) -> EntryAttributes:
        if entry.path.is_root:
            raise NotFound("The root has no attributes", path=entry.absolute, backend="s3")
        region = self._session.regions.lookup(entry)
        with self._session.mapper.errors("Failure to read attributes of {name}", entry):
            if is_container(entry):
                with self._session.regional(entry) as client:
                    client.head_bucket(Bucket=entry.name)
                return EntryAttributes(region=region.name)
            with self._session.regional(entry) as client:
                if entry.is_directory:
                    return self._directory(client, entry, region)
                head = client.head_object(Bucket=self._session.bucket(entry), Key=key_of(entry))
        return EntryAttributes(
            size=head.get("ContentLength"),
            modified=_millis(head.get("LastModified")),
            checksum=_etag(head.get("ETag")),
            region=region.name,
        )

    def _directory(self, client: Any, entry: Entry, region: Region) -> EntryAttributes:
        """A directory exists if its placeholder does or any key lies below it."""
        found = client.list_objects_v2(Bucket=self._session.bucket(entry), Prefix=key_of(entry), MaxKeys=1)
        if not found.get("KeyCount"):
            raise NotFound(f"Failure to read attributes of {entry.name}", path=entry.absolute, backend="s3")
        return EntryAttributes(region=region.name)


class S3Lister(Lister):
    def __init__(self, session: S3Session) -> None:
        self._session = session

    def list(self, directory: Entry, listener: ProgressListener | None = None) -> list[Entry]:
        with self._session.mapper.errors("Listing directory {name} failed", directory):
            if directory.path.is_root:
                with self._session.exclusive() as client:
                    buckets = client.list_buckets().get("Buckets", [])
                return [Entry.volume(b["Name"], created=_millis(b.get("CreationDate"))) for b in buckets]
            objects: list[Entry] = []
            prefixes: list[Entry] = []
            with self._session.regional(directory) as client:
                paginator = client.get_paginator("list_objects_v2")
                pages = paginator.paginate(
                    Bucket=self._session.bucket(directory), Prefix=key_of(directory), Delimiter=DELIMITER
                )
                for page in pages:
                    objects.extend(self._object(directory, obj) for obj in page.get("Contents", []))
                    prefixes.extend(
                        Entry.directory(self._session.path_of(directory, p["Prefix"]))
                        for p in page.get("CommonPrefixes", [])
                    )
        return merge_listing(directory, objects, prefixes)

    def _object(self, directory: Entry, obj: dict[str, Any]) -> Entry:
        path = self._session.path_of(directory, obj["Key"])
        if obj["Key"].endswith(DELIMITER):
            return Entry.placeholder(path, modified=_millis(obj.get("LastModified")))
        return Entry.file(
            path,
            size=obj.get("Size"),
            modified=_millis(obj.get("LastModified")),
            checksum=_etag(obj.get("ETag")),
        )


class S3AclPermission(AclPermission):
    """Replace the object (or bucket) ACL, keeping the owner's full control."""

    def __init__(self, session: S3Session) -> None:
        self._session = session

    def set_acl(self, entry: Entry, acl: Acl) -> None:
        bucket = self._session.bucket(entry)
        with self._session.mapper.errors("Cannot change permissions of {name}", entry):
            with self._session.regional(entry) as client:
                if is_container(entry):
                    owner = client.get_bucket_acl(Bucket=bucket)["Owner"]
                    client.put_bucket_acl(Bucket=bucket, AccessControlPolicy=self._policy(owner, acl))
                else:
                    key = key_of(entry)
                    owner = client.get_object_acl(Bucket=bucket, Key=key)["Owner"]
                    client.put_object_acl(Bucket=bucket, Key=key, AccessControlPolicy=self._policy(owner, acl))

    @staticmethod
    def _policy(owner: dict[str, Any], acl: Acl) -> dict[str, Any]:
        grants: list[dict[str, Any]] = [
            {"Grantee": {"Type": "CanonicalUser", "ID": owner["ID"]}, "Permission": "FULL_CONTROL"}
        ]
        for grant in acl:
            if grant.principal.startswith(("http://", "https://")):
                grantee = {"Type": "Group", "URI": grant.principal}
            else:
                grantee = {"Type": "CanonicalUser", "ID": grant.principal}
            grants.append({"Grantee": grantee, "Permission": grant.role})
        return {"Grants": grants, "Owner": owner}


class S3UrlSign(UrlSign):
    """Query-string pre-signed URLs; ``None`` when the session has no credentials."""

    def __init__(self, session: S3Session) -> None:
        self._session = session

    def sign(
        self,
        entry: Entry,
        expiry_seconds: int,
        region: Region | None = None,
        method: str = "GET",
    ) -> str | None:
        operation = _PRESIGN_METHODS.get(method.upper())
        if operation is None:
            raise ValueError(f"Unsupported method for a signed URL: {method!r}")
        if not self._session.has_credentials():
            log.debug("No credentials to sign a URL for %s", entry.absolute)
            return None
        region = region or self._session.regions.lookup(entry)
        with self._session.mapper.errors("Cannot sign URL for {name}", entry), self._session.exclusive():
            client = self._session.client_for(region)
            return str(
                client.generate_presigned_url(
                    ClientMethod=operation,
                    Params={"Bucket": self._session.bucket(entry), "Key": key_of(entry)},
                    ExpiresIn=expiry_seconds,
                )
            )


# endregion


class S3Session(Session):
    """S3-compatible object storage session.

    The first path segment is the bucket. Each bucket is served by a client
    of its own region.

    :param endpoint_url: Custom endpoint URL (e.g. for MinIO).
    :param key: AWS access key ID.
    :param secret: AWS secret access key.
    :param region_name: Region of the default client (bucket listing and lookup).
    :param client_options: Extra kwargs for ``botocore.config.Config``.
    :param region_cache: Region cache; defaults to the process-wide one.
    """

    def __init__(
        self,
        *,
        endpoint_url: str | None = None,
        key: str | None = None,
        secret: str | None = None,
        region_name: str = _DEFAULT_REGION,
        client_options: dict[str, Any] | None = None,
        region_cache: RegionCache | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._key = key
        self._secret = secret
        self._region_name = region_name
        self._client_options = client_options or {}
        self._boto_session: Any = None
        self._clients: dict[str, Any] = {}
        self.mapper = S3ExceptionMapper(self.name)
        self.regions = RegionResolver(f"s3:{endpoint_url or 'aws'}:{key or ''}", self._locate, cache=region_cache)
        super().__init__()

    @property
    def name(self) -> str:
        return "s3"

    def _build_features(self) -> CapabilityTable:
        attributes = S3Attributes(self)
        find = AttributesFind(attributes)
        copy = S3Copy(self)
        delete = S3Delete(self)
        return CapabilityTable(
            delete=delete,
            copy=copy,
            move=CopyDeleteMove(copy, delete, find),
            find=find,
            attributes=attributes,
            list=S3Lister(self),
            url_sign=S3UrlSign(self),
            acl_permission=S3AclPermission(self),
        )

    # region: clients

    def _boto(self) -> Any:
        if self._boto_session is None:
            import boto3

            self._boto_session = boto3.Session(aws_access_key_id=self._key, aws_secret_access_key=self._secret)
        return self._boto_session

    def client_for(self, region: Region) -> Any:
        """Client bound to ``region``, created on first use."""
        if region.name not in self._clients:
            from botocore.config import Config as BotoConfig

            log.info("Creating S3 client for region %s", region.name)
            self._clients[region.name] = self._boto().client(
                "s3",
                region_name=region.name,
                endpoint_url=region.endpoint or self._endpoint_url,
                config=BotoConfig(signature_version="s3v4", **self._client_options),
            )
        return self._clients[region.name]

    def _client(self) -> Any:
        return self.client_for(Region(self._region_name))

    @contextmanager
    def regional(self, entry: Entry) -> Iterator[Any]:
        """Hold the session and yield the client of the region serving ``entry``."""
        region = self.regions.lookup(entry)
        with self._lock:
            yield self.client_for(region)

    def _locate(self, bucket: str) -> Region:
        with self.mapper.errors(f"Cannot locate bucket {bucket}"), self.exclusive() as client:
            location = client.get_bucket_location(Bucket=bucket).get("LocationConstraint")
        return Region(location or _DEFAULT_REGION)

    def has_credentials(self) -> bool:
        return self._boto().get_credentials() is not None

    # endregion

    # region: path helpers

    @staticmethod
    def bucket(entry: Entry) -> str:
        container = container_of(entry)
        if container is None:
            raise NotFound("The root is not in a bucket", path=entry.absolute, backend="s3")
        return container.name

    @staticmethod
    def path_of(directory: Entry, key: str) -> str:
        container = container_of(directory)
        assert container is not None
        return f"{container.absolute}{DELIMITER}{key}"

    # endregion

    def close(self) -> None:
        with self._lock:
            self._clients.clear()
