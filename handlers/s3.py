# =============================================================================
# S3 HANDLER - Upload, download and copy objects
# =============================================================================
# Command per message (static or resolved, default header "s3Command"):
#
#   UPLOAD    Path / bytes / str / seekable stream -> PutObjectRequest
#   DOWNLOAD  directory Path -> every object under the key prefix
#             file Path + key -> one object
#   COPY      key + destination bucket/key -> CopyObjectRequest
#
# Content-MD5 and Content-Length are computed before the upload is sent.
# File payloads are only opened when the request actually runs. With a
# progress listener, uploads go through the boto3 managed transfer.
# =============================================================================

import io
import logging
import mimetypes
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, List, Optional, Union

from boto3.s3.transfer import TransferConfig

from awsbridge.runtime.bridge import AsyncDispatchBridge
from awsbridge.runtime.errors import ConfigurationError, UnsupportedPayloadError
from awsbridge.runtime.message import AwsHeaders, Message
from awsbridge.runtime.providers import AwsRequest, Provider
from awsbridge.runtime.resolvers import Resolver, header, resolve
from handlers.base import is_not_found, md5_base64, md5_base64_stream, register_adapter

logger = logging.getLogger(__name__)


class Command(str, Enum):
    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"
    COPY = "COPY"


class ProgressEventType(str, Enum):
    BYTES_TRANSFERRED = "BYTES_TRANSFERRED"
    TRANSFER_COMPLETED = "TRANSFER_COMPLETED"
    TRANSFER_FAILED = "TRANSFER_FAILED"


@dataclass
class ProgressEvent:
    """Upload progress reported to a progress listener."""
    event_type: ProgressEventType
    bucket: str
    key: str
    bytes_transferred: int = 0
    total_bytes: Optional[int] = None


ProgressListener = Callable[[ProgressEvent], None]

# put_object arguments the managed transfer does not accept in ExtraArgs
_NON_TRANSFER_ARGS = {"Bucket", "Key", "Body", "ContentLength", "ContentMD5"}


# =============================================================================
# REQUESTS
# =============================================================================

@dataclass
class ObjectMetadata:
    """Object metadata sent with an upload."""
    content_length: Optional[int] = None
    content_md5: Optional[str] = None
    content_type: Optional[str] = None
    content_disposition: Optional[str] = None
    content_encoding: Optional[str] = None
    cache_control: Optional[str] = None
    user_metadata: Dict[str, str] = field(default_factory=dict)

    def to_params(self) -> Dict[str, Any]:
        params = {}
        if self.content_length is not None:
            params["ContentLength"] = self.content_length
        if self.content_md5:
            params["ContentMD5"] = self.content_md5
        if self.content_type:
            params["ContentType"] = self.content_type
        if self.content_disposition:
            params["ContentDisposition"] = self.content_disposition
        if self.content_encoding:
            params["ContentEncoding"] = self.content_encoding
        if self.cache_control:
            params["CacheControl"] = self.cache_control
        if self.user_metadata:
            params["Metadata"] = dict(self.user_metadata)
        return params


@dataclass
class PutObjectRequest(AwsRequest):
    """
    S3 PutObject. Exactly one of ``file`` or ``body`` is set; a file is
    opened only while the request runs.

    With a ``progress_listener`` the object is sent with the managed
    transfer (upload_file / upload_fileobj) and the listener sees every
    chunk, then TRANSFER_COMPLETED or TRANSFER_FAILED.
    """
    operation: ClassVar[str] = "put_object"

    bucket: str
    key: str
    file: Optional[Path] = None
    body: Any = None
    metadata: ObjectMetadata = field(default_factory=ObjectMetadata)
    acl: Optional[str] = None
    progress_listener: Optional[ProgressListener] = field(default=None, repr=False, compare=False)
    transfer_config: Optional[TransferConfig] = field(default=None, repr=False, compare=False)

    def to_params(self) -> Dict[str, Any]:
        params = {"Bucket": self.bucket, "Key": self.key}
        if self.body is not None:
            params["Body"] = self.body
        params.update(self.metadata.to_params())
        if self.acl:
            params["ACL"] = self.acl
        return params

    def transfer_args(self) -> Dict[str, Any]:
        return {k: v for k, v in self.to_params().items() if k not in _NON_TRANSFER_ARGS}

    def invoke(self, client: Any) -> Any:
        if self.progress_listener is not None:
            return self._managed_upload(client)
        if self.file is None:
            return super().invoke(client)
        with open(self.file, "rb") as body:
            return client.put_object(Body=body, **self.to_params())

    def _progress(self, event_type: ProgressEventType, transferred: int) -> None:
        self.progress_listener(ProgressEvent(
            event_type=event_type,
            bucket=self.bucket,
            key=self.key,
            bytes_transferred=transferred,
            total_bytes=self.metadata.content_length,
        ))

    def _managed_upload(self, client: Any) -> Dict[str, Any]:
        lock = threading.Lock()
        transferred = 0

        # s3transfer calls back from its worker threads
        def on_bytes(amount: int) -> None:
            nonlocal transferred
            with lock:
                transferred += amount
                total = transferred
            self._progress(ProgressEventType.BYTES_TRANSFERRED, total)

        options = {"ExtraArgs": self.transfer_args(), "Callback": on_bytes, "Config": self.transfer_config}
        try:
            if self.file is not None:
                client.upload_file(str(self.file), self.bucket, self.key, **options)
            else:
                body = self.body
                if isinstance(body, (bytes, bytearray)):
                    body = io.BytesIO(body)
                client.upload_fileobj(body, self.bucket, self.key, **options)
        except Exception:
            self._progress(ProgressEventType.TRANSFER_FAILED, transferred)
            raise
        self._progress(ProgressEventType.TRANSFER_COMPLETED, transferred)
        return {"Bucket": self.bucket, "Key": self.key}


@dataclass
class CopyObjectRequest(AwsRequest):
    operation: ClassVar[str] = "copy_object"

    source_bucket: str
    source_key: str
    bucket: str
    key: str
    acl: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        params = {
            "Bucket": self.bucket,
            "Key": self.key,
            "CopySource": {"Bucket": self.source_bucket, "Key": self.source_key},
        }
        if self.acl:
            params["ACL"] = self.acl
        return params


@dataclass
class DownloadRequest(AwsRequest):
    """
    Download one object (``key`` set, ``target`` is the file) or every
    object under ``key_prefix`` (``target`` is a directory).
    """
    operation: ClassVar[str] = "download"

    bucket: str
    target: Path
    key: Optional[str] = None
    key_prefix: str = ""

    def to_params(self) -> Dict[str, Any]:
        if self.key:
            return {"Bucket": self.bucket, "Key": self.key}
        return {"Bucket": self.bucket, "Prefix": self.key_prefix}

    def invoke(self, client: Any) -> Dict[str, Any]:
        if self.key:
            self.target.parent.mkdir(parents=True, exist_ok=True)
            client.download_file(self.bucket, self.key, str(self.target))
            return {"Bucket": self.bucket, "Downloaded": [self.key]}

        downloaded: List[str] = []
        root = self.target.resolve()
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(**self.to_params()):
            for summary in page.get("Contents", []):
                key = summary["Key"]
                if key.endswith("/"):
                    continue
                destination = root.joinpath(*key.split("/")).resolve()
                if root not in destination.parents:
                    logger.warning(f"Skipping s3://{self.bucket}/{key}: resolves outside {root}")
                    continue
                destination.parent.mkdir(parents=True, exist_ok=True)
                client.download_file(self.bucket, key, str(destination))
                downloaded.append(key)
        logger.info(f"Downloaded {len(downloaded)} objects from s3://{self.bucket}/{self.key_prefix}")
        return {"Bucket": self.bucket, "KeyPrefix": self.key_prefix, "Downloaded": downloaded}


@dataclass
class HeadBucketRequest(AwsRequest):
    operation: ClassVar[str] = "head_bucket"

    bucket: str

    def to_params(self) -> Dict[str, Any]:
        return {"Bucket": self.bucket}


# =============================================================================
# HANDLER
# =============================================================================

UploadMetadataProvider = Callable[[ObjectMetadata, Message], None]


def _is_stream(payload: Any) -> bool:
    return hasattr(payload, "read") and callable(payload.read)


def _is_seekable(stream: Any) -> bool:
    seekable = getattr(stream, "seekable", None)
    try:
        return bool(seekable()) if callable(seekable) else False
    except (OSError, ValueError):
        return False


class S3MessageHandler(AsyncDispatchBridge):
    """
    Performs S3 commands for messages.

    Args:
        provider: Provider wrapping an S3 client
        bucket: Bucket name or resolver
        produces_reply: Route successes to the output channel
        command: Command, command name, or resolver (default: "s3Command" header, then UPLOAD)
        key: Object key (or key prefix for directory downloads) or resolver;
            file payloads default to the file name
        destination_bucket: COPY target bucket or resolver
        destination_key: COPY target key or resolver
        object_acl: Canned ACL or resolver applied to uploads and copies
        upload_metadata_provider: Hook to populate ObjectMetadata before
            missing length/MD5/type are filled in
        progress_listener: Receives upload ProgressEvents; switches uploads to the
            managed transfer
        transfer_config: boto3 TransferConfig for managed transfer uploads
        check_bucket: Verify a static bucket exists on start()
    """

    def __init__(
        self,
        provider: Provider,
        bucket: Union[str, Resolver],
        produces_reply: bool = False,
        command: Union[Command, str, Resolver] = header(AwsHeaders.S3_COMMAND, Command.UPLOAD),
        key: Union[str, Resolver, None] = None,
        destination_bucket: Union[str, Resolver, None] = None,
        destination_key: Union[str, Resolver, None] = None,
        object_acl: Union[str, Resolver, None] = None,
        upload_metadata_provider: Optional[UploadMetadataProvider] = None,
        progress_listener: Optional[ProgressListener] = None,
        transfer_config: Optional[TransferConfig] = None,
        check_bucket: bool = False,
        **kwargs,
    ):
        super().__init__(provider, **kwargs)
        self.bucket = bucket
        self.produces_reply = produces_reply
        self.command = command
        self.key = key
        self.destination_bucket = destination_bucket
        self.destination_key = destination_key
        self.object_acl = object_acl
        self.upload_metadata_provider = upload_metadata_provider
        self.progress_listener = progress_listener
        self.transfer_config = transfer_config
        self.check_bucket = check_bucket

    def verify_resources(self) -> None:
        if not self.check_bucket or not isinstance(self.bucket, str):
            return
        try:
            self.provider.execute(HeadBucketRequest(self.bucket))
        except Exception as e:
            if is_not_found(e):
                raise ConfigurationError(f"S3 bucket '{self.bucket}' does not exist") from e
            raise

    # ==========================================================================
    # Request building
    # ==========================================================================

    def resolve_command(self, message: Message) -> Command:
        value = resolve(self.command, message)
        if isinstance(value, Command):
            return value
        try:
            return Command(str(value).upper())
        except ValueError:
            raise ConfigurationError(f"Unknown S3 command: {value!r}") from None

    def build_request(self, message: Message) -> AwsRequest:
        payload = message.payload
        if isinstance(payload, (PutObjectRequest, CopyObjectRequest, DownloadRequest)):
            return payload

        bucket = resolve(self.bucket, message)
        if not bucket:
            raise ConfigurationError("'bucket' must not be null for S3 operations")

        command = self.resolve_command(message)
        key = resolve(self.key, message) if self.key is not None else None

        if command == Command.UPLOAD:
            return self._build_upload(message, bucket, key)
        if command == Command.DOWNLOAD:
            return self._build_download(message, bucket, key)
        return self._build_copy(message, bucket, key)

    def _build_upload(self, message: Message, bucket: str, key: Optional[str]) -> PutObjectRequest:
        payload = message.payload
        is_file = isinstance(payload, os.PathLike)
        if key is None and is_file:
            key = Path(payload).name
        if not key:
            raise ConfigurationError("Specify a 'key' resolver for non-file payloads")

        metadata = ObjectMetadata()
        if self.upload_metadata_provider is not None:
            self.upload_metadata_provider(metadata, message)

        request = PutObjectRequest(bucket=bucket, key=key, metadata=metadata,
                                   acl=resolve(self.object_acl, message),
                                   progress_listener=self.progress_listener,
                                   transfer_config=self.transfer_config)

        if is_file:
            path = Path(payload)
            if not path.is_file():
                raise UnsupportedPayloadError(f"Upload payload {path} is not a regular file")
            if metadata.content_md5 is None:
                with open(path, "rb") as f:
                    metadata.content_md5, _ = md5_base64_stream(f)
            if metadata.content_length is None:
                metadata.content_length = path.stat().st_size
            if metadata.content_type is None:
                metadata.content_type = mimetypes.guess_type(path.name)[0]
            request.file = path

        elif isinstance(payload, (bytes, bytearray, str)):
            data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
            if metadata.content_md5 is None:
                metadata.content_md5 = md5_base64(data)
            if metadata.content_length is None:
                metadata.content_length = len(data)
            request.body = data

        elif _is_stream(payload):
            if metadata.content_md5 is None:
                if not _is_seekable(payload):
                    raise UnsupportedPayloadError(
                        "An upload stream without Content-MD5 metadata must be seekable"
                    )
                position = payload.tell()
                metadata.content_md5, length = md5_base64_stream(payload)
                payload.seek(position)
                if metadata.content_length is None:
                    metadata.content_length = length
            request.body = payload

        else:
            raise UnsupportedPayloadError(
                f"Unsupported payload type for upload: {type(payload).__name__}"
            )

        if metadata.content_type is None:
            metadata.content_type = mimetypes.guess_type(key)[0]
        return request

    def _build_download(self, message: Message, bucket: str, key: Optional[str]) -> DownloadRequest:
        payload = message.payload
        if not isinstance(payload, os.PathLike):
            raise UnsupportedPayloadError("Download payload must be a path (file or directory)")
        target = Path(payload)
        if target.is_dir():
            return DownloadRequest(bucket=bucket, target=target, key_prefix=key or "")
        if not key:
            raise ConfigurationError("Specify a 'key' resolver to download into a file")
        return DownloadRequest(bucket=bucket, target=target, key=key)

    def _build_copy(self, message: Message, bucket: str, key: Optional[str]) -> CopyObjectRequest:
        if not key:
            raise ConfigurationError("'key' must not be null for the COPY command")
        destination_bucket = resolve(self.destination_bucket, message)
        if not destination_bucket:
            raise ConfigurationError("'destination_bucket' must not be null for the COPY command")
        destination_key = resolve(self.destination_key, message)
        if not destination_key:
            raise ConfigurationError("'destination_key' must not be null for the COPY command")
        return CopyObjectRequest(
            source_bucket=bucket,
            source_key=key,
            bucket=destination_bucket,
            key=destination_key,
            acl=resolve(self.object_acl, message),
        )

    # ==========================================================================
    # Results
    # ==========================================================================

    def on_success(self, message: Message, request: AwsRequest, result: Any) -> None:
        if not self.produces_reply:
            logger.debug(f"{type(request).__name__} done for message {message.id}, no reply produced")
            return
        super().on_success(message, request, result)

    def success_payload(self, message: Message, request: AwsRequest, result: Any) -> Any:
        if isinstance(request, CopyObjectRequest):
            return result
        return message.payload

    def success_headers(self, message: Message, request: AwsRequest, result: Any) -> Dict[str, Any]:
        result = result or {}
        if isinstance(request, PutObjectRequest):
            return {
                AwsHeaders.BUCKET: request.bucket,
                AwsHeaders.KEY: request.key,
                AwsHeaders.ETAG: result.get("ETag"),
                AwsHeaders.VERSION_ID: result.get("VersionId"),
            }
        if isinstance(request, CopyObjectRequest):
            return {
                AwsHeaders.BUCKET: request.bucket,
                AwsHeaders.KEY: request.key,
                AwsHeaders.ETAG: result.get("CopyObjectResult", {}).get("ETag"),
                AwsHeaders.VERSION_ID: result.get("VersionId"),
            }
        return {
            AwsHeaders.BUCKET: request.bucket,
            AwsHeaders.KEY: request.key or request.key_prefix,
        }


@register_adapter("s3", description="Upload, download and copy S3 objects")
def create_s3_handler(deps, **overrides) -> S3MessageHandler:
    """Build an S3 adapter from environment configuration."""
    prefix = deps.config["S3_KEY_PREFIX"]

    def prefixed_key(message: Message) -> Optional[str]:
        key = message.get(AwsHeaders.KEY)
        if key is None and isinstance(message.payload, os.PathLike):
            path = Path(message.payload)
            if path.is_file():
                key = path.name
            elif path.is_dir():
                # directory download of everything under the prefix
                return prefix
        return f"{prefix}{key}" if key is not None else None

    options = {
        "bucket": deps.config["S3_BUCKET"],
        "key": prefixed_key,
        "produces_reply": True,
        "sync": deps.config["BRIDGE_SYNC"],
        "send_timeout": deps.config["BRIDGE_SEND_TIMEOUT"],
        "check_bucket": deps.config["BRIDGE_CHECK_RESOURCES"],
    }
    options.update(overrides)
    return S3MessageHandler(deps.s3_provider, **options)
