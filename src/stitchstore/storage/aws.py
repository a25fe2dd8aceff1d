"""AWS S3 storage backend for StitchStore.

An append-chain backend built on the native S3 multipart API via
aiobotocore: creating the destination starts a native multipart upload and
sends the first part, each append sends the next native part, and commit
completes the native upload. Deleting an uncommitted destination aborts the
native upload; deleting a committed one deletes the object.

S3 rejects native parts under 5 MiB except the last, so parts merged into
this backend should respect that minimum.

Key mapping:
    Objects:  {prefix}{object_name}

Credentials are resolved via the standard AWS credential chain
(env vars, ~/.aws/credentials, IAM role, etc.).
"""

import logging

from aiobotocore.session import AioSession
from botocore.exceptions import BotoCoreError, ClientError

from stitchstore.errors import StorageIOError
from stitchstore.parts.streams import PartStream, read_all
from stitchstore.storage.backend import DestinationHandle

logger = logging.getLogger(__name__)


class S3AppendBackend:
    """Storage backend that merges parts into an upstream S3 bucket.

    Attributes:
        bucket_name: The upstream AWS S3 bucket name.
        region: The AWS region for the bucket.
        prefix: Key prefix for all objects in the upstream bucket.
    """

    supports_random_access = False

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        prefix: str = "",
        endpoint_url: str = "",
        use_path_style: bool = False,
        access_key_id: str = "",
        secret_access_key: str = "",
    ) -> None:
        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix
        self.endpoint_url = endpoint_url
        self.use_path_style = use_path_style
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self._session = AioSession()
        self._client = None
        self._client_ctx = None

    def _s3_key(self, object_name: str) -> str:
        """Map an object name to an upstream S3 key."""
        return f"{self.prefix}{object_name}"

    async def init(self) -> None:
        """Create the aiobotocore S3 client and verify the upstream bucket exists.

        Raises:
            ValueError: If the upstream bucket does not exist or is inaccessible.
        """
        client_kwargs: dict = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self.use_path_style:
            from botocore.config import Config as BotoConfig
            client_kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})

        # Use explicit credentials if provided, otherwise fall back to chain
        if self.access_key_id and self.secret_access_key:
            session = AioSession()
            session.set_credentials(self.access_key_id, self.secret_access_key)
            self._session = session
        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        try:
            await self._client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None
            raise ValueError(
                f"Cannot access upstream S3 bucket '{self.bucket_name}': {code}"
            ) from e

        logger.info(
            "S3 storage backend initialized: bucket=%s region=%s prefix='%s'",
            self.bucket_name,
            self.region,
            self.prefix,
        )

    async def close(self) -> None:
        """Close the aiobotocore client session."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    async def _upload_native_part(
        self, handle: DestinationHandle, stream: PartStream, size: int
    ) -> None:
        data = await read_all(stream)
        if len(data) != size:
            raise StorageIOError(f"Expected {size} bytes from part stream, read {len(data)}")

        part_number = len(handle.state["parts"]) + 1
        try:
            resp = await self._client.upload_part(
                Bucket=self.bucket_name,
                Key=handle.location,
                UploadId=handle.state["upload_id"],
                PartNumber=part_number,
                Body=data,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageIOError("S3 upload_part failed", cause=e) from e
        handle.state["parts"].append({"ETag": resp["ETag"], "PartNumber": part_number})

    async def create_from_stream(
        self,
        object_name: str,
        stream: PartStream,
        size: int,
        extension: str,
    ) -> DestinationHandle:
        """Start a native multipart upload and send the first part."""
        s3_key = self._s3_key(object_name)
        try:
            resp = await self._client.create_multipart_upload(
                Bucket=self.bucket_name, Key=s3_key
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageIOError("S3 create_multipart_upload failed", cause=e) from e

        handle = DestinationHandle(
            object_name=object_name,
            location=s3_key,
            state={"upload_id": resp["UploadId"], "parts": [], "committed": False},
        )
        await self._upload_native_part(handle, stream, size)
        return handle

    async def append_to_destination(
        self, handle: DestinationHandle, stream: PartStream, size: int
    ) -> None:
        await self._upload_native_part(handle, stream, size)

    async def commit_destination(self, handle: DestinationHandle) -> None:
        """Complete the native multipart upload."""
        try:
            await self._client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=handle.location,
                UploadId=handle.state["upload_id"],
                MultipartUpload={"Parts": handle.state["parts"]},
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageIOError("S3 complete_multipart_upload failed", cause=e) from e
        handle.state["committed"] = True

    async def delete_destination(self, handle: DestinationHandle) -> None:
        """Abort the native upload, or delete the object if already committed."""
        try:
            if handle.state.get("committed"):
                await self._client.delete_object(Bucket=self.bucket_name, Key=handle.location)
            else:
                await self._client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=handle.location,
                    UploadId=handle.state["upload_id"],
                )
        except (ClientError, BotoCoreError) as e:
            raise StorageIOError("S3 cleanup of destination failed", cause=e) from e

    async def report_final_path(self, handle: DestinationHandle) -> tuple[str, str]:
        return handle.object_name, f"s3://{self.bucket_name}/{handle.location}"
