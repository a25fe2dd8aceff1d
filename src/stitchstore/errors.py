"""Error taxonomy for StitchStore.

Three kinds of failure reach callers:

    - InputError: the caller asked for something impossible (unknown upload,
      malformed object name, oversized part). Never retried.
    - StorageIOError: reading or writing bytes failed. Carries the cause.
    - LockError: the per-upload lock could not be acquired or released.

A cancelled merge is not an error; the merge engine returns ``None``.
"""


class StitchError(Exception):
    """A StitchStore error with a stable code and a message.

    Attributes:
        code: Machine-readable error code (e.g. "NoSuchUpload").
        message: Human-readable error description.
        extra_fields: Additional context (upload id, part number, ...).
    """

    def __init__(
        self,
        code: str,
        message: str,
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.extra_fields = extra_fields or {}


# -- Input errors --------------------------------------------------------------


class InputError(StitchError):
    """The request cannot be satisfied as given."""

    def __init__(
        self,
        message: str = "Invalid input",
        code: str = "InvalidInput",
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        super().__init__(code=code, message=message, extra_fields=extra_fields)


class NoSuchUpload(InputError):
    """The specified multipart upload does not exist."""

    def __init__(self, upload_id: str = "") -> None:
        super().__init__(
            code="NoSuchUpload",
            message="The specified multipart upload does not exist.",
            extra_fields={"UploadId": upload_id} if upload_id else {},
        )


class InvalidObjectName(InputError):
    """The object name is empty, too long, or escapes the storage root."""

    def __init__(self, object_name: str = "", reason: str = "") -> None:
        message = "The specified object name is not valid."
        if reason:
            message = f"{message} {reason}"
        super().__init__(
            code="InvalidObjectName",
            message=message,
            extra_fields={"ObjectName": object_name} if object_name else {},
        )


class InvalidPartNumber(InputError):
    """The part number is outside the accepted range."""

    def __init__(self, part_number: int) -> None:
        super().__init__(
            code="InvalidPartNumber",
            message="Part number must be an integer between 1 and 10000.",
            extra_fields={"PartNumber": str(part_number)},
        )


class PartTooLarge(InputError):
    """A part is too large for the random-access transfer primitive."""

    def __init__(self, part_number: int, part_size: int, limit: int) -> None:
        super().__init__(
            code="EntityTooLarge",
            message=(
                f"Part {part_number} is {part_size} bytes; parts merged by "
                f"positioned writes must be smaller than {limit} bytes."
            ),
            extra_fields={"PartNumber": str(part_number), "PartSize": str(part_size)},
        )


class NoPartsUploaded(InputError):
    """Completion was requested for an upload that has no parts."""

    def __init__(self, upload_id: str = "") -> None:
        super().__init__(
            code="NoPartsUploaded",
            message="The multipart upload has no parts to merge.",
            extra_fields={"UploadId": upload_id} if upload_id else {},
        )


class IncompleteBody(InputError):
    """The streamed part did not match its declared size."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            code="IncompleteBody",
            message=(
                f"You did not provide the number of bytes specified: "
                f"expected {expected}, received {received}."
            ),
        )


# -- Storage errors ------------------------------------------------------------


class StorageIOError(StitchError):
    """Reading or writing bytes failed.

    Attributes:
        cause: The underlying exception, when there is one.
    """

    def __init__(self, message: str = "Storage I/O failed", cause: BaseException | None = None) -> None:
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(code="StorageIOFailed", message=message)
        self.cause = cause


# -- Lock errors ---------------------------------------------------------------


class LockError(StitchError):
    """The per-upload lock could not be acquired or released."""

    def __init__(self, message: str = "Failed to acquire upload lock", upload_id: str = "") -> None:
        super().__init__(
            code="LockError",
            message=message,
            extra_fields={"UploadId": upload_id} if upload_id else {},
        )


class MergeInProgress(LockError):
    """Another merge already holds the lock for this upload."""

    def __init__(self, upload_id: str = "") -> None:
        super().__init__(
            message="A merge for this multipart upload is already in progress.",
            upload_id=upload_id,
        )
        self.code = "MergeInProgress"
