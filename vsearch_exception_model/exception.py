class _DetailedException(Exception):
    """
    Base for exceptions carrying optional context rendered as ``(key=value, ...)``.
    """
    _detail_fields = ()

    def __init__(self, message):
        self.message = message
        super().__init__(self.message)

    def __str__(self):
        details = []
        for name in self._detail_fields:
            value = getattr(self, name, None)
            if value is not None:
                details.append(f"{name}={value}")

        if details:
            return f"{self.message} ({', '.join(details)})"
        return self.message


class InvalidFieldSpecException(_DetailedException):
    """
    Exception raised when an index definition is rejected at definition time:
    unknown field type, non-positive vector dimension, unsupported option, or a
    duplicated field name. Raised before any index structure is created.
    """
    _detail_fields = ("index_name", "field_name")

    def __init__(self, message, index_name=None, field_name=None):
        self.index_name = index_name
        self.field_name = field_name
        super().__init__(message)


class UnsupportedMetricException(InvalidFieldSpecException):
    """
    Exception raised when requested distance metric isn't one of the supported
    ones (COSINE, L2, IP).
    """
    _detail_fields = ("metric", "supported_metrics", "index_name", "field_name")

    def __init__(self, message, metric=None, supported_metrics=None, index_name=None, field_name=None):
        self.metric = metric
        self.supported_metrics = supported_metrics
        super().__init__(message, index_name, field_name)


class IndexNotFoundException(_DetailedException):
    """
    Exception raised when target index isn't defined, so the operation can't proceed.
    """
    _detail_fields = ("index_name",)

    def __init__(self, message, index_name=None):
        self.index_name = index_name
        super().__init__(message)


class DuplicateIndexException(_DetailedException):
    """
    Exception raised when trying to define an index which has same name as existing one.
    """
    _detail_fields = ("index_name",)

    def __init__(self, message, index_name=None):
        self.index_name = index_name
        super().__init__(message)


class VectorDimensionMismatchException(_DetailedException):
    """
    Exception raised when the length of the provided vector doesn't match
    the index's configured dimension. Vectors are never padded or truncated.
    """
    _detail_fields = ("provided_dim", "expected_dim", "index_name")

    def __init__(self, message, provided_dim=None, expected_dim=None, index_name=None):
        self.provided_dim = provided_dim
        self.expected_dim = expected_dim
        self.index_name = index_name
        super().__init__(message)


class NullOrZeroVectorException(_DetailedException):
    """
    Exception raised when user tries to insert or search with an empty vector,
    or with an all-zeros vector under the cosine metric.
    """
    _detail_fields = ("record_id", "index_name")

    def __init__(self, message, record_id=None, index_name=None):
        self.record_id = record_id
        self.index_name = index_name
        super().__init__(message)


class MalformedQueryException(_DetailedException):
    """
    Exception raised when a query expression can't be parsed. Always carries the
    offending position and a reason.
    """
    _detail_fields = ("position", "reason")

    def __init__(self, message, position=None, reason=None, query=None):
        self.position = position
        self.reason = reason
        self.query = query
        super().__init__(message)


class InvalidDocumentException(_DetailedException):
    """
    Exception raised when a document field can't be coerced into the type its
    index declares (e.g. a non-numeric string in a NUMERIC field).
    """
    _detail_fields = ("record_id", "field_name", "index_name")

    def __init__(self, message, record_id=None, field_name=None, index_name=None, cause: Exception = None):
        self.record_id = record_id
        self.field_name = field_name
        self.index_name = index_name
        self.cause = cause
        super().__init__(message)


class ChecksumValidationFailureError(_DetailedException):
    """
    Exception raised when a document fails checksum validation.
    """
    _detail_fields = ("record_id",)

    def __init__(self, message, record_id=None):
        self.record_id = record_id
        super().__init__(message)


class OperationCancelledException(_DetailedException):
    """
    Exception raised when a long-running operation (search scan, index rebuild)
    observed a cancellation request.
    """
    _detail_fields = ("operation",)

    def __init__(self, message, operation=None):
        self.operation = operation
        super().__init__(message)


class TimeoutException(OperationCancelledException):
    """
    Exception raised when an operation (e.g. index build, search) exceeded
    configured time budget.
    """
    _detail_fields = ("operation", "timeout_seconds")

    def __init__(self, message, operation=None, timeout_seconds=None):
        self.timeout_seconds = timeout_seconds
        super().__init__(message, operation)


class StorageFailureException(_DetailedException):
    """
    Exception raised when the persistence layer fails to read or write.
    """
    _detail_fields = ("record_id", "cause")

    def __init__(self, message, record_id=None, cause: Exception = None):
        self.record_id = record_id
        self.cause = cause
        super().__init__(message)
