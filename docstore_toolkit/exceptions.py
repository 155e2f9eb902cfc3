class ToolkitError(Exception):
    """Base exception for the document store toolkit."""
    pass

class ConfigurationError(ToolkitError):
    """Exception raised for errors in configuration."""
    pass

class ValidationError(ToolkitError):
    """Exception raised when a required parameter is missing or malformed."""
    pass

class NotFoundError(ToolkitError):
    """Exception raised when an addressed document does not exist."""
    pass

class RemoteFetchError(ToolkitError):
    """Exception raised when reading from the store fails."""
    pass

class RemoteWriteError(ToolkitError):
    """Exception raised when a write or an atomic batch commit fails.

    committed_count is the number of documents already committed by earlier
    chunks of the same call. Those writes are not rolled back.
    """

    def __init__(self, message: str, committed_count: int = 0):
        super().__init__(message)
        self.committed_count = committed_count

class NonEmptyCollectionError(ToolkitError):
    """Exception raised when a non-recursive delete targets a populated collection."""
    pass
