"""Custom exceptions for Container Panel."""


class PanelError(Exception):
    """Base exception for Container Panel errors."""

    pass


class ConflictError(PanelError):
    """Base exception for names or paths that are already in use."""

    pass


class ContainerAlreadyExistsError(ConflictError):
    """Exception raised when a container with the same name already exists."""

    def __init__(self, name: str) -> None:
        """
        Initialize ContainerAlreadyExistsError.

        Args:
            name: Container name that is already taken
        """
        self.name = name
        super().__init__(f"Container with name '{name}' already exists")


class PathAlreadyExistsError(ConflictError):
    """Exception raised when creating a file or folder that already exists."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Path already exists: {path}")


class NotFoundError(PanelError):
    """Base exception for identities or paths that do not resolve."""

    pass


class ContainerNotFoundError(NotFoundError):
    """Exception raised when a container is not found."""

    def __init__(self, identifier: str) -> None:
        """
        Initialize ContainerNotFoundError.

        Args:
            identifier: Container name or ID that was not found
        """
        self.identifier = identifier
        super().__init__(f"Container not found: {identifier}")


class PathNotFoundError(NotFoundError):
    """Exception raised when a file or directory is not found."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"File not found: {path}")


class InvalidPathError(PanelError):
    """Exception raised when a path escapes its container root or is a disallowed target."""

    def __init__(self, path: str, reason: str) -> None:
        """
        Initialize InvalidPathError.

        Args:
            path: Offending path as supplied by the caller
            reason: Reason for the rejection
        """
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid path '{path}': {reason}")


class DockerAPIError(PanelError):
    """Exception raised when Docker API calls fail."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize DockerAPIError.

        Args:
            message: Error message
            original_error: Original exception from Docker
        """
        self.original_error = original_error
        super().__init__(message)


class ImagePullError(DockerAPIError):
    """Exception raised when a missing image cannot be pulled."""

    def __init__(self, image: str, original_error: Exception | None = None) -> None:
        self.image = image
        super().__init__(f"Failed to pull image {image}: {original_error}", original_error)


class RecreateFailedError(DockerAPIError):
    """
    Exception raised when a container was removed but its replacement failed.

    The old runtime object is gone at this point. The data directory is intact
    and the container can be created again against it.
    """

    def __init__(self, name: str, data_dir: str, original_error: Exception | None = None) -> None:
        """
        Initialize RecreateFailedError.

        Args:
            name: Display name of the container being recreated
            data_dir: Data directory that still holds the container's files
            original_error: Error raised by the create or start call
        """
        self.name = name
        self.data_dir = data_dir
        super().__init__(
            f"Container '{name}' was removed but could not be recreated "
            f"(data directory {data_dir} is intact): {original_error}",
            original_error,
        )


class StorageError(PanelError):
    """Exception raised when a host filesystem operation fails."""

    def __init__(self, operation: str, path: str, original_error: Exception | None = None) -> None:
        """
        Initialize StorageError.

        Args:
            operation: Operation that failed (mkdir, write, ...)
            path: Path the operation was applied to
            original_error: Underlying OSError
        """
        self.operation = operation
        self.path = path
        self.original_error = original_error
        super().__init__(f"Failed to {operation} '{path}': {original_error}")


class ScaffoldError(StorageError):
    """Exception raised when the mandatory boot script cannot be provisioned."""

    pass


class ExternalToolError(PanelError):
    """Exception raised when an external archive tool fails."""

    def __init__(
        self, tool: str, message: str, exit_code: int | None = None, stderr: str = ""
    ) -> None:
        """
        Initialize ExternalToolError.

        Args:
            tool: Tool that was invoked
            message: Error message (the tool's stderr when it ran)
            exit_code: Exit status, None when the tool never ran
            stderr: Captured standard error
        """
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"{tool}: {message}")


class UnsupportedArchiveError(ExternalToolError):
    """Exception raised when no archive tool handles the given extension."""

    def __init__(self, path: str, operation: str) -> None:
        self.path = path
        self.operation = operation
        super().__init__(operation, f"unsupported archive type for {operation}: {path}")
