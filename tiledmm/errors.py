"""Error types raised by the matrix multiplication pipeline."""


class MatmulError(Exception):
    """Base class for every failure the CLI reports as fatal."""


class DimensionMismatchError(MatmulError):
    """Contraction dimensions disagree (columns(A) != rows(B))."""


class DeviceUnavailableError(MatmulError):
    """No CUDA device (or simulator) could be initialised."""


class DeviceAllocationError(MatmulError):
    """Device memory could not be allocated."""


class DeviceReleaseError(MatmulError):
    """Device memory could not be freed."""


class TransferError(MatmulError):
    """A host/device copy failed."""


class LaunchError(MatmulError):
    """A kernel could not be launched."""


class LaunchConfigError(LaunchError):
    """Grid/block dimensions could not be derived."""


class SynchronizationError(MatmulError):
    """A launched kernel faulted before completion."""


class DatasetError(MatmulError):
    """A matrix file is missing or malformed."""


class ConfigError(MatmulError):
    """Stored or supplied settings are invalid."""


class UnknownKernelError(ValueError):
    """Requested kernel strategy is not registered."""
