from __future__ import annotations


class CloudBuildTimeoutError(Exception):
    pass


class ConfigError(CloudBuildTimeoutError, ValueError):
    pass


class UnknownSignalError(ConfigError):
    def __init__(self, name: str):
        super().__init__(f"{name} is not a valid, catchable signal")
        self.name = name


class DeadlineFetchError(CloudBuildTimeoutError):
    pass


class PastDeadlineError(CloudBuildTimeoutError):
    pass


class SpawnError(CloudBuildTimeoutError):
    pass


class SignalDeliveryError(CloudBuildTimeoutError):
    pass
