from typing import Optional


class MineWorkerException(Exception):
    """
    Base for every failure an action reports back to the menu.
    ``hint`` tells the operator how to fix it.
    """

    def __init__(self, message: str = "", hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class ActionCancelledException(MineWorkerException):
    pass


class PreconditionException(MineWorkerException):
    pass


class WorldNotFoundException(PreconditionException):
    pass


class ConfigNotFoundException(PreconditionException):
    pass


class MalformedConfigException(PreconditionException):
    pass


class UnsupportedServerTypeException(PreconditionException):
    pass


class InvalidMemoryException(PreconditionException):
    pass


class LaunchScriptMismatchException(PreconditionException):
    pass


class ServerRunningException(PreconditionException):
    pass


class ServerNotRunningException(PreconditionException):
    pass


class ProcessFailedException(MineWorkerException):
    def __init__(self, message: str = "", output: str = "", hint: Optional[str] = None):
        super().__init__(message, hint=hint)
        self.output = output


class TransferException(MineWorkerException):
    def __init__(self, message: str = "", status: Optional[int] = None, hint: Optional[str] = None):
        super().__init__(message, hint=hint)
        self.status = status


class AuthenticationException(MineWorkerException):
    pass


class DNSException(MineWorkerException):
    pass


class ArchiveException(MineWorkerException):
    pass
