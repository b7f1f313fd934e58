"""Exception hierarchy for brewdash."""


class BrewdashError(Exception):
    """Base exception class for brewdash errors"""


class CommandError(BrewdashError):
    """Raised when an external command cannot be run or exits non-zero"""

    def __init__(self, args, returncode=None, stderr=""):
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = f"exit status {returncode}" if returncode is not None else "could not start"
        message = f"{' '.join(self.command)}: {detail}"
        if stderr:
            message = f"{message}: {stderr.strip()[:200]}"
        super().__init__(message)


class SourceFetchError(BrewdashError):
    """Raised when a data source can be served neither from cache nor live"""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class ManifestError(BrewdashError):
    """Raised when the manifest file cannot be located, downloaded or read"""


class BrewNotFoundError(BrewdashError):
    """Raised when the Homebrew binary is missing or unusable"""
