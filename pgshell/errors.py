"""
Exceptions thrown by pgshell. Kept separate from the main module so that
every other module can import them without importing the command line code.
"""


class PGShellException(Exception):
    """
    Base class for exceptions thrown by pgshell. Also thrown explicitly
    for certain errors in the shell.
    """


class AbortError(PGShellException):
    """
    Thrown to force an abort with a non-zero exit code.
    """


class TooManyMatchesError(PGShellException):
    """
    Thrown to indicate that a database specification matched too many
    entries in the configuration file.
    """


class BackendError(PGShellException):
    """
    Thrown by a backend when the database rejects a statement, when a
    statement times out, or when a connection can't be established. The
    message is always a single line, suitable for display after "ERROR:".
    """
