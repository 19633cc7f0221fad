"""Error taxonomy shared by the services and the HTTP layer.

Each error carries the HTTP status it maps to; the application installs a
single handler that renders any of them as ``{"message": ...}``.
"""


class LibraryError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """Missing or malformed input."""
    status_code = 400


class NotFoundError(LibraryError):
    status_code = 404


class ConflictError(LibraryError):
    """Active loan already exists, double return, or a refused state change."""
    status_code = 409


class UnavailableError(LibraryError):
    """No copies left to lend."""
    status_code = 409


class InconsistencyError(LibraryError):
    """A multi-step write could not be completed.

    The session is rolled back before this is raised; ``borrowing_id`` and
    ``book_id`` identify the rows an operator has to reconcile.
    """
    status_code = 500

    def __init__(self, message: str, borrowing_id=None, book_id=None):
        super().__init__(message)
        self.borrowing_id = borrowing_id
        self.book_id = book_id
