"""Exception hierarchy for the loader.

Every failure the core can report is a ``LoaderError``. ``run_load`` turns
these into a FAILED outcome; anything else is a bug and propagates.
"""


class LoaderError(Exception):
    """Base class for all loader failures."""


class SchemaError(LoaderError):
    """The desired table definition is malformed. Not retryable."""

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class StructuralConflictError(LoaderError):
    """An existing table disagrees with the desired definition.

    Never resolved automatically: someone has to migrate the column by hand.
    """

    def __init__(
        self,
        table: str,
        column: str,
        observed: str,
        desired: str,
        attribute: str = "type",
    ) -> None:
        super().__init__(
            f"{table}.{column}: {attribute} conflict "
            f"(observed {observed!r}, desired {desired!r})"
        )
        self.table = table
        self.column = column
        self.observed = observed
        self.desired = desired
        self.attribute = attribute

    @property
    def observed_type(self) -> str:
        return self.observed

    @property
    def desired_type(self) -> str:
        return self.desired


class DriverError(LoaderError):
    """The warehouse rejected an operation (connection, DDL, copy...)."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class CommitError(DriverError):
    """Commit was not acknowledged after the copy succeeded.

    The data may or may not be visible. Re-running the whole load is safe.
    """

    def __init__(self, message: str) -> None:
        super().__init__("commit", message)


class NotFoundError(LoaderError):
    """No eligible source file. Terminal, but not a load failure."""

    def __init__(self, schema: str, table: str, detail: str = "") -> None:
        message = f"no source file for {schema}.{table}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.schema = schema
        self.table = table
