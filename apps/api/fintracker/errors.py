"""Errors raised by the statement ingestion pipeline."""


class IngestionError(Exception):
    """Base class for every error raised while importing a statement.

    ``column`` names the statement column the value came from, when known.
    """

    def __init__(self, message: str, column: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.column = column


class ParseError(IngestionError):
    """A numeric or currency token could not be parsed."""

    def __init__(self, raw_value: str) -> None:
        super().__init__(f"Invalid number: {raw_value!r}")
        self.raw_value = raw_value


class DateFormatError(IngestionError):
    """A date is not DD/MM/YYYY or does not exist in the calendar."""

    def __init__(self, raw_value: str, reason: str = "expected DD/MM/YYYY") -> None:
        super().__init__(f"Invalid date {raw_value!r}: {reason}")
        self.raw_value = raw_value


class SchemaError(IngestionError):
    """Required columns are missing from the header row."""

    def __init__(self, missing_columns: list[str]) -> None:
        super().__init__(f"Missing required columns: {', '.join(missing_columns)}")
        self.missing_columns = missing_columns


class RowError(IngestionError):
    """A single data row failed; line numbers are 1-based with the header on line 1."""

    def __init__(self, line_number: int, cause: Exception | str) -> None:
        if isinstance(cause, IngestionError):
            detail = f"{cause.column}: {cause.message}" if cause.column else cause.message
        else:
            detail = str(cause)
        super().__init__(f"Line {line_number}: {detail}")
        self.line_number = line_number
        self.cause = cause


class BatchParseError(IngestionError):
    """Raised once, after every row was scanned, when an all-or-nothing import had row errors."""

    def __init__(self, row_errors: list[RowError]) -> None:
        lines = "\n".join(error.message for error in row_errors)
        super().__init__(f"Parsing errors found:\n{lines}")
        self.row_errors = row_errors


class EmptyFileError(IngestionError):
    def __init__(self, message: str = "File is empty or has no data rows") -> None:
        super().__init__(message)


class NoRecordsError(IngestionError):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("No valid records found in file")
        self.errors = errors


class UnsupportedFileError(IngestionError):
    def __init__(self, filename: str) -> None:
        super().__init__(f"Unsupported file type: {filename}. Use .csv, .xlsx or .xls")
        self.filename = filename


class PersistenceError(IngestionError):
    """The storage engine rejected an operation."""


class ConstraintViolation(PersistenceError):
    """An insert or update violated a database constraint."""
