from typing import Optional


class ReconciliationConfigError(ValueError):
    """Fatal configuration fault: the run cannot continue."""


class MappingDocumentError(ReconciliationConfigError):
    pass


class UnknownSourceTypeError(ReconciliationConfigError):
    pass


class ExpressionSyntaxError(ReconciliationConfigError):
    pass


class MissingColumnError(ReconciliationConfigError):
    def __init__(self, column: str, file_name: str, suggestion: Optional[str] = None):
        self.column = column
        self.file_name = file_name
        self.suggestion = suggestion
        msg = f"The expected column '{column}' is missing from the {file_name} file."
        if suggestion:
            msg += f" Did you mean '{suggestion}'?"
        super().__init__(msg)
