"""Exceptions raised by the freight core for caller (programming) errors."""


class FreightCoreError(Exception):
    """Base class for freight core errors."""
    pass


class UnknownDocumentTypeError(FreightCoreError):
    """Raised when no transition table is registered for a document type."""

    def __init__(self, doc_type):
        self.doc_type = doc_type
        super().__init__(f"No transition table registered for document type '{doc_type}'")


class InvalidDocumentNumberError(FreightCoreError):
    """Raised when a document number does not match its expected format."""

    def __init__(self, number: str, expected_format: str):
        self.number = number
        self.expected_format = expected_format
        super().__init__(f"Invalid document number '{number}', expected {expected_format}")
