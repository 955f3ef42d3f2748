"""Exceptions raised by the filing workflow and the computation engine."""


class FilingError(Exception):
    """Base class for rejected filing operations.

    The message is meant for the end user and says what to do next.
    """
    status_code = 400


class NoDocumentsError(FilingError):
    def __init__(self, message: str = "No W-2 documents found. Please upload W-2 first."):
        super().__init__(message)


class NoProfileError(FilingError):
    def __init__(self, message: str = "No tax information found. Please complete your tax information first."):
        super().__init__(message)


class NoReturnError(FilingError):
    def __init__(self, message: str = "No tax return data found. Please generate Form 1040 first."):
        super().__init__(message)


class PaymentRequiredError(FilingError):
    def __init__(self, message: str = "Payment required before submission."):
        super().__init__(message)


class ReturnAlreadySubmittedError(FilingError):
    status_code = 409

    def __init__(self, message: str = "Tax return has already been submitted."):
        super().__init__(message)


class InvalidTaxInfoError(FilingError):
    pass


class InvalidPaymentError(FilingError):
    pass


class UnsupportedDocumentError(FilingError):
    pass


class NotFoundError(FilingError):
    status_code = 404


class DuplicateUserError(FilingError):
    status_code = 409
