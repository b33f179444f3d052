class DigitClassifierError(Exception):
    """Base class for errors raised by the digit classifier."""


class ProvisioningError(DigitClassifierError):
    """The model could not be located or downloaded."""


class ClassificationError(DigitClassifierError):
    """Inference could not run or produced no result."""
