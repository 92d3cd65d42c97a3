from .fields import CertificationLevel
from .general import (
    AmbiguousPlaceholderError,
    NoSignatureForLtvError,
    ParameterError,
    PlaceholderNotFoundError,
    SignatureTooLargeError,
    SigningError,
)

__all__ = [
    'CertificationLevel', 'SigningError', 'ParameterError',
    'PlaceholderNotFoundError', 'AmbiguousPlaceholderError',
    'SignatureTooLargeError', 'NoSignatureForLtvError',
]
