from betoracle.config import ConfigManager
from .response_parser import AnalysisResponseParser
from .errors import (
    AnalysisError,
    SoftQuotaExceededError,
    TransientProviderError,
    QuotaExhaustedError,
    SupplementalFetchError,
    CacheBackendUnavailableError,
    ProviderErrorKind,
    classify_provider_error,
)

__all__ = [
    'ConfigManager',
    'AnalysisResponseParser',
    # Analysis pipeline errors
    'AnalysisError',
    'SoftQuotaExceededError',
    'TransientProviderError',
    'QuotaExhaustedError',
    'SupplementalFetchError',
    'CacheBackendUnavailableError',
    # Error handling
    'ProviderErrorKind',
    'classify_provider_error',
]
