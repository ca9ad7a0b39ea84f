from .base_client import (
    BaseAPIClient,
    APIError,
    RateLimitError,
    AuthenticationError,
    ServerError,
    ClientError,
)
from .gemini_client import GeminiClient, GeminiConfig
from .prizepicks_client import PrizePicksClient, PrizePicksConfig
from .scoreboard_client import ScoreboardClient, ScoreboardConfig

__all__ = [
    'BaseAPIClient',
    'APIError',
    'RateLimitError',
    'AuthenticationError',
    'ServerError',
    'ClientError',
    'GeminiClient',
    'GeminiConfig',
    'PrizePicksClient',
    'PrizePicksConfig',
    'ScoreboardClient',
    'ScoreboardConfig',
]
