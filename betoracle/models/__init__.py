from .match import (
    MatchDescriptor,
    MatchResult,
    PropSelection,
    AnalysisRequest,
    MATCH_STATUS_UPCOMING,
    MATCH_STATUS_LIVE,
    MATCH_STATUS_FINISHED,
    PLACEHOLDER_TEAM_NAMES,
    is_placeholder_team,
)
from .analysis import (
    Analysis,
    QuickPick,
    NarrativeSignal,
    Source,
    HistoricalRecord,
    Projection,
    SupplementalContext,
    RawModelResponse,
    PROVENANCE_GROUNDED,
    PROVENANCE_DEGRADED,
    PROVENANCE_CACHED,
    PROVENANCE_ERROR,
    ANALYSIS_ERROR_PREDICTION,
    ANALYSIS_ERROR_SCORELINE,
)

__all__ = [
    'MatchDescriptor',
    'MatchResult',
    'PropSelection',
    'AnalysisRequest',
    'MATCH_STATUS_UPCOMING',
    'MATCH_STATUS_LIVE',
    'MATCH_STATUS_FINISHED',
    'PLACEHOLDER_TEAM_NAMES',
    'is_placeholder_team',
    'Analysis',
    'QuickPick',
    'NarrativeSignal',
    'Source',
    'HistoricalRecord',
    'Projection',
    'SupplementalContext',
    'RawModelResponse',
    'PROVENANCE_GROUNDED',
    'PROVENANCE_DEGRADED',
    'PROVENANCE_CACHED',
    'PROVENANCE_ERROR',
    'ANALYSIS_ERROR_PREDICTION',
    'ANALYSIS_ERROR_SCORELINE',
]
