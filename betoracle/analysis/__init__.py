from .key_pool import KeyPoolManager, FixedWindowCounter, Credential
from .dispatcher import RequestDispatcher, degrade_prompt
from .context_builder import ContextAssembler
from .orchestrator import AnalysisOrchestrator

__all__ = [
    "KeyPoolManager",
    "FixedWindowCounter",
    "Credential",
    "RequestDispatcher",
    "degrade_prompt",
    "ContextAssembler",
    "AnalysisOrchestrator",
]
