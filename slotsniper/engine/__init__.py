"""
Session engine: response classification, controller and claim workflow
"""
from .channel import ActionReply, ActionStatus, AgentChannel, AgentCommand
from .classifier import MarkerExtractor, ResponseClassifier, ResponseMarkers
from .controller import RecoveryKind, RecoveryReport, SessionController, StartDecision, evaluate_cooldown_gate
from .workflow import ClaimLinkQueue, ReservationWorkflow, assess_confirmation

__all__ = [
    "ActionReply",
    "ActionStatus",
    "AgentChannel",
    "AgentCommand",
    "MarkerExtractor",
    "ResponseClassifier",
    "ResponseMarkers",
    "RecoveryKind",
    "RecoveryReport",
    "SessionController",
    "StartDecision",
    "evaluate_cooldown_gate",
    "ClaimLinkQueue",
    "ReservationWorkflow",
    "assess_confirmation",
]
