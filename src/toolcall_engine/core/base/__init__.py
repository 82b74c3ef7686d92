from .base import ModelClient, ModelRequest, TurnOutcome

__all__ = ["ModelClient", "ModelRequest", "TurnOutcome"]
