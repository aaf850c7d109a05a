"""Adrena perpetuals pipeline: addresses, builders, fees, submission and views."""

from .builders import BuiltInstructions, InstructionBuilder
from .client import AdrenaClient
from .errors import (
    AdrenaError,
    ConfigurationError,
    CustodyNotFoundError,
    ExpiredError,
    ProgramRejectedError,
    SimulationRejectedError,
    TransientNetworkError,
    UnknownError,
    UserDeclinedSignatureError,
    translate_error,
)
from .fees import FeeEstimate, FeeEstimator
from .pdas import AddressRegistry, PositionKey, Side
from .resolver import AccountResolver
from .submit import ProgressEvent, SubmissionEngine, SubmissionStage

__all__ = [
    "AccountResolver",
    "AddressRegistry",
    "AdrenaClient",
    "AdrenaError",
    "BuiltInstructions",
    "ConfigurationError",
    "CustodyNotFoundError",
    "ExpiredError",
    "FeeEstimate",
    "FeeEstimator",
    "InstructionBuilder",
    "PositionKey",
    "ProgramRejectedError",
    "ProgressEvent",
    "Side",
    "SimulationRejectedError",
    "SubmissionEngine",
    "SubmissionStage",
    "TransientNetworkError",
    "UnknownError",
    "UserDeclinedSignatureError",
    "translate_error",
]
