"""Training orchestration: iteration search and end-to-end rating prediction runs."""

from .iterative import (  # noqa: F401
    EvaluationRecord,
    IterationConfig,
    IterationHistory,
    IterativeTrainingController,
    TimingSummary,
    TrainingState,
)
from .rating_prediction import RatingPredictionResult, run_rating_prediction  # noqa: F401
