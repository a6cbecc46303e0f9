from .mlflow_callback import MLflowSweepCallback
from .verification_callback import VerificationPlotCallback

__all__ = ["MLflowSweepCallback", "VerificationPlotCallback"]
