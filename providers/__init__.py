from providers.base import ProblemSource
from providers.dynatrace_provider import DynatraceProvider

__all__ = ["ProblemSource", "DynatraceProvider"]
