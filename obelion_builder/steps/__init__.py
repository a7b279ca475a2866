from .step_10_fetch import FetchStep
from .step_20_verify import VerifyStep
from .step_30_extract import ExtractStep
from .step_40_customize import CustomizeStep
from .step_50_compose import ComposeStep

__all__ = [
    "FetchStep",
    "VerifyStep",
    "ExtractStep",
    "CustomizeStep",
    "ComposeStep",
]
