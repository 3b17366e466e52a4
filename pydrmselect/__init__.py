"""
PyDRMSelect: dose-response model selection and ED10 estimation for Python.

Fits candidate nonlinear curves to each endpoint of a multi-target assay,
keeps the models that pass a lack-of-fit test, ranks them by AIC and reports
the winner's effective dose with its standard error.

Usage:
    from pydrmselect import doseresponse
"""

import logging

__version__ = "0.1.0"
__author__ = "pydrmselect developers"

logging.getLogger(__name__).addHandler(logging.NullHandler())

from pydrmselect import doseresponse  # noqa: E402

__all__ = [
    "__version__",
    "doseresponse",
]
