"""taylorize public API."""

from .errors import (
    DependencyCycleError,
    ParseError,
    ShapeMismatchError,
    TaylorizeCompileError,
    TaylorizeError,
    UnknownCallWarning,
    UnsupportedConstructError,
)
from .generic import generic_jet
from .jet import Jet, jetcoeffs
from .parser import parse, parse_function
from .registry import (
    Specialization,
    SpecializationRegistry,
    compile_rhs,
    default_registry,
    taylorize,
)
from .series import Series, series_array

try:
    from .autodiff import odejet
except ModuleNotFoundError as exc:
    if exc.name and exc.name.startswith("jax"):
        _jax_import_error = exc

        def odejet(*_args, **_kwargs):
            raise ModuleNotFoundError(
                "jax is required for odejet(). Install runtime deps first."
            ) from _jax_import_error

    else:
        raise

__all__ = [
    "parse",
    "parse_function",
    "compile_rhs",
    "taylorize",
    "Specialization",
    "SpecializationRegistry",
    "default_registry",
    "Jet",
    "jetcoeffs",
    "generic_jet",
    "odejet",
    "Series",
    "series_array",
    "TaylorizeError",
    "TaylorizeCompileError",
    "ParseError",
    "UnsupportedConstructError",
    "ShapeMismatchError",
    "DependencyCycleError",
    "UnknownCallWarning",
]
