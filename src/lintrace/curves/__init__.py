"""Principal curves and pseudotime."""

from lintrace.curves.principal_curve import PrincipalCurve
from lintrace.curves.engine import PseudotimeEngine, PseudotimeResult

__all__ = ["PrincipalCurve", "PseudotimeEngine", "PseudotimeResult"]
