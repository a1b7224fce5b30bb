"""Composite objective: a sum of energy terms over one coordinate vector."""
from __future__ import annotations

from typing import List

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import LinearOperator, aslinearoperator


class CompositeObjective:
    """Sum of terms exposing ``energy``, ``gradient`` and ``hessian``.

    Terms are held by reference; adding or removing one never touches the
    others. ``is_valid`` is the conjunction of the terms that define it.
    """

    def __init__(self, *terms):
        self.terms: List = list(terms)

    def add_term(self, term) -> None:
        self.terms.append(term)

    def remove_term(self, term) -> None:
        self.terms = [t for t in self.terms if t is not term]

    def energy(self, x) -> float:
        total = 0.0
        for term in self.terms:
            e = term.energy(x)
            if not np.isfinite(e):
                return np.inf
            total += e
        return total

    def gradient(self, x) -> np.ndarray:
        g = np.zeros(np.asarray(x).shape[0])
        for term in self.terms:
            g += term.gradient(x)
        return g

    def hessian(self, x):
        """CSR sum when all terms are explicit, otherwise a LinearOperator sum."""
        parts = [term.hessian(x) for term in self.terms]
        n = np.asarray(x).shape[0]
        if not parts:
            return sparse.csr_matrix((n, n))
        if all(sparse.issparse(p) or isinstance(p, np.ndarray) for p in parts):
            total = sparse.csr_matrix((n, n))
            for p in parts:
                total = total + sparse.csr_matrix(p)
            return total.tocsr()
        ops = [aslinearoperator(p) for p in parts]
        return LinearOperator((n, n), matvec=lambda v: sum(op.matvec(v) for op in ops),
                              dtype=np.float64)

    def is_valid(self, x) -> bool:
        return all(term.is_valid(x) for term in self.terms if hasattr(term, 'is_valid'))

    def min_det_jacobian(self, x) -> float:
        """Smallest Jacobian determinant over the terms that report one."""
        dets = [term.min_det_jacobian(x) for term in self.terms if hasattr(term, 'min_det_jacobian')]
        return float(min(dets)) if dets else np.inf


__all__ = ['CompositeObjective']
