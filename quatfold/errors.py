class QuatFoldError(Exception):
    pass


class InputError(QuatFoldError):
    """Empty or invalid sequence, or an unreadable/malformed input file."""


class GeometryError(QuatFoldError):
    """A residue's backbone could not be placed."""


class NumericalDivergence(QuatFoldError):
    """Energy or gradient became non-finite during optimization."""

    def __init__(self, message, last_energy=None):
        super().__init__(message)
        self.last_energy = last_energy


class ComparisonError(QuatFoldError):
    """Two structures cannot be put into residue correspondence."""


class ReferenceFetchError(QuatFoldError):
    pass
