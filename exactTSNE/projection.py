from collections.abc import Mapping

import numpy as np


class IdentityIndex:
    """An ordered bijection between object identities and matrix rows.

    Every matrix used during optimization is addressed by row index. The index
    is assigned once, in the iteration order of ``identities``, and must not
    change for the lifetime of a run.

    Parameters
    ----------
    identities: Iterable[Hashable]
        The object identities. Each identity may appear only once.

    """

    def __init__(self, identities):
        self.__identities = tuple(identities)
        self.__indices = {}
        for idx, identity in enumerate(self.__identities):
            if identity in self.__indices:
                raise ValueError(
                    "Duplicate identity `%r` at positions %d and %d."
                    % (identity, self.__indices[identity], idx)
                )
            self.__indices[identity] = idx

    def __len__(self):
        return len(self.__identities)

    def __iter__(self):
        return iter(self.__identities)

    def __contains__(self, identity):
        return identity in self.__indices

    def __getitem__(self, index):
        return self.__identities[index]

    def __eq__(self, other):
        if not isinstance(other, IdentityIndex):
            return NotImplemented
        return tuple(self) == tuple(other)

    def __hash__(self):
        return hash(self.__identities)

    def __repr__(self):
        return "%s(n_samples=%d)" % (self.__class__.__name__, len(self))

    def index_of(self, identity):
        try:
            return self.__indices[identity]
        except KeyError:
            raise KeyError("Unknown identity `%r`." % (identity,)) from None

    def identity_of(self, index):
        return self.__identities[index]


class Projection(Mapping):
    """Low-dimensional coordinates keyed by the original object identities.

    Iterates over identities in their index order. Values are copies, so
    modifying them does not affect the projection.

    Attributes
    ----------
    name: str
    identities: IdentityIndex
    n_components: int
        The dimensionality of each coordinate vector.

    """

    def __init__(self, coordinates, identities, name="tSNE"):
        coordinates = np.array(coordinates, dtype=np.float64)
        if coordinates.ndim != 2:
            raise ValueError("Coordinates must be a 2-dimensional matrix.")
        if coordinates.shape[0] != len(identities):
            raise ValueError(
                "The coordinates contain a different number of points (%d) "
                "than there are identities (%d)."
                % (coordinates.shape[0], len(identities))
            )
        coordinates.setflags(write=False)

        self.name = name
        self.identities = identities
        self.n_components = coordinates.shape[1]
        self.__coordinates = coordinates

    def __getitem__(self, identity):
        return np.array(self.__coordinates[self.identities.index_of(identity)])

    def __iter__(self):
        return iter(self.identities)

    def __len__(self):
        return len(self.identities)

    def __repr__(self):
        return "%s(name=%r, n_samples=%d, n_components=%d)" % (
            self.__class__.__name__, self.name, len(self), self.n_components
        )

    def to_array(self):
        """Return a copy of the coordinates as an ``N x n_components`` matrix,
        rows ordered as the identities."""
        return np.array(self.__coordinates)


def project(embedding, identities, name="tSNE"):
    """Relabel the rows of an embedding with their object identities.

    Parameters
    ----------
    embedding: np.ndarray
        An ``N x n_components`` matrix, row ``i`` belonging to
        ``identities.identity_of(i)``.

    identities: IdentityIndex

    name: str

    Returns
    -------
    Projection

    """
    if not isinstance(identities, IdentityIndex):
        identities = IdentityIndex(identities)
    return Projection(np.asarray(embedding), identities, name=name)
