from .tsne import TSNE, TSNEEmbedding
from .projection import IdentityIndex, Projection
from .version import __version__
