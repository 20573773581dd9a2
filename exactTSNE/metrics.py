import numpy as np

from exactTSNE.tsne import TSNEEmbedding


def pBIC(embedding: TSNEEmbedding) -> float:
    """Score an optimized embedding with the perplexity-based BIC criterion
    :math:`2 KL + \\ln(N) \\cdot perp / N`.

    Lower is better. Comparing scores across perplexities helps to choose one.

    """
    perplexity = getattr(embedding.affinities, "perplexity", None)
    if perplexity is None:
        raise TypeError("The affinities of the embedding were not calibrated to a perplexity.")
    if embedding.kl_divergence is None:
        raise RuntimeError("The embedding has not been optimized yet.")

    n_samples = embedding.shape[0]
    return 2 * embedding.kl_divergence + np.log(n_samples) * perplexity / n_samples
