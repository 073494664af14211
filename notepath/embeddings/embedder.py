"""
Sentence-transformer embedding provider.

Defaults to ``all-MiniLM-L6-v2`` (384-dimensional, normalised).  The
model is loaded lazily on first use and cached on the instance, so
separate embedders (e.g. in parallel tests) never share state.
"""

import logging
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "all-MiniLM-L6-v2"


class SentenceTransformerEmbedder:
    """Text → unit-norm float32 vectors.

    Args:
        model_name: sentence-transformers model to load.
        model: Optional pre-loaded model (for testing).  Anything with an
               ``encode(texts, batch_size=..., ...)`` method works.
        batch_size: Encoding batch size.
        dim: Width of the empty result for an empty input.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        model: Optional[object] = None,
        batch_size: int = 64,
        dim: int = 384,
    ):
        self.model_name = model_name
        self.batch_size = batch_size
        self.dim = dim
        self._model = model

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading sentence-transformer model: %s …", self.model_name)
            self._model = SentenceTransformer(self.model_name)
            logger.info("Model loaded.")
        return self._model

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """Embed strings; returns ``(len(texts), dim)`` float32."""
        if not texts:
            return np.empty((0, self.dim), dtype=np.float32)

        embeddings = self._get_model().encode(
            texts,
            batch_size=self.batch_size,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        arr = np.asarray(embeddings, dtype=np.float32)
        logger.debug(
            "Embedded %d texts → shape=%s, dtype=%s",
            len(texts), arr.shape, arr.dtype,
        )
        return arr

    def embed(self, text: str) -> np.ndarray:
        return self.embed_texts([text])[0]
