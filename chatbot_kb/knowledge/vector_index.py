"""FAISS-backed cosine-similarity index for the optional vector extension."""

from typing import TYPE_CHECKING, Sequence

import numpy as np

if TYPE_CHECKING:
    import faiss
    from numpy.typing import NDArray


class VectorIndex:
    """Cosine-similarity search over knowledge item embeddings.

    Vectors are L2-normalized and stored in an inner-product FAISS index,
    so inner product equals cosine similarity. FAISS labels are positions
    in ``_ids``; adding an existing item id replaces its vector.
    """

    def __init__(self, dimension: int | None = None) -> None:
        self.dimension = dimension
        self.index: "faiss.IndexIDMap2 | None" = None
        self._ids: list[str] = []
        self._labels: dict[str, int] = {}

    def __len__(self) -> int:
        return self.index.ntotal if self.index is not None else 0

    def _check_dimension(self, dimension: int, what: str) -> None:
        if dimension != self.dimension:
            raise ValueError(
                f"{what} dimension ({dimension}) does not match index dimension "
                f"({self.dimension})"
            )

    def _ensure_index(self, dimension: int) -> "faiss.IndexIDMap2":
        import faiss

        if self.dimension is None:
            self.dimension = dimension
        self._check_dimension(dimension, "Vector")
        if self.index is None:
            self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))
        return self.index

    def add(self, item_id: str, vector: "NDArray[np.float32] | Sequence[float]") -> None:
        """Add or replace the embedding for an item."""
        self.add_many([item_id], [vector])

    def add_many(self, item_ids: Sequence[str], vectors: "NDArray[np.float32] | Sequence[Sequence[float]]") -> None:
        """Add or replace embeddings for several items.

        When an id repeats within the batch, its last vector wins.
        """
        if not item_ids:
            return
        import faiss

        array = np.array(vectors, dtype=np.float32).reshape(len(item_ids), -1)
        index = self._ensure_index(array.shape[1])

        latest = {item_id: row for row, item_id in enumerate(item_ids)}
        labels: list[int] = []
        for item_id in latest:
            label = self._labels.get(item_id)
            if label is None:
                label = len(self._ids)
                self._ids.append(item_id)
                self._labels[item_id] = label
            else:
                index.remove_ids(np.array([label], dtype=np.int64))
            labels.append(label)

        rows = np.ascontiguousarray(array[list(latest.values())])
        faiss.normalize_L2(rows)
        index.add_with_ids(rows, np.array(labels, dtype=np.int64))

    def search(
        self,
        vector: "NDArray[np.float32] | Sequence[float]",
        top_k: int = 5,
        min_score: float = 0.0,
    ) -> list[tuple[str, float]]:
        """Return up to ``top_k`` (item_id, similarity) pairs, best first.

        Pairs scoring below ``min_score`` are dropped.
        """
        if self.index is None or self.index.ntotal == 0 or top_k <= 0:
            return []
        import faiss

        query = np.array(vector, dtype=np.float32).reshape(1, -1)
        self._check_dimension(query.shape[1], "Query")
        faiss.normalize_L2(query)

        scores, labels = self.index.search(query, min(top_k, self.index.ntotal))

        results: list[tuple[str, float]] = []
        for score, label in zip(scores[0], labels[0]):
            if label < 0:  # FAISS pads missing results with -1
                continue
            if score < min_score:
                continue
            results.append((self._ids[label], float(score)))
        return results
