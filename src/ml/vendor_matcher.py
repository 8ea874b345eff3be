"""Per-organization vendor name normalization.

TF-IDF over word and character-trigram tokens, one centroid per canonical
vendor, blended with edit similarity against stored raw spellings so that
both aliases ("Amazon Web Services" -> AWS) and typos resolve.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from src.constants import (
    ModelName,
    MIN_VENDOR_TRAINING_EXAMPLES,
    MAX_VENDOR_TRAINING_EXAMPLES,
    MAX_CLUSTER_VARIANTS,
    EDIT_VARIANTS_COMPARED,
    VENDOR_COSINE_WEIGHT,
    VENDOR_EDIT_WEIGHT,
    MIN_VENDOR_COMBINED_SCORE,
    MIN_VENDOR_CONFIDENCE,
    MIN_SIMILAR_VENDOR_SCORE,
)
from src.ml.base import OrganizationModel
from src.ml.text_vectors import (
    SparseVector,
    Vocabulary,
    centroid,
    char_ngrams,
    cosine_similarity,
    edit_similarity,
    fit_idf,
    tfidf_vector,
    word_tokens,
)
from src.ml.versioning import next_version
from src.models.training import TrainOutcome
from src.models.vendor import SimilarVendor, TrainedVendorModel, VendorCluster, VendorMatch
from src.utils.logging import get_logger
from src.utils.metrics import vendor_normalizations

logger = get_logger(__name__)

STOP_WORDS = frozenset([
    "inc", "llc", "ltd", "corp", "corporation", "company", "co", "the", "and",
    "payment", "transfer", "ach", "wire", "debit", "credit", "to", "from",
    "services", "service", "solutions", "solution", "group", "holdings",
])


def tokenize_vendor(text: str) -> List[str]:
    """Words plus tagged trigrams, so 'AMZN WEB SVCS' still shares tokens with 'AMZN WEB SERVICES'."""
    return word_tokens(text, STOP_WORDS) + char_ngrams(text, 3)


class VendorMatcher(OrganizationModel):
    """Learns an organization's confirmed vendor normalizations"""

    model_name = ModelName.VENDOR_MATCHER
    payload_type = TrainedVendorModel

    model: Optional[TrainedVendorModel]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._vocabulary: Optional[Vocabulary] = None

    def load(self) -> bool:
        loaded = super().load()
        if loaded:
            self._vocabulary = Vocabulary(self.model.vocabulary)
        return loaded

    def train(self) -> TrainOutcome:
        """
        Rebuild the vectorizer and clusters from confirmed (raw, normalized) pairs.

        Returns:
            TrainOutcome; fewer than the minimum examples leaves the model untouched
        """
        limit = self.config.get("max_training_examples", MAX_VENDOR_TRAINING_EXAMPLES)
        minimum = self.config.get("min_training_examples", MIN_VENDOR_TRAINING_EXAMPLES)

        logger.info("Training vendor matcher", organization_id=self.organization_id)
        examples = self.ledger.get_vendor_examples(self.organization_id, limit)
        if len(examples) < minimum:
            logger.warning(
                "Not enough vendor examples to train",
                organization_id=self.organization_id,
                example_count=len(examples),
                required=minimum,
            )
            return TrainOutcome(
                success=False,
                example_count=len(examples),
                message=f"Not enough training data ({len(examples)} examples, need {minimum}+)",
            )

        vocabulary, idf = fit_idf([raw for raw, _ in examples], tokenize_vendor)
        documents = [tokenize_vendor(raw) for raw, _ in examples]
        vectors = [tfidf_vector(tokens, vocabulary, idf) for tokens in documents]

        # one cluster per canonical name, compared case-insensitively
        grouped: Dict[str, Dict[str, Any]] = {}
        for (raw, normalized), vector in zip(examples, vectors):
            cluster = grouped.setdefault(
                normalized.lower(), {"name": normalized, "vectors": [], "variants": []}
            )
            cluster["vectors"].append(vector)
            if raw not in cluster["variants"]:
                cluster["variants"].append(raw)

        clusters = [
            VendorCluster(
                normalized_name=cluster["name"],
                centroid=centroid(cluster["vectors"]),
                variants=cluster["variants"][:MAX_CLUSTER_VARIANTS],
                example_count=len(cluster["vectors"]),
            )
            for cluster in grouped.values()
        ]

        self.model = TrainedVendorModel(
            version=next_version(),
            trained_at=datetime.now(),
            organization_id=self.organization_id,
            example_count=len(examples),
            vocabulary=vocabulary.tokens,
            idf=idf,
            clusters=clusters,
        )
        self._vocabulary = vocabulary
        self._persist()

        logger.info(
            "Trained vendor matcher",
            organization_id=self.organization_id,
            example_count=len(examples),
            cluster_count=len(clusters),
            vocabulary_size=len(vocabulary),
        )
        return TrainOutcome(
            success=True,
            example_count=len(examples),
            message="Vendor matcher trained",
            details={"cluster_count": len(clusters), "vocabulary_size": len(vocabulary)},
        )

    def _vectorize(self, name: str) -> SparseVector:
        tokens = tokenize_vendor(name)
        if not tokens:
            return {}
        return tfidf_vector(tokens, self._vocabulary, self.model.idf)

    def normalize(self, raw_name: str) -> Optional[VendorMatch]:
        """
        Resolve a raw vendor string to a canonical vendor.

        Args:
            raw_name: Vendor text as it appears on the transaction

        Returns:
            VendorMatch, or None when untrained or not confident enough
        """
        if self.model is None or not self.model.clusters:
            vendor_normalizations.labels(outcome="no_model").inc()
            return None

        vector = self._vectorize(raw_name)
        if not vector:
            vendor_normalizations.labels(outcome="unmatched").inc()
            return None

        best: Optional[VendorCluster] = None
        best_score = 0.0
        for cluster in self.model.clusters:
            cosine = cosine_similarity(vector, cluster.centroid)
            edit = max(
                (edit_similarity(raw_name, variant) for variant in cluster.variants[:EDIT_VARIANTS_COMPARED]),
                default=0.0,
            )
            score = VENDOR_COSINE_WEIGHT * cosine + VENDOR_EDIT_WEIGHT * edit
            if score > best_score:
                best, best_score = cluster, score

        if best is None or best_score < MIN_VENDOR_COMBINED_SCORE:
            vendor_normalizations.labels(outcome="unmatched").inc()
            return None

        confidence = min(0.95, 0.5 + best_score * 0.5)
        if confidence < MIN_VENDOR_CONFIDENCE:
            vendor_normalizations.labels(outcome="unmatched").inc()
            return None

        vendor_normalizations.labels(outcome="matched").inc()
        return VendorMatch(
            normalized_name=best.normalized_name,
            confidence=confidence,
            matched_variants=best.variants[:3],
        )

    def find_similar(self, name: str, top_k: int = 5) -> List[SimilarVendor]:
        """Cosine-only ranking of clusters; exploration aid, never committed."""
        if self.model is None or not self.model.clusters:
            return []
        vector = self._vectorize(name)
        if not vector:
            return []

        similar = []
        for cluster in self.model.clusters:
            similarity = cosine_similarity(vector, cluster.centroid)
            if similarity > MIN_SIMILAR_VENDOR_SCORE:
                similar.append(SimilarVendor(
                    normalized_name=cluster.normalized_name,
                    similarity=similarity,
                    variants=cluster.variants[:3],
                ))
        similar.sort(key=lambda s: s.similarity, reverse=True)
        return similar[:top_k]

    def normalize_transactions(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Annotate vendor_normalized on transactions that do not have one yet.

        Returns:
            {"examined": n, "normalized": n}
        """
        if self.model is None:
            return {"examined": 0, "normalized": 0}

        frame = self.ledger.get_transactions(self.organization_id, limit=limit)
        pending = frame[frame['vendor_normalized'].fillna('') == '']
        cache: Dict[str, Optional[VendorMatch]] = {}
        normalized = 0
        for row in pending.itertuples(index=False):
            raw = row.vendor or ""
            if not raw:
                continue
            if raw not in cache:
                cache[raw] = self.normalize(raw)
            match = cache[raw]
            if match is not None:
                self.ledger.annotate_transaction(row.txn_id, vendor_normalized=match.normalized_name)
                normalized += 1

        logger.info(
            "Normalized transaction vendors",
            organization_id=self.organization_id,
            examined=len(pending),
            normalized=normalized,
        )
        return {"examined": len(pending), "normalized": normalized}

    def get_stats(self) -> Dict[str, Any]:
        if self.model is None:
            return {"is_trained": False, "version": None, "trained_at": None, "example_count": 0,
                    "cluster_count": 0, "vocabulary_size": 0, "top_vendors": []}
        top = sorted(self.model.clusters, key=lambda c: c.example_count, reverse=True)[:10]
        return {
            "is_trained": True,
            "version": self.model.version,
            "trained_at": self.model.trained_at.isoformat(),
            "example_count": self.model.example_count,
            "cluster_count": len(self.model.clusters),
            "vocabulary_size": len(self.model.vocabulary),
            "top_vendors": [{"name": c.normalized_name, "variants": len(c.variants)} for c in top],
        }
