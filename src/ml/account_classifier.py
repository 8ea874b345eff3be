"""Trainable fallback classifier: account text -> canonical account.

Word TF-IDF centroids per canonical account, trained on reviewed mapping
feedback and high-confidence mappings. Used only when no industry rule or
type default applies.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from src.constants import (
    FeedbackStatus,
    ModelName,
    MIN_CLASSIFIER_EXAMPLES,
    MIN_CLASSIFIER_SIMILARITY,
    CLASSIFIER_CONFIDENCE_THRESHOLD,
    HIGH_CONFIDENCE_MAPPING,
)
from src.ml.base import OrganizationModel
from src.ml.text_vectors import (
    Vocabulary,
    centroid,
    cosine_similarity,
    fit_idf,
    tfidf_vector,
    word_tokens,
)
from src.ml.versioning import next_version
from src.models.account import AccountClassification, ClassifierClass, TrainedClassifierModel
from src.models.training import TrainOutcome
from src.utils.logging import get_logger

logger = get_logger(__name__)

STOP_WORDS = frozenset([
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "inc", "llc",
    "ltd", "corp", "corporation", "company", "co", "services", "service",
])

MAX_SOURCE_NAMES = 10


def tokenize_account(text: str) -> List[str]:
    return word_tokens(text, STOP_WORDS)


class AccountClassifier(OrganizationModel):
    """Learns an organization's reviewed account mappings"""

    model_name = ModelName.ACCOUNT_CLASSIFIER
    payload_type = TrainedClassifierModel

    model: Optional[TrainedClassifierModel]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._vocabulary: Optional[Vocabulary] = None

    def load(self) -> bool:
        loaded = super().load()
        if loaded:
            self._vocabulary = Vocabulary(self.model.vocabulary)
        return loaded

    def _training_examples(self) -> List[Tuple[str, str]]:
        """(source account name, canonical account id) pairs from reviewed data."""
        examples = []
        for feedback in self.ledger.list_mapping_feedback(self.organization_id, FeedbackStatus.CORRECTED):
            examples.append((feedback.source_account_name, feedback.corrected_canonical_account_id))
        for feedback in self.ledger.list_mapping_feedback(self.organization_id, FeedbackStatus.APPROVED):
            examples.append((feedback.source_account_name, feedback.suggested_canonical_account_id))
        for mapping in self.ledger.list_account_mappings(self.organization_id):
            if mapping.is_active and mapping.confidence_score >= HIGH_CONFIDENCE_MAPPING:
                examples.append((mapping.source_account_name, mapping.canonical_account_id))
        return [(name, account_id) for name, account_id in examples if name and account_id]

    def train(self) -> TrainOutcome:
        """
        Rebuild class centroids from corrected/approved feedback and
        high-confidence mappings.

        Returns:
            TrainOutcome; too few examples leaves the model untouched
        """
        minimum = self.config.get("min_training_examples", MIN_CLASSIFIER_EXAMPLES)
        examples = self._training_examples()
        if len(examples) < minimum:
            logger.warning(
                "Not enough mapping examples to train classifier",
                organization_id=self.organization_id,
                example_count=len(examples),
                required=minimum,
            )
            return TrainOutcome(
                success=False,
                example_count=len(examples),
                message=f"Not enough training data ({len(examples)} examples, need {minimum}+)",
            )

        accounts = {a.id: a for a in self.ledger.list_canonical_accounts()}
        vocabulary, idf = fit_idf([name for name, _ in examples], tokenize_account)
        documents = [tokenize_account(name) for name, _ in examples]

        grouped: Dict[str, Dict[str, Any]] = {}
        for (name, account_id), tokens in zip(examples, documents):
            group = grouped.setdefault(account_id, {"vectors": [], "names": []})
            group["vectors"].append(tfidf_vector(tokens, vocabulary, idf))
            if name not in group["names"]:
                group["names"].append(name)

        classes = []
        for account_id, group in grouped.items():
            account = accounts.get(account_id)
            classes.append(ClassifierClass(
                canonical_account_id=account_id,
                canonical_code=account.code if account else "UNKNOWN",
                canonical_name=account.name if account else "Unknown",
                centroid=centroid(group["vectors"]),
                source_names=group["names"][:MAX_SOURCE_NAMES],
            ))

        self.model = TrainedClassifierModel(
            version=next_version(),
            trained_at=datetime.now(),
            organization_id=self.organization_id,
            example_count=len(examples),
            vocabulary=vocabulary.tokens,
            idf=idf,
            classes=classes,
        )
        self._vocabulary = vocabulary
        self._persist()

        logger.info(
            "Trained account classifier",
            organization_id=self.organization_id,
            example_count=len(examples),
            class_count=len(classes),
            vocabulary_size=len(vocabulary),
        )
        return TrainOutcome(
            success=True,
            example_count=len(examples),
            message="Account classifier trained",
            details={"class_count": len(classes), "vocabulary_size": len(vocabulary)},
        )

    def classify(self, text: str) -> Optional[AccountClassification]:
        """
        Suggest a canonical account for account or transaction text.

        Returns:
            AccountClassification with source "ml_local", or None when
            untrained, tokenless, or below the confidence threshold
        """
        if self.model is None or not self.model.classes:
            return None
        tokens = tokenize_account(text)
        if not tokens:
            return None

        vector = tfidf_vector(tokens, self._vocabulary, self.model.idf)
        best: Optional[ClassifierClass] = None
        best_similarity = 0.0
        for candidate in self.model.classes:
            similarity = cosine_similarity(vector, candidate.centroid)
            if similarity > best_similarity:
                best, best_similarity = candidate, similarity

        if best is None or best_similarity < MIN_CLASSIFIER_SIMILARITY:
            return None
        confidence = min(0.95, 0.5 + best_similarity * 0.45)
        if confidence < self.config.get("confidence_threshold", CLASSIFIER_CONFIDENCE_THRESHOLD):
            return None

        return AccountClassification(
            canonical_account_id=best.canonical_account_id,
            canonical_code=best.canonical_code,
            canonical_name=best.canonical_name,
            confidence=confidence,
            source="ml_local",
            matched_examples=best.source_names[:3],
        )

    def get_stats(self) -> Dict[str, Any]:
        if self.model is None:
            return {"is_trained": False, "version": None, "trained_at": None,
                    "example_count": 0, "vocabulary_size": 0, "class_count": 0}
        return {
            "is_trained": True,
            "version": self.model.version,
            "trained_at": self.model.trained_at.isoformat(),
            "example_count": self.model.example_count,
            "vocabulary_size": len(self.model.vocabulary),
            "class_count": len(self.model.classes),
        }
