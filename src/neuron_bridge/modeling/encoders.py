"""Compiled models for encoder and vision tasks."""

from .base import NeuronModel


class NeuronModelForFeatureExtraction(NeuronModel):
    """Returns ``last_hidden_state`` (BaseModelOutput)."""

    task = "feature-extraction"


class NeuronModelForSequenceClassification(NeuronModel):
    """Returns sequence ``logits`` (SequenceClassifierOutput)."""

    task = "text-classification"


class NeuronModelForTokenClassification(NeuronModel):
    """Returns per-token ``logits`` (TokenClassifierOutput)."""

    task = "token-classification"


class NeuronModelForQuestionAnswering(NeuronModel):
    """Returns ``start_logits`` and ``end_logits`` (QuestionAnsweringModelOutput)."""

    task = "question-answering"


class NeuronModelForMaskedLM(NeuronModel):
    task = "fill-mask"


class NeuronModelForImageClassification(NeuronModel):
    """Returns class ``logits`` for fixed-size images (ImageClassifierOutput)."""

    task = "image-classification"
