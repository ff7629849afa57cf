"""Tests for the task registry."""

import pytest
import torch
from transformers import BertForSequenceClassification, BertModel, GPT2LMHeadModel
from transformers.modeling_outputs import QuestionAnsweringModelOutput

from neuron_bridge.configuration import NeuronConfig
from neuron_bridge.exceptions import (
    MissingInputShapeError,
    NeuronConfigError,
    UnsupportedTaskError,
)
from neuron_bridge.tasks import TasksManager

from conftest import tiny_bert_config, tiny_gpt2_config, tiny_vit_config


class TestTaskLookup:
    """Tests for task names and synonyms."""

    def test_list_tasks(self):
        assert TasksManager.list_tasks() == [
            "feature-extraction",
            "fill-mask",
            "image-classification",
            "question-answering",
            "text-classification",
            "text-generation",
            "token-classification",
        ]

    @pytest.mark.parametrize(
        "alias,expected",
        [
            ("sentiment-analysis", "text-classification"),
            ("sequence-classification", "text-classification"),
            ("Causal_LM", "text-generation"),
            ("ner", "token-classification"),
            ("masked-lm", "fill-mask"),
            ("default", "feature-extraction"),
        ],
    )
    def test_synonyms(self, alias, expected):
        assert TasksManager.get_task(alias).name == expected

    def test_unknown_task(self):
        with pytest.raises(UnsupportedTaskError, match="translation"):
            TasksManager.get_task("translation")

    def test_task_spec(self):
        spec = TasksManager.get_task("question-answering")
        assert spec.output_names == ("start_logits", "end_logits")
        assert spec.output_class is QuestionAnsweringModelOutput
        assert not spec.is_vision
        assert TasksManager.get_task("image-classification").is_vision


class TestInferTask:
    """Tests for task inference from checkpoints."""

    def test_from_config_architectures(self):
        config = tiny_bert_config(architectures=["BertForSequenceClassification"])
        assert TasksManager.infer_task_from_model(config) == "text-classification"

    def test_lm_head_model(self):
        config = tiny_gpt2_config(architectures=["GPT2LMHeadModel"])
        assert TasksManager.infer_task_from_model(config) == "text-generation"

    def test_backbone_falls_back_to_feature_extraction(self):
        assert TasksManager.infer_task_from_model(tiny_bert_config()) == "feature-extraction"

    def test_from_model_instance(self):
        model = GPT2LMHeadModel(tiny_gpt2_config())
        assert TasksManager.infer_task_from_model(model) == "text-generation"

    def test_from_directory(self, bert_dir):
        assert TasksManager.infer_task_from_model(bert_dir) == "text-classification"


class TestResolveInputShapes:
    """Tests for static shape validation."""

    def test_text_shapes(self):
        shapes = TasksManager.resolve_input_shapes(
            "text-classification", tiny_bert_config(), batch_size=4, sequence_length=32
        )
        assert shapes == {"batch_size": 4, "sequence_length": 32}

    def test_batch_size_defaults_to_one(self):
        shapes = TasksManager.resolve_input_shapes(
            "fill-mask", tiny_bert_config(), sequence_length=8
        )
        assert shapes["batch_size"] == 1

    def test_missing_sequence_length(self):
        with pytest.raises(MissingInputShapeError) as exc_info:
            TasksManager.resolve_input_shapes("text-classification", tiny_bert_config(), batch_size=1)
        assert exc_info.value.missing == ["sequence_length"]
        assert exc_info.value.task == "text-classification"

    def test_sequence_longer_than_positions(self):
        with pytest.raises(NeuronConfigError, match="exceeds"):
            TasksManager.resolve_input_shapes(
                "text-generation", tiny_gpt2_config(), sequence_length=64
            )

    def test_non_positive_dimension(self):
        with pytest.raises(NeuronConfigError, match="positive integer"):
            TasksManager.resolve_input_shapes(
                "feature-extraction", tiny_bert_config(), batch_size=0, sequence_length=8
            )

    def test_vision_defaults_from_config(self):
        shapes = TasksManager.resolve_input_shapes("image-classification", tiny_vit_config())
        assert shapes == {"batch_size": 1, "num_channels": 3, "height": 16, "width": 16}

    def test_vision_overrides(self):
        shapes = TasksManager.resolve_input_shapes(
            "image-classification", tiny_vit_config(), batch_size=2, height=32, width=32
        )
        assert shapes == {"batch_size": 2, "num_channels": 3, "height": 32, "width": 32}


class TestNeuronConfigCreation:
    """Tests for building export configs from loaded models."""

    def test_bert_inputs(self):
        model = BertForSequenceClassification(tiny_bert_config())
        config = TasksManager.create_neuron_config(
            "sentiment-analysis", model, "torchscript", batch_size=2, sequence_length=8, num_cores=None
        )
        assert config.task == "text-classification"
        assert config.backend == "torchscript"
        assert config.input_names == ["input_ids", "attention_mask", "token_type_ids"]
        assert config.output_names == ["logits"]
        assert config.num_cores == 1

    def test_gpt2_inputs(self):
        model = GPT2LMHeadModel(tiny_gpt2_config())
        config = TasksManager.create_neuron_config(
            "text-generation", model, "neuronx", sequence_length=16, auto_cast="matmul"
        )
        assert config.input_names == ["input_ids", "attention_mask"]
        assert config.auto_cast_enabled

    def test_feature_extraction_outputs(self):
        model = BertModel(tiny_bert_config())
        config = TasksManager.create_neuron_config("feature-extraction", model, "torchscript", sequence_length=8)
        assert config.output_names == ["last_hidden_state"]


class TestDummyInputs:
    """Tests for example inputs used for tracing."""

    def test_text_inputs(self):
        neuron_config = NeuronConfig(
            task="text-classification",
            batch_size=3,
            sequence_length=10,
            input_names=["input_ids", "attention_mask", "token_type_ids"],
        )
        input_ids, attention_mask, token_type_ids = TasksManager.generate_dummy_inputs(
            neuron_config, tiny_bert_config()
        )
        assert input_ids.shape == (3, 10)
        assert input_ids.dtype == torch.long
        assert int(input_ids.max()) < 100
        assert attention_mask[:, :-1].eq(1).all()
        assert attention_mask[:, -1].eq(0).all()
        assert token_type_ids.eq(0).all()

    def test_vision_inputs(self):
        neuron_config = NeuronConfig(
            task="image-classification",
            batch_size=2,
            num_channels=3,
            height=16,
            width=16,
            input_names=["pixel_values"],
        )
        (pixel_values,) = TasksManager.generate_dummy_inputs(neuron_config, tiny_vit_config())
        assert pixel_values.shape == (2, 3, 16, 16)
        assert pixel_values.dtype == torch.float32

    def test_deterministic(self):
        neuron_config = NeuronConfig(
            task="fill-mask", batch_size=1, sequence_length=6, input_names=["input_ids"]
        )
        first = TasksManager.generate_dummy_inputs(neuron_config, tiny_bert_config())
        second = TasksManager.generate_dummy_inputs(neuron_config, tiny_bert_config())
        assert torch.equal(first[0], second[0])
