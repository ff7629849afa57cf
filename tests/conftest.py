"""Pytest configuration for neuron-bridge tests.

Tiny randomly initialised checkpoints are written to disk once per session
so exports run offline on the TorchScript backend.
"""

import json
import shutil
import sys
from unittest.mock import MagicMock, patch

import pytest
import torch
from transformers import (
    BertConfig,
    BertForSequenceClassification,
    BertTokenizer,
    GPT2Config,
    GPT2LMHeadModel,
    ViTConfig,
    ViTForImageClassification,
)

VOCAB = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]"] + [
    "hello", "world", "the", "a", "cat", "dog", "sat", "on", "mat", "is",
    "good", "bad", "model", "neuron", "fast", "slow", "very", "not", "and", "it",
]

GPT2_EOS = 98


def tiny_bert_config(**kwargs):
    defaults = dict(
        vocab_size=100,
        hidden_size=32,
        num_hidden_layers=2,
        num_attention_heads=2,
        intermediate_size=37,
        max_position_embeddings=64,
        pad_token_id=0,
    )
    defaults.update(kwargs)
    return BertConfig(**defaults)


def tiny_gpt2_config(**kwargs):
    defaults = dict(
        vocab_size=99,
        n_positions=32,
        n_embd=32,
        n_layer=2,
        n_head=2,
        bos_token_id=GPT2_EOS,
        eos_token_id=GPT2_EOS,
    )
    defaults.update(kwargs)
    return GPT2Config(**defaults)


def tiny_vit_config(**kwargs):
    defaults = dict(
        image_size=16,
        patch_size=8,
        num_channels=3,
        hidden_size=32,
        num_hidden_layers=2,
        num_attention_heads=2,
        intermediate_size=37,
        num_labels=3,
    )
    defaults.update(kwargs)
    return ViTConfig(**defaults)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Run every test on the CPU backend, without the user's cache or config."""
    monkeypatch.setenv("NEURON_BRIDGE_BACKEND", "torchscript")
    monkeypatch.setenv("NEURON_BRIDGE_CACHE_ENABLED", "false")
    monkeypatch.setenv("NEURON_BRIDGE_CACHE_DIR", str(tmp_path / "compile-cache"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture(scope="session")
def bert_dir(tmp_path_factory):
    """Directory with a tiny BERT sequence classifier and its tokenizer."""
    path = tmp_path_factory.mktemp("tiny-bert")
    torch.manual_seed(0)
    model = BertForSequenceClassification(tiny_bert_config(num_labels=2))
    model.save_pretrained(path)

    vocab_file = path / "vocab.txt"
    vocab_file.write_text("\n".join(VOCAB) + "\n")
    BertTokenizer(str(vocab_file)).save_pretrained(path)
    return path


@pytest.fixture(scope="session")
def gpt2_dir(tmp_path_factory):
    path = tmp_path_factory.mktemp("tiny-gpt2")
    torch.manual_seed(0)
    GPT2LMHeadModel(tiny_gpt2_config()).save_pretrained(path)
    return path


@pytest.fixture(scope="session")
def vit_dir(tmp_path_factory):
    path = tmp_path_factory.mktemp("tiny-vit")
    torch.manual_seed(0)
    ViTForImageClassification(tiny_vit_config()).save_pretrained(path)
    return path


@pytest.fixture(scope="session")
def compiled_bert_dir(bert_dir, tmp_path_factory):
    """Tiny BERT exported for batch_size=2, sequence_length=16."""
    from neuron_bridge import NeuronModelForSequenceClassification

    path = tmp_path_factory.mktemp("tiny-bert-neuron")
    model = NeuronModelForSequenceClassification.from_pretrained(
        bert_dir,
        export=True,
        backend="torchscript",
        compile_cache=False,
        batch_size=2,
        sequence_length=16,
    )
    model.save_pretrained(path)
    return path


@pytest.fixture(scope="session")
def compiled_gpt2_dir(gpt2_dir, tmp_path_factory):
    """Tiny GPT-2 exported for batch_size=2, sequence_length=16."""
    from neuron_bridge import NeuronModelForCausalLM

    path = tmp_path_factory.mktemp("tiny-gpt2-neuron")
    model = NeuronModelForCausalLM.from_pretrained(
        gpt2_dir,
        export=True,
        backend="torchscript",
        compile_cache=False,
        batch_size=2,
        sequence_length=16,
    )
    model.save_pretrained(path)
    return path


class FakeDataParallel:
    """Stand-in for torch_neuronx.DataParallel without dynamic batching.

    Like the real wrapper it only accepts batch_size rows per core, and
    records the batch of every call.
    """

    def __init__(self, module, device_ids, set_dynamic_batching=True):
        self.module = module
        self.num_cores = len(device_ids)
        self.dynamic = set_dynamic_batching
        self.batches = []

    def __call__(self, *inputs):
        batch = inputs[0].shape[0]
        self.batches.append(batch)
        if not self.dynamic and batch % self.num_cores:
            raise RuntimeError(f"Batch of {batch} cannot be split over {self.num_cores} cores")
        per_core = [self.module(*chunk) for chunk in zip(*(t.chunk(self.num_cores) for t in inputs))]
        return tuple(torch.cat(parts) for parts in zip(*per_core))


@pytest.fixture
def fake_neuronx():
    """torch_neuronx replaced by a mock whose DataParallel checks batch sizes."""
    module = MagicMock(__version__="2.1.0", DataParallel=FakeDataParallel)
    with patch.dict(sys.modules, {"torch_neuronx": module}):
        yield module


@pytest.fixture
def multi_core_bert_dir(compiled_bert_dir, tmp_path):
    """The compiled BERT recorded as a neuronx export replicated on two cores."""
    path = tmp_path / "bert-neuron-2-cores"
    shutil.copytree(compiled_bert_dir, path)
    config_path = path / "config.json"
    data = json.loads(config_path.read_text())
    data["neuron"].update(backend="neuronx", num_cores=2)
    config_path.write_text(json.dumps(data))
    return path
