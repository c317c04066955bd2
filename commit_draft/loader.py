"""
Checkpoint loading for dense (safetensors) and quantized (GGUF) models
"""
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import torch
from accelerate import init_empty_weights
from gguf import GGML_QUANT_SIZES, GGUFReader, GGUFValueType
from peft import PeftModel
from safetensors import safe_open
from transformers import AutoConfig, AutoModelForCausalLM

from commit_draft.artifacts import ADAPTER_CONFIG_NAME, ArtifactSet, CheckpointFormat
from commit_draft.errors import ConfigParseError, TokenizerLoadError, WeightLoadError
from commit_draft.model import (
    DEFAULT_WINDOW_SIZE,
    SUPPORTED_FAMILIES,
    ArchitectureConfig,
    DecodeStrategy,
    ModelHandle,
)
from commit_draft.tokenizer import TokenizerAdapter

logger = logging.getLogger(__name__)

# Used for any of eos/bos/padding when the checkpoint does not name one
DEFAULT_SPECIAL_TOKEN_ID = 151643

BOS_MARKER = "<|im_start|>"
EOS_MARKER = "<|im_end|>"


def load_checkpoint(
    artifacts: ArtifactSet,
    strategy: Optional[DecodeStrategy] = None,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> Tuple[ModelHandle, TokenizerAdapter]:
    """
    Load the model and tokenizer described by ``artifacts``

    Args:
        artifacts: Output of ``locate_artifacts``
        strategy: Decode strategy override (default: chosen per model family)
        window_size: Trailing window for the windowed strategy

    Returns:
        ``(model, tokenizer)``
    """
    if artifacts.format is CheckpointFormat.QUANTIZED:
        model, tokenizer = load_quantized(artifacts, strategy, window_size)
    else:
        model, tokenizer = load_dense(artifacts, strategy, window_size)

    logger.info("Model ready: %s", model.config.describe())
    logger.info("Decode strategy: %s", model.strategy.value)
    return model, tokenizer


# =============================================================================
# Dense checkpoints
# =============================================================================

def read_config(path) -> Any:
    """Parse ``config.json`` into a transformers config object"""
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigParseError(path, str(e)) from e

    if not isinstance(data, dict):
        raise ConfigParseError(path, "expected a JSON object")

    model_type = data.pop("model_type", None)
    if not model_type:
        raise ConfigParseError(path, "missing 'model_type'")

    try:
        config = AutoConfig.for_model(model_type, **data)
        ArchitectureConfig.from_pretrained_config(config)
    except (ValueError, TypeError, AttributeError, KeyError) as e:
        raise ConfigParseError(path, str(e)) from e

    if model_type not in SUPPORTED_FAMILIES:
        logger.warning("Model family '%s' is not one of %s", model_type, SUPPORTED_FAMILIES)
    return config


def config_eos_ids(config) -> List[int]:
    eos = getattr(config, "eos_token_id", None)
    if eos is None:
        return []
    if isinstance(eos, (list, tuple)):
        return [int(i) for i in eos]
    return [int(eos)]


def load_dense(
    artifacts: ArtifactSet,
    strategy: Optional[DecodeStrategy] = None,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> Tuple[ModelHandle, TokenizerAdapter]:
    start = time.perf_counter()
    config = read_config(artifacts.config_file)
    arch = ArchitectureConfig.from_pretrained_config(config)
    logger.info("Loaded %s", artifacts.config_file)

    tokenizer = TokenizerAdapter.from_file(artifacts.tokenizer_file, config_eos_ids(config))
    logger.info("Loaded %s (%d tokens)", artifacts.tokenizer_file, tokenizer.vocab_size)

    module = build_dense_module(config, artifacts.weight_files)
    if artifacts.adapter_dir is not None:
        module = merge_adapter(module, artifacts.adapter_dir)
    module.eval()

    logger.info(
        "Loaded %d weight file(s) in %.2fs",
        len(artifacts.weight_files), time.perf_counter() - start,
    )
    handle = ModelHandle(module, arch, CheckpointFormat.DENSE, strategy, window_size)
    logger.info("Parameters: %s", f"{handle.parameter_count:,}")
    return handle, tokenizer


def build_dense_module(config, weight_files: Sequence[Path]) -> torch.nn.Module:
    """
    Instantiate the architecture without allocating weights, then assign
    tensors read from memory-mapped safetensors files in declared order
    """
    weight_files = [Path(p) for p in weight_files]
    with init_empty_weights():
        module = AutoModelForCausalLM.from_config(config)

    expected = module.state_dict()
    state: Dict[str, torch.Tensor] = {}
    try:
        for path in weight_files:
            with safe_open(str(path), framework="pt", device="cpu") as f:
                for name in f.keys():
                    if name not in expected:
                        logger.debug("Skipping tensor not used by the model: %s", name)
                        continue
                    tensor = f.get_tensor(name)
                    if tuple(tensor.shape) != tuple(expected[name].shape):
                        raise WeightLoadError(
                            f"shape mismatch for {name} in {path}: model "
                            f"{tuple(expected[name].shape)}, checkpoint {tuple(tensor.shape)}",
                            weight_files,
                        )
                    state[name] = tensor.to(torch.float32)
    except WeightLoadError:
        raise
    except Exception as e:
        raise WeightLoadError(str(e), weight_files) from e

    module.load_state_dict(state, strict=False, assign=True)
    if getattr(config, "tie_word_embeddings", False):
        module.tie_weights()

    missing = [name for name, param in module.named_parameters() if param.is_meta]
    if missing:
        raise WeightLoadError(
            f"{len(missing)} parameter(s) not found in checkpoint, e.g. {missing[:3]}",
            weight_files,
        )
    return module


def merge_adapter(module: torch.nn.Module, adapter_dir: Path) -> torch.nn.Module:
    """Fold a LoRA adapter saved next to the base weights into them"""
    adapter_dir = Path(adapter_dir)
    try:
        peft_model = PeftModel.from_pretrained(module, str(adapter_dir))
        merged = peft_model.merge_and_unload()
    except Exception as e:
        raise WeightLoadError(
            f"cannot merge adapter: {e}", [adapter_dir / ADAPTER_CONFIG_NAME]
        ) from e
    logger.info("Merged LoRA adapter from %s", adapter_dir)
    return merged


# =============================================================================
# Quantized checkpoints
# =============================================================================

def field_value(field) -> Any:
    """Convert a GGUF reader field into a plain Python value"""
    if not field.types:
        return None

    kind = field.types[0]
    if kind == GGUFValueType.ARRAY:
        item_kind = field.types[-1]
        if len(field.types) > 2:
            # Nested arrays are not needed for loading
            return None
        if item_kind == GGUFValueType.STRING:
            return [bytes(field.parts[i]).decode('utf-8', errors='replace') for i in field.data]
        return [field.parts[i].tolist()[0] for i in field.data]

    if kind == GGUFValueType.STRING:
        return bytes(field.parts[field.data[0]]).decode('utf-8', errors='replace')
    return field.parts[field.data[0]].tolist()[0]


def read_metadata(reader) -> Dict[str, Any]:
    return {name: field_value(field) for name, field in reader.fields.items()}


def quantized_footprint(tensors: Iterable) -> int:
    """Bytes occupied by block-quantized tensors"""
    total = 0
    for tensor in tensors:
        block_size, type_size = GGML_QUANT_SIZES[tensor.tensor_type]
        total += int(tensor.n_elements) * type_size // block_size
    return total


def architecture_from_metadata(metadata: Dict[str, Any], path: Path) -> ArchitectureConfig:
    arch = metadata.get("general.architecture")
    if not arch:
        raise ConfigParseError(path, "missing general.architecture")

    def require(key):
        value = metadata.get(f"{arch}.{key}")
        if value is None:
            raise ConfigParseError(path, f"missing metadata key {arch}.{key}")
        return int(value)

    tokens = metadata.get("tokenizer.ggml.tokens") or []
    num_heads = require("attention.head_count")
    kv_heads = metadata.get(f"{arch}.attention.head_count_kv")
    vocab_size = metadata.get(f"{arch}.vocab_size") or len(tokens)
    context_length = metadata.get(f"{arch}.context_length")
    return ArchitectureConfig(
        model_type=arch,
        hidden_size=require("embedding_length"),
        num_layers=require("block_count"),
        num_heads=num_heads,
        num_kv_heads=int(kv_heads) if kv_heads is not None else num_heads,
        vocab_size=int(vocab_size),
        max_positions=int(context_length) if context_length is not None else None,
    )


def special_token_id(metadata: Dict[str, Any], key: str) -> int:
    value = metadata.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return DEFAULT_SPECIAL_TOKEN_ID


def _special_token(token_id: int, content: str) -> dict:
    return {
        "id": token_id,
        "content": content,
        "single_word": False,
        "lstrip": False,
        "rstrip": False,
        "normalized": False,
        "special": True,
    }


def build_tokenizer_definition(metadata: Dict[str, Any]) -> dict:
    """
    Synthesize a ``tokenizer.json`` style definition from checkpoint metadata

    The vocabulary comes from ``tokenizer.ggml.tokens``; merge rules are
    left out, so encoding new text is coarser than with the full tokenizer.
    """
    tokens = metadata.get("tokenizer.ggml.tokens")
    if not tokens:
        raise TokenizerLoadError(None, "checkpoint metadata has no tokenizer.ggml.tokens")

    eos_id = special_token_id(metadata, "tokenizer.ggml.eos_token_id")
    bos_id = special_token_id(metadata, "tokenizer.ggml.bos_token_id")
    pad_id = special_token_id(metadata, "tokenizer.ggml.padding_token_id")
    logger.info("Special tokens: eos=%d bos=%d pad=%d", eos_id, bos_id, pad_id)

    vocab = {}
    for index, token in enumerate(tokens):
        vocab[token] = index

    byte_level = metadata.get("tokenizer.ggml.model") == "gpt2"
    pre_tokenizer = None
    decoder = None
    if byte_level:
        pre_tokenizer = {"type": "ByteLevel", "add_prefix_space": False, "trim_offsets": True, "use_regex": True}
        decoder = {"type": "ByteLevel", "add_prefix_space": True, "trim_offsets": True, "use_regex": True}

    return {
        "version": "1.0",
        "truncation": None,
        "padding": None,
        "added_tokens": [
            _special_token(bos_id, BOS_MARKER),
            _special_token(eos_id, EOS_MARKER),
        ],
        "normalizer": None,
        "pre_tokenizer": pre_tokenizer,
        "post_processor": None,
        "decoder": decoder,
        "model": {
            "type": "BPE",
            "dropout": None,
            "unk_token": None,
            "continuing_subword_prefix": None,
            "end_of_word_suffix": None,
            "fuse_unk": False,
            "byte_fallback": False,
            "vocab": vocab,
            "merges": [],
        },
    }


def tokenizer_from_metadata(metadata: Dict[str, Any]) -> TokenizerAdapter:
    definition = build_tokenizer_definition(metadata)
    eos_id = special_token_id(metadata, "tokenizer.ggml.eos_token_id")
    tokenizer = TokenizerAdapter.from_definition(definition, [eos_id])
    logger.info("Rebuilt tokenizer from checkpoint metadata (%d tokens)", tokenizer.vocab_size)
    return tokenizer


def load_quantized(
    artifacts: ArtifactSet,
    strategy: Optional[DecodeStrategy] = None,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> Tuple[ModelHandle, TokenizerAdapter]:
    path = artifacts.weight_files[0]
    start = time.perf_counter()

    try:
        reader = GGUFReader(str(path))
    except Exception as e:
        raise WeightLoadError(f"cannot read quantized checkpoint: {e}", artifacts.weight_files) from e

    metadata = read_metadata(reader)
    footprint = quantized_footprint(reader.tensors)
    logger.info(
        "Read %d tensors (%.2f GB) in %.2fs",
        len(reader.tensors), footprint / 1e9, time.perf_counter() - start,
    )
    arch = architecture_from_metadata(metadata, path)
    eos_id = special_token_id(metadata, "tokenizer.ggml.eos_token_id")
    del reader

    if artifacts.tokenizer_file is not None:
        tokenizer = TokenizerAdapter.from_file(artifacts.tokenizer_file, [eos_id])
        logger.info("Using external tokenizer %s", artifacts.tokenizer_file)
    else:
        tokenizer = tokenizer_from_metadata(metadata)

    try:
        module = AutoModelForCausalLM.from_pretrained(
            str(path.parent),
            gguf_file=path.name,
            torch_dtype=torch.float32,
        )
    except Exception as e:
        raise WeightLoadError(str(e), artifacts.weight_files) from e
    module.eval()

    return ModelHandle(module, arch, CheckpointFormat.QUANTIZED, strategy, window_size), tokenizer
