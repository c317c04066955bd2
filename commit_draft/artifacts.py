"""
Locate a local checkpoint and the exact set of files needed to load it
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from commit_draft.errors import ArtifactNotFound

logger = logging.getLogger(__name__)

QUANTIZED_SUFFIX = ".gguf"
DENSE_SUFFIX = ".safetensors"
SINGLE_WEIGHTS_NAME = "model" + DENSE_SUFFIX
SHARD_INDEX_NAME = SINGLE_WEIGHTS_NAME + ".index.json"
SHARD_PREFIX = "model-"
CONFIG_NAME = "config.json"
TOKENIZER_NAME = "tokenizer.json"
ADAPTER_CONFIG_NAME = "adapter_config.json"
DEFAULT_MODEL_PREFIX = "default_"


class CheckpointFormat(Enum):
    DENSE = "dense"
    QUANTIZED = "quantized"


@dataclass(frozen=True)
class ArtifactSet:
    """
    Files required to load one checkpoint

    ``tokenizer_file`` is None when the tokenizer must be rebuilt from the
    checkpoint's embedded metadata. ``config_file`` is None for quantized
    checkpoints, which describe their own architecture.
    """

    format: CheckpointFormat
    weight_files: Tuple[Path, ...]
    tokenizer_file: Optional[Path] = None
    config_file: Optional[Path] = None
    adapter_dir: Optional[Path] = None

    def __post_init__(self):
        if not self.weight_files:
            raise ValueError("weight_files must not be empty")

    @property
    def model_dir(self) -> Path:
        return self.weight_files[0].parent

    @property
    def tokenizer_embedded(self) -> bool:
        return self.tokenizer_file is None


def locate_artifacts(model_path) -> ArtifactSet:
    """
    Work out which checkpoint format lives at ``model_path``

    For a directory, strategies are tried in order: quantized single file,
    single dense file, complete shard manifest, ``model-*`` glob. A path to
    a weight file selects exactly that file.

    Args:
        model_path: Directory holding the checkpoint, or one weight file

    Returns:
        The artifact set for the first strategy that matches

    Raises:
        ArtifactNotFound: no strategy matched, or a dense checkpoint lacks
            its config or tokenizer file
    """
    model_path = Path(model_path)
    if model_path.is_file():
        return _artifacts_for_file(model_path)

    model_dir = model_path
    checked: List[Path] = []

    if not model_dir.is_dir():
        raise ArtifactNotFound(f"Model directory does not exist: {model_dir}", [model_dir])

    # 1. Self-describing quantized checkpoint
    checked.append(model_dir / f"*{QUANTIZED_SUFFIX}")
    quantized = sorted(p for p in model_dir.glob(f"*{QUANTIZED_SUFFIX}") if p.is_file())
    if quantized:
        if len(quantized) > 1:
            logger.warning(
                "Found %d quantized checkpoints in %s, using %s",
                len(quantized), model_dir, quantized[0].name,
            )
        return _quantized_artifacts(quantized[0])

    # 2. Single consolidated dense file
    single = model_dir / SINGLE_WEIGHTS_NAME
    checked.append(single)
    if single.is_file():
        return _dense_artifacts(model_dir, [single])

    # 3. Sharded layout described by an index manifest
    index_path = model_dir / SHARD_INDEX_NAME
    checked.append(index_path)
    if index_path.is_file():
        shards, referenced = _shards_from_index(index_path)
        if shards:
            return _dense_artifacts(model_dir, shards)
        checked.extend(referenced)

    # 4. Glob for shard-named files
    checked.append(model_dir / f"{SHARD_PREFIX}*{DENSE_SUFFIX}")
    globbed = sorted(model_dir.glob(f"{SHARD_PREFIX}*{DENSE_SUFFIX}"))
    globbed = [p for p in globbed if p.is_file()]
    if globbed:
        return _dense_artifacts(model_dir, globbed)

    raise ArtifactNotFound(f"No model checkpoint found in {model_dir}", checked)


def _artifacts_for_file(path: Path) -> ArtifactSet:
    if path.suffix == QUANTIZED_SUFFIX:
        return _quantized_artifacts(path)
    if path.suffix == DENSE_SUFFIX:
        return _dense_artifacts(path.parent, [path])
    raise ArtifactNotFound(f"Not a checkpoint file: {path}", [path])


def _quantized_artifacts(path: Path) -> ArtifactSet:
    tokenizer_file = path.parent / TOKENIZER_NAME
    return ArtifactSet(
        format=CheckpointFormat.QUANTIZED,
        weight_files=(path,),
        tokenizer_file=tokenizer_file if tokenizer_file.is_file() else None,
    )


def _referenced_shards(index_path: Path) -> List[Path]:
    """Distinct shard files named by a manifest, sorted by name"""
    with open(index_path, 'r', encoding='utf-8') as f:
        index = json.load(f)
    weight_map = index.get("weight_map")
    if not isinstance(weight_map, dict):
        raise ValueError("manifest has no 'weight_map' object")
    names = {name for name in weight_map.values() if isinstance(name, str)}
    return [index_path.parent / name for name in sorted(names)]


def _shards_from_index(index_path: Path) -> Tuple[Optional[List[Path]], List[Path]]:
    """
    Return ``(shards, referenced)``

    ``shards`` is the full shard set, or None when the manifest is unusable
    or any referenced shard is missing.
    """
    try:
        referenced = _referenced_shards(index_path)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable shard manifest %s: %s", index_path, e)
        return None, []

    if not referenced:
        logger.warning("Shard manifest %s references no files", index_path)
        return None, referenced

    missing = [p for p in referenced if not p.is_file()]
    if missing:
        for path in missing:
            logger.warning("Shard listed in %s does not exist: %s", index_path.name, path)
        return None, referenced
    return referenced, referenced


def _dense_artifacts(model_dir: Path, weight_files: List[Path]) -> ArtifactSet:
    config_file = model_dir / CONFIG_NAME
    tokenizer_file = model_dir / TOKENIZER_NAME
    for required in (config_file, tokenizer_file):
        if not required.is_file():
            raise ArtifactNotFound(
                f"Dense checkpoint in {model_dir} is missing {required.name}",
                list(weight_files) + [required],
            )

    adapter_dir = model_dir if (model_dir / ADAPTER_CONFIG_NAME).is_file() else None
    return ArtifactSet(
        format=CheckpointFormat.DENSE,
        weight_files=tuple(weight_files),
        tokenizer_file=tokenizer_file,
        config_file=config_file,
        adapter_dir=adapter_dir,
    )



def has_dense_weights(directory: Path) -> bool:
    return (
        (directory / SINGLE_WEIGHTS_NAME).is_file()
        or (directory / SHARD_INDEX_NAME).is_file()
        or any(p.is_file() for p in directory.glob(f"{SHARD_PREFIX}*{DENSE_SUFFIX}"))
    )


def has_quantized_weights(directory: Path) -> bool:
    return any(p.is_file() for p in directory.glob(f"*{QUANTIZED_SUFFIX}"))


def _default_candidates(root: Path, suffix: str, has_weights) -> List[Path]:
    """``default_*`` directories holding weights and ``default_*<suffix>`` files"""
    found = []
    for path in sorted(root.glob(f"{DEFAULT_MODEL_PREFIX}*")):
        if path.is_dir() and has_weights(path):
            found.append(path)
        elif path.is_file() and path.suffix == suffix:
            found.append(path)
    return found


def resolve_model_path(models_root, name: Optional[str] = None) -> Path:
    """
    Pick the checkpoint to load from ``models_root``

    With a name, the first of these that exists wins:

    - ``<name>`` itself when it is an absolute path
    - ``<root>/<name>`` as a directory holding weights
    - ``<root>/<name>.safetensors``
    - ``<root>/<name>.gguf``

    Without one, ``default_*`` entries are searched: directories holding
    dense weights and ``default_*.safetensors`` files first, then directories
    holding a quantized file and ``default_*.gguf`` files. Entries are taken
    in name order.

    Returns:
        A model directory or a single weight file, for ``locate_artifacts``

    Raises:
        ArtifactNotFound: nothing suitable exists under the root
    """
    root = Path(models_root).expanduser()

    if name:
        candidate = Path(name).expanduser()
        if candidate.is_absolute() and candidate.exists():
            return candidate

        named_dir = root / name
        named_dense = root / f"{name}{DENSE_SUFFIX}"
        named_quantized = root / f"{name}{QUANTIZED_SUFFIX}"
        if named_dir.is_dir() and (has_dense_weights(named_dir) or has_quantized_weights(named_dir)):
            return named_dir
        if named_dense.is_file():
            return named_dense
        if named_quantized.is_file():
            return named_quantized
        raise ArtifactNotFound(
            f"Model '{name}' not found", [named_dir, named_dense, named_quantized]
        )

    checked = [
        root / f"{DEFAULT_MODEL_PREFIX}*",
        root / f"{DEFAULT_MODEL_PREFIX}*{DENSE_SUFFIX}",
        root / f"{DEFAULT_MODEL_PREFIX}*{QUANTIZED_SUFFIX}",
    ]
    if not root.is_dir():
        raise ArtifactNotFound(f"Models directory does not exist: {root}", [root])

    defaults = _default_candidates(root, DENSE_SUFFIX, has_dense_weights)
    if not defaults:
        defaults = _default_candidates(root, QUANTIZED_SUFFIX, has_quantized_weights)
    if not defaults:
        raise ArtifactNotFound(f"No default model found under {root}", checked)
    if len(defaults) > 1:
        logger.warning("Found several default models, using %s", defaults[0])
    return defaults[0]
