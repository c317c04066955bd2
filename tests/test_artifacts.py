import json

import pytest

from commit_draft.artifacts import (
    ArtifactSet,
    CheckpointFormat,
    locate_artifacts,
    resolve_model_path,
)
from commit_draft.errors import ArtifactNotFound


def touch(path, content=""):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def dense_siblings(model_dir):
    touch(model_dir / "config.json", "{}")
    touch(model_dir / "tokenizer.json", "{}")


def write_index(model_dir, shard_names):
    weight_map = {f"layer.{i}.weight": name for i, name in enumerate(shard_names)}
    # Several tensors per shard
    weight_map.update({f"layer.{i}.bias": name for i, name in enumerate(shard_names)})
    touch(model_dir / "model.safetensors.index.json", json.dumps({"weight_map": weight_map}))


class TestQuantized:
    def test_quantized_file_wins(self, tmp_path):
        touch(tmp_path / "qwen2.5-0.5b-instruct-q4_k_m.gguf")
        touch(tmp_path / "model.safetensors")
        dense_siblings(tmp_path)

        artifacts = locate_artifacts(tmp_path)
        assert artifacts.format is CheckpointFormat.QUANTIZED
        assert artifacts.weight_files == (tmp_path / "qwen2.5-0.5b-instruct-q4_k_m.gguf",)
        assert artifacts.config_file is None

    def test_tokenizer_embedded_by_default(self, tmp_path):
        touch(tmp_path / "model.gguf")
        artifacts = locate_artifacts(tmp_path)
        assert artifacts.tokenizer_embedded
        assert artifacts.tokenizer_file is None

    def test_external_tokenizer_takes_precedence(self, tmp_path):
        touch(tmp_path / "model.gguf")
        touch(tmp_path / "tokenizer.json", "{}")
        artifacts = locate_artifacts(tmp_path)
        assert artifacts.tokenizer_file == tmp_path / "tokenizer.json"

    def test_first_quantized_file_in_name_order(self, tmp_path):
        touch(tmp_path / "b.gguf")
        touch(tmp_path / "a.gguf")
        assert locate_artifacts(tmp_path).weight_files == (tmp_path / "a.gguf",)


class TestDense:
    def test_single_file_preferred_over_shards(self, tmp_path):
        touch(tmp_path / "model.safetensors")
        shards = ["model-00001-of-00002.safetensors", "model-00002-of-00002.safetensors"]
        for name in shards:
            touch(tmp_path / name)
        write_index(tmp_path, shards)
        dense_siblings(tmp_path)

        artifacts = locate_artifacts(tmp_path)
        assert artifacts.format is CheckpointFormat.DENSE
        assert artifacts.weight_files == (tmp_path / "model.safetensors",)
        assert artifacts.config_file == tmp_path / "config.json"
        assert artifacts.tokenizer_file == tmp_path / "tokenizer.json"

    def test_complete_shard_set_from_index(self, tmp_path):
        shards = ["shard-b.safetensors", "shard-a.safetensors", "shard-c.safetensors"]
        for name in shards:
            touch(tmp_path / name)
        write_index(tmp_path, shards)
        dense_siblings(tmp_path)

        artifacts = locate_artifacts(tmp_path)
        assert artifacts.weight_files == tuple(tmp_path / n for n in sorted(shards))

    def test_partial_shard_set_is_not_accepted(self, tmp_path):
        shards = ["part-1.safetensors", "part-2.safetensors", "part-3.safetensors"]
        for name in shards[:2]:
            touch(tmp_path / name)
        write_index(tmp_path, shards)
        dense_siblings(tmp_path)

        with pytest.raises(ArtifactNotFound) as excinfo:
            locate_artifacts(tmp_path)
        assert tmp_path / "part-3.safetensors" in excinfo.value.checked_paths

    def test_partial_shard_set_falls_through_to_glob(self, tmp_path):
        shards = [f"model-0000{i}-of-00003.safetensors" for i in (1, 2, 3)]
        for name in shards[:2]:
            touch(tmp_path / name)
        write_index(tmp_path, shards)
        dense_siblings(tmp_path)

        artifacts = locate_artifacts(tmp_path)
        assert artifacts.weight_files == tuple(tmp_path / n for n in shards[:2])

    def test_unreadable_index_falls_through(self, tmp_path):
        touch(tmp_path / "model.safetensors.index.json", "{broken")
        touch(tmp_path / "model-00001-of-00001.safetensors")
        dense_siblings(tmp_path)

        artifacts = locate_artifacts(tmp_path)
        assert artifacts.weight_files == (tmp_path / "model-00001-of-00001.safetensors",)

    def test_glob_is_sorted(self, tmp_path):
        for name in ("model-3.safetensors", "model-1.safetensors", "model-2.safetensors"):
            touch(tmp_path / name)
        dense_siblings(tmp_path)

        artifacts = locate_artifacts(tmp_path)
        assert [p.name for p in artifacts.weight_files] == [
            "model-1.safetensors", "model-2.safetensors", "model-3.safetensors",
        ]

    @pytest.mark.parametrize("missing", ["config.json", "tokenizer.json"])
    def test_missing_sibling_is_fatal(self, tmp_path, missing):
        touch(tmp_path / "model.safetensors")
        dense_siblings(tmp_path)
        (tmp_path / missing).unlink()

        with pytest.raises(ArtifactNotFound) as excinfo:
            locate_artifacts(tmp_path)
        assert missing in str(excinfo.value)

    def test_adapter_detected(self, tmp_path):
        touch(tmp_path / "model.safetensors")
        touch(tmp_path / "adapter_config.json", "{}")
        dense_siblings(tmp_path)
        assert locate_artifacts(tmp_path).adapter_dir == tmp_path


class TestNotFound:
    def test_empty_directory_lists_checked_paths(self, tmp_path):
        with pytest.raises(ArtifactNotFound) as excinfo:
            locate_artifacts(tmp_path)

        checked = excinfo.value.checked_paths
        assert tmp_path / "model.safetensors" in checked
        assert tmp_path / "model.safetensors.index.json" in checked
        assert str(tmp_path / "model.safetensors") in str(excinfo.value)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ArtifactNotFound):
            locate_artifacts(tmp_path / "nope")

    def test_artifact_set_requires_weights(self):
        with pytest.raises(ValueError):
            ArtifactSet(format=CheckpointFormat.DENSE, weight_files=())


class TestWeightFilePath:
    def test_quantized_file_selects_that_file(self, tmp_path):
        touch(tmp_path / "a-other.gguf")
        chosen = touch(tmp_path / "qwen2.gguf")
        artifacts = locate_artifacts(chosen)
        assert artifacts.format is CheckpointFormat.QUANTIZED
        assert artifacts.weight_files == (chosen,)

    def test_dense_file_uses_siblings(self, tmp_path):
        chosen = touch(tmp_path / "qwen3.safetensors")
        dense_siblings(tmp_path)
        artifacts = locate_artifacts(chosen)
        assert artifacts.format is CheckpointFormat.DENSE
        assert artifacts.weight_files == (chosen,)
        assert artifacts.config_file == tmp_path / "config.json"

    def test_other_file_is_rejected(self, tmp_path):
        with pytest.raises(ArtifactNotFound):
            locate_artifacts(touch(tmp_path / "notes.txt"))


class TestResolveModelPath:
    def test_named_directory(self, tmp_path):
        touch(tmp_path / "qwen3" / "model.safetensors")
        assert resolve_model_path(tmp_path, "qwen3") == tmp_path / "qwen3"

    def test_named_directory_without_weights_is_skipped(self, tmp_path):
        (tmp_path / "qwen3").mkdir()
        touch(tmp_path / "qwen3.safetensors")
        assert resolve_model_path(tmp_path, "qwen3") == tmp_path / "qwen3.safetensors"

    def test_named_dense_file(self, tmp_path):
        touch(tmp_path / "qwen3.safetensors")
        touch(tmp_path / "qwen3.gguf")
        assert resolve_model_path(tmp_path, "qwen3") == tmp_path / "qwen3.safetensors"

    def test_named_quantized_file_among_others(self, tmp_path):
        touch(tmp_path / "a-other.gguf")
        touch(tmp_path / "qwen2.gguf")

        resolved = resolve_model_path(tmp_path, "qwen2")
        assert resolved == tmp_path / "qwen2.gguf"
        assert locate_artifacts(resolved).weight_files == (tmp_path / "qwen2.gguf",)

    def test_absolute_path(self, tmp_path):
        chosen = touch(tmp_path / "elsewhere" / "m.gguf")
        assert resolve_model_path(tmp_path / "models", str(chosen)) == chosen

    def test_unknown_name(self, tmp_path):
        with pytest.raises(ArtifactNotFound) as excinfo:
            resolve_model_path(tmp_path, "missing")
        checked = excinfo.value.checked_paths
        assert tmp_path / "missing" in checked
        assert tmp_path / "missing.safetensors" in checked
        assert tmp_path / "missing.gguf" in checked

    def test_first_default_directory(self, tmp_path):
        touch(tmp_path / "default_b" / "model.safetensors")
        touch(tmp_path / "default_a" / "model.safetensors")
        touch(tmp_path / "other" / "model.safetensors")
        assert resolve_model_path(tmp_path) == tmp_path / "default_a"

    def test_default_directory_needs_weights(self, tmp_path):
        (tmp_path / "default_a").mkdir()
        touch(tmp_path / "default_b" / "model-00001-of-00002.safetensors")
        assert resolve_model_path(tmp_path) == tmp_path / "default_b"

    def test_default_dense_file(self, tmp_path):
        touch(tmp_path / "default_qwen.safetensors")
        assert resolve_model_path(tmp_path) == tmp_path / "default_qwen.safetensors"

    def test_dense_defaults_win_over_quantized(self, tmp_path):
        touch(tmp_path / "default_a.gguf")
        touch(tmp_path / "default_b" / "model.safetensors")
        assert resolve_model_path(tmp_path) == tmp_path / "default_b"

    def test_default_quantized_file(self, tmp_path):
        touch(tmp_path / "default_qwen.gguf")
        assert resolve_model_path(tmp_path) == tmp_path / "default_qwen.gguf"

    def test_default_directory_with_quantized_file(self, tmp_path):
        touch(tmp_path / "default_qwen" / "model.gguf")
        assert resolve_model_path(tmp_path) == tmp_path / "default_qwen"

    def test_no_default(self, tmp_path):
        touch(tmp_path / "other" / "model.safetensors")
        (tmp_path / "default_empty").mkdir()
        with pytest.raises(ArtifactNotFound) as excinfo:
            resolve_model_path(tmp_path)
        assert tmp_path / "default_*.gguf" in excinfo.value.checked_paths

    def test_missing_root(self, tmp_path):
        with pytest.raises(ArtifactNotFound):
            resolve_model_path(tmp_path / "absent")
