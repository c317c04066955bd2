import pytest

from commit_draft import generator as generator_module
from commit_draft.config import Config
from commit_draft.errors import InferenceError
from commit_draft.generator import CommitMessageGenerator, format_prompt

from conftest import IM_END, ScriptedModel, word_vocab


def test_prompt_template():
    text = format_prompt("add retry logic")
    assert text.startswith("<|im_start|>system\n")
    assert "Follow Conventional Commits format.<|im_end|>\n" in text
    assert "<|im_start|>user\nadd retry logic\n<|im_end|>\n" in text
    assert text.endswith("<|im_start|>assistant\n")


@pytest.fixture
def fake_load(monkeypatch, tokenizer):
    state = {}

    def install(script, **kwargs):
        model = ScriptedModel(script, **kwargs)
        state["model"] = model
        encoded = []
        original_encode = tokenizer.encode

        def encode(text):
            encoded.append(text)
            return original_encode(text)

        monkeypatch.setattr(tokenizer, "encode", encode)
        monkeypatch.setattr(CommitMessageGenerator, "load", lambda self: (model, tokenizer))
        state["encoded"] = encoded
        return state

    return install


def test_generate_returns_sanitized_message(tmp_path, fake_load):
    vocab = word_vocab()
    state = fake_load([vocab["fix"], vocab["the"], vocab["bug"], IM_END])

    message = CommitMessageGenerator(tmp_path, temperature=0.0).generate("fix the bug")

    assert message == "fix the bug"
    assert state["encoded"] == [format_prompt("fix the bug")]
    assert state["model"].closed


def test_model_closed_on_failure(tmp_path, fake_load):
    state = fake_load([IM_END], fail_at_call=0)
    with pytest.raises(InferenceError):
        CommitMessageGenerator(tmp_path).generate("anything")
    assert state["model"].closed


def test_from_config(tmp_path):
    config = Config(tmp_path / "cfg")
    config.set("temperature", 0.3)
    config.set("seed", 7)

    generator = CommitMessageGenerator.from_config(config, model_path=tmp_path / "model")

    assert generator.model_path == tmp_path / "model"
    assert generator.temperature == 0.3
    assert generator.seed == 7
    assert generator.repeat_penalty == 1.1
    assert generator.repeat_last_n == 64


def test_from_config_resolves_default_model(tmp_path):
    models = tmp_path / "models"
    (models / "default_qwen").mkdir(parents=True)
    (models / "default_qwen" / "model.safetensors").write_bytes(b"")
    config = Config(tmp_path / "cfg")
    config.set("models_dir", str(models))

    generator = CommitMessageGenerator.from_config(config)
    assert generator.model_path == models / "default_qwen"


def test_module_level_generate(tmp_path, monkeypatch, fake_load):
    vocab = word_vocab()
    fake_load([vocab["add"], vocab["docs"], IM_END])
    monkeypatch.setenv("COMMIT_DRAFT_CONFIG_DIR", str(tmp_path / "cfg"))

    assert generator_module.generate("docs", model_path=tmp_path) == "add docs"
