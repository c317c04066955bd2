"""
CLI interface for commit-draft
"""
import argparse
import logging
import sys

from commit_draft.artifacts import locate_artifacts, resolve_model_path
from commit_draft.config import Config
from commit_draft.errors import CommitDraftError
from commit_draft.generator import CommitMessageGenerator


def positive_int(value):
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _read_prompt(args):
    if args.prompt:
        return args.prompt
    if args.prompt_file:
        with open(args.prompt_file, 'r') as f:
            return f.read()
    print("Describe your changes (press Ctrl+D when done):", file=sys.stderr)
    return sys.stdin.read()


def _model_path(args, config):
    if args.model_path:
        return args.model_path
    return resolve_model_path(config.models_dir, args.model or config.get("model"))


def cmd_generate(args):
    """Generate commit message command"""
    config = Config()

    prompt = _read_prompt(args)
    if not prompt.strip():
        print("Error: Empty prompt provided", file=sys.stderr)
        return 1

    fallback = config.get("fallback_message")
    max_tokens = args.max_tokens if args.max_tokens is not None else config.get("max_tokens")

    try:
        generator = CommitMessageGenerator.from_config(config, model_path=_model_path(args, config))
        if args.temperature is not None:
            generator.temperature = args.temperature
        message = generator.generate(prompt, max_tokens=max_tokens)
    except CommitDraftError as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.strict:
            return 1
        print(f"Using default commit message: {fallback}", file=sys.stderr)
        message = fallback

    print(message)
    return 0


def cmd_inspect(args):
    """Show which checkpoint files would be loaded"""
    config = Config()
    try:
        artifacts = locate_artifacts(_model_path(args, config))
    except CommitDraftError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("-" * 60)
    print(f"Format:    {artifacts.format.value}")
    print("Weights:")
    for path in artifacts.weight_files:
        print(f"  {path}")
    tokenizer = artifacts.tokenizer_file or "embedded in checkpoint"
    print(f"Tokenizer: {tokenizer}")
    if artifacts.config_file:
        print(f"Config:    {artifacts.config_file}")
    if artifacts.adapter_dir:
        print(f"Adapter:   {artifacts.adapter_dir}")
    print("-" * 60)
    return 0


def cmd_config(args):
    """Configuration command"""
    config = Config()

    if args.show:
        print("-" * 60)
        print("Current Configuration:")
        print("-" * 60)
        for key, value in config.show().items():
            print(f"  {key}: {value}")
        return 0

    if args.models_dir:
        config.set("models_dir", args.models_dir)
        print(f"Set models_dir = {args.models_dir}")

    if args.model:
        config.set("model", args.model)
        print(f"Set model = {args.model}")

    if args.temperature is not None:
        config.set("temperature", args.temperature)
        print(f"Set temperature = {args.temperature}")

    if args.max_tokens is not None:
        config.set("max_tokens", args.max_tokens)
        print(f"Set max_tokens = {args.max_tokens}")

    if args.fallback_message:
        config.set("fallback_message", args.fallback_message)
        print(f"Set fallback_message = {args.fallback_message}")

    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        description="Draft commit messages with a local language model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show loading and generation progress"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Generate command
    gen_parser = subparsers.add_parser(
        "generate",
        help="Generate a commit message from a change description",
        aliases=['gen', 'g'],
    )
    gen_parser.add_argument(
        "prompt",
        nargs="?",
        help="Change description (default: --prompt-file or stdin)"
    )
    gen_parser.add_argument(
        "--prompt-file",
        help="File containing the change description"
    )
    gen_parser.add_argument(
        "--model",
        help="Model name under the models directory (overrides config)"
    )
    gen_parser.add_argument(
        "--model-path",
        "--model-dir",
        dest="model_path",
        help="Explicit model directory or weight file"
    )
    gen_parser.add_argument(
        "--max-tokens",
        type=positive_int,
        help="Maximum number of generated tokens"
    )
    gen_parser.add_argument(
        "--temperature",
        type=float,
        help="Generation temperature"
    )
    gen_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail instead of printing the fallback message"
    )
    gen_parser.set_defaults(func=cmd_generate)

    # Inspect command
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Show the checkpoint files that would be loaded",
    )
    inspect_parser.add_argument(
        "--model",
        help="Model name under the models directory"
    )
    inspect_parser.add_argument(
        "--model-path",
        "--model-dir",
        dest="model_path",
        help="Explicit model directory or weight file"
    )
    inspect_parser.set_defaults(func=cmd_inspect)

    # Config command
    config_parser = subparsers.add_parser(
        "config",
        help="Manage configuration",
    )
    config_parser.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration"
    )
    config_parser.add_argument(
        "--models-dir",
        help="Set models directory"
    )
    config_parser.add_argument(
        "--model",
        help="Set default model name"
    )
    config_parser.add_argument(
        "--temperature",
        type=float,
        help="Set generation temperature"
    )
    config_parser.add_argument(
        "--max-tokens",
        type=positive_int,
        help="Set maximum number of generated tokens"
    )
    config_parser.add_argument(
        "--fallback-message",
        help="Set message used when generation fails"
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv=None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if hasattr(args, 'func'):
        sys.exit(args.func(args))
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
