"""Command-line utilities for order_integrity."""

from __future__ import annotations

import argparse
import base64
import json
import logging
import sys
from pathlib import Path

from .canonical import canonical_json, canonicalize
from .errors import OrderIntegrityError, OrderShapeError, SignatureLengthError
from .hashing import digest_hex
from .keys import KeyLifecycleManager
from .logging_pipeline import configure_structured_logging, shutdown_listeners
from .primitives import available_algorithms, get_provider
from .schemas import SignatureEnvelope
from .settings import OrderIntegritySettings, get_settings
from .signing import sign_order
from .verification import verify_order

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BAD_INPUT = 2


def _read_stdin() -> str | None:
    """Read JSON payload from stdin if available."""
    try:
        if sys.stdin and not sys.stdin.isatty():
            return sys.stdin.read()
    except IOError as e:
        print(f"Error reading stdin: {e}", file=sys.stderr)
    return None


def _load_json(path: str | None) -> dict[str, object]:
    """Load a JSON object from ``path`` or stdin."""
    if path:
        return _parse_json_dict(Path(path).read_text(encoding="utf-8"))
    stdin_payload = _read_stdin()
    if stdin_payload:
        return _parse_json_dict(stdin_payload)
    raise OrderShapeError("No input provided. Use --input or pipe JSON via stdin.")


def _parse_json_dict(payload: str) -> dict[str, object]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise OrderShapeError(f"Input is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise OrderShapeError("Input JSON must be an object at the top level.")
    return {str(key): value for key, value in data.items()}


def _emit(payload: dict[str, object]) -> None:
    print(json.dumps(payload, separators=(",", ":")))


def _settings_from_args(args: argparse.Namespace) -> OrderIntegritySettings:
    settings = get_settings()
    overrides: dict[str, object] = {}
    if getattr(args, "key_dir", None):
        overrides["key_dir"] = Path(args.key_dir)
    if getattr(args, "algorithm", None):
        overrides["algorithm"] = args.algorithm
    return settings.model_copy(update=overrides) if overrides else settings


def _cmd_init_keys(args: argparse.Namespace) -> int:
    manager = KeyLifecycleManager.from_settings(_settings_from_args(args))
    context = manager.initialize()
    _emit(
        {
            "algorithm": context.algorithm,
            "publicKey": base64.b64encode(context.public_key).decode("ascii"),
            "fingerprint": context.fingerprint(),
            "publicKeyPath": str(manager.public_key_path),
        }
    )
    return EXIT_OK


def _cmd_algorithms(args: argparse.Namespace) -> int:
    described = [get_provider(name).describe() for name in available_algorithms()]
    _emit({"algorithms": described})
    return EXIT_OK


def _cmd_digest(args: argparse.Namespace) -> int:
    record = canonicalize(_load_json(args.input))
    _emit({"canonical": canonical_json(record), "digest": digest_hex(record)})
    return EXIT_OK


def _cmd_sign(args: argparse.Namespace) -> int:
    record = canonicalize(_load_json(args.input))
    context = KeyLifecycleManager.from_settings(_settings_from_args(args)).initialize()
    _emit(sign_order(context, record).to_transport())
    return EXIT_OK


def _cmd_verify(args: argparse.Namespace) -> int:
    data = _load_json(args.input)
    if args.public_key:
        data["publicKey"] = args.public_key
    if args.algorithm:
        data["algorithm"] = args.algorithm
    envelope = SignatureEnvelope.from_transport(data)
    record = canonicalize(data)
    valid = verify_order(
        record,
        envelope.signature,
        envelope.public_key,
        get_provider(envelope.algorithm),
    )
    if not args.quiet:
        _emit(
            {
                "valid": valid,
                "algorithm": envelope.algorithm,
                "digest": digest_hex(record),
            }
        )
    return EXIT_OK if valid else EXIT_FAILURE


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="order-integrity",
        description="Sign and verify canonical order records.",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level for JSON logs on stderr (default from settings).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    init_keys = commands.add_parser(
        "init-keys", help="Generate or load the server keypair."
    )
    init_keys.add_argument("--key-dir", help="Key storage directory.")
    init_keys.add_argument("--algorithm", help="Signature algorithm for new keys.")
    init_keys.set_defaults(handler=_cmd_init_keys)

    algorithms = commands.add_parser("algorithms", help="List supported algorithms.")
    algorithms.set_defaults(handler=_cmd_algorithms)

    digest_cmd = commands.add_parser("digest", help="Print canonical form and digest.")
    digest_cmd.add_argument("--input", "-i", help="Order JSON file; stdin when omitted.")
    digest_cmd.set_defaults(handler=_cmd_digest)

    sign_cmd = commands.add_parser("sign", help="Sign an order with the server key.")
    sign_cmd.add_argument("--input", "-i", help="Order JSON file; stdin when omitted.")
    sign_cmd.add_argument("--key-dir", help="Key storage directory.")
    sign_cmd.add_argument("--algorithm", help="Signature algorithm for new keys.")
    sign_cmd.set_defaults(handler=_cmd_sign)

    verify_cmd = commands.add_parser("verify", help="Verify a signed order.")
    verify_cmd.add_argument(
        "--input",
        "-i",
        help="Order JSON with base64 'signature', 'publicKey' and 'algorithm'.",
    )
    verify_cmd.add_argument(
        "--public-key",
        "-k",
        help="Base64 public key overriding the one embedded in the input.",
    )
    verify_cmd.add_argument(
        "--algorithm", help="Algorithm overriding the one embedded in the input."
    )
    verify_cmd.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Quiet mode: suppress output, just return exit code.",
    )
    verify_cmd.set_defaults(handler=_cmd_verify)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the ``order-integrity`` command line."""
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:  # pragma: no cover - controlled via tests
        exit_code = int(exc.code) if isinstance(exc.code, int) else 1
        return EXIT_OK if exit_code == 0 else EXIT_FAILURE

    level = get_settings().log_level_number
    if args.log_level:
        requested = logging.getLevelName(args.log_level.upper())
        if isinstance(requested, int):
            level = requested
    logger = logging.getLogger("order_integrity")
    listener = configure_structured_logging(logger, level=level)
    try:
        return args.handler(args)
    except (OrderShapeError, SignatureLengthError) as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_BAD_INPUT
    except (OrderIntegrityError, OSError) as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_FAILURE
    finally:
        shutdown_listeners([listener])
        for handler in list(logger.handlers):
            logger.removeHandler(handler)


if __name__ == "__main__":
    raise SystemExit(main())
