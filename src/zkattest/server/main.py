"""Command-line entry point.

    zkattest serve                   run the attestation authority
    zkattest keygen -o key.pem       provision a persistent signing key
    zkattest prove-age --age 25      prove age >= min_age and store the artifact
    zkattest verify proof:<id>       re-verify a stored artifact
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import uvicorn
from dotenv import find_dotenv, load_dotenv

from zkattest.attestation.keys import generate_pem
from zkattest.proofs.circuits import AGE_CHECK
from zkattest.proofs.inputs import age_inputs
from zkattest.proofs.nargo import NargoToolchain
from zkattest.proofs.orchestrator import ProofOrchestrator
from zkattest.proofs.store import ProofArtifactStore
from zkattest.server.app import build_services, create_app
from zkattest.server.config import Settings
from zkattest.shared.errors import ConstraintViolationError, ZkAttestError
from zkattest.shared.storage import JsonFileStorage

logger = logging.getLogger(__name__)

DEFAULT_STORE = "zkattest-store.json"


def serve(args: argparse.Namespace) -> int:
    settings = Settings.from_env()
    host = args.host or settings.host
    port = args.port or settings.port

    services = build_services(settings)
    app = create_app(services, cors_origins=settings.cors_origins)

    logger.info(f"Attestation authority listening on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level)
    return 0


def keygen(args: argparse.Namespace) -> int:
    password = os.environ.get("ZKATTEST_SIGNING_KEY_PASSWORD")
    pem = generate_pem(password.encode() if password else None)

    output = Path(args.output)
    if output.exists() and not args.force:
        print(f"{output} already exists; pass --force to overwrite", file=sys.stderr)
        return 1

    # Created owner-only; an overwritten key file is narrowed before the write
    fd = os.open(output, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.chmod(output, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(pem)
    print(f"Wrote secp256k1 signing key to {output}")
    return 0


async def _prove_age(args: argparse.Namespace) -> int:
    orchestrator = ProofOrchestrator(
        NargoToolchain(nargo_bin=args.nargo, bb_bin=args.bb),
        default_timeout=args.timeout,
    )
    store = ProofArtifactStore(JsonFileStorage(args.store))

    try:
        artifact = await orchestrator.generate(
            "cli", age_inputs(args.age, min_age=args.min_age)
        )
    except ZkAttestError as e:
        if isinstance(e, ConstraintViolationError):
            print(f"Claim is false: age is below {args.min_age}")
        else:
            print(f"Proof failed ({e.kind}): {e.message}", file=sys.stderr)
        return 1

    print(store.save(artifact))
    return 0


async def _verify(args: argparse.Namespace) -> int:
    orchestrator = ProofOrchestrator(NargoToolchain(nargo_bin=args.nargo, bb_bin=args.bb))
    store = ProofArtifactStore(JsonFileStorage(args.store))

    try:
        artifact = store.load(args.handle)
        valid = await orchestrator.verify_artifact(artifact, AGE_CHECK)
    except ZkAttestError as e:
        print(f"Verification failed ({e.kind}): {e.message}", file=sys.stderr)
        return 1

    print("valid" if valid else "invalid")
    return 0 if valid else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zkattest",
        description="Attested identity claims with zero-knowledge proofs.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: ZKATTEST_LOG_LEVEL or info)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP authority")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.set_defaults(handler=serve)

    keygen_parser = subparsers.add_parser("keygen", help="Generate a signing key")
    keygen_parser.add_argument("-o", "--output", default="attestation-key.pem")
    keygen_parser.add_argument("--force", action="store_true")
    keygen_parser.set_defaults(handler=keygen)

    for name, handler, help_text in (
        ("prove-age", _prove_age, "Prove an age threshold"),
        ("verify", _verify, "Verify a stored proof artifact"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--store", default=DEFAULT_STORE)
        sub.add_argument("--nargo", default="nargo")
        sub.add_argument("--bb", default="bb")
        sub.set_defaults(handler=handler, is_async=True)

        if name == "prove-age":
            sub.add_argument("--age", type=int, required=True)
            sub.add_argument("--min-age", type=int, default=18)
            sub.add_argument("--timeout", type=float, default=None)
        else:
            sub.add_argument("handle")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv(find_dotenv(usecwd=True))

    level = args.log_level or os.environ.get("ZKATTEST_LOG_LEVEL", "info")
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if getattr(args, "is_async", False):
        return asyncio.run(args.handler(args))
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
