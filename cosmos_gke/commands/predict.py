"""cosmos-gke predict: send one text-to-world request to a deployed endpoint."""

import argparse
from pathlib import Path

from ..config import Settings
from ..exceptions import PreconditionError
from ..models.deployments import SERVICE_NAME
from ..services.inference_client import GenerationParameters, InferenceClient
from .common import add_cluster_arguments, add_namespace_argument, apply_overrides, connect


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "predict",
        help="Smoke-test the deployed inference endpoint",
        description="Call /health and /predict on the Cosmos service. Without --url the "
        "service's load balancer address is looked up in the cluster.",
    )
    parser.add_argument("--url", help="Base URL of the inference service")
    add_cluster_arguments(parser)
    add_namespace_argument(parser)
    parser.add_argument("--prompt", default="A robot arm picking up a red cube on a wooden table")
    parser.add_argument("-o", "--output", type=Path, default=Path("cosmos_output.mp4"))
    parser.add_argument("--health-only", action="store_true", help="Only call /health")
    parser.add_argument("--guidance", type=float, default=7.0)
    parser.add_argument("--num-steps", type=int, default=35)
    parser.add_argument("--height", type=int, default=704)
    parser.add_argument("--width", type=int, default=1280)
    parser.add_argument("--num-video-frames", type=int, default=121)
    parser.add_argument("--seed", type=int, default=1)
    parser.set_defaults(func=run, parser=parser)


def _resolve_url(args: argparse.Namespace, settings: Settings) -> str:
    if args.url:
        return args.url
    namespace = settings.cosmos.namespace
    address = connect(settings).service_external_address(SERVICE_NAME, namespace)
    if not address:
        raise PreconditionError(
            f"Service {SERVICE_NAME} in {namespace} has no external address. "
            f"Pass --url (e.g. after kubectl port-forward -n {namespace} svc/{SERVICE_NAME} 8080:80)."
        )
    return f"http://{address}"


def run(args: argparse.Namespace, settings: Settings) -> int:
    settings = apply_overrides(settings, args)
    url = _resolve_url(args, settings)

    with InferenceClient(url) as client:
        if not client.health():
            print(f"[ERROR] {url}/health is not healthy")
            return 1
        print(f"[OK] {url} is healthy")
        if args.health_only:
            return 0

        parameters = GenerationParameters(
            guidance=args.guidance,
            num_steps=args.num_steps,
            height=args.height,
            width=args.width,
            num_video_frames=args.num_video_frames,
            seed=args.seed,
        )
        print(f"Generating from prompt: {args.prompt!r} (this can take several minutes)")
        size = client.predict_to_file(args.prompt, args.output, parameters)

    print(f"[OK] Wrote {size} bytes to {args.output}")
    return 0
