"""
CLI driver that builds one storybook end-to-end by advancing the job step by step.

Usage:
    python scripts/run_book.py \
        --profile kid_profile.yaml \
        --photo example_images/laura_girl.jpg \
        --theme space --pages 8
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from io import BytesIO
from pathlib import Path
from typing import Any, Dict

import yaml
from PIL import Image
from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from magicbook.common.config import GatewayConfig, PersistenceConfig, PipelineConfig
from magicbook.pipeline import BookJobService, BookRequest, Principal, transparent_mask


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a personalized storybook PDF.")
    parser.add_argument("--profile", required=True, help="Path to the child profile YAML/JSON file.")
    parser.add_argument("--photo", required=True, help="Path to the child's reference photo.")
    parser.add_argument(
        "--mask",
        default=None,
        help="Optional paint-mask with the photo's dimensions (default: fully transparent).",
    )
    parser.add_argument("--theme", default=None, help="Theme key, overriding the profile file.")
    parser.add_argument("--style", default=None, help="Illustration style: 'read' or 'color'.")
    parser.add_argument(
        "--pages",
        type=int,
        default=None,
        help="Number of story pages (clamped to 4-12).",
    )
    parser.add_argument("--user", default="local-user", help="Owner id recorded on the job.")
    parser.add_argument(
        "--interval",
        type=float,
        default=1.5,
        help="Seconds to wait between steps while an illustration is rendering.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args()


def load_profile_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported profile file format. Use YAML or JSON.")

    if not isinstance(data, dict):
        raise ValueError("Profile file must deserialize to a mapping.")
    return data


def derive_mask(photo_bytes: bytes) -> bytes:
    with Image.open(BytesIO(photo_bytes)) as photo:
        mask = transparent_mask(photo.size)
    buffer = BytesIO()
    mask.save(buffer, format="PNG")
    return buffer.getvalue()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    mapping = load_profile_mapping(Path(args.profile))
    for key, value in (("theme", args.theme), ("style", args.style), ("page_count", args.pages)):
        if value is not None:
            mapping[key] = value
    request = BookRequest.from_mapping(mapping)

    service = BookJobService.from_config(
        GatewayConfig.from_env(),
        PersistenceConfig.from_env(),
        PipelineConfig.from_env(),
    )
    principal = Principal(user_id=args.user)

    photo_bytes = Path(args.photo).read_bytes()
    mask_bytes = Path(args.mask).read_bytes() if args.mask else derive_mask(photo_bytes)

    manifest = service.create_job(principal, request)
    service.upload_inputs(principal, manifest.id, photo_bytes, mask_bytes)
    tqdm.write(f"Job {manifest.id}: {manifest.page_count} pages for {request.child.name}.")

    progress = service.read_progress(principal, manifest.id)
    with tqdm(total=progress.total_steps, desc="Building book", unit="step") as bar:
        while not progress.finished:
            previous = progress.step
            progress = service.advance(principal, manifest.id)
            bar.n = progress.done_steps
            bar.set_description(progress.message)
            bar.refresh()
            if progress.error:
                tqdm.write(f"  {progress.step}: {progress.error}")
            if progress.step == previous and not progress.finished:
                time.sleep(args.interval)

    if progress.status != "done":
        print(f"Book generation failed: {progress.error}", file=sys.stderr)
        return 1

    document = service.document_path(principal, manifest.id)
    print(f"Saved storybook to {document}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
