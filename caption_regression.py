#!/usr/bin/env python3
"""
Caption regression harness for FastVLM (ONNX Runtime).

Runs `python -m fastvlm.cli` on generated test patterns and checks the text
for keywords rather than exact matches, since default decoding samples.

Usage examples:
  # Run all caption tests plus the determinism check
  ./caption_regression.py --model-dir models/fastvlm

  # Only the greedy determinism check (temperature 0, two runs must match)
  ./caption_regression.py --model-dir models/fastvlm --determinism-only

  # Show full model output
  ./caption_regression.py --model-dir models/fastvlm --verbose
"""

from __future__ import annotations

import argparse
import os
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Tuple

from PIL import Image, ImageDraw

# ---- ANSI colors ----

_USE_COLOR = hasattr(sys.stdout, "isatty") and sys.stdout.isatty() and os.environ.get("NO_COLOR") is None


def _sgr(code: str) -> str:
    return f"\033[{code}m" if _USE_COLOR else ""


C_RESET = _sgr("0")
C_BOLD = _sgr("1")
C_DIM = _sgr("2")
C_RED = _sgr("31")
C_GREEN = _sgr("32")
C_BRED = _sgr("1;31")
C_BGREEN = _sgr("1;32")
C_BCYAN = _sgr("1;36")
C_BWHITE = _sgr("1;37")


def fmt_time(secs: float) -> str:
    if secs < 60:
        return f"{secs:.1f}s"
    m, s = divmod(int(secs), 60)
    return f"{m}m{s:02d}s"


# ---- Test patterns ----

def _solid_red(w: int, h: int) -> Image.Image:
    return Image.new("RGB", (w, h), (255, 0, 0))


def _checkerboard(w: int, h: int) -> Image.Image:
    img = Image.new("RGB", (w, h), (255, 255, 255))
    draw = ImageDraw.Draw(img)
    cell = 48
    for y in range(0, h, cell):
        for x in range(0, w, cell):
            if ((x // cell) + (y // cell)) % 2:
                draw.rectangle([x, y, x + cell - 1, y + cell - 1], fill=(0, 0, 0))
    return img


def _blue_circle_wide(w: int, h: int) -> Image.Image:
    img = Image.new("RGB", (w, h), (255, 255, 255))
    draw = ImageDraw.Draw(img)
    r = h // 3
    draw.ellipse([w // 2 - r, h // 2 - r, w // 2 + r, h // 2 + r], fill=(0, 0, 255))
    return img


PATTERNS: Dict[str, Tuple[Callable[[int, int], Image.Image], int, int]] = {
    "solid_red.png": (_solid_red, 384, 384),
    "checkerboard.png": (_checkerboard, 384, 384),
    # Wide aspect exercises the letterbox padding
    "blue_circle_wide.png": (_blue_circle_wide, 800, 400),
}


def generate_patterns(out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    for filename, (make, w, h) in PATTERNS.items():
        path = out_dir / filename
        if not path.exists():
            make(w, h).save(path)


# ---- Test case definitions ----

@dataclass
class CaptionTest:
    """A single caption test case."""
    name: str
    image: str                               # relative to the pattern dir
    prompt: str = "Describe this image briefly."
    # Output (lowercased) must contain at least one keyword from each group
    required_any: List[List[str]] = field(default_factory=list)
    min_length: int = 3
    temperature: float = 0.7
    max_tokens: int = 30


CAPTION_TESTS = [
    CaptionTest(
        name="solid_red_color",
        image="solid_red.png",
        prompt="What color is this image? Answer in one word.",
        required_any=[["red"]],
        temperature=0.1,
        max_tokens=16,
    ),
    CaptionTest(
        name="checkerboard_pattern",
        image="checkerboard.png",
        required_any=[["checker", "chess", "squares", "grid", "pattern"]],
        min_length=10,
    ),
    CaptionTest(
        name="wide_circle_shape",
        image="blue_circle_wide.png",
        prompt="What shape is in this image and what color is it?",
        required_any=[["circle", "round", "dot", "ball"], ["blue"]],
        temperature=0.1,
    ),
]


# ---- Runner ----

def run_cli(model_dir: Path, image: Path, test: CaptionTest, seed: int,
            timeout_s: int) -> Tuple[int, str, str, float]:
    """Run the CLI on one image, return (rc, stdout, stderr, elapsed_s)."""
    cmd = [
        sys.executable, "-m", "fastvlm.cli",
        "--model-dir", str(model_dir),
        "--silent",
        "--prompt", test.prompt,
        "--temperature", str(test.temperature),
        "--max-tokens", str(test.max_tokens),
        "--seed", str(seed),
        str(image),
    ]
    t0 = time.monotonic()
    cp = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                        text=True, timeout=timeout_s, check=False)
    return cp.returncode, cp.stdout.strip(), cp.stderr.strip(), time.monotonic() - t0


def check_keywords(output: str, test: CaptionTest) -> List[str]:
    """Return failure reasons; empty means pass."""
    lower = output.lower()
    reasons = []
    for group in test.required_any:
        if not any(kw in lower for kw in group):
            reasons.append(f"missing any of: {', '.join(group)}")
    if len(output) < test.min_length:
        reasons.append(f"output too short: {len(output)} < {test.min_length} chars")
    return reasons


def run_all_tests(tests: List[CaptionTest], model_dir: Path, pattern_dir: Path,
                  seed: int, timeout_s: int, verbose: bool) -> int:
    total = len(tests)
    failures = 0
    t_start = time.monotonic()
    print(f"\n{C_BOLD}Running {total} caption test(s){C_RESET}\n")

    for idx, test in enumerate(tests, 1):
        print(f"{C_BCYAN}[START {idx}/{total}]{C_RESET} {C_BWHITE}{test.name}{C_RESET} ...", flush=True)
        try:
            rc, stdout, stderr, elapsed = run_cli(model_dir, pattern_dir / test.image, test, seed, timeout_s)
        except subprocess.TimeoutExpired:
            failures += 1
            print(f"[DONE: {C_RED}FAIL{C_RESET} {idx}/{total}] {test.name} | {C_RED}TIMEOUT{C_RESET}")
            continue

        if rc != 0:
            failures += 1
            print(f"[DONE: {C_RED}FAIL{C_RESET} {idx}/{total}] {test.name} | "
                  f"{C_RED}crashed: {stderr[:200] or f'exit code {rc}'}{C_RESET}")
            continue

        reasons = check_keywords(stdout, test)
        preview = stdout[:80] + ("..." if len(stdout) > 80 else "")
        if reasons:
            failures += 1
            print(f"[DONE: {C_RED}FAIL{C_RESET} {idx}/{total}] {test.name} | {C_DIM}{fmt_time(elapsed)}{C_RESET}")
            for reason in reasons:
                print(f"       {C_RED}{reason}{C_RESET}")
            print(f"       {C_DIM}output: \"{preview}\"{C_RESET}")
        else:
            print(f"[DONE: {C_GREEN}OK{C_RESET}   {idx}/{total}] {test.name} | "
                  f"{C_DIM}{fmt_time(elapsed)}{C_RESET} | {C_DIM}\"{preview}\"{C_RESET}")
        if verbose and stdout:
            for line in stdout.split("\n"):
                print(f"       {C_DIM}| {line}{C_RESET}")

    status = f"{C_BRED}FAILED" if failures else f"{C_BGREEN}PASSED"
    print(f"\n{status}: {total - failures}/{total} passed ({fmt_time(time.monotonic() - t_start)} total){C_RESET}")
    return failures


def run_determinism_check(model_dir: Path, pattern_dir: Path, timeout_s: int) -> int:
    """Greedy decoding of the same image twice must give identical text."""
    print(f"\n{C_BOLD}Running determinism check (greedy, temp=0){C_RESET}\n")
    test = CaptionTest(name="determinism_checkerboard", image="checkerboard.png", temperature=0.0)

    outputs = []
    for run_num, seed in enumerate((1, 2), 1):
        try:
            rc, stdout, _, _ = run_cli(model_dir, pattern_dir / test.image, test, seed, timeout_s)
        except subprocess.TimeoutExpired:
            print(f"[DONE: {C_RED}FAIL{C_RESET}] {test.name} | run {run_num} TIMEOUT")
            return 1
        if rc != 0:
            print(f"[DONE: {C_RED}FAIL{C_RESET}] {test.name} | run {run_num} crashed (rc={rc})")
            return 1
        outputs.append(stdout)

    if outputs[0] != outputs[1]:
        print(f"[DONE: {C_RED}FAIL{C_RESET}] {test.name} | {C_RED}outputs differ across greedy runs{C_RESET}")
        print(f"       {C_GREEN}run 1: \"{outputs[0][:150]}\"{C_RESET}")
        print(f"       {C_RED}run 2: \"{outputs[1][:150]}\"{C_RESET}")
        return 1
    print(f"[DONE: {C_GREEN}OK{C_RESET}] {test.name} | identical across 2 runs | \"{outputs[0][:80]}\"")
    return 0


# ---- CLI ----

def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Caption regression suite for FastVLM")
    ap.add_argument("--model-dir", default="models/fastvlm",
                    help="Model directory (default: models/fastvlm)")
    ap.add_argument("--pattern-dir", default="test_images",
                    help="Where test patterns are generated (default: test_images)")
    ap.add_argument("--seed", type=int, default=0, help="Sampling seed for caption tests")
    ap.add_argument("--timeout-s", type=int, default=300, help="Per-test timeout in seconds")
    ap.add_argument("--verbose", action="store_true", help="Show full model output")
    ap.add_argument("--determinism-only", action="store_true", help="Run only the greedy determinism check")
    ap.add_argument("--skip-determinism", action="store_true", help="Skip the greedy determinism check")
    return ap.parse_args()


def main() -> int:
    args = parse_args()
    model_dir = Path(args.model_dir).resolve()
    pattern_dir = Path(args.pattern_dir).resolve()

    if not model_dir.exists():
        print(f"missing model dir: {model_dir}", file=sys.stderr)
        return 2
    if args.determinism_only and args.skip_determinism:
        print("--determinism-only and --skip-determinism are mutually exclusive", file=sys.stderr)
        return 2

    generate_patterns(pattern_dir)
    print(f"{C_BOLD}Caption regression suite{C_RESET}")
    print(f"  model:     {model_dir}")
    print(f"  patterns:  {pattern_dir}")

    failures = 0
    if not args.determinism_only:
        failures += run_all_tests(CAPTION_TESTS, model_dir, pattern_dir,
                                  args.seed, args.timeout_s, args.verbose)
    if not args.skip_determinism:
        failures += run_determinism_check(model_dir, pattern_dir, args.timeout_s)

    print()
    if failures:
        print(f"{C_BRED}Overall: FAILED ({failures} failure(s)){C_RESET}")
        return 1
    print(f"{C_BGREEN}Overall: PASSED{C_RESET}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
