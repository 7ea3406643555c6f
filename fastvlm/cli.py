#!/usr/bin/env python3
"""
cli.py - Describe one or more images with FastVLM.

Usage:
    fastvlm --model-dir models/fastvlm photo.jpg other.png --prompt "Describe this image"
    python3 -m fastvlm.cli --model-dir models/fastvlm photo.jpg --silent --temperature 0
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from typing import List

from .client import FastVLMClient
from .config import DEFAULT_TEMPERATURE, TOP_K, FastVLMConfig
from .errors import FastVLMError
from .log import get_logger


# ============================================================================
# Batch statistics
# ============================================================================

@dataclass
class ProcessingStats:
    total_images: int = 0
    successful_images: int = 0
    failed_images: int = 0
    total_processing_time: float = 0.0
    min_processing_time: float = float("inf")
    max_processing_time: float = 0.0
    individual_times: List[float] = field(default_factory=list)

    def add_result(self, processing_time: float, success: bool) -> None:
        self.total_images += 1
        if not success:
            self.failed_images += 1
            return
        self.successful_images += 1
        self.total_processing_time += processing_time
        self.individual_times.append(processing_time)
        self.min_processing_time = min(self.min_processing_time, processing_time)
        self.max_processing_time = max(self.max_processing_time, processing_time)

    @property
    def average_processing_time(self) -> float:
        if not self.successful_images:
            return 0.0
        return self.total_processing_time / self.successful_images

    @property
    def success_rate(self) -> float:
        if not self.total_images:
            return 0.0
        return self.successful_images / self.total_images * 100.0

    def print_summary(self) -> None:
        print("\n--- Processing Summary ---")
        print(f"  Images:     {self.total_images}")
        print(f"  Succeeded:  {self.successful_images}")
        print(f"  Failed:     {self.failed_images}")
        print(f"  Success:    {self.success_rate:.1f}%")
        if self.successful_images:
            print(f"  Total:      {self.total_processing_time:.2f}s")
            print(f"  Average:    {self.average_processing_time:.2f}s")
            print(f"  Fastest:    {self.min_processing_time:.2f}s")
            print(f"  Slowest:    {self.max_processing_time:.2f}s")
            for i, t in enumerate(self.individual_times, 1):
                print(f"    image {i}: {t:.2f}s")


# ============================================================================
# Main
# ============================================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="FastVLM image description (ONNX Runtime)")
    parser.add_argument("images", nargs="+", help="Input images (any format Pillow reads)")
    parser.add_argument("--model-dir", required=True,
                        help="Directory with tokenizer.json and the three .onnx graphs")
    parser.add_argument("--prompt", default=None,
                        help="Text prompt (default: the config's default prompt)")
    parser.add_argument("--max-tokens", type=int, default=30, help="Max tokens to generate")
    parser.add_argument("--temperature", type=float, default=DEFAULT_TEMPERATURE,
                        help="Sampling temperature; 0 means greedy")
    parser.add_argument("--top-k", type=int, default=TOP_K, help="Top-K candidates to sample from")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible sampling")
    parser.add_argument("--providers", default=None,
                        help="Comma-separated onnxruntime execution providers")
    parser.add_argument("--silent", action="store_true",
                        help="Print only the generated text, one line per image")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    get_logger("fastvlm", getattr(logging, args.log_level))

    providers = tuple(p.strip() for p in args.providers.split(",")) if args.providers else None
    try:
        config = FastVLMConfig(
            max_response_length=args.max_tokens,
            temperature=args.temperature,
            top_k=args.top_k,
            seed=args.seed,
            providers=providers,
        )
    except ValueError as e:
        print(f"invalid arguments: {e}", file=sys.stderr)
        return 2

    client = FastVLMClient()
    t0 = time.perf_counter()
    try:
        client.initialize(args.model_dir, config)
    except FastVLMError as e:
        print(str(e), file=sys.stderr)
        return 2
    if not args.silent:
        print(f"Loaded FastVLM from {args.model_dir} in {time.perf_counter() - t0:.2f}s")

    stats = ProcessingStats()
    with client:
        for i, path in enumerate(args.images, 1):
            if not args.silent:
                print(f"\n--- Image {i}/{len(args.images)}: {path} ---")
            t_start = time.perf_counter()
            try:
                result = client.analyze_image_file(path, args.prompt)
            except (FastVLMError, OSError) as e:
                stats.add_result(time.perf_counter() - t_start, success=False)
                print(f"  [error] {path}: {e}", file=sys.stderr)
                continue
            stats.add_result(result.processing_time, success=True)
            if args.silent:
                print(result.text)
            else:
                print(f"  {result.text}")
                print(f"  ({result.num_tokens} tokens, {result.processing_time:.2f}s, "
                      f"stopped: {result.stop_reason.value})")

    if not args.silent:
        stats.print_summary()
    return 0 if stats.failed_images == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
