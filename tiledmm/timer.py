"""Named timing spans around each phase of a run."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional


logger = logging.getLogger(__name__)

# Span categories
GENERIC = "Generic"
GPU = "GPU"
COPY = "Copy"
COMPUTE = "Compute"

CATEGORIES = (GENERIC, GPU, COPY, COMPUTE)

# Phase messages, in the order a run emits them
IMPORT_DATA = "Importing data and creating memory on host"
ALLOCATE_DEVICE = "Allocating GPU memory"
COPY_TO_DEVICE = "Copying input memory to the GPU"
COMPUTE_KERNEL = "Performing CUDA computation"
COPY_TO_HOST = "Copying output memory to the CPU"
FREE_DEVICE = "Freeing GPU memory"

PHASES = (
    IMPORT_DATA,
    ALLOCATE_DEVICE,
    COPY_TO_DEVICE,
    COMPUTE_KERNEL,
    COPY_TO_HOST,
    FREE_DEVICE,
)


@dataclass
class Span:
    category: str
    message: str
    elapsed: float
    failed: bool = False

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed * 1000.0


class Timer:
    """Collects spans; each span logs an enter and an exit marker."""

    def __init__(self):
        self.spans: List[Span] = []

    @contextmanager
    def span(self, category: str, message: str):
        if category not in CATEGORIES:
            raise ValueError(f"Unknown span category {category!r}")

        logger.info("[%s] Start: %s", category, message)
        start = time.perf_counter()
        failed = False
        try:
            yield
        except BaseException:
            failed = True
            raise
        finally:
            elapsed = time.perf_counter() - start
            self.spans.append(Span(category, message, elapsed, failed))
            if failed:
                logger.info("[%s] Aborted: %s (%.3f ms)", category, message, elapsed * 1000.0)
            else:
                logger.info("[%s] Stop: %s (%.3f ms)", category, message, elapsed * 1000.0)

    @property
    def messages(self) -> List[str]:
        return [s.message for s in self.spans]

    def by_message(self, message: str) -> Optional[Span]:
        """Most recent span recorded under ``message``."""
        for s in reversed(self.spans):
            if s.message == message:
                return s
        return None

    def total(self) -> float:
        return sum(s.elapsed for s in self.spans)
