"""Accelerator detection and inference device selection.

Probing torch for CUDA/MPS is done once per process; every model load after
that reuses the cached result.
"""

import platform
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import torch
import structlog

logger = structlog.get_logger("semembed.gpu_detector")

DEVICE_PREFERENCES = ("auto", "cpu", "gpu")


@dataclass(frozen=True)
class DeviceProbe:
    """What the process can run inference on."""

    cuda_devices: List[Dict[str, Any]] = field(default_factory=list)
    mps_available: bool = False
    platform: str = ""

    @property
    def accelerator(self) -> Optional[str]:
        """Preferred accelerator device string, ``None`` when CPU only."""
        if self.cuda_devices:
            return "cuda:0"
        if self.mps_available:
            return "mps"
        return None


class GPUDetector:
    """Caches a ``DeviceProbe`` and maps preferences onto device strings."""

    def __init__(self):
        self._probe: Optional[DeviceProbe] = None

    def probe(self) -> DeviceProbe:
        if self._probe is not None:
            return self._probe

        cuda_devices: List[Dict[str, Any]] = []
        mps_available = False
        try:
            if torch.cuda.is_available():
                for i in range(torch.cuda.device_count()):
                    props = torch.cuda.get_device_properties(i)
                    cuda_devices.append({
                        "id": i,
                        "name": props.name,
                        "memory_total": props.total_memory,
                        "compute_capability": f"{props.major}.{props.minor}",
                    })
            elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
                mps_available = True
        except Exception as e:
            logger.error("GPU detection failed, using CPU", error=str(e))
            cuda_devices, mps_available = [], False

        self._probe = DeviceProbe(
            cuda_devices=cuda_devices,
            mps_available=mps_available,
            platform=f"{platform.system()}/{platform.machine()}",
        )
        logger.info(
            "Device probe completed",
            cuda_devices=len(cuda_devices),
            mps_available=mps_available,
            accelerator=self._probe.accelerator or "none"
        )
        return self._probe

    def select_device(self, preference: str = "auto") -> str:
        """Device string for ``auto``, ``cpu`` or ``gpu``.

        ``gpu`` without an accelerator falls back to CPU with a warning
        rather than failing model loads.
        """
        if preference not in DEVICE_PREFERENCES:
            raise ValueError(f"unsupported device preference: {preference!r}")
        if preference == "cpu":
            return "cpu"

        accelerator = self.probe().accelerator
        if accelerator is None:
            if preference == "gpu":
                logger.warning("GPU requested but not available, falling back to CPU")
            return "cpu"
        return accelerator


_gpu_detector: Optional[GPUDetector] = None


def get_gpu_detector() -> GPUDetector:
    """Process-wide detector."""
    global _gpu_detector
    if _gpu_detector is None:
        _gpu_detector = GPUDetector()
    return _gpu_detector


def detect_optimal_device(preference: str = "auto") -> str:
    return get_gpu_detector().select_device(preference)
