"""Matplotlib charts for swing detection and joint history.

Gaps (None) are plotted as NaN so lines break instead of bridging frames
that were never measured.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from ..analysis.joint_history import JointHistoryRecorder
from ..analysis.swing_detection import SwingDetectionResult
from ..core.types import Side

SIDE_COLORS = {
    Side.LEFT: "#2196F3",
    Side.RIGHT: "#F44336",
    Side.BOTH: "#9C27B0",
}


def _nan(values: Sequence[Optional[float]]) -> np.ndarray:
    return np.array([np.nan if v is None else float(v) for v in values], dtype=np.float64)


def _save(fig, output_path: str) -> str:
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return output_path


class ChartGenerator:
    """Generate analysis charts as image files."""

    @staticmethod
    def velocity_chart(
        result: SwingDetectionResult,
        output_path: str,
        title: str = "Wrist velocity (body-relative)",
    ) -> str:
        """Raw and smoothed velocity with the peak threshold and detected swings."""
        data = result.velocity_data
        if len(data) < 2:
            return ""

        times = np.array([s.timestamp_s for s in data])
        fig, ax = plt.subplots(figsize=(12, 4))
        ax.plot(times, _nan([s.raw_velocity for s in data]), color="#BDBDBD", linewidth=1, label="raw")
        ax.plot(times, _nan([s.velocity for s in data]), color="#1565C0", linewidth=1.5, label="smoothed")
        ax.axhline(result.threshold, color="#FF9800", linestyle=":", linewidth=1.5, label="threshold")

        for i, swing in enumerate(result.swings):
            ax.axvline(
                swing.timestamp_s,
                color=SIDE_COLORS[swing.dominant_side],
                linestyle="--",
                linewidth=1.5,
                alpha=0.8,
                label=f"swing ({swing.dominant_side.value})" if i == 0 else None,
            )
            ax.annotate(
                f"{swing.estimated_speed_kmh:.0f} km/h",
                xy=(swing.timestamp_s, swing.velocity),
                fontsize=9, ha="center", va="bottom",
            )

        ax.set_xlabel("Time (s)", fontsize=11)
        ax.set_ylabel("Velocity (px/frame)", fontsize=11)
        ax.set_title(f"{title}: {result.total_swings} swing(s)", fontsize=13, fontweight="bold")
        ax.legend(fontsize=9)
        ax.grid(True, alpha=0.3)
        return _save(fig, output_path)

    @staticmethod
    def segment_chart(recorder: JointHistoryRecorder, output_path: str) -> str:
        """Normalized segment lengths; corrupted frames are marked."""
        fig, ax = plt.subplots(figsize=(12, 5))
        plotted = False
        for name in recorder.segment_names:
            samples = recorder.segment_history(name)
            if len(samples) < 2:
                continue
            t = [s.timestamp_s for s in samples]
            ax.plot(t, [s.normalized_length for s in samples], linewidth=1, label=name)
            bad = [s for s in samples if s.is_corrupted]
            if bad:
                ax.scatter([s.timestamp_s for s in bad], [s.normalized_length for s in bad],
                           color="red", s=12, zorder=3)
            plotted = True
        if not plotted:
            plt.close(fig)
            return ""
        ax.set_xlabel("Time (s)", fontsize=11)
        ax.set_ylabel("Length / torso height", fontsize=11)
        ax.set_title("Segment lengths", fontsize=13, fontweight="bold")
        ax.legend(fontsize=8, ncol=3)
        ax.grid(True, alpha=0.3)
        return _save(fig, output_path)

    @staticmethod
    def angle_chart(recorder: JointHistoryRecorder, output_path: str) -> str:
        fig, ax = plt.subplots(figsize=(12, 5))
        plotted = False
        for name in recorder.angle_names:
            samples = recorder.angle_history(name)
            if len(samples) < 2:
                continue
            ax.plot([s.timestamp_s for s in samples], [s.angle for s in samples], linewidth=1, label=name)
            plotted = True
        if not plotted:
            plt.close(fig)
            return ""
        ax.set_ylim(0, 180)
        ax.set_xlabel("Time (s)", fontsize=11)
        ax.set_ylabel("Angle (deg)", fontsize=11)
        ax.set_title("Joint angles", fontsize=13, fontweight="bold")
        ax.legend(fontsize=8, ncol=2)
        ax.grid(True, alpha=0.3)
        return _save(fig, output_path)

    @staticmethod
    def acceleration_chart(
        recorder: JointHistoryRecorder,
        output_path: str,
        joints: Optional[List[str]] = None,
    ) -> str:
        """Velocity and acceleration magnitude relative to the body center."""
        joints = joints or ["Left Wrist", "Right Wrist"]
        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 6), sharex=True)
        plotted = False
        for joint in joints:
            samples = recorder.acceleration_history(joint)
            if len(samples) < 2:
                continue
            t = [s.timestamp_s for s in samples]
            ax1.plot(t, [s.velocity for s in samples], linewidth=1.2, label=joint)
            ax2.plot(t, [s.acceleration for s in samples], linewidth=1.2, label=joint)
            plotted = True
        if not plotted:
            plt.close(fig)
            return ""
        ax1.set_ylabel("Velocity (px/frame)", fontsize=11)
        ax2.set_ylabel("Acceleration (px/frame²)", fontsize=11)
        ax2.set_xlabel("Time (s)", fontsize=11)
        ax1.set_title("Joint motion relative to body center", fontsize=13, fontweight="bold")
        for ax in (ax1, ax2):
            ax.legend(fontsize=9)
            ax.grid(True, alpha=0.3)
        return _save(fig, output_path)
