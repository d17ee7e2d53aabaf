from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Iterable

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from .config import SOLO_ID
from .runner import Result

LOGGER = logging.getLogger("ccafct.harness.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.titlesize"] = 13

CHANNELS = (
    ("geomean", "GeoMean"),
    ("median", "Median"),
    ("p95", "P95"),
)


def results_dataframe(results: Iterable[Result]) -> pd.DataFrame:
    rows = [result.to_row() for result in results]
    return pd.DataFrame(rows)


def render_harm_chart(results: Iterable[Result], chart_path: Path) -> Path | None:
    """Bar chart of FCT harm per RTT, one panel per statistic."""
    df = results_dataframe(results)
    if df.empty:
        LOGGER.warning("No results available for harm chart")
        return None
    df = df[df["cca"] != SOLO_ID]
    if df.empty:
        LOGGER.warning("No competitor results available for harm chart")
        return None

    fig, axes = plt.subplots(1, len(CHANNELS), figsize=(15, 5), sharey=True)
    for ax, (channel, title) in zip(axes, CHANNELS):
        column = f"{channel}_harm"
        # infinite harm marks an undefined value, leave it out of the plot
        valid = df[df[column].map(lambda h: math.isfinite(h) and 0 <= h <= 1)]
        if valid.empty:
            ax.set_title(f"{title} (no valid harm)")
            continue
        sns.barplot(data=valid, x="rtt_ms", y=column, hue="cca", ax=ax)
        ax.set_title(f"{title} FCT Harm", fontweight="bold")
        ax.set_xlabel("RTT (ms)")
        ax.set_ylabel("Harm")
        ax.set_ylim(0, 1)
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)

    fig.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


def render_fct_chart(results: Iterable[Result], chart_path: Path) -> Path | None:
    """Median and P95 FCT per RTT, solo and with each competitor."""
    df = results_dataframe(results)
    if df.empty:
        LOGGER.warning("No results available for FCT chart")
        return None
    df = df.assign(label=df["cca"].map(lambda cca: "solo" if cca == SOLO_ID else cca))

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    for ax, column, title in (
        (axes[0], "median_ms", "Median FCT"),
        (axes[1], "p95_ms", "P95 FCT"),
    ):
        sns.lineplot(data=df, x="rtt_ms", y=column, hue="label", marker="o", ax=ax)
        ax.set_title(title, fontweight="bold")
        ax.set_xlabel("RTT (ms)")
        ax.set_ylabel("FCT (ms)")
        ax.set_ylim(bottom=0)

    fig.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path
