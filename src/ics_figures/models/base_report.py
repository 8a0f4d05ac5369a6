"""
Shared layout for the figure reports.

A report writes its figures to <out_dir>/<assets>/plots, its tables to
<out_dir>/<assets>/tables and a report.md (plus report.html) referencing
them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import json
import markdown as md
import matplotlib.pyplot as plt
import pandas as pd

from ..config import settings
from ..services.io import save_figure, write_table


@dataclass
class BaseReportConfig:
    project_name: str
    out_dir: Union[str, Path] = "report_out"
    assets_dirname: str = "report_assets"
    plots_dirname: str = "plots"
    tables_dirname: str = "tables"
    # figure formats next to the png embedded in report.md; default from settings
    extra_formats: Optional[List[str]] = None


class BaseReport:
    """
    Base class of the three figure reports.

    Subclasses implement _make_summary, _make_tables and _make_plots and set
    the title. build() runs them in that order and writes the markdown.
    """

    title = "Report"

    def __init__(self, config: BaseReportConfig):
        self.cfg = config
        self.out_dir = Path(self.cfg.out_dir)
        self.assets_dir = self.out_dir / self.cfg.assets_dirname
        self.plots_dir = self.assets_dir / self.cfg.plots_dirname
        self.tables_dir = self.assets_dir / self.cfg.tables_dirname

        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.plots_dir.mkdir(parents=True, exist_ok=True)
        self.tables_dir.mkdir(parents=True, exist_ok=True)

        self._summary: Optional[Dict] = None
        self.outputs: Dict[str, List[Path]] = {}

    # -----------------------
    # Helpers
    # -----------------------
    @property
    def plot_formats(self) -> List[str]:
        extra = (
            settings.save_formats
            if self.cfg.extra_formats is None
            else self.cfg.extra_formats
        )
        return ["png"] + [f for f in extra if f != "png"]

    def _save_plot(self, fig, name: str) -> List[Path]:
        written = save_figure(
            fig, self.plots_dir, name, formats=self.plot_formats
        )
        plt.close(fig)
        self.outputs[f"plot_{name}"] = written
        return written

    def _save_table(
        self, df: pd.DataFrame, name: str, index: bool = False
    ) -> Path:
        path = write_table(df, self.tables_dir / f"{name}.tsv", index=index)
        self.outputs[f"table_{name}"] = [path]
        return path

    # -----------------------
    # Steps
    # -----------------------
    def _make_summary(self) -> Dict:
        raise NotImplementedError

    def _make_tables(self) -> None:
        raise NotImplementedError

    def _make_plots(self) -> None:
        raise NotImplementedError

    def _extra_sections(self) -> str:
        return ""

    def _summary_lines(self, summary: Dict) -> List[str]:
        return [
            f"- {key}: {value}"
            for key, value in summary.items()
            if not isinstance(value, (dict, list))
        ]

    def build(self) -> Path:
        """
        Run the analysis and write tables, plots and report.md.

        Returns
        -------
        Path
            The written report.md.
        """
        summary = self._make_summary()
        summary["generated_at"] = datetime.now().isoformat(timespec="seconds")
        self._summary = summary
        self._make_tables()
        self._make_plots()
        summary_json = self.out_dir / "summary.json"
        summary_json.write_text(
            json.dumps(summary, indent=2, default=str), encoding="utf-8"
        )
        self.outputs["summary"] = [summary_json]
        report_md = self._write_markdown_report(summary)
        print(f"{self.title} written to {report_md}")
        return report_md

    # -----------------------
    # Report writer
    # -----------------------
    def _write_markdown_report(self, summary: Dict) -> Path:
        report_text = f"# {self.title} - {self.cfg.project_name}\n"
        report_text += "\n\n## Summary\n"
        report_text += "\n".join(self._summary_lines(summary)) + "\n"
        report_text += self._extra_sections()

        report_text += "\n\n## Plots\n"
        for p in sorted(self.plots_dir.glob("*.png")):
            rel = (
                Path(self.cfg.assets_dirname)
                / Path(self.cfg.plots_dirname)
                / p.name
            )
            report_text += f"\n### {p.stem}\n\n![]({rel.as_posix()})\n"

        report_text += "\n\n## Tables\n"
        for t in sorted(self.tables_dir.glob("*.tsv")):
            rel = (
                Path(self.cfg.assets_dirname)
                / Path(self.cfg.tables_dirname)
                / t.name
            )
            report_text += f"\n- `{rel.as_posix()}`\n"

        report_md = self.out_dir / "report.md"
        report_md.write_text(report_text, encoding="utf-8")
        self.outputs["report"] = [report_md, self.render_html()]
        return report_md

    def render_html(self) -> Optional[Path]:
        report_md = self.out_dir / "report.md"
        if not report_md.exists():
            return None
        out_html = self.out_dir / "report.html"
        out_html.write_text(
            md.markdown(
                report_md.read_text(encoding="utf-8"), extensions=["tables"]
            ),
            encoding="utf-8",
        )
        return out_html

    @property
    def summary(self) -> Optional[Dict]:
        return self._summary

    @staticmethod
    def _format_value(value) -> str:
        if isinstance(value, float):
            return f"{value:.3g}"
        return str(value)


def markdown_table(df: pd.DataFrame, max_rows: int = 20) -> str:
    """Render the head of a DataFrame as a markdown table."""
    head = df.head(max_rows)
    cols = [str(c) for c in head.columns]
    lines = [
        "| " + " | ".join(cols) + " |",
        "| " + " | ".join("---" for _ in cols) + " |",
    ]
    for _, row in head.iterrows():
        lines.append(
            "| "
            + " | ".join(BaseReport._format_value(v) for v in row.tolist())
            + " |"
        )
    return "\n".join(lines) + "\n"
