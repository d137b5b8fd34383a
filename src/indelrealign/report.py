from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>indelrealign Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>indelrealign Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>BAM</th><td><code>{{ run.bam_path }}</code></td></tr>
      <tr><th>Sort order</th><td>{{ run.sort_order }}</td></tr>
      <tr><th>Reference</th><td><code>{{ run.ref_fasta or "MD tags" }}</code></td></tr>
      <tr><th>Known indels VCF</th><td><code>{{ known_vcf or "-" }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Settings</h3>
    <table>
      <tr><th>Consensus strategy</th><td>{{ run.strategy }}</td></tr>
      <tr><th>LOD threshold</th><td>{{ run.lod_threshold }}</td></tr>
      <tr><th>Max indel size</th><td>{{ run.max_indel_size }}</td></tr>
      <tr><th>Max consensuses per region</th><td>{{ run.max_consensus_number }}</td></tr>
      <tr><th>Max target size</th><td>{{ run.max_target_size }}</td></tr>
      <tr><th>Workers</th><td>{{ run.workers }}</td></tr>
    </table>
  </div>
</div>

{% if known_stats %}
<h2>Known sites</h2>
<table>
  <tr><th>Sites kept</th><td>{{ known_stats.sites_kept }}</td></tr>
  <tr><th>VCF records total</th><td>{{ known_stats.records_total }}</td></tr>
  <tr><th>Skipped FILTER</th><td>{{ known_stats.sites_skipped_filter }}</td></tr>
  <tr><th>Skipped non-indel</th><td>{{ known_stats.sites_skipped_non_indel }}</td></tr>
  <tr><th>Skipped size</th><td>{{ known_stats.sites_skipped_size }}</td></tr>
</table>
{% endif %}

<h2>Realignment</h2>
<table>
  <tr><th>Total reads</th><td>{{ counts.reads_total }}</td></tr>
  <tr><th>Unmapped (passed through)</th><td>{{ counts.reads_unmapped }}</td></tr>
  <tr><th>Malformed (passed through)</th><td>{{ counts.reads_malformed }}</td></tr>
  <tr><th>Skipped by region width cap</th><td>{{ counts.reads_skipped_width }}</td></tr>
  <tr><th>Target regions</th><td>{{ counts.regions_processed }}</td></tr>
  <tr><th>Regions without candidates</th><td>{{ counts.regions_without_candidates }}</td></tr>
  <tr><th>Regions without reference</th><td>{{ counts.regions_without_reference }}</td></tr>
  <tr><th>Candidate consensuses evaluated</th><td>{{ counts.candidates_evaluated }}</td></tr>
  <tr><th>Reads in target regions</th><td>{{ counts.reads_in_regions }}</td></tr>
  <tr><th>Reads realigned</th><td>{{ counts.reads_realigned }}</td></tr>
</table>

<h2>Plots</h2>

<div class="grid">
  <div class="card">
    <h3>Read outcomes</h3>
    <img src="{{ plots.outcome_counts }}" alt="outcome counts">
  </div>
  <div class="card">
    <h3>Log-odds of accepted realignments</h3>
    <img src="{{ plots.lod_hist }}" alt="log-odds histogram">
  </div>
</div>

<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Target region widths</h3>
    <img src="{{ plots.region_width_hist }}" alt="region width histogram">
  </div>
</div>

<h2>Outputs</h2>
<ul>
  <li><code>{{ run.out_bam }}</code> (realigned BAM{% if run.sort_order == "coordinate" %}, sorted and indexed{% endif %})</li>
  <li><code>{{ run.realignments_tsv_gz }}</code> (per-read realignments)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>Realigned reads keep their original position and CIGAR in the <code>OP</code> and <code>OC</code> tags.</li>
  <li>A read is moved only when the best consensus beats its current alignment by more than the LOD threshold.</li>
  <li>Without a reference FASTA, region references are rebuilt from MD tags; regions lacking both are left unchanged.</li>
</ul>

<hr>
<p class="small">indelrealign {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    plots: Dict[str, str],
    known_vcf: Optional[str] = None,
    known_stats: Optional[Dict[str, Any]] = None,
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        run=run,
        counts=run.get("counts", {}),
        known_vcf=known_vcf,
        known_stats=known_stats,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
