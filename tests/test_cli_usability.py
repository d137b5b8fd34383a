import json
import subprocess
import sys
from pathlib import Path

import pysam

from indelrealign.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "indelrealign"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _make_small_vcf(path: Path, contig: str) -> Path:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.contigs.add(contig, length=400)

    vcf_path = path / "known.vcf"
    with pysam.VariantFile(str(vcf_path), "w", header=header) as vcf:
        rec = vcf.new_record(
            contig=contig,
            start=149,
            stop=150,
            alleles=("A", "AGGG"),
            qual=60,
            filter="PASS",
        )
        vcf.write(rec)

    vcf_gz = path / "known.vcf.gz"
    pysam.tabix_compress(str(vcf_path), str(vcf_gz), force=True)
    pysam.tabix_index(str(vcf_gz), preset="vcf", force=True)
    return vcf_gz


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "indelrealign realign" in cp.stdout
    assert "--strategy known" in cp.stdout


def test_realign_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "realign"
    cp = _run_cli(
        [
            "realign",
            "--bam",
            toy["reads_bam"],
            "--ref",
            toy["ref_fa"],
            "--outdir",
            str(outdir),
            "--dry-run",
        ]
    )
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_make_toy_data_and_realign(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0

    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "realign",
            "--bam",
            str(toy_dir / "reads.bam"),
            "--ref",
            str(toy_dir / "toy_ref.fa"),
            "--outdir",
            str(outdir),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "report.html").exists()
    assert (outdir / "realigned.bam").exists()
    assert (outdir / "plots" / "lod_hist.png").exists()
    assert (outdir / "logs" / "realign.log").exists()
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["counts"]["reads_realigned"] == 5


def test_realign_with_known_sites(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "realign",
            "--bam",
            toy["reads_bam"],
            "--ref",
            toy["ref_fa"],
            "--strategy",
            "known",
            "--known-vcf",
            toy["known_vcf"],
            "--outdir",
            str(outdir),
            "--workers",
            "2",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["strategy"] == "known"
    assert summary["counts"]["reads_realigned"] == 5
    assert (outdir / "known_sites_stats.json").exists()


def test_known_strategy_requires_vcf(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "realign",
            "--bam",
            toy["reads_bam"],
            "--outdir",
            str(tmp_path / "out"),
            "--strategy",
            "known",
        ]
    )
    assert cp.returncode == 2
    assert "ConfigurationError" in cp.stderr


def test_invalid_threshold_is_rejected(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "realign",
            "--bam",
            toy["reads_bam"],
            "--outdir",
            str(tmp_path / "out"),
            "--lod-threshold",
            "-1",
        ]
    )
    assert cp.returncode == 2
    assert "lod_threshold" in cp.stderr


def test_contig_mismatch_message(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    vcf_dir = tmp_path / "vcf"
    vcf_dir.mkdir()
    vcf_gz = _make_small_vcf(vcf_dir, contig="1")

    cp = _run_cli(
        [
            "realign",
            "--bam",
            toy["reads_bam"],
            "--strategy",
            "known",
            "--known-vcf",
            str(vcf_gz),
            "--outdir",
            str(tmp_path / "out"),
            "--contig-style",
            "ensembl",
        ]
    )
    assert cp.returncode != 0
    assert "Contig mismatch" in cp.stderr
